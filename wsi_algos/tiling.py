from __future__ import annotations
from typing import TYPE_CHECKING, Tuple
from dataclasses import dataclass
import logging
from PySide6.QtCore import QObject, QRunnable, QThreadPool, Signal
from PySide6.QtGui import QImage
from PIL import Image
from .backend import SlideReadError

if TYPE_CHECKING:
    from .backend import OpenSlideBackend

TileKey = Tuple[int, int, int]  # (level, col, row)


def pil_to_qimage(pil_image: Image.Image) -> QImage:
    """PIL → QImage (RGB888, 복사본)"""
    if pil_image.size[0] == 0 or pil_image.size[1] == 0:
        raise ValueError(f"Empty image: {pil_image.size}")
    if pil_image.mode != "RGB":
        pil_image = pil_image.convert("RGB")
    w, h = pil_image.size
    qimg = QImage(pil_image.tobytes(), w, h, w * 3, QImage.Format_RGB888).copy()
    if qimg.isNull():
        raise ValueError("QImage conversion failed")
    return qimg


class TileTaskSignals(QObject):
    done = Signal(int, int, int, QImage)
    error = Signal(int, int, int, str)


@dataclass
class TileRequest:
    backend: "OpenSlideBackend"
    level: int
    col: int
    row: int
    tile_size: int

    @property
    def tile_id(self) -> str:
        return f"L{self.level}({self.col},{self.row})"


class TileTask(QRunnable):
    def __init__(self, req: TileRequest):
        super().__init__()
        self.req = req
        self.signals = TileTaskSignals()

    def run(self) -> None:
        req = self.req
        try:
            x = req.col * req.tile_size
            y = req.row * req.tile_size
            qimg = pil_to_qimage(req.backend.read_region(req.level, x, y, req.tile_size, req.tile_size))
            logging.debug(f"Tile loaded: {req.tile_id}")
            self.signals.done.emit(req.level, req.col, req.row, qimg)
        except SlideReadError as e:
            self._emit_error(f"슬라이드 읽기 오류 ({req.tile_id}): {e}")
        except ValueError as e:
            self._emit_error(f"이미지 변환 오류 ({req.tile_id}): {e}")
        except MemoryError:
            self._emit_error(f"메모리 부족 ({req.tile_id}): 타일 크기를 줄여주세요")

    def _emit_error(self, message: str) -> None:
        logging.error(message)
        self.signals.error.emit(self.req.level, self.req.col, self.req.row, message)


class TileScheduler:
    def __init__(self, pool: QThreadPool | None = None):
        self.pool = pool or QThreadPool.globalInstance()

    def request(self, req: TileRequest, on_done, on_error) -> None:
        task = TileTask(req)
        task.signals.done.connect(on_done)
        task.signals.error.connect(on_error)
        self.pool.start(task)
