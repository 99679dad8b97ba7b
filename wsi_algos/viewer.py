from __future__ import annotations
import math
import logging
from typing import Dict, Set, Optional
from cachetools import LRUCache
from PIL import Image
from PySide6.QtCore import Qt, QPointF, QRectF, QTimer, Signal
from PySide6.QtGui import QPainter, QPixmap, QTransform, QBrush, QImage
from PySide6.QtWidgets import QGraphicsPixmapItem, QGraphicsScene, QGraphicsView
from shapely.geometry import box

from .config import CONFIG as _DEFAULT_CONFIG
from .annotations import AnnotationHierarchy, AnnotationObject, ObjectKind
from .backend import OpenSlideBackend
from .overlay import OverlayItem
from .regions import DEFAULT_PLANE, ImagePlane, RegionRequest
from .tiling import TileRequest, TileScheduler, TileKey

log = logging.getLogger(__name__)

# 선택 클릭 허용 오차 (화면 픽셀)
CLICK_TOLERANCE_PX = 4.0


class SlideViewer(QGraphicsView):
    """WSI 타일 뷰어 + annotation 편집

    - Shift+드래그: 사각형 annotation 생성 후 선택
    - Ctrl+클릭: 커서 아래 annotation 선택
    - 테스트 주입성: scheduler/backend/config 인자 허용
    """

    annotation_created = Signal(object)
    selection_changed = Signal(object)

    def __init__(self,
                 scheduler: Optional[TileScheduler] = None,
                 backend: Optional[OpenSlideBackend] = None,
                 config: Optional[object] = None):
        super().__init__()

        self.CFG = config or _DEFAULT_CONFIG

        if getattr(self.CFG.viewer, 'use_opengl_viewport', False):
            from PySide6.QtOpenGLWidgets import QOpenGLWidget
            self.setViewport(QOpenGLWidget())

        self.setRenderHints(QPainter.SmoothPixmapTransform)
        self.setDragMode(QGraphicsView.ScrollHandDrag)
        self.setTransformationAnchor(QGraphicsView.AnchorUnderMouse)
        self.setResizeAnchor(QGraphicsView.AnchorUnderMouse)

        self._scene = QGraphicsScene(self)
        self._scene.setBackgroundBrush(QBrush(Qt.white))
        self.setScene(self._scene)
        self.setBackgroundBrush(QBrush(Qt.white))

        self.backend: OpenSlideBackend | None = backend
        self.cur_level: int = 0

        self.cache: LRUCache[TileKey, QPixmap] = LRUCache(maxsize=self.CFG.viewer.cache_max_tiles)
        self.tile_items: Dict[TileKey, QGraphicsPixmapItem] = {}
        self.scheduler: TileScheduler = scheduler or TileScheduler()

        # --- Annotation ---
        self.hierarchy = AnnotationHierarchy()
        self.hierarchy.add_listener(self._on_hierarchy_changed)
        self._drag_start: QPointF | None = None

        self.overlay: OverlayItem | None = None
        self._create_overlay()

        self.cleanup_timer = QTimer(self)
        self.cleanup_timer.setSingleShot(True)
        self.cleanup_timer.timeout.connect(self.cleanup_old_tiles)

        self.scroll_update_timer = QTimer(self)
        self.scroll_update_timer.setSingleShot(True)
        self.scroll_update_timer.timeout.connect(self.update_visible_tiles)

        self._padding = self.CFG.viewer.padding

        if self.backend:
            self._reset_level()

    # -------------------- 유틸 --------------------
    def _view_scale_x(self) -> float:
        return float(self.transform().m11())

    def level0_to_view_scale(self) -> float:
        if not self.backend:
            return 1.0
        ds = self.backend.level_downsamples[self.cur_level]
        return self._view_scale_x() / ds

    def current_scale_from_level0(self) -> float:
        if not self.backend:
            return 1.0
        ds = self.backend.level_downsamples[self.cur_level]
        return 1.0 / ds

    def scene_to_level0(self, pt: QPointF) -> QPointF:
        if not self.backend:
            return QPointF(pt)
        return pt * self.backend.level_downsamples[self.cur_level]

    @property
    def current_plane(self) -> ImagePlane:
        return self.backend.plane if self.backend else DEFAULT_PLANE

    # -------------------- 로딩 --------------------
    def load_slide(self, path: str):
        backend = OpenSlideBackend(path)

        self._scene.clear()
        self.tile_items.clear()
        self.cache.clear()
        if self.backend:
            self.backend.close()
        self.backend = backend

        # 슬라이드마다 새 hierarchy
        self.hierarchy.remove_listener(self._on_hierarchy_changed)
        self.hierarchy = AnnotationHierarchy()
        self.hierarchy.add_listener(self._on_hierarchy_changed)
        self.overlay = None
        self._create_overlay()

        self._reset_level()
        self.update_visible_tiles()
        self.selection_changed.emit(None)

    def _reset_level(self):
        self.cur_level = self.backend.levels - 1
        w, h = self.backend.dimensions[self.cur_level]
        self._scene.setSceneRect(-self._padding, -self._padding, w + 2*self._padding, h + 2*self._padding)
        self.fitInView(self._scene.sceneRect(), Qt.KeepAspectRatio)

    # -------------------- 입력(줌/스크롤) --------------------
    def wheelEvent(self, event):
        if not self.backend:
            return

        anchor_scene_before = self.mapToScene(event.position().toPoint())
        zf = self.CFG.viewer.zoom_factor_step if event.angleDelta().y() > 0 else 1.0 / self.CFG.viewer.zoom_factor_step

        target_l0_scale = self.level0_to_view_scale() * zf
        if not (self.CFG.viewer.min_scale_l0 <= target_l0_scale <= self.CFG.viewer.max_scale_l0):
            return

        new_level = self.backend.get_best_level_for_downsample(1.0 / target_l0_scale)
        level_changed = (new_level != self.cur_level)

        if not level_changed:
            self.scale(zf, zf)
        else:
            self.cleanup_timer.stop()
            for item in self.tile_items.values():
                item.setZValue(-1)

            old_ds = self.backend.level_downsamples[self.cur_level]
            self.cur_level = new_level
            w, h = self.backend.dimensions[self.cur_level]
            self._scene.setSceneRect(-self._padding, -self._padding, w + 2*self._padding, h + 2*self._padding)

            new_ds = self.backend.level_downsamples[self.cur_level]
            new_view_scale = target_l0_scale * new_ds
            self.setTransform(QTransform().scale(new_view_scale, new_view_scale))
            self.centerOn(anchor_scene_before * old_ds / new_ds)

        self.update_visible_tiles()
        if level_changed:
            self.cleanup_timer.start(self.CFG.viewer.cleanup_delay_ms)

    def scrollContentsBy(self, dx, dy):
        super().scrollContentsBy(dx, dy)
        self.scroll_update_timer.start(50)

    def resizeEvent(self, ev):
        super().resizeEvent(ev)
        self.update_visible_tiles()

    # -------------------- 입력(annotation) --------------------
    def mousePressEvent(self, event):
        if self.backend and event.button() == Qt.LeftButton:
            mods = event.modifiers()
            l0 = self.scene_to_level0(self.mapToScene(event.position().toPoint()))
            if mods & Qt.ShiftModifier:
                self.setDragMode(QGraphicsView.NoDrag)
                self._drag_start = l0
                self.overlay.set_pending_box((l0.x(), l0.y(), l0.x(), l0.y()))
                event.accept()
                return
            if mods & Qt.ControlModifier:
                self.select_annotation_at(l0.x(), l0.y())
                event.accept()
                return
        super().mousePressEvent(event)

    def mouseMoveEvent(self, event):
        if self._drag_start is not None:
            l0 = self.scene_to_level0(self.mapToScene(event.position().toPoint()))
            self.overlay.set_pending_box((self._drag_start.x(), self._drag_start.y(), l0.x(), l0.y()))
            event.accept()
            return
        super().mouseMoveEvent(event)

    def mouseReleaseEvent(self, event):
        if self._drag_start is not None and event.button() == Qt.LeftButton:
            l0 = self.scene_to_level0(self.mapToScene(event.position().toPoint()))
            start, self._drag_start = self._drag_start, None
            self.overlay.set_pending_box(None)
            self.setDragMode(QGraphicsView.ScrollHandDrag)
            self.add_rectangle_annotation(start.x(), start.y(), l0.x(), l0.y())
            event.accept()
            return
        super().mouseReleaseEvent(event)

    def add_rectangle_annotation(self, x1: float, y1: float, x2: float, y2: float) -> AnnotationObject | None:
        """level0 좌표 사각형 annotation 추가 + 선택 (크기 0이면 무시)"""
        geom = box(min(x1, x2), min(y1, y2), max(x1, x2), max(y1, y2))
        if geom.area <= 0:
            return None
        obj = AnnotationObject(geometry=geom, kind=ObjectKind.ANNOTATION, plane=self.current_plane)
        self.hierarchy.add_object(obj, fire=False)
        self.hierarchy.set_selected_object(obj)
        self.hierarchy.fire_hierarchy_changed()
        log.info("Annotation created: %s", tuple(round(v) for v in geom.bounds))
        self.annotation_created.emit(obj)
        self.selection_changed.emit(obj)
        return obj

    def select_annotation_at(self, x: float, y: float) -> AnnotationObject | None:
        scale = self.level0_to_view_scale()
        tolerance = CLICK_TOLERANCE_PX / scale if scale > 0 else 0.0
        obj = self.hierarchy.annotation_at(x, y, self.current_plane, tolerance)
        self.hierarchy.set_selected_object(obj)
        self.overlay.refresh()
        self.selection_changed.emit(obj)
        return obj

    # -------------------- 영역 추출 --------------------
    def region_request_for(self, obj: AnnotationObject) -> RegionRequest:
        """annotation의 level0 bounding box → 슬라이드 경계로 잘린 RegionRequest"""
        if not self.backend:
            raise RuntimeError("No slide loaded")
        if obj.geometry is None or obj.geometry.is_empty:
            raise ValueError("Annotation has no geometry")
        region = RegionRequest.from_bounds(obj.geometry.bounds, plane=obj.plane)
        region = self.backend.clip_region(region)
        ds = self.backend.downsample_for_region(region)
        if ds != 1.0:
            region = RegionRequest(region.x, region.y, region.width, region.height, ds, region.plane)
        return region

    def read_region_image(self, region: RegionRequest) -> Image.Image:
        if not self.backend:
            raise RuntimeError("No slide loaded")
        return self.backend.read_region_request(region)

    # -------------------- 타일 관리 --------------------
    def cleanup_old_tiles(self):
        if not self.backend:
            return
        keys_to_remove = [k for k in self.tile_items if k[0] != self.cur_level]
        for key in keys_to_remove:
            item = self.tile_items.pop(key)
            self._scene.removeItem(item)

    def update_visible_tiles(self):
        if not self.backend:
            return

        vr = self.mapToScene(self.viewport().rect()).boundingRect()
        w, h = self.backend.dimensions[self.cur_level]
        vr = vr.intersected(QRectF(0, 0, w, h))
        if vr.isEmpty():
            return

        ts = self.CFG.viewer.tile_size
        col0 = max(int(math.floor(vr.left()/ts)), 0)
        row0 = max(int(math.floor(vr.top()/ts)), 0)
        col1 = min(int(math.ceil(vr.right()/ts)), (w-1)//ts)
        row1 = min(int(math.ceil(vr.bottom()/ts)), (h-1)//ts)

        visible: Set[TileKey] = {
            (self.cur_level, c, r) for r in range(row0, row1+1) for c in range(col0, col1+1)
        }

        for key in set(self.tile_items.keys()) - visible:
            item = self.tile_items.pop(key)
            self._scene.removeItem(item)

        for key in sorted(visible):
            if key in self.tile_items:
                continue
            _, c, r = key
            if key in self.cache:
                self._add_tile_item(key, self.cache[key])
            else:
                req = TileRequest(self.backend, self.cur_level, c, r, ts)
                self.scheduler.request(req, self._on_tile_done, self._on_tile_error)

    def _add_tile_item(self, key: TileKey, pm: QPixmap):
        ts = self.CFG.viewer.tile_size
        _, col, row = key
        item = QGraphicsPixmapItem(pm)
        item.setPos(col*ts, row*ts)
        item.setZValue(0)
        self._scene.addItem(item)
        self.tile_items[key] = item

    def _on_tile_done(self, level, col, row, qimg: QImage):
        key = (level, col, row)
        if key in self.cache:
            return
        pm = QPixmap.fromImage(qimg)
        self.cache[key] = pm
        if not self.backend or level != self.cur_level or key in self.tile_items:
            return
        ts = self.CFG.viewer.tile_size
        tile_rect = QRectF(col*ts, row*ts, ts, ts)
        viewport_rect = self.mapToScene(self.viewport().rect()).boundingRect()
        if tile_rect.intersects(viewport_rect):
            self._add_tile_item(key, pm)

    def _on_tile_error(self, level, col, row, msg: str):
        log.warning("Tile load error (L%d, c%d, r%d): %s", level, col, row, msg)

    # -------------------- 오버레이 --------------------
    def _create_overlay(self):
        self.overlay = OverlayItem(
            self.hierarchy,
            get_scale_func=self.current_scale_from_level0,
            get_plane_func=lambda: self.current_plane,
            config=self.CFG,
        )
        self.overlay.setZValue(1000)
        self._scene.addItem(self.overlay)
        log.debug("오버레이 생성 완료, Z=%s", self.overlay.zValue())

    def _on_hierarchy_changed(self, hierarchy: AnnotationHierarchy):
        if self.overlay:
            self.overlay.refresh()
        self.viewport().update()
