from __future__ import annotations
from typing import List, Tuple
from pathlib import Path
from PIL import Image
import logging

try:
    import openslide  # type: ignore
except ImportError:
    openslide = None

from .regions import ImagePlane, RegionRequest

Size = Tuple[int, int]

# 서버로 보내는 영역의 최대 픽셀 수 (이보다 크면 downsample)
MAX_REGION_PIXELS = 8192 * 8192

class SlideLoadError(Exception):
    """슬라이드 로딩 관련 에러"""
    pass

class SlideReadError(Exception):
    """슬라이드 읽기 관련 에러"""
    pass

class OpenSlideBackend:
    """OpenSlide 기반 슬라이드 접근 (타일 + 알고리즘용 영역 추출)"""

    def __init__(self, slide_path: str):
        if openslide is None:
            raise SlideLoadError(
                "OpenSlide library not found. "
                "Install it with: pip install openslide-python openslide-bin"
            )

        slide_file = Path(slide_path)
        if not slide_file.is_file():
            raise SlideLoadError(f"Slide file not found: {slide_path}")

        try:
            self.slide = openslide.OpenSlide(slide_path)
        except openslide.OpenSlideError as e:
            raise SlideLoadError(f"Could not open slide: {e}")
        except Exception as e:
            raise SlideLoadError(f"Unexpected error while opening slide: {e}")

        if self.slide.level_count == 0:
            self.slide.close()
            raise SlideLoadError(f"Invalid slide file: {slide_path}")

        self.path = str(slide_file)
        self.levels = self.slide.level_count
        self.level_downsamples: List[float] = [
            float(self.slide.level_downsamples[i]) for i in range(self.levels)
        ]
        self.dimensions: List[Size] = [
            self.slide.level_dimensions[i] for i in range(self.levels)
        ]

        prop = self.slide.properties
        self.mpp_x = float(prop.get("openslide.mpp-x", 0) or 0)
        self.mpp_y = float(prop.get("openslide.mpp-y", 0) or 0)
        self.objective_power = prop.get("openslide.objective-power", "")

        # OpenSlide 슬라이드는 항상 단일 평면
        self.plane = ImagePlane()

        logging.info(f"Slide loaded: {slide_path} ({self.levels} levels)")

    @property
    def width(self) -> int:
        return self.dimensions[0][0]

    @property
    def height(self) -> int:
        return self.dimensions[0][1]

    def close(self) -> None:
        """슬라이드 리소스 정리"""
        try:
            if hasattr(self, 'slide') and self.slide:
                self.slide.close()
        except Exception as e:
            logging.warning(f"Error while closing slide: {e}")

    def get_best_level_for_downsample(self, downsample: float) -> int:
        try:
            return self.slide.get_best_level_for_downsample(downsample)
        except Exception as e:
            logging.warning(f"Best level lookup failed, using fallback: {e}")
            return min(max(0, int(downsample)), self.levels - 1)

    def read_region(self, level: int, x: int, y: int, w: int, h: int) -> Image.Image:
        """레벨 좌표계 (x, y)에서 w x h 타일 읽기"""
        if not (0 <= level < self.levels):
            raise SlideReadError(f"Invalid level: {level} (valid: 0-{self.levels-1})")

        if w <= 0 or h <= 0:
            raise SlideReadError(f"Invalid size: {w}x{h}")

        level_w, level_h = self.dimensions[level]
        if x < 0 or y < 0 or x >= level_w or y >= level_h:
            raise SlideReadError(f"Invalid coordinates on level {level}: ({x}, {y}), max: ({level_w}, {level_h})")

        try:
            ds = self.level_downsamples[level]
            x0, y0 = int(x * ds), int(y * ds)
            return self.slide.read_region((x0, y0), level, (w, h)).convert("RGB")
        except openslide.OpenSlideError as e:
            raise SlideReadError(f"Read failed (level={level}, xy=({x},{y}), size={w}x{h}): {e}")

    def clip_region(self, region: RegionRequest) -> RegionRequest:
        """슬라이드 경계로 잘라낸 영역"""
        return region.intersect2d(0, 0, self.width, self.height)

    def downsample_for_region(self, region: RegionRequest) -> float:
        """Smallest downsample keeping ``region`` under ``MAX_REGION_PIXELS``."""
        pixels = region.width * region.height
        if pixels <= MAX_REGION_PIXELS:
            return 1.0
        return (pixels / MAX_REGION_PIXELS) ** 0.5

    def read_region_request(self, region: RegionRequest) -> Image.Image:
        """Read the pixels of a level-0 ``region`` at ``region.downsample``.

        The returned image is ``width / downsample`` by ``height / downsample``
        pixels, so results computed on it map back through ``region.transform``.
        """
        region = self.clip_region(region)
        if region.is_empty:
            raise SlideReadError(f"Region lies outside the slide: {region}")

        ds = region.downsample
        out_w = max(1, int(round(region.width / ds)))
        out_h = max(1, int(round(region.height / ds)))
        level = self.get_best_level_for_downsample(ds)
        level_ds = self.level_downsamples[level]
        level_w = max(1, int(round(region.width / level_ds)))
        level_h = max(1, int(round(region.height / level_ds)))

        try:
            img = self.slide.read_region((region.x, region.y), level, (level_w, level_h)).convert("RGB")
        except openslide.OpenSlideError as e:
            raise SlideReadError(f"Region read failed ({region}): {e}")

        if img.size != (out_w, out_h):
            img = img.resize((out_w, out_h), Image.Resampling.BILINEAR)
        logging.debug(f"Region read: {region} -> level {level}, {img.size}")
        return img
