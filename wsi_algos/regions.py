"""Pixel-space region requests and the transform that maps results back onto the slide."""

from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Tuple

from shapely import affinity
from shapely.geometry.base import BaseGeometry


@dataclass(frozen=True)
class ImagePlane:
    """(z, t) 좌표로 식별되는 2-D 슬라이스"""
    z: int = 0
    t: int = 0

    def __repr__(self) -> str:
        return f"ImagePlane(z={self.z}, t={self.t})"


DEFAULT_PLANE = ImagePlane()


@dataclass(frozen=True)
class RegionTransform:
    """Maps region-local coordinates to level-0 slide coordinates.

    The region origin translation is applied after scaling by the downsample
    factor, so a local point ``(x, y)`` lands on
    ``(offset_x + scale * x, offset_y + scale * y)``.
    """
    offset_x: float = 0.0
    offset_y: float = 0.0
    scale: float = 1.0

    @property
    def is_identity(self) -> bool:
        return self.offset_x == 0 and self.offset_y == 0 and self.scale == 1.0

    def apply_point(self, x: float, y: float) -> Tuple[float, float]:
        return (self.offset_x + self.scale * x, self.offset_y + self.scale * y)

    def apply(self, geometry: BaseGeometry) -> BaseGeometry:
        if self.is_identity:
            return geometry
        s = self.scale
        return affinity.affine_transform(geometry, [s, 0.0, 0.0, s, self.offset_x, self.offset_y])


IDENTITY = RegionTransform()


@dataclass(frozen=True)
class RegionRequest:
    """Rectangular query against a slide, in level-0 pixels."""
    x: int
    y: int
    width: int
    height: int
    downsample: float = 1.0
    plane: ImagePlane = field(default_factory=ImagePlane)

    @property
    def transform(self) -> RegionTransform:
        return RegionTransform(float(self.x), float(self.y), float(self.downsample))

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def intersect2d(self, x: int, y: int, width: int, height: int) -> "RegionRequest":
        """슬라이드 경계(x, y, width, height)와의 교집합"""
        x0 = max(self.x, x)
        y0 = max(self.y, y)
        x1 = min(self.x + self.width, x + width)
        y1 = min(self.y + self.height, y + height)
        return RegionRequest(x0, y0, max(0, x1 - x0), max(0, y1 - y0), self.downsample, self.plane)

    @classmethod
    def from_bounds(cls, bounds: Tuple[float, float, float, float], downsample: float = 1.0,
                    plane: ImagePlane = DEFAULT_PLANE) -> "RegionRequest":
        """shapely ``bounds`` (minx, miny, maxx, maxy) → 정수 픽셀 영역"""
        minx, miny, maxx, maxy = bounds
        x0, y0 = int(math.floor(minx)), int(math.floor(miny))
        x1, y1 = int(math.ceil(maxx)), int(math.ceil(maxy))
        return cls(x0, y0, x1 - x0, y1 - y0, downsample, plane)
