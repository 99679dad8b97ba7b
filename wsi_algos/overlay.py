from __future__ import annotations
import zlib
from typing import Callable, Optional, Tuple

from PySide6.QtCore import QPointF, QRectF, Qt
from PySide6.QtGui import QColor, QPainter, QPen, QPolygonF
from PySide6.QtWidgets import QGraphicsItem
from shapely.geometry import LinearRing, LineString, Point, Polygon
from shapely.geometry.base import BaseGeometry

from .annotations import AnnotationHierarchy, AnnotationObject, ObjectKind
from .config import CONFIG
from .regions import DEFAULT_PLANE, ImagePlane

Box = Tuple[float, float, float, float]  # (x1, y1, x2, y2) level0 좌표

ANNOTATION_COLOR = QColor(255, 0, 0)
UNCLASSIFIED_COLOR = QColor(0, 160, 255)
SELECTED_COLOR = QColor(255, 255, 0)


def color_for_class(name: Optional[str]) -> QColor:
    """분류 이름 → 고정 색상 (실행마다 동일)"""
    if not name:
        return UNCLASSIFIED_COLOR
    hue = zlib.crc32(name.split(":")[0].strip().encode("utf-8")) % 360
    return QColor.fromHsv(hue, 220, 230)


class OverlayItem(QGraphicsItem):
    """
    QGraphicsItem overlay drawing the annotation hierarchy.

    - Geometry is stored in level0 coordinates and scaled to the scene with
      ``get_scale_func`` (level0 -> scene).
    - Only objects on the current plane (``get_plane_func``) are drawn.
    - Points are drawn with a **fixed pixel radius**; all pens are cosmetic so
      line thickness stays constant while zooming.
    - ``pending_box`` is the rectangle being dragged out by the user.
    """

    def __init__(
        self,
        hierarchy: AnnotationHierarchy,
        get_scale_func: Callable[[], float] | None = None,
        get_plane_func: Callable[[], ImagePlane] | None = None,
        config=None,
    ) -> None:
        super().__init__()
        cfg = (config or CONFIG).viewer

        self.hierarchy = hierarchy
        self.get_scale = get_scale_func or (lambda: 1.0)
        self.get_plane = get_plane_func or (lambda: DEFAULT_PLANE)
        self.point_px = int(cfg.point_pixel_radius)
        self.pen_width = int(cfg.selection_pen_width)
        self.pending_box: Box | None = None

        self.setZValue(9999)

        self.pending_pen = QPen(ANNOTATION_COLOR, self.pen_width, Qt.DashLine)
        self.pending_pen.setCosmetic(True)

    # -------------------------------
    # Public API
    # -------------------------------
    def set_hierarchy(self, hierarchy: AnnotationHierarchy) -> None:
        self.hierarchy = hierarchy
        self.refresh()

    def set_pending_box(self, box: Box | None) -> None:
        self.pending_box = box
        self.refresh()

    def refresh(self) -> None:
        try:
            self.update()
        except RuntimeError:
            pass  # C++ 객체가 이미 삭제됨

    # -------------------------------
    # QGraphicsItem overrides
    # -------------------------------
    def boundingRect(self) -> QRectF:
        return QRectF(-1e6, -1e6, 2e6, 2e6)

    def paint(self, painter: QPainter, option, widget=None) -> None:
        s = float(self.get_scale())
        selected = set(map(id, self.hierarchy.selected))

        # annotation 먼저, detection은 그 위에
        objects = sorted(self.hierarchy.get_objects_for_plane(self.get_plane()),
                         key=lambda o: o.kind != ObjectKind.ANNOTATION)
        for obj in objects:
            self._draw_object(painter, obj, s, id(obj) in selected)

        if self.pending_box is not None:
            x1, y1, x2, y2 = self.pending_box
            painter.setPen(self.pending_pen)
            painter.setBrush(Qt.NoBrush)
            painter.drawRect(QRectF(QPointF(x1 * s, y1 * s), QPointF(x2 * s, y2 * s)).normalized())

    # -------------------------------
    # Helpers
    # -------------------------------
    def _pen_for(self, obj: AnnotationObject, is_selected: bool) -> QPen:
        if is_selected:
            color = SELECTED_COLOR
        elif obj.kind == ObjectKind.ANNOTATION and not obj.classification:
            color = ANNOTATION_COLOR
        else:
            color = color_for_class(obj.classification)
        width = self.pen_width + (1 if is_selected else 0)
        pen = QPen(color, width, Qt.SolidLine)
        pen.setCosmetic(True)
        return pen

    def _draw_object(self, painter: QPainter, obj: AnnotationObject, s: float, is_selected: bool) -> None:
        if obj.geometry is None or obj.geometry.is_empty:
            return
        pen = self._pen_for(obj, is_selected)
        painter.setPen(pen)
        if obj.kind == ObjectKind.DETECTION:
            fill = QColor(pen.color())
            fill.setAlpha(60)
            painter.setBrush(fill)
        else:
            painter.setBrush(Qt.NoBrush)
        self._draw_geometry(painter, obj.geometry, s)

    def _draw_geometry(self, painter: QPainter, geom: BaseGeometry, s: float) -> None:
        if isinstance(geom, Polygon):
            painter.drawPolygon(_to_polygon(geom.exterior, s))
            for hole in geom.interiors:
                painter.drawPolygon(_to_polygon(hole, s))
        elif isinstance(geom, (LineString, LinearRing)):
            painter.drawPolyline(_to_polygon(geom, s))
        elif isinstance(geom, Point):
            self._draw_fixed_pixel_point(painter, QPointF(geom.x * s, geom.y * s))
        elif hasattr(geom, "geoms"):
            for part in geom.geoms:
                self._draw_geometry(painter, part, s)

    def _draw_fixed_pixel_point(self, painter: QPainter, scene_pt: QPointF) -> None:
        """화면상 반지름이 고정된 점 (scene → device 변환 후 그림)"""
        device_pt = painter.worldTransform().map(scene_pt)
        painter.save()
        painter.resetTransform()
        painter.drawEllipse(device_pt, self.point_px, self.point_px)
        painter.restore()


def _to_polygon(line, s: float) -> QPolygonF:
    return QPolygonF([QPointF(x * s, y * s) for x, y, *_ in line.coords])
