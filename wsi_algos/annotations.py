"""Annotation objects and the hierarchy that owns them.

Objects are plain Python (no Qt) so that the client can build them on a worker
thread; the hierarchy itself must only be modified from the GUI thread.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from shapely.errors import ShapelyError
from shapely.geometry import Point, shape
from shapely.geometry.base import BaseGeometry

from .errors import DecodeError
from .regions import DEFAULT_PLANE, ImagePlane

log = logging.getLogger(__name__)

# 측정값이 아닌 분류 라벨로 취급되는 키
RESERVED_CLASS_KEYS = ("class", "Classification")
IGNORE_CLASS = "Ignore*"


class ObjectKind(str, Enum):
    ROOT = "root"
    ANNOTATION = "annotation"
    DETECTION = "detection"


@dataclass(eq=False)
class AnnotationObject:
    """A geometric object over the slide, in level-0 pixel coordinates."""
    geometry: Optional[BaseGeometry]
    kind: ObjectKind = ObjectKind.DETECTION
    classification: Optional[str] = None
    measurements: Dict[str, float] = field(default_factory=dict)
    plane: ImagePlane = DEFAULT_PLANE
    name: Optional[str] = None
    locked: bool = False
    parent: Optional["AnnotationObject"] = field(default=None, repr=False)
    children: List["AnnotationObject"] = field(default_factory=list, repr=False)

    @property
    def is_root(self) -> bool:
        return self.kind == ObjectKind.ROOT

    @property
    def base_class(self) -> Optional[str]:
        if not self.classification:
            return None
        return self.classification.split(":")[0].strip()

    def hit_test(self, x: float, y: float, tolerance: float = 0.0) -> bool:
        if self.geometry is None or self.geometry.is_empty:
            return False
        return self.geometry.distance(Point(x, y)) <= tolerance

    def set_measurement(self, key: str, value: float) -> None:
        if key in RESERVED_CLASS_KEYS:
            raise ValueError(f"'{key}' is reserved for classification")
        self.measurements[key] = float(value)

    @classmethod
    def from_geojson(cls, feature: Mapping[str, Any]) -> "AnnotationObject":
        """GeoJSON Feature에서 객체 생성"""
        if not isinstance(feature, Mapping):
            raise DecodeError(f"Cannot parse object from {feature!r}")

        geometry_json = feature.get("geometry")
        if not isinstance(geometry_json, Mapping):
            raise DecodeError("Feature has no geometry")
        try:
            geometry = shape(geometry_json)
        except (ShapelyError, KeyError, TypeError, ValueError, IndexError) as e:
            raise DecodeError(f"Invalid geometry: {e}") from e

        properties = feature.get("properties") or {}
        if not isinstance(properties, Mapping):
            raise DecodeError("Feature properties must be an object")

        obj = cls(geometry=geometry, plane=_parse_plane(geometry_json.get("plane")))

        object_type = properties.get("objectType")
        if object_type == ObjectKind.ANNOTATION.value:
            obj.kind = ObjectKind.ANNOTATION
        obj.name = properties.get("name")
        obj.classification = _parse_classification(properties.get("classification"))

        for key, value in _iter_measurements(properties.get("measurements")):
            if key in RESERVED_CLASS_KEYS:
                if obj.classification is None and value is not None:
                    obj.classification = str(value)
                continue
            try:
                obj.measurements[key] = float(value)
            except (TypeError, ValueError) as e:
                raise DecodeError(f"Measurement '{key}' is not numeric: {value!r}") from e
        return obj


def _parse_plane(raw) -> ImagePlane:
    if not isinstance(raw, Mapping):
        return DEFAULT_PLANE
    try:
        return ImagePlane(int(raw.get("z", 0)), int(raw.get("t", 0)))
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Invalid plane: {raw!r}") from e


def _parse_classification(raw) -> Optional[str]:
    if raw is None:
        return None
    if isinstance(raw, str):
        return raw or None
    if isinstance(raw, Mapping):
        if raw.get("name"):
            return str(raw["name"])
        names = raw.get("names")
        if names:
            return ": ".join(str(n) for n in names)
    return None


def _iter_measurements(raw):
    # measurements는 dict 또는 [{"name": ..., "value": ...}] 형태 모두 허용
    if raw is None:
        return
    if isinstance(raw, Mapping):
        yield from raw.items()
    elif isinstance(raw, list):
        for entry in raw:
            if isinstance(entry, Mapping) and "name" in entry:
                yield entry["name"], entry.get("value")
    else:
        raise DecodeError(f"Invalid measurements: {raw!r}")


HierarchyListener = Callable[["AnnotationHierarchy"], None]


class AnnotationHierarchy:
    """Tree of annotation objects for one slide plus a selection model."""

    def __init__(self):
        self.root = AnnotationObject(geometry=None, kind=ObjectKind.ROOT)
        self.selected: List[AnnotationObject] = []
        self.available_classes: List[Optional[str]] = [None]
        self._listeners: List[HierarchyListener] = []

    # -------------------- 리스너 --------------------
    def add_listener(self, listener: HierarchyListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: HierarchyListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def fire_hierarchy_changed(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # -------------------- 추가/삭제 --------------------
    def add_object(self, obj: AnnotationObject, fire: bool = True) -> None:
        self.add_object_below_parent(self.root, obj, fire)

    def add_object_below_parent(self, parent: Optional[AnnotationObject], obj: AnnotationObject,
                                fire: bool = True) -> None:
        parent = parent or self.root
        if obj.parent is not None:
            obj.parent.children.remove(obj)
        obj.parent = parent
        parent.children.append(obj)
        if fire:
            self.fire_hierarchy_changed()

    def add_objects_below_parent(self, parent: Optional[AnnotationObject],
                                 objects: Iterable[AnnotationObject], fire: bool = True) -> int:
        objects = list(objects)
        for obj in objects:
            self.add_object_below_parent(parent, obj, fire=False)
        if fire and objects:
            self.fire_hierarchy_changed()
        return len(objects)

    def remove_object(self, obj: AnnotationObject, keep_children: bool = False, fire: bool = True) -> bool:
        if obj.is_root or obj.parent is None:
            return False
        if obj.locked:
            log.warning(f"Locked object {obj.name or obj.kind.value} was not removed")
            return False
        parent = obj.parent
        parent.children.remove(obj)
        obj.parent = None
        if keep_children:
            for child in list(obj.children):
                self.add_object_below_parent(parent, child, fire=False)
        for removed in [obj] + list(_iter_descendants(obj)):
            if removed in self.selected:
                self.selected.remove(removed)
        if fire:
            self.fire_hierarchy_changed()
        return True

    def clear(self, fire: bool = True) -> None:
        for child in list(self.root.children):
            child.parent = None
        self.root.children.clear()
        self.selected.clear()
        if fire:
            self.fire_hierarchy_changed()

    # -------------------- 조회 --------------------
    def get_objects(self, kind: Optional[ObjectKind] = None) -> List[AnnotationObject]:
        return [o for o in _iter_descendants(self.root) if kind is None or o.kind == kind]

    def get_objects_for_plane(self, plane: ImagePlane) -> List[AnnotationObject]:
        return [o for o in _iter_descendants(self.root) if o.plane == plane]

    def __len__(self) -> int:
        return sum(1 for _ in _iter_descendants(self.root))

    def annotation_at(self, x: float, y: float, plane: ImagePlane = DEFAULT_PLANE,
                      tolerance: float = 0.0) -> Optional[AnnotationObject]:
        """(x, y)를 포함하는 가장 작은 annotation"""
        hits = [o for o in _iter_descendants(self.root)
                if o.kind == ObjectKind.ANNOTATION and o.plane == plane and o.hit_test(x, y, tolerance)]
        if not hits:
            return None
        return min(hits, key=lambda o: o.geometry.area)

    # -------------------- 선택 --------------------
    @property
    def selected_object(self) -> Optional[AnnotationObject]:
        return self.selected[-1] if self.selected else None

    def set_selected_object(self, obj: Optional[AnnotationObject], add: bool = False) -> None:
        if not add:
            self.selected.clear()
        if obj is not None and obj not in self.selected:
            self.selected.append(obj)

    def clear_selection(self) -> None:
        self.selected.clear()

    # -------------------- 분류 --------------------
    def update_classifications(self, objects: Iterable[AnnotationObject]) -> List[str]:
        """Add the base classes found in ``objects`` to ``available_classes``.

        Returns the classes that were actually added.
        """
        represented = {o.base_class for o in objects if o.base_class}
        new_classes: List[str] = sorted(represented)
        if not new_classes:
            return []
        new_classes.append(IGNORE_CLASS)
        current = [c for c in self.available_classes if c is not None]
        if current == new_classes:
            return []
        added = [c for c in new_classes if c not in self.available_classes]
        self.available_classes.extend(added)
        log.debug(f"Available classes updated: {added}")
        return added


def _iter_descendants(obj: AnnotationObject):
    for child in obj.children:
        yield child
        yield from _iter_descendants(child)
