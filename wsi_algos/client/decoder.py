"""Decoding of result records into positioned, classified annotation objects."""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from shapely.geometry import Point

from ..annotations import RESERVED_CLASS_KEYS, AnnotationObject, ObjectKind
from ..errors import DecodeError
from ..regions import IDENTITY, ImagePlane, RegionTransform
from .measurements import decode_base64_tiff_array
from .results import (
    GeometryRecord, InvalidRecord, NotificationLevel, NotificationRecord, PointsRecord,
    ReservedRecord, ResultRecord, ResultType, UnrecognizedRecord, UnsupportedRecord,
)

log = logging.getLogger(__name__)

_UNSUPPORTED_MESSAGES = {
    ResultType.IMAGE: "Image filtering algorithms aren't supported",
    ResultType.TRACKS: "Tracking algorithms aren't supported",
}


@dataclass(frozen=True)
class Notification:
    level: NotificationLevel
    title: str
    message: str


@dataclass
class DecodedRecord:
    record: ResultRecord
    objects: List[AnnotationObject] = field(default_factory=list)


@dataclass
class DecodeResult:
    records: List[DecodedRecord] = field(default_factory=list)
    notifications: List[Notification] = field(default_factory=list)
    errors: List[DecodeError] = field(default_factory=list)

    @property
    def objects(self) -> List[AnnotationObject]:
        return [obj for decoded in self.records for obj in decoded.objects]

    def __repr__(self):
        return (f"DecodeResult(objects={len(self.objects)}, "
                f"notifications={len(self.notifications)}, errors={len(self.errors)})")


@dataclass
class _Context:
    transform: RegionTransform
    plane: Optional[ImagePlane]
    result: DecodeResult


def _place(objects: Iterable[AnnotationObject], ctx: _Context) -> List[AnnotationObject]:
    placed = []
    for obj in objects:
        if not ctx.transform.is_identity:
            obj.geometry = ctx.transform.apply(obj.geometry)
        if ctx.plane is not None and obj.plane != ctx.plane:
            obj.plane = ctx.plane
        placed.append(obj)
    return placed


def _parse_features(features: Sequence[Any]) -> List[AnnotationObject]:
    objects = []
    for element in features:
        if not isinstance(element, Mapping):
            log.warning(f"Cannot parse object from {element!r}")
            continue
        objects.append(AnnotationObject.from_geojson(element))
    return objects


def _first_point(element: Mapping[str, Any]) -> Point:
    try:
        coordinates = element["geometry"]["coordinates"]
        first = coordinates[0]
        # MultiPoint/LineString 형태 [[x, y], ...] 또는 Point [x, y]
        if isinstance(first, (list, tuple)):
            x, y = first[0], first[1]
        else:
            x, y = coordinates[0], coordinates[1]
        return Point(float(x), float(y))
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise DecodeError(f"Invalid point coordinates: {e}") from e


def _decode_geometry(record: GeometryRecord, ctx: _Context) -> List[AnnotationObject]:
    return _place(_parse_features(record.features), ctx)


def _decode_points(record: PointsRecord, ctx: _Context) -> List[AnnotationObject]:
    objects = []
    for element in record.features:
        if not isinstance(element, Mapping):
            log.warning(f"Cannot parse point from {element!r}")
            continue
        objects.append(AnnotationObject(
            geometry=_first_point(element),
            kind=ObjectKind.DETECTION,
            plane=ctx.plane or ImagePlane(),
        ))
    return _place(objects, ctx)


def _decode_notification(record: NotificationRecord, ctx: _Context) -> List[AnnotationObject]:
    ctx.result.notifications.append(Notification(record.level, "Server notification", record.text))
    return []


def _decode_unsupported(record: UnsupportedRecord, ctx: _Context) -> List[AnnotationObject]:
    ctx.result.notifications.append(Notification(
        NotificationLevel.WARNING, "Unhandled algo type",
        _UNSUPPORTED_MESSAGES.get(record.result_type, f"Unsupported result type: {record.result_type.value}"),
    ))
    return []


def _decode_reserved(record: ReservedRecord, ctx: _Context) -> List[AnnotationObject]:
    log.debug(f"Ignoring '{record.result_type.value}' result")
    return []


def _decode_unrecognized(record: UnrecognizedRecord, ctx: _Context) -> List[AnnotationObject]:
    log.warning(f"Ignoring unrecognized result type '{record.tag}'")
    return []


def _decode_invalid(record: InvalidRecord, ctx: _Context) -> List[AnnotationObject]:
    raise DecodeError(record.error)


_DECODERS: Dict[type, Callable[[Any, _Context], List[AnnotationObject]]] = {
    GeometryRecord: _decode_geometry,
    PointsRecord: _decode_points,
    NotificationRecord: _decode_notification,
    UnsupportedRecord: _decode_unsupported,
    ReservedRecord: _decode_reserved,
    UnrecognizedRecord: _decode_unrecognized,
    InvalidRecord: _decode_invalid,
}


def apply_object_features(objects: Sequence[AnnotationObject], features: Mapping[str, Any]) -> None:
    """Assign ``data_params["features"]`` to ``objects`` by position.

    ``class`` arrays give classifications; every other key is a base64 TIFF
    array of measurements. Arrays shorter than ``objects`` leave the trailing
    objects untouched. Any malformed key raises :class:`DecodeError`.
    """
    if not isinstance(features, Mapping):
        raise DecodeError("'features' must be an object")

    classifications: Dict[str, List[Any]] = {}
    measurements: Dict[str, List[float]] = {}
    for key, encoded in features.items():
        if key in RESERVED_CLASS_KEYS:
            if not isinstance(encoded, list):
                raise DecodeError(f"'{key}' must be an array of labels")
            classifications[key] = encoded
        else:
            try:
                measurements[key] = decode_base64_tiff_array(encoded)
            except DecodeError as e:
                raise DecodeError(f"Measurement '{key}': {e}") from e

    for idx, obj in enumerate(objects):
        for labels in classifications.values():
            if idx < len(labels) and labels[idx] is not None:
                obj.classification = str(labels[idx])
        for key, values in measurements.items():
            if idx < len(values):
                obj.measurements[key] = values[idx]


def decode_record(record: ResultRecord, transform: RegionTransform = IDENTITY,
                  plane: Optional[ImagePlane] = None,
                  result: Optional[DecodeResult] = None) -> List[AnnotationObject]:
    """Decode a single record; raises :class:`DecodeError` if it is malformed."""
    ctx = _Context(transform, plane, result if result is not None else DecodeResult())
    decoder = _DECODERS.get(type(record))
    if decoder is None:
        raise DecodeError(f"No decoder for {type(record).__name__}")
    objects = decoder(record, ctx)
    features = record.data_params.get("features")
    if objects and features is not None:
        apply_object_features(objects, features)
    return objects


def decode_results(records: Iterable[ResultRecord], transform: RegionTransform = IDENTITY,
                   plane: Optional[ImagePlane] = None) -> DecodeResult:
    """Decode every record, isolating failures to the record that caused them."""
    result = DecodeResult()
    for record in records:
        try:
            objects = decode_record(record, transform, plane, result)
        except DecodeError as e:
            log.error(f"Could not decode {type(record).__name__}: {e}")
            result.errors.append(e)
            continue
        result.records.append(DecodedRecord(record, objects))
    log.info(f"Decoded {len(result.objects)} objects from {len(result.records)} records")
    return result
