"""Result records returned by an algorithm run.

The server answers with a JSON array of ``{type, data, data_params}`` tuples.
Each tuple is parsed into exactly one of the record classes below; tags the
client does not know become :class:`UnrecognizedRecord` instead of failing.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Tuple

from ..errors import DecodeError

log = logging.getLogger(__name__)


class ResultType(str, Enum):
    FEATURES = "features"
    SHAPES = "shapes"
    IMAGE = "image"
    LABELS = "labels"
    POINTS = "points"
    TRACKS = "tracks"
    VECTORS = "vectors"
    MASK = "mask"
    INSTANCE_MASK = "instance_mask"
    BOXES = "boxes"
    NOTIFICATION = "notification"


class NotificationLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @classmethod
    def parse(cls, value: Any) -> "NotificationLevel":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.INFO


# 좌표 기하를 가진 결과 타입
GEOMETRY_TYPES = frozenset({
    ResultType.FEATURES, ResultType.MASK, ResultType.INSTANCE_MASK, ResultType.BOXES, ResultType.VECTORS,
})
UNSUPPORTED_TYPES = frozenset({ResultType.IMAGE, ResultType.TRACKS})
RESERVED_TYPES = frozenset({ResultType.SHAPES, ResultType.LABELS})


@dataclass(frozen=True)
class ResultRecord:
    data_params: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GeometryRecord(ResultRecord):
    result_type: ResultType = ResultType.FEATURES
    features: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class PointsRecord(ResultRecord):
    features: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class NotificationRecord(ResultRecord):
    text: str = ""
    level: NotificationLevel = NotificationLevel.INFO


@dataclass(frozen=True)
class UnsupportedRecord(ResultRecord):
    result_type: ResultType = ResultType.IMAGE


@dataclass(frozen=True)
class ReservedRecord(ResultRecord):
    result_type: ResultType = ResultType.SHAPES


@dataclass(frozen=True)
class UnrecognizedRecord(ResultRecord):
    tag: str = ""


@dataclass(frozen=True)
class InvalidRecord(ResultRecord):
    error: str = ""


RECORD_TYPES = (
    GeometryRecord, PointsRecord, NotificationRecord, UnsupportedRecord,
    ReservedRecord, UnrecognizedRecord, InvalidRecord,
)


def normalize_features(data: Any) -> Tuple[Any, ...]:
    """FeatureCollection / Feature 배열 / 단일 Feature → tuple"""
    if isinstance(data, Mapping):
        if "features" in data:
            data = data["features"]
        else:
            return (data,)
    if not isinstance(data, list):
        raise DecodeError(f"Expected an array of features, got {type(data).__name__}")
    return tuple(data)


def parse_record(raw: Any) -> ResultRecord:
    """Parse one ``{type, data, data_params}`` tuple.

    Problems confined to this tuple yield an :class:`InvalidRecord` rather
    than an exception, so sibling records still decode.
    """
    if not isinstance(raw, Mapping):
        return InvalidRecord(error=f"Result record must be an object, got {type(raw).__name__}")

    data_params = raw.get("data_params") or {}
    if not isinstance(data_params, Mapping):
        return InvalidRecord(error="'data_params' must be an object")
    data_params = dict(data_params)

    tag = raw.get("type")
    if not isinstance(tag, str):
        return InvalidRecord(data_params, error="Result record has no 'type'")
    try:
        result_type = ResultType(tag)
    except ValueError:
        return UnrecognizedRecord(data_params, tag=tag)

    data = raw.get("data")
    try:
        if result_type in GEOMETRY_TYPES:
            return GeometryRecord(data_params, result_type=result_type, features=normalize_features(data))
        if result_type == ResultType.POINTS:
            return PointsRecord(data_params, features=normalize_features(data))
    except DecodeError as e:
        return InvalidRecord(data_params, error=f"{tag}: {e}")

    if result_type == ResultType.NOTIFICATION:
        text = data if isinstance(data, str) else ("" if data is None else str(data))
        return NotificationRecord(data_params, text=text,
                                  level=NotificationLevel.parse(data_params.get("level", "info")))
    if result_type in UNSUPPORTED_TYPES:
        return UnsupportedRecord(data_params, result_type=result_type)
    return ReservedRecord(data_params, result_type=result_type)


def parse_records(payload: Any) -> List[ResultRecord]:
    """결과 배열 전체 파싱 (배열이 아니면 DecodeError)"""
    if isinstance(payload, Mapping):
        payload = [payload]
    if not isinstance(payload, list):
        raise DecodeError(f"Expected an array of result records, got {type(payload).__name__}")
    records = [parse_record(raw) for raw in payload]
    log.debug("Parsed %d result records", len(records))
    return records
