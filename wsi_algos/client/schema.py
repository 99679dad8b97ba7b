"""Translation of server parameter schemas into typed, editable parameters."""

from __future__ import annotations
import logging
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..errors import SchemaError

log = logging.getLogger(__name__)


class ParameterKind(Enum):
    BOOLEAN = "bool"
    INTEGER = "int"
    FLOAT = "float"
    STRING = "str"
    CHOICE = "dropdown"


# 서버 위젯 중 파라미터 폼으로 표현할 수 없는 타입 (조용히 건너뜀)
UNSUPPORTED_WIDGETS = frozenset({"image", "labels", "points", "shapes", "vectors", "tracks"})

# legacy list 스키마의 type 이름
_LEGACY_KINDS = {
    "bool": ParameterKind.BOOLEAN,
    "int": ParameterKind.INTEGER,
    "float": ParameterKind.FLOAT,
    "string": ParameterKind.STRING,
    "list": ParameterKind.CHOICE,
}


@dataclass(frozen=True)
class ParameterDescriptor:
    key: str
    label: str
    kind: ParameterKind
    default: Any
    choices: Tuple[str, ...] = ()
    description: Optional[str] = None
    unit: Optional[str] = None

    def coerce(self, value: Any) -> Any:
        """Convert ``value`` to this parameter's type or raise ``ValueError``."""
        if self.kind == ParameterKind.CHOICE:
            text = str(value)
            if text not in self.choices:
                raise ValueError(f"{text!r} is not one of {list(self.choices)}")
            return text
        return _coerce(self.kind, value)


def _coerce(kind: ParameterKind, value: Any) -> Any:
    if kind == ParameterKind.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ValueError(f"{value!r} is not a boolean")
    if kind == ParameterKind.INTEGER:
        if isinstance(value, bool):
            raise ValueError(f"{value!r} is not an integer")
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str):
            return int(value.strip())
        raise ValueError(f"{value!r} is not an integer")
    if kind == ParameterKind.FLOAT:
        if isinstance(value, bool):
            raise ValueError(f"{value!r} is not a number")
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            return float(value.strip())
        raise ValueError(f"{value!r} is not a number")
    if kind == ParameterKind.STRING:
        if isinstance(value, (dict, list)):
            raise ValueError(f"{value!r} is not a string")
        return str(value)
    raise ValueError(f"Unknown parameter kind {kind}")


class ParameterSet:
    """Ordered parameter descriptors together with their current values."""

    def __init__(self, descriptors: Sequence[ParameterDescriptor] = ()):
        self._descriptors: "OrderedDict[str, ParameterDescriptor]" = OrderedDict()
        for d in descriptors:
            if d.key in self._descriptors:
                raise SchemaError(f"Duplicate parameter key '{d.key}'")
            self._descriptors[d.key] = d
        self._values: Dict[str, Any] = {d.key: d.default for d in descriptors}

    def __len__(self) -> int:
        return len(self._descriptors)

    def __iter__(self) -> Iterator[ParameterDescriptor]:
        return iter(self._descriptors.values())

    def __contains__(self, key: str) -> bool:
        return key in self._descriptors

    def descriptor(self, key: str) -> ParameterDescriptor:
        return self._descriptors[key]

    def get_value(self, key: str) -> Any:
        return self._values[key]

    def set_value(self, key: str, value: Any) -> None:
        if key not in self._descriptors:
            raise KeyError(key)
        self._values[key] = self._descriptors[key].coerce(value)

    def reset(self) -> None:
        self._values = {d.key: d.default for d in self._descriptors.values()}

    def values(self) -> "OrderedDict[str, Any]":
        return OrderedDict((key, self._values[key]) for key in self._descriptors)

    def __repr__(self):
        return f"ParameterSet({list(self._descriptors)})"


def translate_schema(schema: Mapping[str, Any]) -> ParameterSet:
    """Build a :class:`ParameterSet` from a ``{name: {title, widget_type, ...}}`` schema.

    ``dropdown`` parameters always default to their first ``enum`` entry, even
    when the schema declares another ``default``. Any malformed entry aborts
    the whole translation with :class:`SchemaError`.
    """
    if schema is None:
        return ParameterSet()
    if not isinstance(schema, Mapping):
        raise SchemaError(f"Parameter schema must be an object, got {type(schema).__name__}")

    descriptors: List[ParameterDescriptor] = []
    for key, entry in schema.items():
        if not isinstance(entry, Mapping):
            raise SchemaError(f"Parameter '{key}': expected an object")
        widget_type = _required(entry, "widget_type", key)
        if widget_type in UNSUPPORTED_WIDGETS:
            continue
        try:
            kind = ParameterKind(widget_type)
        except ValueError:
            log.warning(f"Parameter '{key}': unsupported widget type {widget_type!r}, skipped")
            continue

        label = str(_required(entry, "title", key))
        description = entry.get("description")
        if kind == ParameterKind.CHOICE:
            choices = _choices(entry.get("enum"), key, "enum")
            descriptors.append(ParameterDescriptor(key, label, kind, choices[0], choices, description))
        else:
            default = _default(kind, _required(entry, "default", key), key)
            descriptors.append(ParameterDescriptor(key, label, kind, default, (), description))
    return ParameterSet(descriptors)


def translate_parameter_list(items: Sequence[Mapping[str, Any]]) -> ParameterSet:
    """Legacy schema: a list of ``{name, display_name, default_value, type, ...}`` objects."""
    if not items:
        return ParameterSet()
    descriptors: List[ParameterDescriptor] = []
    for entry in items:
        if not isinstance(entry, Mapping):
            raise SchemaError(f"Expected a parameter object, got {entry!r}")
        key = str(_required(entry, "name", "?"))
        label = str(_required(entry, "display_name", key))
        type_name = _required(entry, "type", key)
        kind = _LEGACY_KINDS.get(type_name)
        if kind is None:
            log.warning(f"Parameter '{key}': unsupported type {type_name!r}, skipped")
            continue
        description = entry.get("description")
        unit = entry.get("unit")
        if kind == ParameterKind.CHOICE:
            choices = _choices(entry.get("values"), key, "values")
            descriptors.append(ParameterDescriptor(key, label, kind, choices[0], choices, description, unit))
        else:
            default = _default(kind, _required(entry, "default_value", key), key)
            descriptors.append(ParameterDescriptor(key, label, kind, default, (), description, unit))
    return ParameterSet(descriptors)


def _required(entry: Mapping[str, Any], field_name: str, key: str) -> Any:
    if entry.get(field_name) is None:
        raise SchemaError(f"Parameter '{key}': missing '{field_name}'")
    return entry[field_name]


def _default(kind: ParameterKind, value: Any, key: str) -> Any:
    try:
        return _coerce(kind, value)
    except ValueError as e:
        raise SchemaError(f"Parameter '{key}': invalid default for {kind.value}: {e}") from e


def _choices(raw: Any, key: str, field_name: str) -> Tuple[str, ...]:
    if not isinstance(raw, list) or not raw:
        raise SchemaError(f"Parameter '{key}': '{field_name}' must be a non-empty array")
    return tuple(str(c) for c in raw)
