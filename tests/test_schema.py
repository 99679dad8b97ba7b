import pytest

from wsi_algos.client.schema import (
    ParameterKind, ParameterSet, translate_parameter_list, translate_schema,
)
from wsi_algos.errors import SchemaError

SCHEMA = {
    "threshold": {"title": "Threshold", "widget_type": "float", "default": 0.5},
    "iterations": {"title": "Iterations", "widget_type": "int", "default": 3},
    "invert": {"title": "Invert", "widget_type": "bool", "default": False},
    "model": {"title": "Model", "widget_type": "dropdown", "enum": ["cyto", "nuclei"], "default": "nuclei"},
    "name": {"title": "Name", "widget_type": "str", "default": "run"},
    "image": {"title": "Image", "widget_type": "image"},
}


def test_translate_schema_keeps_order_and_kinds():
    params = translate_schema(SCHEMA)
    assert [d.key for d in params] == ["threshold", "iterations", "invert", "model", "name"]
    assert [d.kind for d in params] == [
        ParameterKind.FLOAT, ParameterKind.INTEGER, ParameterKind.BOOLEAN,
        ParameterKind.CHOICE, ParameterKind.STRING,
    ]
    assert params.descriptor("threshold").label == "Threshold"


def test_dropdown_defaults_to_first_enum_value():
    params = translate_schema(SCHEMA)
    assert params.get_value("model") == "cyto"
    assert params.descriptor("model").choices == ("cyto", "nuclei")


@pytest.mark.parametrize("key, expected_type", [
    ("threshold", float), ("iterations", int), ("invert", bool), ("name", str),
])
def test_default_has_declared_type(key, expected_type):
    assert type(translate_schema(SCHEMA).get_value(key)) is expected_type


def test_empty_schema_gives_empty_set():
    assert len(translate_schema({})) == 0
    assert len(translate_schema(None)) == 0


def test_unknown_widget_is_skipped():
    params = translate_schema({"x": {"title": "X", "widget_type": "slider3d", "default": 1}})
    assert len(params) == 0


@pytest.mark.parametrize("entry", [
    {"widget_type": "int", "default": 1},
    {"title": "A"},
    {"title": "A", "widget_type": "int"},
    {"title": "A", "widget_type": "int", "default": "seven"},
    {"title": "A", "widget_type": "int", "default": 1.5},
    {"title": "A", "widget_type": "dropdown", "enum": []},
    {"title": "A", "widget_type": "bool", "default": "maybe"},
])
def test_malformed_entry_raises(entry):
    with pytest.raises(SchemaError):
        translate_schema({"ok": {"title": "Ok", "widget_type": "int", "default": 1}, "bad": entry})


def test_int_accepts_integral_float_and_string():
    params = translate_schema({
        "a": {"title": "A", "widget_type": "int", "default": 4.0},
        "b": {"title": "B", "widget_type": "int", "default": "12"},
    })
    assert params.values() == {"a": 4, "b": 12}


def test_set_value_coerces_and_validates():
    params = translate_schema(SCHEMA)
    params.set_value("iterations", "10")
    params.set_value("invert", "true")
    params.set_value("model", "nuclei")
    assert params.get_value("iterations") == 10
    assert params.get_value("invert") is True
    with pytest.raises(ValueError):
        params.set_value("model", "other")
    with pytest.raises(KeyError):
        params.set_value("missing", 1)

    params.reset()
    assert params.get_value("iterations") == 3


def test_values_are_ordered_for_submission():
    assert list(translate_schema(SCHEMA).values().items()) == [
        ("threshold", 0.5), ("iterations", 3), ("invert", False), ("model", "cyto"), ("name", "run"),
    ]


def test_duplicate_keys_rejected():
    params = translate_parameter_list([
        {"name": "a", "display_name": "A", "type": "int", "default_value": 1},
    ])
    with pytest.raises(SchemaError):
        ParameterSet(list(params) + list(params))


def test_legacy_parameter_list():
    params = translate_parameter_list([
        {"name": "diameter", "display_name": "Diameter", "type": "float", "default_value": 30,
         "unit": "px", "description": "Cell diameter"},
        {"name": "mode", "display_name": "Mode", "type": "list", "values": ["fast", "slow"],
         "default_value": "slow"},
        {"name": "weird", "display_name": "Weird", "type": "matrix", "default_value": 0},
    ])
    assert [d.key for d in params] == ["diameter", "mode"]
    assert params.descriptor("diameter").unit == "px"
    assert params.get_value("diameter") == 30.0
    assert params.get_value("mode") == "fast"
