import pytest

from wsi_algos.client.results import (
    GeometryRecord, InvalidRecord, NotificationLevel, NotificationRecord, PointsRecord,
    ReservedRecord, ResultType, UnrecognizedRecord, UnsupportedRecord, parse_record, parse_records,
)
from wsi_algos.errors import DecodeError

FEATURE = {"type": "Feature", "geometry": {"type": "Point", "coordinates": [1, 2]}, "properties": {}}


@pytest.mark.parametrize("tag", ["features", "mask", "instance_mask", "boxes", "vectors"])
def test_geometry_tags(tag):
    record = parse_record({"type": tag, "data": [FEATURE], "data_params": {"a": 1}})
    assert isinstance(record, GeometryRecord)
    assert record.result_type == ResultType(tag)
    assert record.features == (FEATURE,)
    assert record.data_params == {"a": 1}


def test_feature_collection_and_single_feature_are_normalized():
    collection = parse_record({"type": "features", "data": {"type": "FeatureCollection", "features": [FEATURE]}})
    single = parse_record({"type": "features", "data": FEATURE})
    assert collection.features == (FEATURE,)
    assert single.features == (FEATURE,)


def test_points_record():
    record = parse_record({"type": "points", "data": [FEATURE]})
    assert isinstance(record, PointsRecord)


@pytest.mark.parametrize("params, level", [
    ({}, NotificationLevel.INFO),
    ({"level": "warning"}, NotificationLevel.WARNING),
    ({"level": "ERROR"}, NotificationLevel.ERROR),
    ({"level": "shout"}, NotificationLevel.INFO),
])
def test_notification_level(params, level):
    record = parse_record({"type": "notification", "data": "done", "data_params": params})
    assert isinstance(record, NotificationRecord)
    assert record.text == "done"
    assert record.level == level


@pytest.mark.parametrize("tag, cls", [
    ("image", UnsupportedRecord), ("tracks", UnsupportedRecord),
    ("shapes", ReservedRecord), ("labels", ReservedRecord),
])
def test_unsupported_and_reserved_tags(tag, cls):
    assert isinstance(parse_record({"type": tag, "data": None}), cls)


def test_unrecognized_tag():
    record = parse_record({"type": "hologram", "data": []})
    assert isinstance(record, UnrecognizedRecord)
    assert record.tag == "hologram"


@pytest.mark.parametrize("raw", [
    "features",
    {"data": []},
    {"type": "features", "data": "not an array"},
    {"type": "features", "data": [], "data_params": "nope"},
])
def test_invalid_records(raw):
    assert isinstance(parse_record(raw), InvalidRecord)


def test_parse_records_isolates_invalid_siblings():
    records = parse_records([
        {"type": "features", "data": 3},
        {"type": "notification", "data": "hi"},
    ])
    assert isinstance(records[0], InvalidRecord)
    assert isinstance(records[1], NotificationRecord)


def test_parse_records_accepts_single_object():
    assert len(parse_records({"type": "notification", "data": "x"})) == 1


def test_parse_records_rejects_non_array():
    with pytest.raises(DecodeError):
        parse_records("oops")
