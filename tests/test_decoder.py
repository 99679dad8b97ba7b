import pytest
from shapely.geometry import Point

from wsi_algos.annotations import ObjectKind
from wsi_algos.client import decoder
from wsi_algos.client.decoder import apply_object_features, decode_record, decode_results
from wsi_algos.client.measurements import encode_tiff_array
from wsi_algos.client.results import RECORD_TYPES, NotificationLevel, parse_record, parse_records
from wsi_algos.errors import DecodeError
from wsi_algos.regions import IDENTITY, ImagePlane, RegionRequest


def _polygon(x, y, size=4, **properties):
    return {
        "type": "Feature",
        "geometry": {"type": "Polygon", "coordinates": [
            [[x, y], [x + size, y], [x + size, y + size], [x, y + size], [x, y]]]},
        "properties": properties,
    }


def _point_feature(x, y):
    return {"type": "Feature", "geometry": {"type": "MultiPoint", "coordinates": [[x, y], [x + 1, y + 1]]}}


def test_every_record_type_has_a_decoder():
    assert set(RECORD_TYPES) <= set(decoder._DECODERS)


def test_identity_transform_keeps_coordinates():
    record = parse_record({"type": "features", "data": [_polygon(1, 2)]})
    objects = decode_record(record, IDENTITY)
    assert objects[0].geometry.bounds == (1.0, 2.0, 5.0, 6.0)


def test_region_transform_maps_back_to_slide():
    region = RegionRequest(100, 200, 64, 64, downsample=2.0)
    record = parse_record({"type": "points", "data": [_point_feature(10, 10)]})
    objects = decode_record(record, region.transform, region.plane)
    assert len(objects) == 1
    assert isinstance(objects[0].geometry, Point)
    assert (objects[0].geometry.x, objects[0].geometry.y) == (120.0, 220.0)
    assert objects[0].kind == ObjectKind.DETECTION


def test_flat_point_coordinates_are_accepted():
    record = parse_record({"type": "points", "data": [
        {"type": "Feature", "geometry": {"type": "Point", "coordinates": [3, 4]}}]})
    geom = decode_record(record)[0].geometry
    assert (geom.x, geom.y) == (3.0, 4.0)


def test_plane_is_replaced_when_different():
    record = parse_record({"type": "boxes", "data": [_polygon(0, 0)]})
    objects = decode_record(record, IDENTITY, ImagePlane(3, 1))
    assert objects[0].plane == ImagePlane(3, 1)


def test_notification_defaults_to_info():
    result = decode_results(parse_records([{"type": "notification", "data": "All done"}]))
    assert result.objects == []
    assert len(result.notifications) == 1
    note = result.notifications[0]
    assert note.level == NotificationLevel.INFO
    assert note.message == "All done"


def test_image_record_yields_warning_alongside_features():
    result = decode_results(parse_records([
        {"type": "image", "data": "..."},
        {"type": "features", "data": [_polygon(0, 0)]},
    ]))
    assert len(result.objects) == 1
    assert len(result.notifications) == 1
    assert result.notifications[0].level == NotificationLevel.WARNING
    assert result.notifications[0].title == "Unhandled algo type"


def test_reserved_and_unrecognized_records_produce_nothing():
    result = decode_results(parse_records([
        {"type": "shapes", "data": []},
        {"type": "labels", "data": []},
        {"type": "hologram", "data": []},
    ]))
    assert result.objects == []
    assert result.notifications == []
    assert result.errors == []


def test_class_array_assigns_classifications_positionally():
    n = 3
    record = parse_record({
        "type": "features",
        "data": [_polygon(i * 10, 0) for i in range(n)],
        "data_params": {"features": {"class": ["A", "B", "A"]}},
    })
    objects = decode_record(record)
    assert [o.classification for o in objects] == ["A", "B", "A"]


def test_measurement_arrays_are_assigned_positionally():
    record = parse_record({
        "type": "features",
        "data": [_polygon(0, 0), _polygon(10, 0)],
        "data_params": {"features": {"area": encode_tiff_array([16.0, 32.0])}},
    })
    objects = decode_record(record)
    assert [o.measurements["area"] for o in objects] == [16.0, 32.0]


def test_short_arrays_leave_trailing_objects_untouched():
    objects = decode_record(parse_record({"type": "features", "data": [_polygon(0, 0), _polygon(10, 0)]}))
    apply_object_features(objects, {"class": ["A"], "size": encode_tiff_array([1.0])})
    assert objects[0].classification == "A"
    assert objects[1].classification is None
    assert objects[1].measurements == {}


def test_bad_measurement_rejects_whole_record_without_partial_update():
    objects = decode_record(parse_record({"type": "features", "data": [_polygon(0, 0)]}))
    with pytest.raises(DecodeError):
        apply_object_features(objects, {"class": ["A"], "size": "###"})
    assert objects[0].classification is None


def test_failures_are_isolated_per_record():
    result = decode_results(parse_records([
        {"type": "features", "data": [_polygon(0, 0)], "data_params": {"features": {"x": "###"}}},
        {"type": "features", "data": "broken"},
        {"type": "features", "data": [{"geometry": {"type": "Hexagon", "coordinates": []}}]},
        {"type": "features", "data": [_polygon(5, 5)]},
    ]))
    assert len(result.errors) == 3
    assert len(result.records) == 1
    assert len(result.objects) == 1


def test_non_object_elements_are_skipped():
    record = parse_record({"type": "features", "data": [42, _polygon(0, 0)]})
    assert len(decode_record(record)) == 1
