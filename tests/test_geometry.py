import pytest

from safetravel.core import geometry
from safetravel.core.types import GeoPoint, Zone, ZoneCategory, ZoneShape
from safetravel.exceptions import InvalidGeometry
from tests.factories import circle, square

SQUARE = ((0.0, 0.0), (10.0, 0.0), (10.0, 10.0), (0.0, 10.0))


def test_distance_is_zero_for_same_point():
    assert geometry.calculate_distance(26.18, 91.74, 26.18, 91.74) == 0


def test_one_degree_of_latitude():
    d = geometry.calculate_distance(0.0, 0.0, 1.0, 0.0)
    assert abs(d - 111195) < 1


def test_distance_is_symmetric():
    a = geometry.calculate_distance(27.33, 88.61, 26.14, 91.73)
    b = geometry.calculate_distance(26.14, 91.73, 27.33, 88.61)
    assert a == pytest.approx(b)


def test_point_in_polygon_inside_and_outside():
    assert geometry.point_in_polygon(5.0, 5.0, SQUARE)
    assert not geometry.point_in_polygon(5.0, 15.0, SQUARE)
    assert not geometry.point_in_polygon(-1.0, 5.0, SQUARE)


def test_closed_ring_gives_same_answer():
    closed = SQUARE + (SQUARE[0],)
    for lat, lon in [(5.0, 5.0), (5.0, 15.0), (9.9, 0.1)]:
        assert geometry.point_in_polygon(lat, lon, closed) == geometry.point_in_polygon(lat, lon, SQUARE)


def test_boundary_point_is_deterministic():
    first = geometry.point_in_polygon(0.0, 5.0, SQUARE)
    for _ in range(10):
        assert geometry.point_in_polygon(0.0, 5.0, SQUARE) == first


def test_polygon_across_antimeridian():
    ring = ((170.0, -10.0), (-170.0, -10.0), (-170.0, 10.0), (170.0, 10.0))
    assert geometry.point_in_polygon(0.0, 179.0, ring)
    assert geometry.point_in_polygon(0.0, -175.0, ring)
    assert not geometry.point_in_polygon(0.0, 0.0, ring)
    assert not geometry.point_in_polygon(0.0, 160.0, ring)


def test_polygon_with_too_few_vertices():
    with pytest.raises(InvalidGeometry):
        geometry.point_in_polygon(0.0, 0.0, ((0.0, 0.0), (1.0, 1.0)))


def test_circle_containment():
    zone = circle("kaziranga", 26.18, 91.74, radius=2000)
    # ~1 km east of the center
    assert geometry.contains(zone, GeoPoint(26.18, 91.75))
    # ~2.2 km north of the center
    assert not geometry.contains(zone, GeoPoint(26.20, 91.74))


def test_polygon_zone_containment():
    zone = square("market", 26.10, 91.70, size=0.05)
    assert geometry.contains(zone, GeoPoint(26.12, 91.72))
    assert not geometry.contains(zone, GeoPoint(26.20, 91.72))


def test_validate_zone_rejects_bad_risk_level():
    with pytest.raises(InvalidGeometry):
        geometry.validate_zone(circle("bad", 26.0, 91.0, risk_level=0))
    with pytest.raises(InvalidGeometry):
        geometry.validate_zone(circle("bad", 26.0, 91.0, risk_level=6))


def test_validate_zone_rejects_bad_circle():
    with pytest.raises(InvalidGeometry):
        geometry.validate_zone(circle("bad", 26.0, 91.0, radius=0))
    with pytest.raises(InvalidGeometry):
        geometry.validate_zone(circle("bad", 95.0, 91.0))
    with pytest.raises(InvalidGeometry):
        geometry.validate_zone(Zone(
            id="bad", name="bad", shape=ZoneShape.CIRCLE, risk_level=2,
            category=ZoneCategory.SAFE, radius_meters=100
        ))


def test_validate_zone_rejects_degenerate_polygon():
    zone = Zone(
        id="line",
        name="line",
        shape=ZoneShape.POLYGON,
        risk_level=2,
        category=ZoneCategory.DANGER,
        vertices=((91.0, 26.0), (91.1, 26.1), (91.0, 26.0))
    )
    with pytest.raises(InvalidGeometry) as exc:
        geometry.validate_zone(zone)
    assert exc.value.context["zone_id"] == "line"


def test_validate_zone_returns_valid_zone():
    zone = square("ok", 26.0, 91.0)
    assert geometry.validate_zone(zone) is zone


def test_distance_to_zone():
    zone = circle("c", 26.18, 91.74, radius=2000)
    assert geometry.distance_to_zone(GeoPoint(26.18, 91.74), zone) == 0
    # 0.03 degrees north is ~3336 m from the center
    assert geometry.distance_to_zone(GeoPoint(26.21, 91.74), zone) == pytest.approx(1336, abs=5)


def test_distance_to_polygon_edge():
    zone = square("sq", 0.0, 0.0, size=1.0)
    # one degree of longitude east of the eastern edge, on the equator
    d = geometry.distance_to_zone(GeoPoint(0.5, 2.0), zone)
    assert d == pytest.approx(111320, rel=0.01)


def test_nearest_zone_and_ties():
    near = circle("b-near", 26.0, 91.0, radius=1000)
    far = circle("a-far", 27.0, 91.0, radius=1000)
    zone, d = geometry.nearest_zone(GeoPoint(26.05, 91.0), [far, near])
    assert zone.id == "b-near"
    assert d > 0

    twin_a = circle("a", 26.0, 91.0, radius=1000)
    twin_b = circle("b", 26.0, 91.0, radius=1000)
    zone, d = geometry.nearest_zone(GeoPoint(26.0, 91.0), [twin_b, twin_a])
    assert zone.id == "a"
    assert d == 0


def test_nearest_zone_empty():
    assert geometry.nearest_zone(GeoPoint(0, 0), []) is None
