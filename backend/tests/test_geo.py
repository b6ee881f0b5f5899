"""Tests for Haversine distance and polyline decoding."""
import math

from linelight.data.geo import EARTH_RADIUS_KM, decode_polyline, haversine_distance_km, haversine_distance_m


def test_same_point_zero_distance():
    assert haversine_distance_km(42.35, -71.06, 42.35, -71.06) == 0.0


def test_antipodal_roughly_half_circumference():
    # Antipodal points: ~ pi * EARTH_RADIUS_KM
    d = haversine_distance_km(0.0, 0.0, 0.0, 180.0)
    expected = math.pi * EARTH_RADIUS_KM
    assert abs(d - expected) < 1.0


def test_known_distance_boston():
    # Park Street to Harvard is a little over 4 km as the crow flies
    park = (42.3564, -71.0624)
    harvard = (42.3734, -71.1189)
    d = haversine_distance_km(park[0], park[1], harvard[0], harvard[1])
    assert 4.0 < d < 6.0


def test_meters_matches_km():
    km = haversine_distance_km(42.35, -71.06, 42.36, -71.05)
    assert haversine_distance_m(42.35, -71.06, 42.36, -71.05) == km * 1000.0


def test_symmetry():
    d1 = haversine_distance_m(42.1, -71.2, 42.2, -71.1)
    d2 = haversine_distance_m(42.2, -71.1, 42.1, -71.2)
    assert d1 == d2


def test_decode_polyline_reference_example():
    """The reference example from the encoded polyline algorithm documentation."""
    points = decode_polyline("_p~iF~ps|U_ulLnnqC_mqNvxq`@")
    assert points == [
        {"lat": 38.5, "lng": -120.2},
        {"lat": 40.7, "lng": -120.95},
        {"lat": 43.252, "lng": -126.453},
    ]


def test_decode_polyline_empty():
    assert decode_polyline("") == []


def test_decode_polyline_truncated_keeps_complete_points():
    points = decode_polyline("_p~iF~ps|U_ulL")
    assert points == [{"lat": 38.5, "lng": -120.2}]
