import pytest

from app.utils.geo import haversine_km, estimate_eta_minutes, is_valid_coordinate


def test_same_point_is_zero_km():
    assert haversine_km((14.60, 120.98), (14.60, 120.98)) == pytest.approx(0.0, abs=1e-9)


def test_one_tenth_degree_of_latitude_is_about_eleven_km():
    assert haversine_km((14.60, 120.98), (14.70, 120.98)) == pytest.approx(11.1, abs=0.1)


def test_distance_is_symmetric():
    a, b = (14.5995, 120.9842), (10.3157, 123.8854)
    assert haversine_km(a, b) == pytest.approx(haversine_km(b, a))


def test_antipodal_points_do_not_exceed_half_circumference():
    d = haversine_km((0.0, 0.0), (0.0, 180.0))
    assert d == pytest.approx(20015.09, abs=0.5)


@pytest.mark.parametrize("distance, minutes", [
    (0.0, 0),
    (0.01, 1),
    (1.0, 2),
    (11.12, 23),
    (25.0, 50),
])
def test_eta_is_two_minutes_per_km_rounded_up(distance, minutes):
    assert estimate_eta_minutes(distance) == minutes


@pytest.mark.parametrize("lat, lng, ok", [
    (90, 180, True),
    (-90, -180, True),
    (90.0001, 0, False),
    (0, -180.5, False),
])
def test_coordinate_ranges(lat, lng, ok):
    assert is_valid_coordinate(lat, lng) is ok
