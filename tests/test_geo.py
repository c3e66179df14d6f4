import pytest

from restaurant_finder.geo import bounding_box, distance_m, format_distance, haversine_m
from restaurant_finder.models import Coordinate


def test_haversine_known_distance():
    # Casablanca to Rabat is roughly 85 km as the crow flies.
    d = haversine_m(33.5731, -7.5898, 34.0209, -6.8416)
    assert 80000 < d < 90000


def test_haversine_zero_and_symmetric():
    assert haversine_m(10.0, 20.0, 10.0, 20.0) == 0.0
    a = Coordinate(33.59, -7.61)
    b = Coordinate(33.60, -7.60)
    assert distance_m(a, b) == pytest.approx(distance_m(b, a))


def test_bounding_box_uses_flat_degree_approximation():
    bbox = bounding_box(Coordinate(33.59, -7.61), 3000)
    delta = 3000 / 111000
    assert bbox["lat_min"] == pytest.approx(33.59 - delta)
    assert bbox["lat_max"] == pytest.approx(33.59 + delta)
    assert bbox["lon_min"] == pytest.approx(-7.61 - delta)
    assert bbox["lon_max"] == pytest.approx(-7.61 + delta)


def test_format_distance():
    assert format_distance(850) == "850 m"
    assert format_distance(1000) == "1.0 km"
    assert format_distance(1234) == "1.2 km"
