"""Geo proximity filter tests."""

from dataclasses import dataclass

import pytest

from civicwatch.services.geo import bounding_box, haversine_m, within_radius


@dataclass
class Point:
    latitude: float
    longitude: float


def inside(box, lat, lng):
    return box.min_lat <= lat <= box.max_lat and any(lo <= lng <= hi for lo, hi in box.lng_ranges)


class TestHaversine:
    def test_zero_distance(self):
        assert haversine_m(40.0, -75.0, 40.0, -75.0) == 0.0

    def test_nearby_points(self):
        assert haversine_m(40.0, -75.0, 40.0003, -75.0003) == pytest.approx(42, abs=3)

    def test_far_points(self):
        assert haversine_m(40.0, -75.0, 40.0, -74.5) == pytest.approx(42_600, rel=0.02)

    def test_across_antimeridian(self):
        assert haversine_m(0.0, 179.9995, 0.0, -179.9995) == pytest.approx(111, abs=2)


class TestBoundingBox:
    def test_contains_the_circle(self):
        box = bounding_box(40.0, -75.0, 150)
        assert inside(box, 40.0013, -75.0)
        assert inside(box, 40.0, -75.0017)
        assert not inside(box, 40.01, -75.0)
        assert len(box.lng_ranges) == 1

    def test_splits_at_antimeridian(self):
        box = bounding_box(0.0, 179.9995, 150)
        assert len(box.lng_ranges) == 2
        assert inside(box, 0.0, -179.9995)
        assert inside(box, 0.0, 179.9990)

    def test_near_pole_uses_full_longitude(self):
        box = bounding_box(89.9995, 10.0, 150)
        assert box.lng_ranges == ((-180.0, 180.0),)
        assert box.max_lat == 90.0
        assert inside(box, 89.9999, -170.0)


class TestWithinRadius:
    def test_filters_by_exact_distance(self):
        near = Point(40.0003, -75.0003)
        far = Point(40.0, -74.5)
        assert within_radius(40.0, -75.0, [near, far], 150) == [near]

    def test_boundary_is_inclusive(self):
        p = Point(40.0, -75.0)
        assert within_radius(40.0, -75.0, [p], 0) == [p]
