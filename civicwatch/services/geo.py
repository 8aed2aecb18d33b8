# File: civicwatch/services/geo.py
"""Great-circle proximity checks for merge candidates.

``bounding_box`` gives the store a cheap index-friendly prefilter; it is
deliberately generous and may return one or two longitude ranges (two when the
circle crosses the antimeridian, the full circle near a pole).
``within_radius`` applies the exact haversine distance afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from math import asin, cos, degrees, pi, radians, sin, sqrt
from typing import Iterable

EARTH_RADIUS_M = 6371008.8
FULL_LONGITUDE = ((-180.0, 180.0),)


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    lng_ranges: tuple[tuple[float, float], ...]


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    lat1, lng1, lat2, lng2 = map(radians, [lat1, lng1, lat2, lng2])
    dlat = lat2 - lat1
    dlng = lng2 - lng1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_M * asin(sqrt(min(1.0, max(0.0, a))))


def bounding_box(lat: float, lng: float, radius_m: float) -> BoundingBox:
    angular = radius_m / EARTH_RADIUS_M
    if angular >= pi / 2:
        return BoundingBox(-90.0, 90.0, FULL_LONGITUDE)

    dlat = degrees(angular)
    min_lat, max_lat = lat - dlat, lat + dlat
    if min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(max(min_lat, -90.0), min(max_lat, 90.0), FULL_LONGITUDE)

    ratio = sin(angular) / cos(radians(lat))
    if ratio >= 1.0:
        return BoundingBox(min_lat, max_lat, FULL_LONGITUDE)
    dlng = degrees(asin(ratio))
    min_lng, max_lng = lng - dlng, lng + dlng
    if min_lng < -180.0:
        ranges = ((min_lng + 360.0, 180.0), (-180.0, max_lng))
    elif max_lng > 180.0:
        ranges = ((min_lng, 180.0), (-180.0, max_lng - 360.0))
    else:
        ranges = ((min_lng, max_lng),)
    return BoundingBox(min_lat, max_lat, ranges)


def within_radius(lat: float, lng: float, pool: Iterable, radius_m: float) -> list:
    """Pool members (anything with ``latitude``/``longitude``) no further than ``radius_m``."""
    return [
        issue for issue in pool
        if haversine_m(lat, lng, issue.latitude, issue.longitude) <= radius_m
    ]
