"""Geospatial helpers."""
from __future__ import annotations

import math
from typing import Dict

from . import config
from .models import Coordinate


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    r = config.EARTH_RADIUS_M
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return r * c


def distance_m(origin: Coordinate, target: Coordinate) -> float:
    return haversine_m(origin.latitude, origin.longitude, target.latitude, target.longitude)


def bounding_box(origin: Coordinate, radius_m: float) -> Dict[str, float]:
    """Square box of +/- radius_m around origin, in degrees.

    Uses the flat 111 km per degree approximation on both axes; not valid
    near the poles.
    """
    delta = radius_m / config.METERS_PER_DEGREE
    return {
        "lat_min": origin.latitude - delta,
        "lat_max": origin.latitude + delta,
        "lon_min": origin.longitude - delta,
        "lon_max": origin.longitude + delta,
    }


def format_distance(meters: float) -> str:
    if meters >= 1000:
        return f"{meters / 1000:.1f} km"
    return f"{meters:.0f} m"
