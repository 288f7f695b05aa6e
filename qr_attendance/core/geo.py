from __future__ import annotations
import math
from typing import NamedTuple

# IUGG mean Earth radius
EARTH_RADIUS_M = 6_371_008.8

class GeoPoint(NamedTuple):
    latitude: float
    longitude: float

def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in meters."""
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))

def within_radius(point: GeoPoint, center: GeoPoint, radius_m: float) -> tuple[bool, float]:
    # boundary inclusive: exactly radius_m away is inside
    d = haversine_m(point, center)
    return d <= radius_m, d
