"""Shared geodesic helpers used by the motion simulator and the read paths.

All coordinates are WGS-84 decimal degrees, (lat, lon) order.
"""
from __future__ import annotations

import math

_EARTH_RADIUS_M: float = 6_371_000.0  # Earth mean radius in metres


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres between two WGS-84 coordinates."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    )
    return _EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def initial_bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial bearing from (lat1,lon1) to (lat2,lon2) in degrees, in [0, 360).

    0 = north, 90 = east. Identical points yield 0.
    """
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlon = math.radians(lon2 - lon1)
    y = math.sin(dlon) * math.cos(lat2_r)
    x = math.cos(lat1_r) * math.sin(lat2_r) - math.sin(lat1_r) * math.cos(lat2_r) * math.cos(dlon)
    heading = math.degrees(math.atan2(y, x))
    # atan2 can return -0.0 and values in (-180, 0); the modulo folds both into range
    return (heading + 360.0) % 360.0


def interpolate(lat1: float, lon1: float, lat2: float, lon2: float, t: float) -> tuple[float, float]:
    """Linear interpolation on raw lat/lon components.

    Not a great-circle slerp; the error is negligible on sub-kilometre road
    segments. ``t`` is expected in [0, 1] and is not clamped here.
    """
    return lat1 + (lat2 - lat1) * t, lon1 + (lon2 - lon1) * t


def point_in_bbox(
    lat: float,
    lon: float,
    min_lat: float,
    min_lon: float,
    max_lat: float,
    max_lon: float,
) -> bool:
    """Return True if (lat, lon) lies within the closed bounding box."""
    return min_lat <= lat <= max_lat and min_lon <= lon <= max_lon
