from __future__ import annotations

from typing import Tuple
import math


# Mean Earth radius (m); spherical approximation is plenty for a site plan.
_EARTH_R_M = 6371008.8


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine great-circle distance in meters."""
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    dphi = p2 - p1
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2.0) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2.0) ** 2
    return 2 * _EARTH_R_M * math.asin(math.sqrt(a))


def offset_deg(lat: float, north_m: float, east_m: float) -> Tuple[float, float]:
    """
    Convert a small local north/east offset (meters) at latitude `lat`
    into (dlat, dlon) degrees. Flat-earth; fine below a few kilometers.
    """
    dlat = math.degrees(north_m / _EARTH_R_M)
    coslat = max(1e-12, math.cos(math.radians(lat)))
    dlon = math.degrees(east_m / (_EARTH_R_M * coslat))
    return dlat, dlon


def triangle_area_px(p1: Tuple[float, float], p2: Tuple[float, float], p3: Tuple[float, float]) -> float:
    """Unsigned area of the pixel triangle (0 when the points are collinear)."""
    return 0.5 * abs(
        (p2[0] - p1[0]) * (p3[1] - p1[1]) - (p3[0] - p1[0]) * (p2[1] - p1[1])
    )
