from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import math


IsoTime = str

# Accuracy reported for a reading that never arrived.
UNAVAILABLE_ACCURACY_M = 999.0


def _finite(name: str, v: float) -> float:
    v = float(v)
    if not math.isfinite(v):
        raise ValueError(f"{name} must be finite")
    return v


@dataclass(frozen=True, slots=True)
class PixelPoint:
    """Pixel coordinates on the floor-plan image (origin at image corner)."""
    x: float
    y: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "x", float(self.x))
        object.__setattr__(self, "y", float(self.y))

    def to_list(self) -> List[float]:
        return [self.x, self.y]


@dataclass(frozen=True, slots=True)
class GeoPoint:
    """WGS84 lat/lon (degrees) produced by mapping a pixel."""
    lat: float
    lon: float

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lon": self.lon}


@dataclass(frozen=True, slots=True)
class GeoFix:
    """
    A single location reading.

    Attributes:
        lat, lon: WGS84 degrees.
        accuracy_m: horizontal accuracy radius in meters (lower is better).
        available: False for the low-confidence placeholder recorded when the
            location source failed (see `GeoFix.unavailable`).
        ts: optional ISO-8601 (UTC) time of the reading; not serialized.
    """
    lat: float
    lon: float
    accuracy_m: float
    available: bool = True
    ts: Optional[IsoTime] = None

    def __post_init__(self) -> None:
        lat = _finite("lat", self.lat)
        lon = _finite("lon", self.lon)
        if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
            raise ValueError("lat/lon out of range")
        acc = float(self.accuracy_m)
        if math.isnan(acc) or acc < 0:
            raise ValueError("accuracy_m must be >= 0")
        object.__setattr__(self, "lat", lat)
        object.__setattr__(self, "lon", lon)
        object.__setattr__(self, "accuracy_m", acc)

    @classmethod
    def unavailable(cls, ts: Optional[IsoTime] = None) -> "GeoFix":
        return cls(lat=0.0, lon=0.0, accuracy_m=UNAVAILABLE_ACCURACY_M, available=False, ts=ts)

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lon": self.lon, "accuracy": self.accuracy_m}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "GeoFix":
        lat = float(d["lat"])
        lon = float(d["lon"])
        acc = float(d["accuracy"])
        if lat == 0.0 and lon == 0.0 and acc == UNAVAILABLE_ACCURACY_M:
            return cls.unavailable()
        return cls(lat=lat, lon=lon, accuracy_m=acc)


@dataclass(frozen=True, slots=True)
class GeoBounds:
    """Axis-aligned box in GPS space."""
    min_lon: float
    max_lon: float
    min_lat: float
    max_lat: float

    @property
    def extent(self) -> Tuple[float, float, float, float]:
        # [lon_min, lat_min, lon_max, lat_max], same order as a map image extent
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)

    @property
    def center(self) -> GeoPoint:
        return GeoPoint(0.5 * (self.min_lat + self.max_lat), 0.5 * (self.min_lon + self.max_lon))

    def to_dict(self) -> Dict[str, float]:
        return {
            "minLon": self.min_lon,
            "maxLon": self.max_lon,
            "minLat": self.min_lat,
            "maxLat": self.max_lat,
        }


@dataclass(slots=True)
class CorrespondencePoint:
    """One calibration point; `geo` stays None until its GPS capture completes."""
    pixel: PixelPoint
    geo: Optional[GeoFix] = None

    @property
    def has_geo(self) -> bool:
        return self.geo is not None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"imageXY": self.pixel.to_list()}
        if self.geo is not None:
            d["gps"] = self.geo.to_dict()
        return d


@dataclass(frozen=True, slots=True)
class AffineTransform:
    """
    Pixel -> GPS affine map:
        lat = a*x + b*y + c
        lon = d*x + e*y + f
    """
    a: float
    b: float
    c: float
    d: float
    e: float
    f: float

    def __post_init__(self) -> None:
        for name in ("a", "b", "c", "d", "e", "f"):
            object.__setattr__(self, name, _finite(name, getattr(self, name)))

    def to_dict(self) -> Dict[str, float]:
        return {"a": self.a, "b": self.b, "c": self.c, "d": self.d, "e": self.e, "f": self.f}
