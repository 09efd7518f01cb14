"""
Location — GPS readings for calibration

Provides:
- Location sources (all expose `async read() -> GeoFix`):
    - StaticLocationSource: a fixed reading
    - SyntheticLocationSource: noisy readings around a known position
    - ReplayLocationSource: replay from CSV (ts, lat, lon, accuracy)
    - HttpLocationSource: poll a JSON position endpoint
- GpsSampler: polls a source over a stabilization window and keeps the
  most accurate reading.

Usage:
    from location.sampler import GpsSampler
    from location.sources import SyntheticLocationSource

    sampler = GpsSampler(SyntheticLocationSource(lat=38.8895, lon=-77.0352))
    fix = await sampler.stabilize(duration_ms=5000, poll_interval_ms=300)
"""
from .sampler import GpsSampler, best_fix
from .sources import (
    HttpLocationSource,
    ReplayLocationSource,
    StaticLocationSource,
    SyntheticLocationSource,
    source_from_config,
)

__all__ = [
    "GpsSampler",
    "best_fix",
    "HttpLocationSource",
    "ReplayLocationSource",
    "StaticLocationSource",
    "SyntheticLocationSource",
    "source_from_config",
]
