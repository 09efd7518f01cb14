from __future__ import annotations

import asyncio
import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple

import numpy as np
import requests

from common.errors import LocationUnavailable
from common.geo import offset_deg
from common.types import GeoFix
from common.utils import iso_now_ms


CSV_HEADER = ["ts", "lat", "lon", "accuracy"]


class LocationSource(Protocol):
    """Anything that can produce one reading; raises LocationUnavailable on failure."""

    async def read(self) -> GeoFix: ...


@dataclass
class StaticLocationSource:
    """Always reports the same fix."""
    fix: GeoFix

    async def read(self) -> GeoFix:
        return self.fix


@dataclass
class SyntheticLocationSource:
    """
    Noisy readings scattered around a true position, for demos and tests.

    Args:
        lat, lon: true position (deg)
        accuracy_m: (lo, hi) range each reading's reported accuracy is drawn from
        failure_rate: probability a read fails with LocationUnavailable
        seed: RNG seed (numpy default_rng)
    """
    lat: float
    lon: float
    accuracy_m: Tuple[float, float] = (3.0, 25.0)
    failure_rate: float = 0.0
    seed: int = 1234
    _rng: np.random.Generator = field(init=False, repr=False)

    def __post_init__(self) -> None:
        lo, hi = float(self.accuracy_m[0]), float(self.accuracy_m[1])
        if lo < 0 or hi < lo:
            raise ValueError("accuracy_m must be (lo, hi) with 0 <= lo <= hi")
        if not 0.0 <= self.failure_rate <= 1.0:
            raise ValueError("failure_rate must be in [0, 1]")
        self.accuracy_m = (lo, hi)
        self._rng = np.random.default_rng(self.seed)

    async def read(self) -> GeoFix:
        if self.failure_rate > 0 and self._rng.random() < self.failure_rate:
            raise LocationUnavailable("synthetic read failure")
        acc = float(self._rng.uniform(*self.accuracy_m))
        # Reported accuracy ~ 1-sigma radius; scatter the position accordingly
        north, east = self._rng.normal(0.0, acc / 2.0, size=2)
        dlat, dlon = offset_deg(self.lat, float(north), float(east))
        # Keep jitter near a pole or the antimeridian inside valid coordinates
        lat = min(90.0, max(-90.0, self.lat + dlat))
        lon = (self.lon + dlon + 180.0) % 360.0 - 180.0
        return GeoFix(lat=lat, lon=lon, accuracy_m=acc, ts=iso_now_ms())


class ReplayLocationSource:
    """
    Replay readings from a CSV with columns: ts (optional), lat, lon, accuracy.
    A row with an empty lat/lon/accuracy replays as a failed read.
    """

    def __init__(self, path: str, loop: bool = False):
        self.path = path
        self.loop = loop
        if not Path(path).exists():
            raise FileNotFoundError(f"Location CSV not found: {path}")
        with open(path, newline="") as f:
            self._rows: List[Dict[str, str]] = list(csv.DictReader(f))
        self._it: Iterator[Dict[str, str]] = iter(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def _next_row(self) -> Dict[str, str]:
        try:
            return next(self._it)
        except StopIteration:
            if not self.loop or not self._rows:
                raise LocationUnavailable(f"replay exhausted: {self.path}") from None
            self._it = iter(self._rows)
            return next(self._it)

    async def read(self) -> GeoFix:
        row = self._next_row()
        lat, lon, acc = (row.get(k, "").strip() for k in ("lat", "lon", "accuracy"))
        if not (lat and lon and acc):
            raise LocationUnavailable("replayed failed read")
        try:
            return GeoFix(lat=float(lat), lon=float(lon), accuracy_m=float(acc), ts=row.get("ts") or iso_now_ms())
        except ValueError as e:
            raise LocationUnavailable(f"bad replay row: {e}") from e


class HttpLocationSource:
    """
    Poll a JSON endpoint that reports the device position, e.g. a phone GPS relay:
        GET <url>  ->  {"lat": ..., "lon": ..., "accuracy": ...}
    The blocking request runs in a worker thread so the event loop stays free.
    """

    def __init__(self, url: str, timeout: float = 2.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self) -> GeoFix:
        try:
            r = self.session.get(self.url, timeout=self.timeout, headers={"Cache-Control": "no-store"})
        except requests.RequestException as e:
            raise LocationUnavailable(f"location request failed: {e}") from e
        if r.status_code != 200:
            raise LocationUnavailable(f"location API error {r.status_code}")
        try:
            j = r.json()
            return GeoFix(
                lat=float(j["lat"]),
                lon=float(j["lon"]),
                accuracy_m=float(j["accuracy"]),
                ts=j.get("ts") or iso_now_ms(),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise LocationUnavailable(f"bad location payload: {e}") from e

    async def read(self) -> GeoFix:
        return await asyncio.to_thread(self._get)


def write_location_csv(path: str, fixes: List[Optional[GeoFix]]) -> None:
    """
    Write readings in the replay format. None entries become empty rows
    (replayed as failed reads).
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", newline="") as f:
        w = csv.writer(f)
        w.writerow(CSV_HEADER)
        for fx in fixes:
            if fx is None:
                w.writerow(["", "", "", ""])
            else:
                w.writerow([fx.ts or "", f"{fx.lat:.8f}", f"{fx.lon:.8f}", f"{fx.accuracy_m:.2f}"])


def source_from_config(cfg: Dict[str, Any]) -> LocationSource:
    """Build a location source from the `location` config section."""
    kind = str(cfg.get("source", "synthetic")).lower()
    if kind == "synthetic":
        acc = cfg.get("accuracy_m", (3.0, 25.0))
        return SyntheticLocationSource(
            lat=float(cfg["lat"]),
            lon=float(cfg["lon"]),
            accuracy_m=(float(acc[0]), float(acc[1])),
            failure_rate=float(cfg.get("failure_rate", 0.0)),
            seed=int(cfg.get("seed", 1234)),
        )
    if kind == "replay":
        return ReplayLocationSource(str(cfg["path"]), loop=bool(cfg.get("loop", True)))
    if kind == "http":
        return HttpLocationSource(str(cfg["url"]), timeout=float(cfg.get("timeout_s", 2.0)))
    if kind == "static":
        return StaticLocationSource(
            GeoFix(lat=float(cfg["lat"]), lon=float(cfg["lon"]), accuracy_m=float(cfg.get("accuracy", 5.0)))
        )
    raise ValueError(f"Unknown location source: {kind}")
