from __future__ import annotations

"""
Calibration record: the durable result of a calibration run.

Serialized shape (field order not significant):

    {
      "a": ..., "b": ..., "c": ..., "d": ..., "e": ..., "f": ...,
      "points": [
        {"imageXY": [x, y], "gps": {"lat": ..., "lon": ..., "accuracy": ...}},
        ... x 3
      ]
    }

Loading a valid record skips the interactive session entirely.
"""

import json
import math
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from calibration.session import REQUIRED_POINTS
from common.errors import InvalidRecord
from common.logging_setup import get_logger
from common.types import AffineTransform, CorrespondencePoint, GeoFix, PixelPoint


log = get_logger("calibration.record")

_COEFFS = ("a", "b", "c", "d", "e", "f")


def _number(d: Dict[str, Any], key: str, where: str) -> float:
    if key not in d:
        raise InvalidRecord(f"{where}: missing '{key}'")
    v = d[key]
    # bool is an int subclass; reject it explicitly
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise InvalidRecord(f"{where}: '{key}' must be a number")
    v = float(v)
    if not math.isfinite(v):
        raise InvalidRecord(f"{where}: '{key}' must be finite")
    return v


def point_from_dict(raw: Any, i: int) -> CorrespondencePoint:
    where = f"points[{i}]"
    if not isinstance(raw, dict):
        raise InvalidRecord(f"{where}: must be an object")
    xy = raw.get("imageXY")
    if not isinstance(xy, (list, tuple)) or len(xy) != 2:
        raise InvalidRecord(f"{where}: 'imageXY' must be [x, y]")
    x = _number({"x": xy[0]}, "x", where)
    y = _number({"y": xy[1]}, "y", where)
    gps = raw.get("gps")
    if not isinstance(gps, dict):
        raise InvalidRecord(f"{where}: missing 'gps'")
    fields = {k: _number(gps, k, f"{where}.gps") for k in ("lat", "lon", "accuracy")}
    try:
        fix = GeoFix.from_dict(fields)
    except ValueError as e:
        raise InvalidRecord(f"{where}.gps: {e}") from e
    return CorrespondencePoint(pixel=PixelPoint(x, y), geo=fix)


@dataclass(frozen=True)
class CalibrationRecord:
    transform: AffineTransform
    points: List[CorrespondencePoint]

    def __post_init__(self) -> None:
        if len(self.points) != REQUIRED_POINTS or any(p.geo is None for p in self.points):
            raise InvalidRecord(f"record needs {REQUIRED_POINTS} points with GPS")

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = self.transform.to_dict()
        d["points"] = [p.to_dict() for p in self.points]
        return d

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, d: Any) -> "CalibrationRecord":
        if not isinstance(d, dict):
            raise InvalidRecord("record must be a JSON object")
        T = AffineTransform(*(_number(d, k, "record") for k in _COEFFS))
        pts = d.get("points")
        if not isinstance(pts, list) or len(pts) != REQUIRED_POINTS:
            raise InvalidRecord(f"record: 'points' must list {REQUIRED_POINTS} points")
        return cls(transform=T, points=[point_from_dict(p, i) for i, p in enumerate(pts)])

    @classmethod
    def from_json(cls, blob: str | bytes) -> "CalibrationRecord":
        try:
            d = json.loads(blob)
        except (TypeError, ValueError) as e:
            raise InvalidRecord(f"record is not valid JSON: {e}") from e
        return cls.from_dict(d)


class RecordStore:
    """Single-record JSON file store (stands in for browser local storage)."""

    def __init__(self, path: str = "data/calibration.json"):
        self.path = Path(path)

    @property
    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Optional[CalibrationRecord]:
        """Return the stored record, None if absent; InvalidRecord if corrupt."""
        if not self.exists:
            return None
        rec = CalibrationRecord.from_json(self.path.read_text())
        log.info("Calibration record loaded", extra={"extra": {"path": str(self.path)}})
        return rec

    def save(self, record: CalibrationRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # write-then-rename so readers never see a half-written file
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".calib-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(record.to_json())
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        log.info("Calibration record saved", extra={"extra": {"path": str(self.path)}})

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def fetch_record(
    url: str,
    timeout: float = 5.0,
    session: Optional[requests.Session] = None,
) -> Optional[CalibrationRecord]:
    """
    Fetch a bundled/remote calibration record, bypassing HTTP caches.

    Returns None when the asset is unreachable or not served (non-200);
    raises InvalidRecord when it is served but malformed.
    """
    http = session or requests
    try:
        r = http.get(url, timeout=timeout, headers={"Cache-Control": "no-store"})
    except requests.RequestException as e:
        log.warning("Remote calibration unreachable", extra={"extra": {"url": url, "error": str(e)}})
        return None
    if r.status_code != 200:
        log.info("No remote calibration", extra={"extra": {"url": url, "status": r.status_code}})
        return None
    rec = CalibrationRecord.from_json(r.content)
    log.info("Remote calibration fetched", extra={"extra": {"url": url}})
    return rec
