from __future__ import annotations

from typing import List, Optional

from common.errors import CapacityExceeded, InvalidIndex
from common.logging_setup import get_logger
from common.types import CorrespondencePoint, GeoFix, PixelPoint


log = get_logger("calibration.session")

REQUIRED_POINTS = 3


class CalibrationSession:
    """
    Collects the three (pixel, GPS) correspondences of one calibration run.

    States: Empty(0) -> Collecting(1) -> Collecting(2) -> Complete(3, all GPS).
    The pixel side is added first (`add_point`), the GPS side later
    (`attach_geo`). A session is consumed once by the solver and discarded.
    """

    def __init__(self) -> None:
        self._points: List[CorrespondencePoint] = []

    def __len__(self) -> int:
        return len(self._points)

    @property
    def points(self) -> List[CorrespondencePoint]:
        return list(self._points)

    @property
    def is_full(self) -> bool:
        return len(self._points) >= REQUIRED_POINTS

    @property
    def pending_index(self) -> Optional[int]:
        """Index of the first point still waiting for GPS, if any."""
        for i, p in enumerate(self._points):
            if not p.has_geo:
                return i
        return None

    def add_point(self, pixel: PixelPoint) -> int:
        if self.is_full:
            raise CapacityExceeded(f"calibration already has {REQUIRED_POINTS} points")
        self._points.append(CorrespondencePoint(pixel=pixel))
        idx = len(self._points) - 1
        log.info("Calibration point added", extra={"extra": {"index": idx, "x": pixel.x, "y": pixel.y}})
        return idx

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._points):
            raise InvalidIndex(f"no calibration point at index {index} (have {len(self._points)})")

    def attach_geo(self, index: int, fix: GeoFix) -> None:
        self._check_index(index)
        self._points[index].geo = fix
        log.info(
            "GPS attached",
            extra={"extra": {"index": index, "lat": fix.lat, "lon": fix.lon,
                             "accuracy_m": fix.accuracy_m, "available": fix.available}},
        )

    def is_ready_to_solve(self) -> bool:
        return len(self._points) == REQUIRED_POINTS and all(p.has_geo for p in self._points)

    def remove_last(self) -> CorrespondencePoint:
        """Undo the most recent point (pixel and any GPS attached to it)."""
        if not self._points:
            raise InvalidIndex("no calibration point to remove")
        p = self._points.pop()
        log.info("Calibration point removed", extra={"extra": {"index": len(self._points)}})
        return p

    def reset(self) -> None:
        self._points.clear()
