from __future__ import annotations

"""
Calibration flow: the tap-driven lifecycle around the calibration engine.

    start() -> [CALIBRATING] tap x3, capture GPS, save  -> finish() -> [CALIBRATED]
            -> [CALIBRATED] when a record is supplied, fetched or stored
            -> [DEVELOPER] raw pixel map, no calibration

The flow owns exactly one CalibrationSession (while calibrating) or one
CalibrationRecord (once calibrated). Methods return the prompt text a UI
would show in its banner.
"""

import asyncio
import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from calibration.mapper import ImagePlacement, image_placement, pixel_to_geo
from calibration.record import CalibrationRecord, RecordStore, fetch_record
from calibration.session import REQUIRED_POINTS, CalibrationSession
from calibration.solver import solve_session
from common.errors import (
    CapacityExceeded,
    IncompleteCalibration,
    InvalidIndex,
    InvalidMode,
    InvalidRecord,
    LocationUnavailable,
)
from common.geo import haversine_m, triangle_area_px
from common.logging_setup import get_logger
from common.types import AffineTransform, GeoFix, GeoPoint, PixelPoint
from common.utils import append_jsonl, iso_now_ms
from location.sampler import GpsSampler, ReadingCallback


log = get_logger("calibration.flow")

# Below this pixel-triangle area the three points are practically on a line.
_THIN_TRIANGLE_PX2 = 1.0

PROMPT_START = "Calibrate the map — tap three points on the plan."
PROMPT_AUTO = "Map calibrated automatically."
PROMPT_DEVELOPER = "Developer Mode active — raw pixel map."
PROMPT_FULL = "Calibration already has 3 points."
PROMPT_NO_GPS = "GPS not captured yet — try again."
PROMPT_DONE = "Calibration complete — map aligned."
_PROMPT_NEXT = {
    1: "Great. Walk to a second point far away.",
    2: "Nice. Choose a third point to form a triangle.",
}


class Mode(str, enum.Enum):
    DEVELOPER = "developer"
    CALIBRATING = "calibrating"
    CALIBRATED = "calibrated"


@dataclass
class TapResult:
    """Outcome of one tap on the plan."""
    mode: Mode
    pixel: PixelPoint
    index: Optional[int] = None       # calibration point index (CALIBRATING)
    geo: Optional[GeoPoint] = None    # mapped location (CALIBRATED)
    label: str = ""
    prompt: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "imageXY": self.pixel.to_list(),
            "index": self.index,
            "gps": self.geo.to_dict() if self.geo else None,
            "label": self.label,
            "prompt": self.prompt,
        }


@dataclass
class DroppedEvent:
    ts: str
    pixel: PixelPoint
    geo: GeoPoint
    label: str = "E"

    def to_dict(self) -> Dict[str, Any]:
        return {"ts": self.ts, "imageXY": self.pixel.to_list(), "gps": self.geo.to_dict(), "label": self.label}


@dataclass
class FlowSettings:
    image_width: float = 5000
    image_height: float = 7068
    duration_ms: float = 5000
    poll_interval_ms: float = 300
    developer_mode: bool = False
    reject_unavailable: bool = False
    view_zoom: int = 18
    remote_url: Optional[str] = None
    remote_timeout_s: float = 5.0
    events_file: Optional[str] = None

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "FlowSettings":
        img = cfg.get("image", {})
        st = cfg.get("stabilization", {})
        cal = cfg.get("calibration", {})
        return cls(
            image_width=float(img.get("width", 5000)),
            image_height=float(img.get("height", 7068)),
            duration_ms=float(st.get("duration_ms", 5000)),
            poll_interval_ms=float(st.get("poll_interval_ms", 300)),
            developer_mode=bool(cal.get("developer_mode", False)),
            reject_unavailable=bool(cal.get("reject_unavailable", False)),
            view_zoom=int(cal.get("view_zoom", 18)),
            remote_url=cal.get("remote_url") or None,
            remote_timeout_s=float(cal.get("remote_timeout_s", 5.0)),
            events_file=cfg.get("logging", {}).get("events_file") or None,
        )


class CalibrationFlow:
    def __init__(
        self,
        sampler: GpsSampler,
        settings: Optional[FlowSettings] = None,
        store: Optional[RecordStore] = None,
    ):
        self.sampler = sampler
        self.settings = settings or FlowSettings()
        self.store = store
        self.mode = Mode.CALIBRATING
        self.session: Optional[CalibrationSession] = CalibrationSession()
        self.record: Optional[CalibrationRecord] = None
        self.events: List[DroppedEvent] = []
        self._capture_lock = asyncio.Lock()

    # ---------- lifecycle ----------

    def start(self, record: Optional[CalibrationRecord] = None) -> str:
        """
        Pick the starting mode. Precedence: developer mode, an explicit
        record, the remote asset, the local store, interactive calibration.
        A malformed remote/stored record is logged and ignored.
        """
        if self.settings.developer_mode:
            self.mode = Mode.DEVELOPER
            self.session = None
            self.record = None
            log.info("Developer mode active")
            return PROMPT_DEVELOPER

        rec = record or self._load_startup_record()
        if rec is not None:
            self.apply_record(rec)
            return PROMPT_AUTO

        self._begin_session()
        return PROMPT_START

    def _load_startup_record(self) -> Optional[CalibrationRecord]:
        if self.settings.remote_url:
            try:
                rec = fetch_record(self.settings.remote_url, timeout=self.settings.remote_timeout_s)
            except InvalidRecord as e:
                log.warning("Ignoring malformed remote calibration", extra={"extra": {"error": str(e)}})
                rec = None
            if rec is not None:
                return rec
        if self.store is not None:
            try:
                return self.store.load()
            except InvalidRecord as e:
                log.warning("Ignoring malformed stored calibration", extra={"extra": {"error": str(e)}})
        return None

    def apply_record(self, record: CalibrationRecord, persist: bool = True) -> None:
        """Adopt a solved record; the session (if any) is discarded."""
        if self.mode is Mode.DEVELOPER:
            raise InvalidMode("developer mode does not use calibration")
        if persist and self.store is not None:
            self.store.save(record)
        self.record = record
        self.session = None
        self.mode = Mode.CALIBRATED
        log.info("Calibration applied", extra={"extra": record.transform.to_dict()})

    def recalibrate(self) -> str:
        """Drop the current record (and stored copy) and start a new session."""
        if self.mode is Mode.DEVELOPER:
            raise InvalidMode("developer mode does not use calibration")
        if self.store is not None:
            self.store.clear()
        self.record = None
        self.events.clear()
        self._begin_session()
        return PROMPT_START

    def _begin_session(self) -> None:
        self.session = CalibrationSession()
        self.record = None
        self.mode = Mode.CALIBRATING

    def _require_session(self) -> CalibrationSession:
        if self.mode is not Mode.CALIBRATING or self.session is None:
            raise InvalidMode(f"not calibrating (mode={self.mode.value})")
        return self.session

    @property
    def transform(self) -> Optional[AffineTransform]:
        return self.record.transform if self.record else None

    # ---------- taps ----------

    def handle_tap(self, pixel: PixelPoint) -> TapResult:
        if self.mode is Mode.DEVELOPER:
            return TapResult(mode=self.mode, pixel=pixel)
        if self.mode is Mode.CALIBRATED:
            return self._drop_event(pixel)

        session = self._require_session()
        if session.is_full:
            raise CapacityExceeded(PROMPT_FULL)
        idx = session.add_point(pixel)
        n = idx + 1
        if n == REQUIRED_POINTS:
            p = [(q.pixel.x, q.pixel.y) for q in session.points]
            if triangle_area_px(*p) < _THIN_TRIANGLE_PX2:
                log.warning("Calibration points are nearly collinear", extra={"extra": {"points": p}})
        return TapResult(
            mode=self.mode,
            pixel=pixel,
            index=idx,
            label=str(n),
            prompt=f"Point {n} selected",
        )

    def _drop_event(self, pixel: PixelPoint) -> TapResult:
        assert self.record is not None
        geo = pixel_to_geo(pixel, self.record.transform)
        ev = DroppedEvent(ts=iso_now_ms(), pixel=pixel, geo=geo)
        self.events.append(ev)
        if self.settings.events_file:
            append_jsonl(Path(self.settings.events_file), ev.to_dict())
        log.info("Event dropped", extra={"extra": ev.to_dict()})
        return TapResult(mode=self.mode, pixel=pixel, geo=geo, label=ev.label)

    # ---------- GPS capture ----------

    async def capture(self, index: int, on_reading: Optional[ReadingCallback] = None) -> GeoFix:
        """
        Stabilize GPS for calibration point `index` and attach the best fix.

        Captures run one at a time, and point i+1 cannot be captured before
        point i has GPS. If the task is cancelled the point keeps no GPS.
        """
        async with self._capture_lock:
            session = self._require_session()
            if not 0 <= index < len(session):
                raise InvalidIndex(f"no calibration point at index {index} (have {len(session)})")
            pending = session.pending_index
            if pending is not None and index > pending:
                raise IncompleteCalibration(f"capture GPS for point {pending + 1} first")
            target = session.points[index]

            fix = await self.sampler.stabilize(
                self.settings.duration_ms,
                self.settings.poll_interval_ms,
                on_reading=on_reading,
            )
            if not fix.available and self.settings.reject_unavailable:
                raise LocationUnavailable("no GPS reading during the stabilization window")

            # the point may have been undone or the session reset while sampling
            if session is not self.session or index >= len(session) or session.points[index] is not target:
                raise InvalidIndex(f"calibration point {index} was removed during capture")
            session.attach_geo(index, fix)
            self._log_spacing(session, index)
            return fix

    def _log_spacing(self, session: CalibrationSession, index: int) -> None:
        pts = session.points
        if index == 0 or pts[index - 1].geo is None:
            return
        g0, g1 = pts[index - 1].geo, pts[index].geo
        assert g0 is not None and g1 is not None
        log.info(
            "Distance from previous calibration point",
            extra={"extra": {"index": index, "meters": haversine_m(g0.lat, g0.lon, g1.lat, g1.lon)}},
        )

    def save_point(self) -> str:
        """Confirm the latest point; after the last one, solve and apply."""
        session = self._require_session()
        if len(session) == 0:
            raise InvalidIndex("no calibration point to save")
        last = session.points[-1]
        if last.geo is None:
            raise IncompleteCalibration(PROMPT_NO_GPS)
        n = len(session)
        if n < REQUIRED_POINTS:
            return _PROMPT_NEXT[n]
        self.finish()
        return PROMPT_DONE

    def finish(self) -> CalibrationRecord:
        """Solve the session. On any error the flow stays in CALIBRATING."""
        session = self._require_session()
        T = solve_session(session)
        record = CalibrationRecord(transform=T, points=session.points)
        log.info("Calibration JSON", extra={"extra": record.to_dict()})
        self.apply_record(record)
        return record

    def undo(self) -> str:
        session = self._require_session()
        session.remove_last()
        n = len(session)
        return PROMPT_START if n == 0 else f"Point {n} selected"

    # ---------- results ----------

    def placement(self) -> ImagePlacement:
        if self.mode is not Mode.CALIBRATED or self.record is None:
            raise InvalidMode("map is not calibrated")
        return image_placement(
            self.settings.image_width,
            self.settings.image_height,
            self.record.transform,
            zoom=self.settings.view_zoom,
        )

    def state(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"mode": self.mode.value}
        if self.session is not None:
            d["points"] = [p.to_dict() for p in self.session.points]
            d["ready"] = self.session.is_ready_to_solve()
            d["pending_index"] = self.session.pending_index
        if self.record is not None:
            d["transform"] = self.record.transform.to_dict()
        d["events"] = len(self.events)
        return d
