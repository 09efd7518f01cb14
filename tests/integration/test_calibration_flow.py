"""
Integration tests: tap -> GPS capture -> solve -> mapped taps
"""

import asyncio
import json
import os
import sys
from unittest.mock import Mock, patch

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from calibration.flow import (
    PROMPT_AUTO,
    PROMPT_DEVELOPER,
    PROMPT_DONE,
    PROMPT_FULL,
    PROMPT_START,
    CalibrationFlow,
    FlowSettings,
    Mode,
)
from calibration.record import CalibrationRecord, RecordStore
from common.errors import (
    CapacityExceeded,
    DegenerateCalibration,
    IncompleteCalibration,
    InvalidIndex,
    InvalidMode,
    LocationUnavailable,
)
from common.types import GeoFix, PixelPoint
from location.sampler import GpsSampler


# pixel -> (lat, lon) truth for the three calibration spots
TRUTH = {
    (0.0, 0.0): (10.0, 20.0),
    (100.0, 0.0): (10.0, 25.0),
    (0.0, 100.0): (15.0, 20.0),
}


class QueueSource:
    """Hands out queued fixes; an empty queue fails the read."""

    def __init__(self):
        self.queue = []

    async def read(self):
        if not self.queue:
            raise LocationUnavailable("no fix")
        return self.queue.pop(0)


async def _no_wait(_s):
    return None


def _flow(tmp_path, **settings):
    src = QueueSource()
    clock = iter(range(10 ** 6)).__next__  # each clock() call advances one second
    sampler = GpsSampler(src, clock=clock, sleep=_no_wait)
    opts = dict(duration_ms=0, poll_interval_ms=0, events_file=str(tmp_path / "events.jsonl"))
    opts.update(settings)
    flow = CalibrationFlow(sampler, FlowSettings(**opts), store=RecordStore(str(tmp_path / "calibration.json")))
    return flow, src


def _calibrate(flow, src, spots=TRUTH):
    prompts = []
    for i, ((x, y), (lat, lon)) in enumerate(spots.items()):
        res = flow.handle_tap(PixelPoint(x, y))
        assert res.index == i and res.label == str(i + 1)
        src.queue.append(GeoFix(lat, lon, 5.0))
        asyncio.run(flow.capture(i))
        prompts.append(flow.save_point())
    return prompts


class TestCalibrationFlow:
    """Full lifecycle of a calibration run"""

    def test_happy_path(self, tmp_path):
        flow, src = _flow(tmp_path)
        assert flow.start() == PROMPT_START
        assert flow.mode is Mode.CALIBRATING

        prompts = _calibrate(flow, src)
        assert prompts == [
            "Great. Walk to a second point far away.",
            "Nice. Choose a third point to form a triangle.",
            PROMPT_DONE,
        ]
        assert flow.mode is Mode.CALIBRATED
        assert flow.session is None
        assert flow.store.exists

        res = flow.handle_tap(PixelPoint(50, 50))
        assert res.geo.lat == pytest.approx(12.5)
        assert res.geo.lon == pytest.approx(22.5)
        assert res.label == "E"
        assert len(flow.events) == 1
        row = json.loads((tmp_path / "events.jsonl").read_text().splitlines()[0])
        assert row["imageXY"] == [50.0, 50.0]
        assert row["gps"]["lat"] == pytest.approx(12.5)

    def test_fit_reproduces_calibration_points(self, tmp_path):
        flow, src = _flow(tmp_path)
        flow.start()
        _calibrate(flow, src)
        for (x, y), (lat, lon) in TRUTH.items():
            g = flow.handle_tap(PixelPoint(x, y)).geo
            assert (g.lat, g.lon) == (pytest.approx(lat), pytest.approx(lon))

    def test_fourth_point_rejected(self, tmp_path):
        flow, src = _flow(tmp_path)
        flow.start()
        for x, y in TRUTH:
            flow.handle_tap(PixelPoint(x, y))
        with pytest.raises(CapacityExceeded) as exc:
            flow.handle_tap(PixelPoint(7, 7))
        assert str(exc.value) == PROMPT_FULL
        assert len(flow.session) == 3

    def test_capture_order_enforced(self, tmp_path):
        flow, src = _flow(tmp_path)
        flow.start()
        flow.handle_tap(PixelPoint(0, 0))
        flow.handle_tap(PixelPoint(100, 0))
        with pytest.raises(IncompleteCalibration):
            asyncio.run(flow.capture(1))
        with pytest.raises(InvalidIndex):
            asyncio.run(flow.capture(2))

    def test_save_requires_gps(self, tmp_path):
        flow, src = _flow(tmp_path)
        flow.start()
        flow.handle_tap(PixelPoint(0, 0))
        with pytest.raises(IncompleteCalibration):
            flow.save_point()

    def test_failed_window_keeps_sentinel_by_default(self, tmp_path):
        flow, src = _flow(tmp_path)
        flow.start()
        flow.handle_tap(PixelPoint(0, 0))
        fix = asyncio.run(flow.capture(0))
        assert not fix.available
        assert flow.session.points[0].geo is fix

    def test_reject_unavailable_policy(self, tmp_path):
        flow, src = _flow(tmp_path, reject_unavailable=True)
        flow.start()
        flow.handle_tap(PixelPoint(0, 0))
        with pytest.raises(LocationUnavailable):
            asyncio.run(flow.capture(0))
        assert flow.session.points[0].geo is None
        src.queue.append(GeoFix(10, 20, 3))
        assert asyncio.run(flow.capture(0)).available

    def test_degenerate_keeps_calibrating(self, tmp_path):
        flow, src = _flow(tmp_path)
        flow.start()
        spots = {(0.0, 0.0): (10.0, 20.0), (10.0, 0.0): (10.0, 21.0), (20.0, 0.0): (10.0, 22.0)}
        with pytest.raises(DegenerateCalibration):
            _calibrate(flow, src, spots)
        assert flow.mode is Mode.CALIBRATING
        assert flow.record is None
        assert not flow.store.exists
        # correct the last point and finish
        flow.undo()
        flow.handle_tap(PixelPoint(0, 100))
        src.queue.append(GeoFix(15, 20, 5))
        asyncio.run(flow.capture(2))
        assert flow.save_point() == PROMPT_DONE

    def test_undo(self, tmp_path):
        flow, src = _flow(tmp_path)
        flow.start()
        flow.handle_tap(PixelPoint(0, 0))
        flow.handle_tap(PixelPoint(1, 1))
        assert flow.undo() == "Point 1 selected"
        assert flow.undo() == PROMPT_START
        with pytest.raises(InvalidIndex):
            flow.undo()

    def test_undo_during_capture_is_detected(self, tmp_path):
        flow, src = _flow(tmp_path)
        flow.start()
        flow.handle_tap(PixelPoint(0, 0))

        async def sneaky(_fix):
            flow.undo()
            flow.handle_tap(PixelPoint(9, 9))

        src.queue.append(GeoFix(10, 20, 5))
        with pytest.raises(InvalidIndex):
            asyncio.run(flow.capture(0, on_reading=sneaky))
        assert flow.session.points[0].geo is None

    def test_stored_record_skips_session(self, tmp_path):
        flow, src = _flow(tmp_path)
        flow.start()
        _calibrate(flow, src)

        again, _ = _flow(tmp_path)
        assert again.start() == PROMPT_AUTO
        assert again.mode is Mode.CALIBRATED
        assert again.transform == flow.transform
        assert again.placement().bounds.min_lat == pytest.approx(10.0)

    def test_corrupt_store_falls_back_to_calibration(self, tmp_path):
        (tmp_path / "calibration.json").write_text("{broken")
        flow, _ = _flow(tmp_path)
        assert flow.start() == PROMPT_START
        assert flow.mode is Mode.CALIBRATING

    def test_remote_record_applied_and_persisted(self, tmp_path):
        flow, src = _flow(tmp_path / "a")
        flow.start()
        _calibrate(flow, src)
        body = flow.record.to_json().encode()

        fresh, _ = _flow(tmp_path / "b", remote_url="https://example.org/calibration.json")
        with patch("requests.get") as mock_get:
            resp = Mock()
            resp.status_code = 200
            resp.content = body
            mock_get.return_value = resp
            assert fresh.start() == PROMPT_AUTO
        assert fresh.transform == flow.transform
        assert fresh.store.exists

    def test_bad_remote_record_falls_back(self, tmp_path):
        fresh, _ = _flow(tmp_path, remote_url="https://example.org/calibration.json")
        with patch("requests.get") as mock_get:
            resp = Mock()
            resp.status_code = 200
            resp.content = b"[]"
            mock_get.return_value = resp
            assert fresh.start() == PROMPT_START

    def test_recalibrate(self, tmp_path):
        flow, src = _flow(tmp_path)
        flow.start()
        _calibrate(flow, src)
        flow.handle_tap(PixelPoint(1, 1))
        assert flow.recalibrate() == PROMPT_START
        assert flow.mode is Mode.CALIBRATING
        assert flow.events == []
        assert not flow.store.exists
        with pytest.raises(InvalidMode):
            flow.placement()

    def test_developer_mode(self, tmp_path):
        flow, _ = _flow(tmp_path, developer_mode=True)
        assert flow.start() == PROMPT_DEVELOPER
        res = flow.handle_tap(PixelPoint(12, 34))
        assert res.mode is Mode.DEVELOPER
        assert res.geo is None and res.index is None
        with pytest.raises(InvalidMode):
            flow.save_point()
        with pytest.raises(InvalidMode):
            asyncio.run(flow.capture(0))

    def test_explicit_record_wins_over_store(self, tmp_path):
        flow, src = _flow(tmp_path)
        flow.start()
        _calibrate(flow, src)
        rec = CalibrationRecord.from_dict(flow.record.to_dict())

        other, _ = _flow(tmp_path / "other")
        assert other.start(record=rec) == PROMPT_AUTO
        assert other.transform == rec.transform
