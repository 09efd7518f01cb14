"""
Integration tests for the calibration HTTP service and CLI
"""

import json
import os
import sys

import pytest
from fastapi.testclient import TestClient

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from calibration import cli
from common.config import DEFAULTS, load_config
from common.errors import LocationUnavailable
from common.types import GeoFix
from service import server
from service.server import create_app


class SpotSource:
    """Reports the fix of whichever spot the test says the user is standing on."""

    def __init__(self):
        self.here = None

    async def read(self):
        if self.here is None:
            raise LocationUnavailable("indoors")
        return self.here


def _params(tmp_path, **calibration):
    P = load_config(str(tmp_path / "missing.yaml"))
    P["stabilization"] = {"duration_ms": 0, "poll_interval_ms": 0}
    P["calibration"]["record_path"] = str(tmp_path / "calibration.json")
    P["calibration"].update(calibration)
    P["logging"]["events_file"] = str(tmp_path / "events.jsonl")
    return P


def _calibrate(client, src):
    spots = [((0, 0), (10.0, 20.0)), ((100, 0), (10.0, 25.0)), ((0, 100), (15.0, 20.0))]
    last = None
    for i, ((x, y), (lat, lon)) in enumerate(spots):
        r = client.post("/tap", json={"x": x, "y": y})
        assert r.status_code == 200
        assert r.json()["index"] == i
        src.here = GeoFix(lat, lon, 4.0)
        r = client.post(f"/points/{i}/gps")
        assert r.status_code == 200
        assert r.json()["gps"] == {"lat": lat, "lon": lon, "accuracy": 4.0}
        last = client.post("/points/save")
        assert last.status_code == 200
    return last.json()


class TestService:
    """HTTP front end over the calibration flow"""

    def test_full_calibration(self, tmp_path):
        src = SpotSource()
        client = TestClient(create_app(_params(tmp_path), source=src))

        assert client.get("/health").json()["mode"] == "calibrating"
        assert client.get("/placement").status_code == 409
        assert client.get("/calibration").status_code == 404

        done = _calibrate(client, src)
        assert done["prompt"] == "Calibration complete — map aligned."
        assert done["state"]["mode"] == "calibrated"

        r = client.post("/tap", json={"x": 50, "y": 50})
        assert r.json()["gps"] == {"lat": pytest.approx(12.5), "lon": pytest.approx(22.5)}
        assert len(client.get("/events").json()["events"]) == 1

        rec = client.get("/calibration").json()
        assert set(rec) == {"a", "b", "c", "d", "e", "f", "points"}

        pl = client.get("/placement").json()
        assert pl["crs"] == "EPSG:4326"
        assert pl["extent"][1] == pytest.approx(10.0)
        assert pl["image"] == "siteplan.jpg"

    def test_error_mapping(self, tmp_path):
        src = SpotSource()
        client = TestClient(create_app(_params(tmp_path), source=src))

        assert client.post("/points/0/gps").status_code == 404
        for x, y in [(0, 0), (10, 0), (20, 0)]:
            client.post("/tap", json={"x": x, "y": y})
        r = client.post("/tap", json={"x": 1, "y": 1})
        assert r.status_code == 409
        assert r.json()["error"] == "CapacityExceeded"
        assert r.json()["detail"] == "Calibration already has 3 points."

        assert client.post("/points/save").status_code == 409  # no GPS yet

        # collinear points: solve fails when the third point is saved
        for i, lon in enumerate([20.0, 21.0, 22.0]):
            src.here = GeoFix(10.0, lon, 3.0)
            assert client.post(f"/points/{i}/gps").status_code == 200
            r = client.post("/points/save")
        assert r.status_code == 422
        assert r.json()["error"] == "DegenerateCalibration"
        assert client.get("/state").json()["mode"] == "calibrating"

    def test_sentinel_and_reject_policy(self, tmp_path):
        src = SpotSource()
        client = TestClient(create_app(_params(tmp_path, reject_unavailable=True), source=src))
        client.post("/tap", json={"x": 0, "y": 0})
        r = client.post("/points/0/gps")
        assert r.status_code == 503
        assert r.json()["error"] == "LocationUnavailable"
        assert client.get("/state").json()["last_reading"] == {"accuracy": 999.0, "available": False}

    def test_put_calibration_and_reset(self, tmp_path):
        src = SpotSource()
        first = TestClient(create_app(_params(tmp_path / "a"), source=src))
        _calibrate(first, src)
        body = json.dumps(first.get("/calibration").json())

        second = TestClient(create_app(_params(tmp_path / "b"), source=src))
        assert second.put("/calibration", content="{not json").status_code == 422
        assert second.put("/calibration", content=body).status_code == 200
        assert second.get("/state").json()["mode"] == "calibrated"

        r = second.post("/calibration/reset")
        assert r.json()["state"]["mode"] == "calibrating"
        assert not (tmp_path / "b" / "calibration.json").exists()

    def test_restart_uses_stored_record(self, tmp_path):
        src = SpotSource()
        P = _params(tmp_path)
        _calibrate(TestClient(create_app(P, source=src)), src)
        again = TestClient(create_app(P, source=src))
        h = again.get("/health").json()
        assert h["mode"] == "calibrated"
        assert h["banner"] == "Map calibrated automatically."

    def test_developer_mode_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CALIBRATION_DEV_MODE", "1")
        P = load_config(str(tmp_path / "missing.yaml"))
        assert P["calibration"]["developer_mode"] is True
        P["calibration"]["record_path"] = str(tmp_path / "calibration.json")
        client = TestClient(create_app(P, source=SpotSource()))
        r = client.post("/tap", json={"x": 3, "y": 4})
        assert r.json()["mode"] == "developer"
        assert r.json()["gps"] is None

    def test_module_app_built_on_first_access(self, tmp_path, monkeypatch):
        """Importing the module does not start a flow; `app` is built once, from params"""
        monkeypatch.setattr(server, "_app", None)
        cfg = tmp_path / "params.yaml"
        cfg.write_text(
            "calibration:\n  record_path: " + str(tmp_path / "calibration.json") + "\n"
            "location:\n  source: static\n  lat: 38.0\n  lon: -77.0\n"
        )
        monkeypatch.setenv("CALIBRATION_CONFIG", str(cfg))
        monkeypatch.delenv("CALIBRATION_DEV_MODE", raising=False)

        app = server.app
        assert server.app is app
        assert TestClient(app).get("/health").json()["mode"] == "calibrating"
        with pytest.raises(AttributeError):
            server.no_such_thing


class TestConfig:
    def test_defaults_when_missing(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CALIBRATION_DEV_MODE", raising=False)
        P = load_config(str(tmp_path / "missing.yaml"))
        assert P == DEFAULTS

    def test_yaml_merges_over_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CALIBRATION_DEV_MODE", raising=False)
        p = tmp_path / "params.yaml"
        p.write_text("image:\n  width: 1200\nstabilization:\n  duration_ms: 2000\n")
        P = load_config(str(p))
        assert P["image"] == {"path": "siteplan.jpg", "width": 1200, "height": 7068}
        assert P["stabilization"]["duration_ms"] == 2000
        assert P["stabilization"]["poll_interval_ms"] == 300

    def test_bundled_params_file_loads(self, monkeypatch):
        monkeypatch.delenv("CALIBRATION_DEV_MODE", raising=False)
        P = load_config(os.path.join(project_root, "config", "params.yaml"))
        assert P["image"]["width"] == 5000
        assert P["location"]["source"] == "synthetic"


class TestCli:
    def _points_file(self, tmp_path, pixels):
        gps = [(10.0, 20.0), (10.0, 25.0), (15.0, 20.0)]
        pts = [{"imageXY": list(px), "gps": {"lat": g[0], "lon": g[1], "accuracy": 5.0}} for px, g in zip(pixels, gps)]
        p = tmp_path / "points.json"
        p.write_text(json.dumps(pts))
        return str(p)

    def test_solve_convert_extent(self, tmp_path, capsys):
        pts = self._points_file(tmp_path, [(0, 0), (100, 0), (0, 100)])
        out = str(tmp_path / "calibration.json")
        assert cli.main(["solve", "--points", pts, "--out", out]) == 0
        rec = json.loads(capsys.readouterr().out)
        assert rec["c"] == pytest.approx(10.0)

        assert cli.main(["convert", "--record", out, "--x", "50", "--y", "50"]) == 0
        g = json.loads(capsys.readouterr().out)
        assert g == {"lat": pytest.approx(12.5), "lon": pytest.approx(22.5)}

        assert cli.main(["extent", "--record", out, "--width", "100", "--height", "100"]) == 0
        ext = json.loads(capsys.readouterr().out)
        assert ext["bounds"] == {
            "minLon": pytest.approx(20.0),
            "maxLon": pytest.approx(25.0),
            "minLat": pytest.approx(10.0),
            "maxLat": pytest.approx(15.0),
        }

    def test_solve_degenerate(self, tmp_path, capsys):
        pts = self._points_file(tmp_path, [(0, 0), (10, 0), (20, 0)])
        assert cli.main(["solve", "--points", pts]) == 2
        assert "collinear" in capsys.readouterr().err

    def test_missing_record(self, tmp_path, capsys):
        assert cli.main(["convert", "--record", str(tmp_path / "none.json"), "--x", "1", "--y", "1"]) == 2
