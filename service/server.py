from __future__ import annotations

"""
Calibration service (FastAPI).

A front end (map viewer, phone page) posts taps on the floor plan and asks the
service to capture GPS; once three points are saved the service answers every
further tap with a GPS location and serves the image placement.

Run:
    python -m service.server --config config/params.yaml
    uvicorn service.server:app        # app built from params on first access
"""

import argparse
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from calibration.flow import CalibrationFlow, FlowSettings
from calibration.record import CalibrationRecord, RecordStore
from common.config import load_config
from common.errors import (
    CalibrationError,
    CapacityExceeded,
    DegenerateCalibration,
    IncompleteCalibration,
    InvalidIndex,
    InvalidMode,
    InvalidRecord,
    LocationUnavailable,
)
from common.logging_setup import get_logger, setup_logging
from common.types import GeoFix, PixelPoint
from location.sampler import GpsSampler
from location.sources import LocationSource, source_from_config


log = get_logger("service")

_STATUS = {
    CapacityExceeded: 409,
    IncompleteCalibration: 409,
    InvalidMode: 409,
    InvalidIndex: 404,
    DegenerateCalibration: 422,
    InvalidRecord: 422,
    LocationUnavailable: 503,
}


class Tap(BaseModel):
    x: float
    y: float


def create_app(P: Dict[str, Any], source: Optional[LocationSource] = None) -> FastAPI:
    """Build the app around one CalibrationFlow configured from params `P`."""
    setup_logging(P.get("logging", {}).get("level", "INFO"), force=True)

    sampler = GpsSampler(source or source_from_config(P.get("location", {})))
    store = RecordStore(P.get("calibration", {}).get("record_path", "data/calibration.json"))
    flow = CalibrationFlow(sampler, FlowSettings.from_config(P), store=store)
    banner = flow.start()

    app = FastAPI(title="Floor-plan GPS Calibration API", version="1.0.0")
    app.state.flow = flow
    app.state.banner = banner
    app.state.last_reading = None

    # (Optional) CORS for local dev tools
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten as needed
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CalibrationError)
    async def _calibration_error(request: Request, exc: CalibrationError):
        status = next((s for t, s in _STATUS.items() if isinstance(exc, t)), 400)
        log.info(
            "Request rejected",
            extra={"extra": {"path": request.url.path, "error": type(exc).__name__, "detail": str(exc)}},
        )
        return JSONResponse({"error": type(exc).__name__, "detail": str(exc)}, status_code=status)

    def _ok(prompt: str) -> Dict[str, Any]:
        app.state.banner = prompt
        return {"prompt": prompt, "state": flow.state()}

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "mode": flow.mode.value,
            "banner": app.state.banner,
            "record_stored": store.exists,
        }

    @app.get("/state")
    def state():
        d = flow.state()
        d["banner"] = app.state.banner
        d["last_reading"] = app.state.last_reading
        return d

    @app.post("/tap")
    def tap(t: Tap):
        res = flow.handle_tap(PixelPoint(t.x, t.y))
        if res.prompt:
            app.state.banner = res.prompt
        return res.to_dict()

    @app.post("/points/{index}/gps")
    async def capture(index: int):
        def _progress(fix: GeoFix) -> None:
            # the "current accuracy" readout a UI polls via /state
            app.state.last_reading = {"accuracy": fix.accuracy_m, "available": fix.available}

        app.state.banner = "Improving GPS accuracy…"
        fix = await flow.capture(index, on_reading=_progress)
        app.state.banner = f"Accuracy: ±{fix.accuracy_m:.1f} m"
        return {"index": index, "gps": fix.to_dict(), "available": fix.available, "prompt": app.state.banner}

    @app.post("/points/save")
    def save_point():
        return _ok(flow.save_point())

    @app.post("/points/undo")
    def undo():
        return _ok(flow.undo())

    @app.post("/calibration/reset")
    def reset():
        return _ok(flow.recalibrate())

    @app.get("/calibration")
    def get_calibration():
        if flow.record is None:
            raise HTTPException(status_code=404, detail="not_calibrated")
        return flow.record.to_dict()

    @app.put("/calibration")
    async def put_calibration(request: Request):
        rec = CalibrationRecord.from_json(await request.body())
        flow.apply_record(rec)
        return _ok("Map calibrated automatically.")

    @app.get("/placement")
    def placement():
        d = flow.placement().to_dict()
        d["image"] = P.get("image", {}).get("path")
        return d

    @app.get("/events")
    def events():
        return {"events": [e.to_dict() for e in flow.events]}

    return app


_app: Optional[FastAPI] = None


def __getattr__(name: str) -> Any:
    # `service.server:app` for uvicorn, built on first access; import alone has no side effects
    global _app
    if name == "app":
        if _app is None:
            _app = create_app(load_config())
        return _app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


# -------- local dev entrypoint --------
def main() -> None:
    ap = argparse.ArgumentParser(description="Floor-plan GPS calibration service")
    ap.add_argument("--config", default=None)
    args = ap.parse_args()
    P = load_config(args.config)
    srv = P.get("server", {})
    uvicorn.run(create_app(P), host=str(srv.get("host", "0.0.0.0")), port=int(srv.get("port", 8000)))


if __name__ == "__main__":
    main()
