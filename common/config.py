from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = "config/params.yaml"

DEFAULTS: Dict[str, Any] = {
    "image": {"path": "siteplan.jpg", "width": 5000, "height": 7068},
    "stabilization": {"duration_ms": 5000, "poll_interval_ms": 300},
    "calibration": {
        "record_path": "data/calibration.json",
        "remote_url": None,
        "remote_timeout_s": 5.0,
        "developer_mode": False,
        "reject_unavailable": False,
        "view_zoom": 18,
    },
    "location": {
        "source": "synthetic",
        "lat": 38.8895,
        "lon": -77.0352,
        "accuracy_m": [3.0, 25.0],
        "failure_rate": 0.0,
        "seed": 1234,
    },
    "logging": {"level": "INFO", "events_file": "logs/events.jsonl"},
    "server": {"host": "0.0.0.0", "port": 8000},
}


def _deep_merge(base: Dict[str, Any], over: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (over or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _env_flag(name: str) -> Optional[bool]:
    v = os.environ.get(name)
    if v is None:
        return None
    return v.strip().lower() in ("1", "true", "yes", "on")


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load YAML params merged over DEFAULTS.

    A missing file yields the defaults. CALIBRATION_DEV_MODE=1 in the
    environment turns on developer mode regardless of the file.
    """
    p = Path(path or os.environ.get("CALIBRATION_CONFIG") or DEFAULT_CONFIG_PATH)
    raw: Dict[str, Any] = {}
    if p.exists():
        with p.open("r") as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Config root must be a mapping: {p}")
    cfg = _deep_merge(DEFAULTS, raw)

    dev = _env_flag("CALIBRATION_DEV_MODE")
    if dev is not None:
        cfg["calibration"]["developer_mode"] = dev
    return cfg
