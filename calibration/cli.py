from __future__ import annotations

"""
Calibration CLI.

Examples:
  # Solve three correspondences (same point shape as a record's "points")
  python -m calibration.cli solve --points points.json --out data/calibration.json

  # Convert a tap on the plan to GPS
  python -m calibration.cli convert --record data/calibration.json --x 1200 --y 3400

  # GPS bounds of the whole image (defaults to the configured image size)
  python -m calibration.cli extent --record data/calibration.json
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from calibration.mapper import image_placement, pixel_to_geo
from calibration.record import CalibrationRecord, RecordStore, point_from_dict
from calibration.solver import solve
from common.config import load_config
from common.errors import CalibrationError, InvalidRecord
from common.logging_setup import setup_logging
from common.types import PixelPoint


def _load_record(path: str) -> CalibrationRecord:
    rec = RecordStore(path).load()
    if rec is None:
        raise InvalidRecord(f"Record not found: {path}")
    return rec


def _cmd_solve(args: argparse.Namespace) -> int:
    raw = json.loads(Path(args.points).read_text())
    if isinstance(raw, dict):
        raw = raw.get("points", [])
    if not isinstance(raw, list):
        raise InvalidRecord("points file must hold a list of points")
    points = [point_from_dict(p, i) for i, p in enumerate(raw)]
    rec = CalibrationRecord(transform=solve(points), points=points)
    if args.out:
        RecordStore(args.out).save(rec)
    print(rec.to_json())
    return 0


def _cmd_convert(args: argparse.Namespace) -> int:
    rec = _load_record(args.record)
    g = pixel_to_geo(PixelPoint(args.x, args.y), rec.transform)
    print(json.dumps(g.to_dict()))
    return 0


def _cmd_extent(args: argparse.Namespace) -> int:
    rec = _load_record(args.record)
    P = load_config(args.config)
    width = args.width if args.width is not None else float(P["image"]["width"])
    height = args.height if args.height is not None else float(P["image"]["height"])
    placement = image_placement(width, height, rec.transform, zoom=int(P["calibration"]["view_zoom"]))
    print(json.dumps(placement.to_dict(), indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Floor-plan GPS calibration tools")
    ap.add_argument("--config", default=None, help="YAML params (default config/params.yaml)")
    ap.add_argument("--log-level", default=None)
    sub = ap.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("solve", help="Solve an affine transform from 3 points")
    s.add_argument("--points", required=True, help="JSON list of {imageXY, gps} points")
    s.add_argument("--out", default=None, help="Write the record here")
    s.set_defaults(func=_cmd_solve)

    c = sub.add_parser("convert", help="Map a pixel to GPS")
    c.add_argument("--record", required=True)
    c.add_argument("--x", type=float, required=True)
    c.add_argument("--y", type=float, required=True)
    c.set_defaults(func=_cmd_convert)

    e = sub.add_parser("extent", help="GPS bounds of the image")
    e.add_argument("--record", required=True)
    e.add_argument("--width", type=float, default=None)
    e.add_argument("--height", type=float, default=None)
    e.set_defaults(func=_cmd_extent)

    args = ap.parse_args(argv)
    setup_logging(args.log_level or "WARNING", force=True)
    try:
        return args.func(args)
    except CalibrationError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
