"""
Calibration — pixel-to-GPS mapping for a static floor plan

- CalibrationSession: collects three (pixel, GPS) correspondences
- solve / solve_session: exact 3-point affine fit (Gauss-Jordan)
- pixel_to_geo / image_extent_to_geo_bounds: apply a solved transform
- CalibrationRecord / RecordStore / fetch_record: persistence boundary
- CalibrationFlow: tap-driven lifecycle used by the HTTP service

CLI:
    python -m calibration.cli --help
"""
from .mapper import image_extent_to_geo_bounds, image_placement, pixel_to_geo
from .record import CalibrationRecord, RecordStore, fetch_record
from .session import CalibrationSession
from .solver import solve, solve_session

__all__ = [
    "CalibrationSession",
    "CalibrationRecord",
    "RecordStore",
    "fetch_record",
    "image_extent_to_geo_bounds",
    "image_placement",
    "pixel_to_geo",
    "solve",
    "solve_session",
]
