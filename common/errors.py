"""
Calibration error taxonomy.

Structural errors (capacity, index, incomplete, degenerate, record) propagate
to the calling flow. `LocationUnavailable` is raised by location sources and
absorbed by the GPS sampler as a low-confidence placeholder fix.
"""
from __future__ import annotations


class CalibrationError(Exception):
    """Base class for all calibration engine errors."""


class CapacityExceeded(CalibrationError):
    """A fourth calibration point was added."""


class InvalidIndex(CalibrationError, IndexError):
    """GPS was attached to (or removed from) a point that does not exist."""


class IncompleteCalibration(CalibrationError):
    """Solve (or save) was requested before every point had GPS attached."""


class DegenerateCalibration(CalibrationError):
    """The pixel points are collinear; the affine system has no unique solution."""


class LocationUnavailable(CalibrationError):
    """The location source could not produce a reading."""


class InvalidRecord(CalibrationError, ValueError):
    """A persisted or fetched calibration record is malformed."""


class InvalidMode(CalibrationError):
    """The operation is not allowed in the flow's current mode."""
