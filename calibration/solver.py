from __future__ import annotations

from typing import Sequence

import numpy as np

from calibration.session import REQUIRED_POINTS, CalibrationSession
from common.errors import DegenerateCalibration, IncompleteCalibration
from common.logging_setup import get_logger
from common.types import AffineTransform, CorrespondencePoint


log = get_logger("calibration.solver")

# Pivots at or below this fraction of the largest |A| entry count as zero.
PIVOT_RTOL = 1e-12


def solve3x3(A: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Solve A @ v = b for a 3x3 system by Gauss-Jordan reduction.

    Each pivot row is normalized to 1 and then eliminated from every other
    row, leaving reduced row-echelon form; `b` ends up holding v. The row
    with the largest entry in the pivot column is swapped in first, so a
    zero on the diagonal alone is not fatal. A pivot that is still ~0 means
    A is singular and raises DegenerateCalibration.
    """
    m = np.array(A, dtype=np.float64)
    v = np.array(b, dtype=np.float64)
    if m.shape != (3, 3) or v.shape != (3,):
        raise ValueError("Expected 3x3 matrix and length-3 vector")
    if not (np.all(np.isfinite(m)) and np.all(np.isfinite(v))):
        raise DegenerateCalibration("non-finite calibration coordinates")

    tol = PIVOT_RTOL * max(1.0, float(np.max(np.abs(m))))
    for i in range(3):
        r = i + int(np.argmax(np.abs(m[i:, i])))
        if r != i:
            m[[i, r]] = m[[r, i]]
            v[[i, r]] = v[[r, i]]

        pivot = m[i, i]
        if abs(pivot) <= tol:
            raise DegenerateCalibration("calibration points are collinear")
        m[i, i:] /= pivot
        v[i] /= pivot

        for k in range(3):
            if k == i:
                continue
            factor = m[k, i]
            m[k, i:] -= factor * m[i, i:]
            v[k] -= factor * v[i]

    if not np.all(np.isfinite(v)):
        raise DegenerateCalibration("solve produced non-finite coefficients")
    return v


def solve(points: Sequence[CorrespondencePoint]) -> AffineTransform:
    """Exact affine fit through three (pixel, GPS) correspondences."""
    if len(points) != REQUIRED_POINTS:
        raise IncompleteCalibration(f"need exactly {REQUIRED_POINTS} points, got {len(points)}")
    if any(p.geo is None for p in points):
        raise IncompleteCalibration("every calibration point needs GPS before solving")

    A = np.array([[p.pixel.x, p.pixel.y, 1.0] for p in points], dtype=np.float64)
    L_lat = np.array([p.geo.lat for p in points], dtype=np.float64)  # type: ignore[union-attr]
    L_lon = np.array([p.geo.lon for p in points], dtype=np.float64)  # type: ignore[union-attr]

    a, b, c = solve3x3(A, L_lat)
    d, e, f = solve3x3(A, L_lon)
    T = AffineTransform(float(a), float(b), float(c), float(d), float(e), float(f))
    log.info("Affine transform solved", extra={"extra": T.to_dict()})
    return T


def solve_session(session: CalibrationSession) -> AffineTransform:
    if not session.is_ready_to_solve():
        raise IncompleteCalibration(
            f"session not ready: {len(session)} point(s), pending GPS at {session.pending_index}"
        )
    return solve(session.points)
