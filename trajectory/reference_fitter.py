"""
Reference trajectory fitting in the vehicle frame.

The waypoints ahead of the vehicle are approximated by a low-order polynomial
y = f(x). Because the fit is done in the vehicle frame, the cross-track error
and heading error at the vehicle position follow directly from the first two
coefficients.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np
from scipy.linalg import solve_triangular

from control.errors import ReferenceFitError
from trajectory.utils import polyderiv, polyeval

# Relative threshold on |R_ii| below which the design matrix is rank deficient.
RANK_TOLERANCE = 1e-10


def fit_polynomial(xs: Sequence[float], ys: Sequence[float], degree: int) -> np.ndarray:
    """
    Least-squares polynomial fit, coefficients lowest degree first.

    Solves the Vandermonde system through a Householder QR factorization
    instead of the normal equations.

    Raises:
        ReferenceFitError: too few points, mismatched inputs, or a rank
            deficient design matrix.
    """
    if degree < 1:
        raise ReferenceFitError(f"Polynomial degree must be >= 1, got {degree}")

    x = np.asarray(xs, dtype=float).ravel()
    y = np.asarray(ys, dtype=float).ravel()
    if x.shape != y.shape:
        raise ReferenceFitError(
            f"Waypoint lists differ in length: {x.size} x-values, {y.size} y-values"
        )
    if x.size < degree + 1:
        raise ReferenceFitError(
            f"Need at least {degree + 1} waypoints for a degree-{degree} fit, got {x.size}"
        )
    if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
        raise ReferenceFitError("Waypoints contain non-finite values")

    design = np.vander(x, degree + 1, increasing=True)
    if not np.all(np.isfinite(design)):
        raise ReferenceFitError(
            f"Waypoint x-values overflow the degree-{degree} design matrix "
            f"(max |x|={np.abs(x).max():.3e})"
        )
    q, r = np.linalg.qr(design, mode="reduced")
    if not np.all(np.isfinite(r)):
        raise ReferenceFitError("QR factorization of the design matrix is not finite")

    diag = np.abs(np.diag(r))
    if not np.all(np.isfinite(diag)) or diag.max() == 0.0 or diag.min() <= RANK_TOLERANCE * diag.max():
        raise ReferenceFitError(
            f"Design matrix is rank deficient (min |R_ii|={diag.min():.3e}, "
            f"max |R_ii|={diag.max():.3e})"
        )

    rhs = q.T @ y
    if not np.all(np.isfinite(rhs)):
        raise ReferenceFitError("Waypoint y-values overflow the least-squares system")
    coeffs = solve_triangular(r, rhs, lower=False)
    if not np.all(np.isfinite(coeffs)):
        raise ReferenceFitError("Fitted coefficients are not finite")
    return coeffs


@dataclass
class ReferenceTrajectory:
    """Fitted reference curve y = f(x) in the vehicle frame."""

    coeffs: np.ndarray

    @property
    def degree(self) -> int:
        return len(self.coeffs) - 1

    @property
    def cross_track_error(self) -> float:
        """f(0): lateral offset of the path at the vehicle position."""
        return float(self.coeffs[0])

    @property
    def heading_error(self) -> float:
        """-atan(f'(0)): heading correction towards the path tangent."""
        return float(-math.atan(self.coeffs[1]))

    def evaluate(self, x):
        return polyeval(self.coeffs, x)

    def slope(self, x):
        return polyeval(polyderiv(self.coeffs), x)

    def desired_heading(self, x):
        return np.arctan(self.slope(x))

    def sample(self, spacing: float, count: int) -> Tuple[np.ndarray, np.ndarray]:
        """Evaluate the curve at forward offsets 0, spacing, 2*spacing, ..."""
        xs = np.arange(count, dtype=float) * spacing
        return xs, np.asarray(self.evaluate(xs), dtype=float)


def fit_reference_trajectory(
    xs: Sequence[float],
    ys: Sequence[float],
    degree: int = 3,
) -> ReferenceTrajectory:
    """Fit the vehicle-frame waypoints and wrap the result."""
    return ReferenceTrajectory(coeffs=fit_polynomial(xs, ys, degree))
