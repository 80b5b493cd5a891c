from __future__ import annotations

import math
from typing import Sequence, Tuple

import numpy as np


def global_to_vehicle(
    psi: float,
    px: float,
    py: float,
    x_global: float,
    y_global: float,
) -> Tuple[float, float]:
    """
    Express a global point in the vehicle frame.

    The vehicle frame has its origin at (px, py), its x-axis along the heading
    psi and its y-axis to the left of the vehicle.
    """
    dx = x_global - px
    dy = y_global - py
    sin_psi = math.sin(psi)
    cos_psi = math.cos(psi)

    x_car = dx * cos_psi + dy * sin_psi
    y_car = -dx * sin_psi + dy * cos_psi
    return x_car, y_car


def transform_waypoints(
    psi: float,
    px: float,
    py: float,
    xs: Sequence[float],
    ys: Sequence[float],
) -> Tuple[np.ndarray, np.ndarray]:
    """Vectorized global_to_vehicle over a waypoint list."""
    dx = np.asarray(xs, dtype=float) - px
    dy = np.asarray(ys, dtype=float) - py
    sin_psi = math.sin(psi)
    cos_psi = math.cos(psi)

    x_car = dx * cos_psi + dy * sin_psi
    y_car = -dx * sin_psi + dy * cos_psi
    return x_car, y_car


def polyeval(coeffs: Sequence, x):
    """
    Evaluate a polynomial with coefficients ordered lowest degree first.

    Uses Horner's scheme, so ``x`` may be a float, a numpy array or a CasADi
    symbol.
    """
    result = 0.0
    for c in reversed(list(coeffs)):
        result = result * x + c
    return result


def polyderiv(coeffs: Sequence) -> list:
    """Coefficients (lowest degree first) of the derivative polynomial."""
    coeffs = list(coeffs)
    if len(coeffs) <= 1:
        return [0.0]
    return [i * coeffs[i] for i in range(1, len(coeffs))]
