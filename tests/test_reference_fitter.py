"""
Tests for polynomial reference fitting.
"""

import math

import numpy as np
import pytest

from control.errors import InputValidationError, ReferenceFitError
from trajectory.reference_fitter import fit_polynomial, fit_reference_trajectory


def test_recovers_exact_cubic():
    xs = np.arange(11, dtype=float)
    ys = 1.0 + 2.0 * xs + 3.0 * xs ** 2 + 4.0 * xs ** 3

    coeffs = fit_polynomial(xs, ys, 3)

    np.testing.assert_allclose(coeffs, [1.0, 2.0, 3.0, 4.0], rtol=1e-8, atol=1e-8)


def test_least_squares_line_through_noisy_points():
    xs = np.array([0.0, 1.0, 2.0, 3.0])
    ys = np.array([0.1, 0.9, 2.1, 2.9])

    coeffs = fit_polynomial(xs, ys, 1)

    expected = np.polynomial.polynomial.polyfit(xs, ys, 1)
    np.testing.assert_allclose(coeffs, expected, rtol=1e-10)


def test_tracking_errors_from_coefficients():
    reference = fit_reference_trajectory(
        [0.0, 10.0, 20.0, 30.0, 40.0], [1.5, 6.5, 11.5, 16.5, 21.5], degree=3
    )

    assert reference.cross_track_error == pytest.approx(1.5, abs=1e-9)
    assert reference.heading_error == pytest.approx(-math.atan(0.5), abs=1e-9)
    assert reference.desired_heading(0.0) == pytest.approx(math.atan(0.5), abs=1e-9)


def test_too_few_points():
    with pytest.raises(ReferenceFitError, match="at least 4"):
        fit_polynomial([0.0, 1.0, 2.0], [0.0, 1.0, 2.0], 3)


def test_fit_errors_are_validation_errors():
    with pytest.raises(InputValidationError):
        fit_polynomial([0.0, 1.0], [0.0, 1.0], 3)


def test_repeated_abscissae_are_rank_deficient():
    with pytest.raises(ReferenceFitError, match="rank deficient"):
        fit_polynomial([5.0, 5.0, 5.0, 5.0, 5.0], [0.0, 1.0, 2.0, 3.0, 4.0], 3)


def test_non_finite_waypoints():
    with pytest.raises(ReferenceFitError):
        fit_polynomial([0.0, 1.0, float("nan"), 3.0], [0.0, 1.0, 2.0, 3.0], 3)


def test_overflowing_waypoints_are_rejected():
    xs = [0.0, 1e120, 2e120, 3e120, 4e120]
    with pytest.raises(ReferenceFitError, match="overflow"):
        fit_polynomial(xs, [0.0] * 5, 3)


def test_mismatched_lengths():
    with pytest.raises(ReferenceFitError, match="differ in length"):
        fit_polynomial([0.0, 1.0, 2.0, 3.0], [0.0, 1.0, 2.0], 1)


def test_sample_spacing_and_count():
    reference = fit_reference_trajectory([0.0, 1.0, 2.0, 3.0], [0.0, 1.0, 4.0, 9.0], degree=2)

    xs, ys = reference.sample(2.0, 50)

    assert len(xs) == 50
    assert len(ys) == 50
    assert xs[0] == 0.0
    assert xs[-1] == pytest.approx(98.0)
    np.testing.assert_allclose(ys, xs ** 2, rtol=1e-8, atol=1e-8)
