"""
Tests for the global -> vehicle frame transform.
"""

import math

import numpy as np
import pytest

from trajectory.utils import global_to_vehicle, polyderiv, polyeval, transform_waypoints


class TestGlobalToVehicle:
    """Vehicle frame: origin at the vehicle, x forward, y to the left."""

    def test_vehicle_position_maps_to_origin(self):
        x_car, y_car = global_to_vehicle(1.3, 25.0, -4.0, 25.0, -4.0)
        assert x_car == pytest.approx(0.0, abs=1e-12)
        assert y_car == pytest.approx(0.0, abs=1e-12)

    def test_point_ahead_is_on_positive_x(self):
        # Heading north: a point further north is straight ahead
        x_car, y_car = global_to_vehicle(math.pi / 2, 0.0, 0.0, 0.0, 10.0)
        assert x_car == pytest.approx(10.0)
        assert y_car == pytest.approx(0.0, abs=1e-9)

    def test_point_left_is_on_positive_y(self):
        # Heading east: north is to the left
        x_car, y_car = global_to_vehicle(0.0, 5.0, 5.0, 5.0, 8.0)
        assert x_car == pytest.approx(0.0, abs=1e-12)
        assert y_car == pytest.approx(3.0)

    def test_transform_preserves_distances(self):
        rng = np.random.default_rng(7)
        xs = rng.uniform(-50.0, 50.0, 8)
        ys = rng.uniform(-50.0, 50.0, 8)
        x_car, y_car = transform_waypoints(0.83, 12.0, -7.5, xs, ys)

        global_dist = np.hypot(xs[1:] - xs[0], ys[1:] - ys[0])
        vehicle_dist = np.hypot(x_car[1:] - x_car[0], y_car[1:] - y_car[0])
        np.testing.assert_allclose(vehicle_dist, global_dist, rtol=1e-12)

    def test_vectorized_matches_scalar(self):
        xs = [3.0, -2.0, 40.0]
        ys = [1.0, 9.0, -15.0]
        x_car, y_car = transform_waypoints(-2.1, 1.5, 2.5, xs, ys)
        for i, (gx, gy) in enumerate(zip(xs, ys)):
            expected = global_to_vehicle(-2.1, 1.5, 2.5, gx, gy)
            assert x_car[i] == pytest.approx(expected[0])
            assert y_car[i] == pytest.approx(expected[1])


class TestPolynomialHelpers:

    def test_polyeval_lowest_degree_first(self):
        assert polyeval([1.0, 2.0, 3.0], 2.0) == pytest.approx(1.0 + 4.0 + 12.0)

    def test_polyeval_on_arrays(self):
        values = polyeval([0.0, 1.0], np.array([1.0, 2.0, 3.0]))
        np.testing.assert_allclose(values, [1.0, 2.0, 3.0])

    def test_polyderiv(self):
        assert polyderiv([1.0, 2.0, 3.0, 4.0]) == [2.0, 6.0, 12.0]
        assert polyderiv([5.0]) == [0.0]
