"""
Vehicle kinematics model (kinematic bicycle model).
Used for latency compensation and as the prediction model of the MPC.
"""

from dataclasses import dataclass, replace

import numpy as np


@dataclass(frozen=True)
class VehicleState:
    """Vehicle state: pose, speed and path-tracking errors."""
    x: float = 0.0
    y: float = 0.0
    psi: float = 0.0   # heading (radians)
    v: float = 0.0     # speed (m/s)
    cte: float = 0.0   # cross-track error (m)
    epsi: float = 0.0  # heading error (radians)

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.psi, self.v, self.cte, self.epsi], dtype=float)

    @classmethod
    def from_array(cls, values) -> "VehicleState":
        x, y, psi, v, cte, epsi = (float(value) for value in values)
        return cls(x=x, y=y, psi=psi, v=v, cte=cte, epsi=epsi)


class KinematicBicycleModel:
    """
    Kinematic bicycle model with front-wheel steering.

    Positive steering increases the heading (turns left). The heading change
    is linear in the steering angle, matching the MPC prediction model.
    """

    def __init__(self, lf: float = 2.67):
        """
        Initialize bicycle model.

        Args:
            lf: Distance from the front axle to the center of gravity (meters)
        """
        if lf <= 0.0:
            raise ValueError(f"lf must be positive, got {lf}")
        self.lf = lf

    def yaw_rate(self, velocity: float, steering_angle: float) -> float:
        return velocity / self.lf * steering_angle

    def step(self, state: VehicleState, steering_angle: float, acceleration: float,
             dt: float) -> VehicleState:
        """
        Advance the state by dt.

        Args:
            state: Current state (cte and epsi are carried through unchanged)
            steering_angle: Steering angle in model convention (radians)
            acceleration: Acceleration / normalized throttle
            dt: Time step (seconds)

        Returns:
            New VehicleState
        """
        return replace(
            state,
            x=state.x + state.v * np.cos(state.psi) * dt,
            y=state.y + state.v * np.sin(state.psi) * dt,
            psi=state.psi + self.yaw_rate(state.v, steering_angle) * dt,
            v=state.v + acceleration * dt,
        )

    def compensate_latency(self, state: VehicleState, steering_angle: float,
                           acceleration: float, latency: float) -> VehicleState:
        """
        Predict the state at the moment the next command takes effect.

        The command computed this cycle is applied only after the solve,
        transmission and actuation delays, so the optimizer starts from the
        state projected forward by that latency under the last applied command.
        """
        if latency <= 0.0:
            return state
        return self.step(state, steering_angle, acceleration, latency)
