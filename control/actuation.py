"""
Actuation post-processing: steering convention and command assembly.

The MPC works in radians with the bicycle-model sign (positive = left). The
simulator reports and expects steering mirrored to that convention, normalized
by the maximum physical steering angle.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from control.mpc_controller import MPCSolution
from data.formats.data_format import CommandRecord
from trajectory.reference_fitter import ReferenceTrajectory

logger = logging.getLogger(__name__)

# Bound violations below this are solver round-off, not anomalies.
BOUND_TOLERANCE = 1e-6


@dataclass(frozen=True)
class ActuationConfig:
    """Command conversion and display sampling configuration."""
    max_steering_angle_deg: float = 25.0
    steering_sign: float = -1.0
    steering_command_limit: float = 1.0
    throttle_min: float = -1.0
    throttle_max: float = 1.0
    reference_sample_spacing: float = 2.0  # m
    reference_sample_count: int = 50

    def __post_init__(self):
        if self.max_steering_angle_deg <= 0.0:
            raise ValueError("max_steering_angle_deg must be positive")
        if self.steering_sign not in (-1.0, 1.0):
            raise ValueError(f"steering_sign must be +1 or -1, got {self.steering_sign}")

    @property
    def max_steering_angle(self) -> float:
        return math.radians(self.max_steering_angle_deg)


class ActuationPostProcessor:
    """Converts MPC output to simulator commands and visualization payloads."""

    def __init__(self, config: ActuationConfig = ActuationConfig()):
        self.config = config

    def normalize_measured_steering(self, raw_steering: float) -> float:
        """Measured steering angle (simulator sign, radians) -> model convention."""
        return self.config.steering_sign * float(raw_steering)

    def to_command_steering(self, steering_angle: float) -> float:
        """Model steering angle (radians) -> normalized simulator command."""
        return self.config.steering_sign * steering_angle / self.config.max_steering_angle

    def clamp_actuation(self, steering_angle: float, throttle: float) -> Tuple[float, float, bool]:
        """
        Clamp an actuation pair to its bounds.

        Returns:
            (steering_angle, throttle, anomalous) where anomalous is True if the
            pair was out of bounds by more than round-off.
        """
        max_angle = self.config.max_steering_angle
        clamped_steering = float(np.clip(steering_angle, -max_angle, max_angle))
        clamped_throttle = float(np.clip(throttle, self.config.throttle_min, self.config.throttle_max))

        anomalous = (
            abs(clamped_steering - steering_angle) > BOUND_TOLERANCE
            or abs(clamped_throttle - throttle) > BOUND_TOLERANCE
        )
        if anomalous:
            logger.warning(
                "[ACTUATION_OUT_OF_BOUNDS] steering=%.6f rad throttle=%.6f "
                "clamped to steering=%.6f throttle=%.6f",
                steering_angle, throttle, clamped_steering, clamped_throttle,
            )
        return clamped_steering, clamped_throttle, anomalous

    def build_command(self, solution: MPCSolution, reference: ReferenceTrajectory) -> CommandRecord:
        """Assemble the command record for one solved cycle."""
        steering, throttle, anomalous = self.clamp_actuation(solution.steering, solution.throttle)
        steering_command = float(np.clip(
            self.to_command_steering(steering),
            -self.config.steering_command_limit,
            self.config.steering_command_limit,
        ))
        next_x, next_y = reference.sample(
            self.config.reference_sample_spacing, self.config.reference_sample_count
        )
        return CommandRecord(
            steering_angle=steering_command,
            throttle=throttle,
            mpc_x=[float(v) for v in solution.predicted_x],
            mpc_y=[float(v) for v in solution.predicted_y],
            next_x=[float(v) for v in next_x],
            next_y=[float(v) for v in next_y],
            status="ok",
            anomaly=anomalous,
        )


def build_actuation_config(actuation_cfg: dict, vehicle_cfg: Optional[dict] = None,
                            mpc_cfg: Optional[dict] = None) -> ActuationConfig:
    """Build an ActuationConfig from the `actuation`, `vehicle` and `mpc` config sections."""
    vehicle_cfg = vehicle_cfg or {}
    mpc_cfg = mpc_cfg or {}
    return ActuationConfig(
        max_steering_angle_deg=float(vehicle_cfg.get("max_steering_angle_deg", 25.0)),
        steering_sign=float(actuation_cfg.get("steering_sign", -1.0)),
        steering_command_limit=float(actuation_cfg.get("steering_command_limit", 1.0)),
        throttle_min=float(mpc_cfg.get("throttle_min", -1.0)),
        throttle_max=float(mpc_cfg.get("throttle_max", 1.0)),
        reference_sample_spacing=float(actuation_cfg.get("reference_sample_spacing", 2.0)),
        reference_sample_count=int(actuation_cfg.get("reference_sample_count", 50)),
    )
