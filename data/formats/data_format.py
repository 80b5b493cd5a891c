"""
Record formats exchanged between the simulator bridge and the MPC stack.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from control.errors import InputValidationError


TELEMETRY_SCALAR_FIELDS = ("x", "y", "psi", "speed", "steering_angle", "throttle")
TELEMETRY_LIST_FIELDS = ("ptsx", "ptsy")


def _as_float(message: Mapping[str, Any], key: str) -> float:
    if key not in message or message[key] is None:
        raise InputValidationError(f"Telemetry is missing required field '{key}'")
    value = message[key]
    if isinstance(value, bool):
        raise InputValidationError(f"Telemetry field '{key}' must be a number, got bool")
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise InputValidationError(
            f"Telemetry field '{key}' must be a number, got {type(value).__name__}"
        ) from None
    if not math.isfinite(result):
        raise InputValidationError(f"Telemetry field '{key}' is not finite: {result}")
    return result


def _as_float_list(message: Mapping[str, Any], key: str) -> List[float]:
    if key not in message or message[key] is None:
        raise InputValidationError(f"Telemetry is missing required field '{key}'")
    values = message[key]
    if isinstance(values, (str, bytes)) or not hasattr(values, "__iter__"):
        raise InputValidationError(f"Telemetry field '{key}' must be a list of numbers")
    return [_as_float({key: v}, key) for v in values]


@dataclass
class TelemetryRecord:
    """One telemetry update from the simulator (global frame)."""
    ptsx: List[float]       # waypoint x-coordinates
    ptsy: List[float]       # waypoint y-coordinates
    x: float
    y: float
    psi: float              # heading (radians)
    speed: float            # simulator units (mph)
    steering_angle: float   # radians, simulator sign
    throttle: float         # normalized, used as acceleration

    @classmethod
    def from_message(cls, message: Mapping[str, Any]) -> "TelemetryRecord":
        """
        Validate and convert a decoded telemetry payload.

        Raises:
            InputValidationError: a field is missing, not numeric, not finite,
                or the waypoint lists differ in length.
        """
        if not isinstance(message, Mapping):
            raise InputValidationError(
                f"Telemetry payload must be an object, got {type(message).__name__}"
            )
        ptsx = _as_float_list(message, "ptsx")
        ptsy = _as_float_list(message, "ptsy")
        if len(ptsx) != len(ptsy):
            raise InputValidationError(
                f"Waypoint lists differ in length: {len(ptsx)} x-values, {len(ptsy)} y-values"
            )
        scalars = {key: _as_float(message, key) for key in TELEMETRY_SCALAR_FIELDS}
        return cls(ptsx=ptsx, ptsy=ptsy, **scalars)


@dataclass
class CommandRecord:
    """Command and visualization payload sent back to the simulator."""
    steering_angle: float  # normalized [-1, 1], simulator sign
    throttle: float        # normalized [-1, 1]
    mpc_x: List[float] = field(default_factory=list)   # predicted trajectory (vehicle frame)
    mpc_y: List[float] = field(default_factory=list)
    next_x: List[float] = field(default_factory=list)  # reference curve samples (vehicle frame)
    next_y: List[float] = field(default_factory=list)
    # Not sent to the simulator
    status: str = "ok"  # "ok", "validation_error", "solver_failure"
    anomaly: bool = False

    def to_message(self) -> Dict[str, Any]:
        return {
            "steering_angle": float(self.steering_angle),
            "throttle": float(self.throttle),
            "mpc_x": list(self.mpc_x),
            "mpc_y": list(self.mpc_y),
            "next_x": list(self.next_x),
            "next_y": list(self.next_y),
        }
