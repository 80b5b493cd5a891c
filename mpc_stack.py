"""
Main MPC stack integration script.
Connects all components: latency compensation, frame transform, reference
fitting, MPC solve and actuation post-processing.
"""

import time
from typing import Any, Mapping, Optional
import sys
from pathlib import Path
import logging
import yaml
from dataclasses import dataclass

# Add paths
sys.path.insert(0, str(Path(__file__).parent))

from control.actuation import ActuationPostProcessor, build_actuation_config
from control.errors import InputValidationError, SolverFailure
from control.mpc_controller import MPCController, MPCSolution, build_mpc_config
from control.solver_backends import SolverBackend
from control.vehicle_model import KinematicBicycleModel, VehicleState
from data.formats.data_format import CommandRecord, TelemetryRecord
from trajectory.reference_fitter import ReferenceTrajectory, fit_reference_trajectory
from trajectory.utils import transform_waypoints

# Configure logging
# Ensure tmp/logs directory exists
log_dir = Path(__file__).parent / 'tmp' / 'logs'
log_dir.mkdir(parents=True, exist_ok=True)
log_file = log_dir / 'mpc_stack.log'

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(str(log_file))
    ]
)
logger = logging.getLogger(__name__)

MPH_TO_MPS = 0.44704


@dataclass(frozen=True)
class StackConfig:
    """Per-cycle pipeline settings outside the optimizer itself."""
    latency_s: float = 0.1         # actuation + communication latency compensated for
    emit_delay_s: float = 0.1      # delay before sending a command (simulation artifact)
    speed_scale: float = MPH_TO_MPS  # telemetry speed units -> m/s
    slow_cycle_s: float = 0.1      # cycles slower than this are logged


def load_config(config_path: Optional[str] = None) -> dict:
    """Load configuration from YAML file or use defaults."""
    if config_path is None:
        config_path = Path(__file__).parent / "config" / "mpc_config.yaml"
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
        return config
    else:
        logger.warning(f"Config file not found at {config_path}, using defaults")
        return {}


def build_stack_config(config: dict) -> StackConfig:
    """Build a StackConfig from the `latency` and `bridge` config sections."""
    latency_cfg = config.get('latency', {})
    bridge_cfg = config.get('bridge', {})
    return StackConfig(
        latency_s=float(latency_cfg.get('compensation_s', 0.1)),
        emit_delay_s=float(bridge_cfg.get('emit_delay_s', latency_cfg.get('compensation_s', 0.1))),
        speed_scale=float(config.get('vehicle', {}).get('speed_scale', MPH_TO_MPS)),
        slow_cycle_s=float(bridge_cfg.get('slow_cycle_s', 0.1)),
    )


class MPCStack:
    """Runs the control pipeline once per telemetry message."""

    def __init__(self, config: Optional[dict] = None, config_path: Optional[str] = None,
                 backend: Optional[SolverBackend] = None):
        """
        Initialize MPC stack.

        Args:
            config: Configuration dict (loaded from config_path if None)
            config_path: Path to YAML config (default: config/mpc_config.yaml)
            backend: Optional solver backend overriding the configured one
        """
        if config is None:
            config = load_config(config_path)
        self.config = config

        vehicle_cfg = config.get('vehicle', {})
        mpc_cfg = config.get('mpc', {})
        self.stack_config = build_stack_config(config)
        self.mpc_config = build_mpc_config(mpc_cfg, vehicle_cfg)
        self.controller = MPCController(self.mpc_config, backend=backend)
        self.model = KinematicBicycleModel(lf=self.mpc_config.lf)
        self.post_processor = ActuationPostProcessor(
            build_actuation_config(config.get('actuation', {}), vehicle_cfg, mpc_cfg)
        )

        self.last_command: Optional[CommandRecord] = None
        self.last_state: Optional[VehicleState] = None
        self.last_reference: Optional[ReferenceTrajectory] = None
        self.last_solution: Optional[MPCSolution] = None
        self.cycle_count = 0

        logger.info(
            "MPC stack initialized: N=%d dt=%.3f backend=%s latency=%.3fs",
            self.mpc_config.horizon_steps,
            self.mpc_config.dt,
            self.controller.backend.name,
            self.stack_config.latency_s,
        )

    @property
    def emit_delay_s(self) -> float:
        return self.stack_config.emit_delay_s

    def reset(self) -> None:
        """Start a new session: drop everything carried between cycles."""
        self.last_command = None
        self.last_state = None
        self.last_reference = None
        self.last_solution = None
        self.controller.reset()

    def safe_default_command(self, status: str) -> CommandRecord:
        return CommandRecord(steering_angle=0.0, throttle=0.0, status=status)

    def _hold_command(self) -> CommandRecord:
        if self.last_command is None:
            return self.safe_default_command("solver_failure")
        return CommandRecord(
            steering_angle=self.last_command.steering_angle,
            throttle=self.last_command.throttle,
            status="solver_failure",
        )

    def compute_command(self, record: TelemetryRecord) -> CommandRecord:
        """
        Run the pipeline for a validated telemetry record.

        Raises:
            InputValidationError: waypoints cannot be fitted
            SolverFailure: the MPC solve failed
        """
        speed = record.speed * self.stack_config.speed_scale
        steering = self.post_processor.normalize_measured_steering(record.steering_angle)

        # Predict where the vehicle will be when this cycle's command applies;
        # the rest of the pipeline works in the frame of that predicted pose.
        projected = self.model.compensate_latency(
            VehicleState(x=record.x, y=record.y, psi=record.psi, v=speed),
            steering,
            record.throttle,
            self.stack_config.latency_s,
        )

        xs, ys = transform_waypoints(projected.psi, projected.x, projected.y, record.ptsx, record.ptsy)
        reference = fit_reference_trajectory(xs, ys, self.mpc_config.polynomial_degree)

        state = VehicleState(
            x=0.0,
            y=0.0,
            psi=0.0,
            v=projected.v,
            cte=reference.cross_track_error,
            epsi=reference.heading_error,
        )
        solution = self.controller.solve(state, reference.coeffs)

        self.last_state = state
        self.last_reference = reference
        self.last_solution = solution
        return self.post_processor.build_command(solution, reference)

    def process_telemetry(self, message: Mapping[str, Any]) -> CommandRecord:
        """
        Process one decoded telemetry payload into a command.

        Never raises for bad input or solver trouble: validation errors yield
        the safe default command, solver failures hold the previous command.
        """
        self.cycle_count += 1
        start_time = time.time()
        try:
            record = TelemetryRecord.from_message(message)
            command = self.compute_command(record)
        except InputValidationError as e:
            logger.warning("[VALIDATION] cycle=%d %s; sending safe default", self.cycle_count, e)
            command = self.safe_default_command("validation_error")
        except SolverFailure as e:
            logger.warning(
                "[SOLVER_FAILURE] cycle=%d status=%s %s; holding previous command",
                self.cycle_count, e.status, e,
            )
            command = self._hold_command()

        duration = time.time() - start_time
        if duration > self.stack_config.slow_cycle_s:
            logger.warning("[SLOW] cycle=%d duration=%.3fs", self.cycle_count, duration)

        if command.status == "ok":
            logger.debug(
                "cycle=%d steering=%.4f throttle=%.4f duration=%.3fs",
                self.cycle_count, command.steering_angle, command.throttle, duration,
            )
        self.last_command = command
        return command


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description='Run MPC bridge')
    parser.add_argument('--config', type=str, default=None,
                        help='Path to configuration YAML file (default: config/mpc_config.yaml)')
    parser.add_argument('--host', type=str, default=None,
                        help='Bridge server host (default from config)')
    parser.add_argument('--port', type=int, default=None,
                        help='Bridge server port (default from config)')
    parser.add_argument('--backend', type=str, default=None, choices=['ipopt', 'slsqp'],
                        help='NLP solver backend (default from config)')
    parser.add_argument('--no-emit-delay', action='store_true',
                        help='Send commands immediately instead of emulating actuation latency')

    args = parser.parse_args()

    config = load_config(args.config)
    if args.backend is not None:
        config.setdefault('mpc', {}).setdefault('solver', {})['backend'] = args.backend
    if args.no_emit_delay:
        config.setdefault('bridge', {})['emit_delay_s'] = 0.0

    bridge_cfg = config.get('bridge', {})
    host = args.host or bridge_cfg.get('host', '0.0.0.0')
    port = args.port or int(bridge_cfg.get('port', 4567))

    from bridge.server import run_server

    stack = MPCStack(config=config)
    run_server(stack, host=host, port=port)


if __name__ == "__main__":
    main()
