"""
MPC (Model Predictive Control) controller.

Each call to solve() optimizes states and actuations over a fixed horizon
for the kinematic bicycle model tracking a polynomial reference, and returns
the first actuation together with the predicted trajectory of the same solve.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

import casadi as ca
import numpy as np

from control.errors import InputValidationError, SolverFailure
from control.solver_backends import (
    SOLVER_BACKENDS,
    NLPProblem,
    SolverBackend,
    SolverOptions,
    build_solver_backend,
)
from control.vehicle_model import VehicleState
from trajectory.utils import polyderiv, polyeval

logger = logging.getLogger(__name__)

N_STATES = 6    # x, y, psi, v, cte, epsi
N_ACTUATORS = 2  # delta, a


@dataclass(frozen=True)
class MPCConfig:
    """Horizon, model, bound and cost configuration for the MPC."""

    # Horizon
    horizon_steps: int = 10
    dt: float = 0.1

    # Model
    lf: float = 2.67
    reference_speed: float = 22.0  # m/s

    # Actuator bounds
    max_steering_angle: float = math.radians(25.0)
    throttle_min: float = -1.0
    throttle_max: float = 1.0

    # Cost weights
    cte_weight: float = 2000.0
    epsi_weight: float = 2000.0
    speed_weight: float = 1.0
    steering_weight: float = 5.0
    throttle_weight: float = 5.0
    steering_rate_weight: float = 200.0
    throttle_rate_weight: float = 10.0

    # Reference polynomial
    polynomial_degree: int = 3

    # Solver
    solver_backend: str = "ipopt"
    max_iterations: int = 200
    tolerance: float = 1e-6
    max_solve_time_s: Optional[float] = 0.5
    warm_start: bool = False

    def __post_init__(self):
        if self.horizon_steps < 2:
            raise ValueError(f"horizon_steps must be >= 2, got {self.horizon_steps}")
        if self.dt <= 0.0:
            raise ValueError(f"dt must be positive, got {self.dt}")
        if self.lf <= 0.0:
            raise ValueError(f"lf must be positive, got {self.lf}")
        if self.polynomial_degree < 1:
            raise ValueError(f"polynomial_degree must be >= 1, got {self.polynomial_degree}")
        if self.max_steering_angle <= 0.0:
            raise ValueError(f"max_steering_angle must be positive, got {self.max_steering_angle}")
        if self.throttle_min >= self.throttle_max:
            raise ValueError(
                f"throttle_min must be < throttle_max, got {self.throttle_min} >= {self.throttle_max}"
            )
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        weights = (
            self.cte_weight, self.epsi_weight, self.speed_weight,
            self.steering_weight, self.throttle_weight,
            self.steering_rate_weight, self.throttle_rate_weight,
        )
        if any(w < 0.0 for w in weights):
            raise ValueError("Cost weights must be non-negative")
        if self.solver_backend not in SOLVER_BACKENDS:
            raise ValueError(f"Unknown solver backend: {self.solver_backend}")

    @property
    def n_decision(self) -> int:
        return N_STATES * self.horizon_steps + N_ACTUATORS * (self.horizon_steps - 1)

    def solver_options(self) -> SolverOptions:
        return SolverOptions(
            max_iterations=self.max_iterations,
            tolerance=self.tolerance,
            max_solve_time_s=self.max_solve_time_s,
        )


@dataclass
class MPCSolution:
    """Result of one MPC solve."""
    steering: float   # first steering angle, model convention (radians)
    throttle: float   # first throttle / acceleration
    states: np.ndarray       # (6, N)
    actuations: np.ndarray   # (2, N - 1)
    objective: float
    iterations: int
    status: str
    solve_time_s: float

    @property
    def predicted_x(self) -> np.ndarray:
        return self.states[0]

    @property
    def predicted_y(self) -> np.ndarray:
        return self.states[1]


def _transition(x, y, psi, v, cte, epsi, delta, a, coeffs, dt, lf,
                sin=np.sin, cos=np.cos, atan=np.arctan):
    """One step of the bicycle model with tracking-error propagation."""
    f_x = polyeval(coeffs, x)
    psi_des = atan(polyeval(polyderiv(coeffs), x))
    return (
        x + v * cos(psi) * dt,
        y + v * sin(psi) * dt,
        psi + v / lf * delta * dt,
        v + a * dt,
        (f_x - y) + v * sin(epsi) * dt,
        (psi - psi_des) + v / lf * delta * dt,
    )


class MPCController:
    """
    Receding-horizon controller over the kinematic bicycle model.

    The symbolic NLP is parametric in the initial state and the reference
    polynomial, so it is built once; every solve() call passes freshly
    allocated parameter, bound and initial-guess vectors to the backend.
    """

    def __init__(self, config: Optional[MPCConfig] = None,
                 backend: Optional[SolverBackend] = None):
        """
        Initialize MPC controller.

        Args:
            config: MPC configuration (defaults to MPCConfig())
            backend: Solver backend; built from config.solver_backend if None
        """
        self.config = config or MPCConfig()
        self.problem = self._build_problem()
        self.backend = backend or build_solver_backend(
            self.config.solver_backend, self.problem, self.config.solver_options()
        )
        self._last_decision: Optional[np.ndarray] = None

    def reset(self) -> None:
        """Forget the previous solution used for warm starting."""
        self._last_decision = None

    def _build_problem(self) -> NLPProblem:
        cfg = self.config
        n = cfg.horizon_steps
        n_coeffs = cfg.polynomial_degree + 1

        X = ca.SX.sym("X", N_STATES, n)
        U = ca.SX.sym("U", N_ACTUATORS, n - 1)
        P = ca.SX.sym("P", N_STATES + n_coeffs)
        coeffs = [P[N_STATES + i] for i in range(n_coeffs)]

        cost = 0
        for k in range(n):
            cost += cfg.cte_weight * X[4, k] ** 2
            cost += cfg.epsi_weight * X[5, k] ** 2
            cost += cfg.speed_weight * (X[3, k] - cfg.reference_speed) ** 2
        for k in range(n - 1):
            cost += cfg.steering_weight * U[0, k] ** 2
            cost += cfg.throttle_weight * U[1, k] ** 2
        for k in range(n - 2):
            cost += cfg.steering_rate_weight * (U[0, k + 1] - U[0, k]) ** 2
            cost += cfg.throttle_rate_weight * (U[1, k + 1] - U[1, k]) ** 2

        g = [X[:, 0] - P[:N_STATES]]
        for k in range(n - 1):
            nxt = _transition(
                *(X[i, k] for i in range(N_STATES)), U[0, k], U[1, k],
                coeffs, cfg.dt, cfg.lf, sin=ca.sin, cos=ca.cos, atan=ca.atan,
            )
            g.append(X[:, k + 1] - ca.vertcat(*nxt))
        g = ca.vertcat(*g)

        decision = ca.vertcat(ca.reshape(X, -1, 1), ca.reshape(U, -1, 1))

        n_state_vars = N_STATES * n
        lbx = np.full(cfg.n_decision, -np.inf)
        ubx = np.full(cfg.n_decision, np.inf)
        lbx[n_state_vars::N_ACTUATORS] = -cfg.max_steering_angle
        ubx[n_state_vars::N_ACTUATORS] = cfg.max_steering_angle
        lbx[n_state_vars + 1::N_ACTUATORS] = cfg.throttle_min
        ubx[n_state_vars + 1::N_ACTUATORS] = cfg.throttle_max

        n_g = int(g.shape[0])
        return NLPProblem(
            decision=decision,
            objective=cost,
            constraints=g,
            parameters=P,
            lbx=lbx,
            ubx=ubx,
            lbg=np.zeros(n_g),
            ubg=np.zeros(n_g),
        )

    def _split(self, decision: np.ndarray):
        n = self.config.horizon_steps
        n_state_vars = N_STATES * n
        states = decision[:n_state_vars].reshape((N_STATES, n), order="F")
        actuations = decision[n_state_vars:].reshape((N_ACTUATORS, n - 1), order="F")
        return states, actuations

    def _rollout_guess(self, state: np.ndarray, coeffs: np.ndarray,
                       actuations: Optional[np.ndarray] = None) -> np.ndarray:
        """Rollout from the current state under the given actuations (zero if None)."""
        cfg = self.config
        if actuations is None:
            actuations = np.zeros((N_ACTUATORS, cfg.horizon_steps - 1))
        states = np.zeros((N_STATES, cfg.horizon_steps))
        states[:, 0] = state
        for k in range(cfg.horizon_steps - 1):
            states[:, k + 1] = _transition(
                *states[:, k], actuations[0, k], actuations[1, k], coeffs, cfg.dt, cfg.lf
            )
        return np.concatenate((states.ravel(order="F"), actuations.ravel(order="F")))

    def _warm_start_guess(self, state: np.ndarray, coeffs: np.ndarray) -> np.ndarray:
        """
        Previous actuations shifted by one step, rolled out from the new state.

        The previous states are in the previous cycle's vehicle frame, so only
        the actuations are reused.
        """
        _, actuations = self._split(self._last_decision)
        actuations = np.concatenate((actuations[:, 1:], actuations[:, -1:]), axis=1)
        return self._rollout_guess(state, coeffs, actuations)

    def initial_guess(self, state: np.ndarray, coeffs: np.ndarray) -> np.ndarray:
        if self.config.warm_start and self._last_decision is not None:
            guess = self._warm_start_guess(state, coeffs)
        else:
            guess = self._rollout_guess(state, coeffs)
        if not np.all(np.isfinite(guess)):
            guess = np.zeros(self.config.n_decision)
            guess[:N_STATES] = state
        return guess

    def solve(self, state, coeffs: Sequence[float]) -> MPCSolution:
        """
        Solve the MPC problem.

        Args:
            state: VehicleState or array (x, y, psi, v, cte, epsi) in the
                vehicle frame
            coeffs: Reference polynomial coefficients, lowest degree first

        Returns:
            MPCSolution with the first actuation and the predicted trajectory

        Raises:
            InputValidationError: state or coefficients have the wrong shape
            SolverFailure: the solver did not converge to a finite solution
        """
        if isinstance(state, VehicleState):
            state = state.as_array()
        state = np.array(state, dtype=float).ravel()
        coeffs = np.array(coeffs, dtype=float).ravel()

        if state.size != N_STATES:
            raise InputValidationError(f"Expected {N_STATES} state values, got {state.size}")
        if coeffs.size != self.config.polynomial_degree + 1:
            raise InputValidationError(
                f"Expected {self.config.polynomial_degree + 1} coefficients, got {coeffs.size}"
            )
        if not (np.all(np.isfinite(state)) and np.all(np.isfinite(coeffs))):
            raise InputValidationError("State or coefficients contain non-finite values")

        params = np.concatenate((state, coeffs))
        result = self.backend.solve(self.initial_guess(state, coeffs), params)

        if not result.success:
            raise SolverFailure(
                f"{self.backend.name} did not converge: {result.status}", status=result.status
            )
        if not np.all(np.isfinite(result.x)):
            raise SolverFailure(
                f"{self.backend.name} returned non-finite values", status=result.status
            )

        if self.config.warm_start:
            self._last_decision = result.x.copy()

        states, actuations = self._split(result.x)
        logger.debug(
            "MPC solve status=%s iter=%d cost=%.4f time=%.3fs delta=%.4f a=%.4f",
            result.status, result.iterations, result.objective, result.solve_time_s,
            actuations[0, 0], actuations[1, 0],
        )
        return MPCSolution(
            steering=float(actuations[0, 0]),
            throttle=float(actuations[1, 0]),
            states=states,
            actuations=actuations,
            objective=result.objective,
            iterations=result.iterations,
            status=result.status,
            solve_time_s=result.solve_time_s,
        )


def build_mpc_config(mpc_cfg: dict, vehicle_cfg: Optional[dict] = None) -> MPCConfig:
    """Build an MPCConfig from the `mpc` and `vehicle` config sections."""
    vehicle_cfg = vehicle_cfg or {}
    weights = mpc_cfg.get("weights", {})
    solver = mpc_cfg.get("solver", {})
    max_solve_time = solver.get("max_solve_time_s", 0.5)
    return MPCConfig(
        horizon_steps=int(mpc_cfg.get("horizon_steps", 10)),
        dt=float(mpc_cfg.get("dt", 0.1)),
        lf=float(vehicle_cfg.get("lf", 2.67)),
        reference_speed=float(mpc_cfg.get("reference_speed", 22.0)),
        max_steering_angle=math.radians(float(vehicle_cfg.get("max_steering_angle_deg", 25.0))),
        throttle_min=float(mpc_cfg.get("throttle_min", -1.0)),
        throttle_max=float(mpc_cfg.get("throttle_max", 1.0)),
        cte_weight=float(weights.get("cte", 2000.0)),
        epsi_weight=float(weights.get("epsi", 2000.0)),
        speed_weight=float(weights.get("speed", 1.0)),
        steering_weight=float(weights.get("steering", 5.0)),
        throttle_weight=float(weights.get("throttle", 5.0)),
        steering_rate_weight=float(weights.get("steering_rate", 200.0)),
        throttle_rate_weight=float(weights.get("throttle_rate", 10.0)),
        polynomial_degree=int(mpc_cfg.get("polynomial_degree", 3)),
        solver_backend=str(solver.get("backend", "ipopt")),
        max_iterations=int(solver.get("max_iterations", 200)),
        tolerance=float(solver.get("tolerance", 1e-6)),
        max_solve_time_s=float(max_solve_time) if max_solve_time is not None else None,
        warm_start=bool(solver.get("warm_start", False)),
    )


def build_mpc_controller(mpc_cfg: dict, vehicle_cfg: Optional[dict] = None) -> MPCController:
    """Build an MPCController from the config dictionaries."""
    return MPCController(build_mpc_config(mpc_cfg, vehicle_cfg))
