"""
Nonlinear programming backends for the MPC.

The formulation code produces an NLPProblem (CasADi symbolic expressions plus
bounds); a SolverBackend turns it into numbers. Two backends are provided:

- IpoptBackend: CasADi's nlpsol interface to IPOPT (interior point) with the
  exact Hessian from algorithmic differentiation.
- SLSQPBackend: scipy's SLSQP (sequential quadratic programming) fed with
  CasADi-generated gradient and constraint Jacobian callbacks.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import casadi as ca
import numpy as np
from scipy.optimize import Bounds, minimize

logger = logging.getLogger(__name__)


@dataclass
class NLPProblem:
    """min f(x; p) s.t. lbg <= g(x; p) <= ubg, lbx <= x <= ubx."""
    decision: ca.SX
    objective: ca.SX
    constraints: ca.SX
    parameters: ca.SX
    lbx: np.ndarray
    ubx: np.ndarray
    lbg: np.ndarray
    ubg: np.ndarray

    @property
    def n_decision(self) -> int:
        return int(self.decision.shape[0])

    @property
    def n_constraints(self) -> int:
        return int(self.constraints.shape[0])


@dataclass
class SolverOptions:
    max_iterations: int = 200
    tolerance: float = 1e-6
    max_solve_time_s: Optional[float] = 0.5


@dataclass
class NLPResult:
    """Outcome of a single solve."""
    x: np.ndarray
    success: bool
    status: str
    objective: float = float("nan")
    iterations: int = 0
    solve_time_s: float = 0.0


class SolverBackend(ABC):
    """Solves one parametric NLPProblem repeatedly with fresh inputs."""

    name = "abstract"

    def __init__(self, problem: NLPProblem, options: Optional[SolverOptions] = None):
        self.problem = problem
        self.options = options or SolverOptions()

    @abstractmethod
    def solve(self, x0: np.ndarray, params: np.ndarray) -> NLPResult:
        """
        Solve the problem from initial guess x0 with parameter values params.

        Backends report failures through NLPResult.success; they do not raise
        for numerical trouble inside the solver.
        """


class IpoptBackend(SolverBackend):
    """Interior-point solve through CasADi + IPOPT."""

    name = "ipopt"

    def __init__(self, problem: NLPProblem, options: Optional[SolverOptions] = None):
        super().__init__(problem, options)
        nlp = {
            "x": problem.decision,
            "f": problem.objective,
            "g": problem.constraints,
            "p": problem.parameters,
        }
        opts = {
            "ipopt.print_level": 0,
            "ipopt.sb": "yes",
            "ipopt.max_iter": int(self.options.max_iterations),
            "ipopt.tol": float(self.options.tolerance),
            "print_time": 0,
        }
        if self.options.max_solve_time_s is not None and self.options.max_solve_time_s > 0:
            opts["ipopt.max_cpu_time"] = float(self.options.max_solve_time_s)
        self._solver = ca.nlpsol("mpc_ipopt", "ipopt", nlp, opts)

    def solve(self, x0: np.ndarray, params: np.ndarray) -> NLPResult:
        start = time.perf_counter()
        try:
            sol = self._solver(
                x0=np.array(x0, dtype=float),
                p=np.array(params, dtype=float),
                lbx=self.problem.lbx.copy(),
                ubx=self.problem.ubx.copy(),
                lbg=self.problem.lbg.copy(),
                ubg=self.problem.ubg.copy(),
            )
        except RuntimeError as e:
            logger.warning("IPOPT raised during solve: %s", e)
            return NLPResult(
                x=np.full(self.problem.n_decision, np.nan),
                success=False,
                status=f"exception: {e}",
                solve_time_s=time.perf_counter() - start,
            )
        stats = self._solver.stats()
        return NLPResult(
            x=np.array(sol["x"], dtype=float).ravel(),
            success=bool(stats.get("success", False)),
            status=str(stats.get("return_status", "unknown")),
            objective=float(sol["f"]),
            iterations=int(stats.get("iter_count", 0)),
            solve_time_s=time.perf_counter() - start,
        )


class SLSQPBackend(SolverBackend):
    """Sequential quadratic programming through scipy.optimize.minimize."""

    name = "slsqp"

    def __init__(self, problem: NLPProblem, options: Optional[SolverOptions] = None):
        super().__init__(problem, options)
        x, p = problem.decision, problem.parameters
        self._f = ca.Function("f", [x, p], [problem.objective])
        self._grad_f = ca.Function("grad_f", [x, p], [ca.gradient(problem.objective, x)])
        self._g = ca.Function("g", [x, p], [problem.constraints])
        self._jac_g = ca.Function("jac_g", [x, p], [ca.jacobian(problem.constraints, x)])

        eq_mask = problem.lbg == problem.ubg
        self._eq_idx = np.flatnonzero(eq_mask)
        self._lower_idx = np.flatnonzero(~eq_mask & np.isfinite(problem.lbg))
        self._upper_idx = np.flatnonzero(~eq_mask & np.isfinite(problem.ubg))

    def _constraints(self, params: np.ndarray) -> list:
        lbg, ubg = self.problem.lbg, self.problem.ubg

        def g(z):
            return np.array(self._g(z, params), dtype=float).ravel()

        def jac(z):
            return np.array(self._jac_g(z, params), dtype=float)

        def lower(kind, idx):
            return {
                "type": kind,
                "fun": lambda z: g(z)[idx] - lbg[idx],
                "jac": lambda z: jac(z)[idx],
            }

        def upper(idx):
            return {
                "type": "ineq",
                "fun": lambda z: ubg[idx] - g(z)[idx],
                "jac": lambda z: -jac(z)[idx],
            }

        constraints = []
        if self._eq_idx.size:
            constraints.append(lower("eq", self._eq_idx))
        if self._lower_idx.size:
            constraints.append(lower("ineq", self._lower_idx))
        if self._upper_idx.size:
            constraints.append(upper(self._upper_idx))
        return constraints

    def solve(self, x0: np.ndarray, params: np.ndarray) -> NLPResult:
        params = np.array(params, dtype=float)
        start = time.perf_counter()
        try:
            res = minimize(
                lambda z: float(self._f(z, params)),
                np.array(x0, dtype=float),
                jac=lambda z: np.array(self._grad_f(z, params), dtype=float).ravel(),
                bounds=Bounds(self.problem.lbx.copy(), self.problem.ubx.copy()),
                constraints=self._constraints(params),
                method="SLSQP",
                options={
                    "maxiter": int(self.options.max_iterations),
                    "ftol": float(self.options.tolerance),
                },
            )
        except (ValueError, RuntimeError) as e:
            logger.warning("SLSQP raised during solve: %s", e)
            return NLPResult(
                x=np.full(self.problem.n_decision, np.nan),
                success=False,
                status=f"exception: {e}",
                solve_time_s=time.perf_counter() - start,
            )
        return NLPResult(
            x=np.asarray(res.x, dtype=float).ravel(),
            success=bool(res.success),
            status=str(res.message),
            objective=float(res.fun),
            iterations=int(getattr(res, "nit", 0)),
            solve_time_s=time.perf_counter() - start,
        )


SOLVER_BACKENDS = {
    IpoptBackend.name: IpoptBackend,
    SLSQPBackend.name: SLSQPBackend,
}


def build_solver_backend(name: str, problem: NLPProblem,
                         options: Optional[SolverOptions] = None) -> SolverBackend:
    """Instantiate a backend by name ("ipopt" or "slsqp")."""
    try:
        backend_cls = SOLVER_BACKENDS[name]
    except KeyError:
        raise ValueError(
            f"Unknown solver backend: {name} (expected one of {sorted(SOLVER_BACKENDS)})"
        ) from None
    return backend_cls(problem, options)
