"""
Error types raised by the control pipeline.

Validation errors are recoverable with the safe-default command; solver
failures are recoverable by holding the previous command.
"""

from typing import Optional


class InputValidationError(ValueError):
    """Telemetry or waypoints cannot be used to build a control problem."""


class ReferenceFitError(InputValidationError):
    """The reference polynomial cannot be fitted to the given waypoints."""


class SolverFailure(RuntimeError):
    """The NLP solver did not return a usable, converged solution."""

    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message)
        self.status = status
