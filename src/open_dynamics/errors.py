from __future__ import annotations

from typing import Any

__all__ = [
    "OpenDynamicsError",
    "DimensionMismatch",
    "TimeGridError",
    "IntegrationFailure",
    "EnsembleWorkerFailure",
    "TrajectoryTimeout",
    "TrajectoryCancelled",
    "NonHermitianWarning",
    "InvalidJumpOperator",
]


class OpenDynamicsError(Exception):
    """Base class of all errors raised by open_dynamics."""


class DimensionMismatch(OpenDynamicsError, ValueError):
    """Shape, kind or subsystem dimensions of quantum objects are inconsistent."""


class TimeGridError(OpenDynamicsError, ValueError):
    """Output times are not finite and strictly increasing."""


class IntegrationFailure(OpenDynamicsError, RuntimeError):
    """
    The integrator could not meet the requested tolerance or diverged.
    Carries the last time and state that were reached.
    """

    def __init__(self, message: str, time: float | None = None, state: Any = None):
        super().__init__(message)
        self.time = time
        self.state = state

    def __str__(self):
        msg = super().__str__()
        if self.time is not None:
            msg += f" (last reached time: {self.time})"
        return msg


class EnsembleWorkerFailure(OpenDynamicsError, RuntimeError):
    """A single trajectory failed; the ensemble continues without it."""

    def __init__(self, message: str, index: int | None = None, seed: int | None = None):
        super().__init__(message)
        self.index = index
        self.seed = seed


class TrajectoryTimeout(EnsembleWorkerFailure):
    """A trajectory exceeded its wall-clock budget."""


class TrajectoryCancelled(OpenDynamicsError):
    """A trajectory was stopped because the ensemble terminated early."""


class NonHermitianWarning(UserWarning):
    """Hamiltonian is not Hermitian within tolerance."""


class InvalidJumpOperator(RuntimeWarning):
    """All collapse channels have vanishing weight at a jump event."""
