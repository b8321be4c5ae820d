from __future__ import annotations

import logging
from enum import Enum
from typing import Sequence

import numpy as np

from open_dynamics.errors import TimeGridError
from open_dynamics.operators.backend import get_backend
from open_dynamics.operators.quantum_object import QuantumObject

logger = logging.getLogger()


def validate_times(times: Sequence[float], t0: float | None = None) -> np.ndarray:
    """
    Check the output-time grid before any integration starts: a non-empty,
    one dimensional sequence of finite, strictly increasing real numbers whose
    first entry is not earlier than the start time `t0`.
    """
    try:
        grid = np.asarray(times, dtype=np.float64)
    except (TypeError, ValueError) as err:
        raise TimeGridError(f"output times must be real numbers: {err}") from err

    if grid.ndim != 1:
        raise TimeGridError(f"output times must be one dimensional, got ndim={grid.ndim}")
    if grid.size == 0:
        raise TimeGridError("at least one output time is required")
    if not np.all(np.isfinite(grid)):
        raise TimeGridError("output times must be finite")

    steps = np.diff(grid)
    if np.any(steps <= 0):
        position = int(np.argmax(steps <= 0)) + 1
        raise TimeGridError(
            f"output times must be strictly increasing; entry {position} "
            f"({grid[position]}) does not exceed its predecessor ({grid[position - 1]})"
        )
    if t0 is not None and grid[0] < t0:
        raise TimeGridError(f"first output time {grid[0]} precedes the start time {t0}")
    return grid


def ket_expectation(operators: Sequence, psi: np.ndarray) -> np.ndarray:
    """<psi|O|psi> for each operator (data matrices) and a normalized flat ket"""
    values = np.empty(len(operators), dtype=np.complex128)
    for k, operator in enumerate(operators):
        backend = get_backend(operator)
        values[k] = backend.inner(psi, backend.matvec(operator, psi))
    return values


def expectation_rows(operators: Sequence[QuantumObject]) -> np.ndarray:
    """
    Rows r_O with tr(O rho) = r_O . vec(rho) for column-stacked vec(rho). The row
    equals vec(O^T), i.e. the row-major flattening of O.
    """
    if not operators:
        return np.zeros((0, 0), dtype=np.complex128)
    return np.stack([operator.full().reshape(-1) for operator in operators])


def vectorized_expectation(rows: np.ndarray, y: np.ndarray) -> np.ndarray:
    if rows.shape[0] == 0:
        return np.zeros(0, dtype=np.complex128)
    return rows @ y


def trace_indices(n: int) -> np.ndarray:
    """Positions of the diagonal of an n x n operator in its column-stacked vector"""
    return np.arange(n) * (n + 1)


def trace_vectorized(y: np.ndarray, n: int) -> complex:
    return complex(np.sum(y[trace_indices(n)]))


def unvectorize(y: np.ndarray, n: int) -> np.ndarray:
    return np.asarray(y).reshape((n, n), order="F")


def vectorize(matrix: np.ndarray) -> np.ndarray:
    return np.asarray(matrix).reshape(-1, order="F")


class Status(Enum):
    Continue = 0
    Stop = 1


class Trigger:
    """Helper class for control flow of the ensemble execution."""

    def __init__(self):
        self._status = Status.Continue

    def pull(self):
        self._status = Status.Stop

    def reset(self):
        self._status = Status.Continue

    @property
    def status(self) -> Status:
        return self._status
