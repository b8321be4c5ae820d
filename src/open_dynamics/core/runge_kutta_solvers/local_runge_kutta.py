from __future__ import annotations

import logging

import numpy as np

from open_dynamics.config import SolverConfig
from open_dynamics.core.runge_kutta_solvers.runge_kutta_solver import (
    RungeKuttaSolver,
    Solver,
)
from open_dynamics.core.runge_kutta_solvers.stiff_solver import StiffSolver

logger = logging.getLogger()


class LocalRungeKuttaSolver(RungeKuttaSolver):
    """Schroedinger equation d|psi>/dt = -i H |psi> for a (possibly non-Hermitian) H"""

    def rhs(self, y: np.ndarray) -> np.ndarray:
        return -1j * self._backend.matvec(self._generator, y)

    @property
    def hamiltonian(self):
        return self._generator


class LocalLindbladRungeKuttaSolver(RungeKuttaSolver):
    """Vectorized master equation d vec(rho)/dt = L vec(rho)"""

    def rhs(self, y: np.ndarray) -> np.ndarray:
        return self._backend.matvec(self._generator, y)

    @property
    def liouvillian(self):
        return self._generator


def get_solver(solver_config: SolverConfig, generator, schroedinger: bool) -> Solver:
    """
    Solver for dx/dt = -i G x (schroedinger=True) or dx/dt = G x selected by
    `solver_config.method`. Every call returns a fresh solver with its own workspace.
    """
    if solver_config.method == "runge_kutta":
        if schroedinger:
            return LocalRungeKuttaSolver(solver_config, generator)
        return LocalLindbladRungeKuttaSolver(solver_config, generator)

    matrix = -1j * generator if schroedinger else generator
    return StiffSolver(solver_config, matrix)
