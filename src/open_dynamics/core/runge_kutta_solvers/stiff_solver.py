from __future__ import annotations

import logging
from typing import Callable

import numpy as np
from scipy import sparse
from scipy.integrate import BDF, Radau

from open_dynamics.config import SolverConfig
from open_dynamics.core.runge_kutta_solvers.runge_kutta_solver import Solver
from open_dynamics.errors import IntegrationFailure

logger = logging.getLogger()

_METHODS = {"BDF": BDF, "Radau": Radau}
# scipy's Radau only integrates real states
_REAL_ONLY = {"Radau"}


def real_form(generator):
    """
    Real block matrix [[Re M, -Im M], [Im M, Re M]] acting on [Re y; Im y], equivalent
    to dy/dt = M y for complex y.
    """
    if sparse.issparse(generator):
        re, im = generator.real, generator.imag
        return sparse.bmat([[re, -im], [im, re]], format="csr")
    generator = np.asarray(generator)
    re, im = generator.real, generator.imag
    return np.block([[re, -im], [im, re]])


class StiffSolver(Solver):
    """
    Implicit solver for stiff linear equations dx/dt = M x. Wraps the step-wise
    scipy integrators with the constant Jacobian M. The scipy solver keeps its
    history between calls as long as it is continued from the state it returned;
    any other state (e.g. after a quantum jump) restarts it.

    Methods without complex support integrate the real form [Re x; Im x].
    """

    def __init__(self, solver_config: SolverConfig, generator):
        super().__init__(solver_config, generator)
        if self.config.method not in _METHODS:
            raise ValueError(f"no stiff solver for method {self.config.method}")
        self._method = _METHODS[self.config.method]
        self._real = self.config.method in _REAL_ONLY
        self._jacobian = real_form(generator) if self._real else generator
        self._ode = None
        self._returned: np.ndarray | None = None
        self._dense = None

    def rhs(self, y: np.ndarray) -> np.ndarray:
        return self._backend.matvec(self._generator, y)

    def _fun(self, t, x):
        if self._real:
            return self._jacobian @ x
        return self.rhs(x)

    def _to_internal(self, y: np.ndarray) -> np.ndarray:
        y = np.asarray(y, dtype=np.complex128)
        if self._real:
            return np.concatenate([y.real, y.imag])
        return y

    def _from_internal(self, x: np.ndarray) -> np.ndarray:
        if self._real:
            n = x.shape[0] // 2
            return x[:n] + 1j * x[n:]
        return x

    def _restart(self, y: np.ndarray, current_time: float, final_time: float | None):
        t_bound = np.inf if final_time is None else final_time
        self._ode = self._method(
            self._fun,
            current_time,
            self._to_internal(y),
            t_bound,
            first_step=min(self.step_size, t_bound - current_time),
            rtol=self.max_error,
            atol=self.max_error,
            jac=self._jacobian,
        )
        logger.debug(f"restarted {self.config.method} solver at t={current_time}")

    def solve(
        self, y: np.ndarray, current_time: float, final_time: float | None = None
    ) -> tuple[np.ndarray, float]:
        self._check_budget(current_time, y)
        if (
            self._ode is None
            or self._ode.status != "running"
            or y is not self._returned
            or self._ode.t != current_time
            or (final_time is not None and self._ode.t_bound != final_time)
        ):
            self._restart(y, current_time, final_time)

        message = self._ode.step()
        if self._ode.status == "failed":
            raise IntegrationFailure(
                f"{self.config.method} step failed: {message}",
                time=current_time,
                state=y,
            )
        y_new = self._from_internal(self._ode.y.copy())
        if not np.all(np.isfinite(y_new)):
            raise IntegrationFailure("integrator diverged", time=current_time, state=y)

        t_old, t_new = self._ode.t_old, self._ode.t
        if self._ode.step_size is not None and self._ode.step_size > 0:
            self.step_size = self._ode.step_size
        self._dense = (t_old, y, t_new, y_new, self._ode.dense_output())
        self._returned = y_new
        self.n_steps += 1
        return y_new, t_new

    def dense_output(self) -> Callable[[float], np.ndarray]:
        if self._dense is None:
            raise RuntimeError("dense output requires an accepted step")
        t_old, y_old, t_new, y_new, interpolant = self._dense

        def evaluate(t: float) -> np.ndarray:
            if t == t_new:
                return y_new
            if t == t_old:
                return y_old
            return self._from_internal(np.asarray(interpolant(t)))

        return evaluate

    def reset(self):
        self._ode = None
        self._returned = None
        self._dense = None
