from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable

import numpy as np

from open_dynamics.config import SolverConfig
from open_dynamics.core.runge_kutta_solvers.runge_kutta_parameters import (
    get_parameters,
)
from open_dynamics.errors import IntegrationFailure
from open_dynamics.operators.backend import get_backend

logger = logging.getLogger()

# errors below this value are treated as exact
ERROR_FLOOR = 1e-16
# safety factor applied to the optimal step size
SAFETY = 0.9
# step size growth when the error estimate vanishes
EXACT_STEP_GROWTH = 2.0


class Solver(ABC):
    """
    Common interface of the adaptive integrators for linear equations dx/dt = M x.

    `solve` performs one accepted adaptive step. After every accepted step
    `dense_output` returns a continuous extension of the solution on the interval
    of that step, used to sample output times and locate events without altering
    the step sequence.
    """

    def __init__(self, solver_config: SolverConfig, generator):
        self.config = solver_config
        self._generator = generator
        self._backend = get_backend(generator)
        self._step_size = self.config.step_size
        self.n_steps = 0

    @property
    def step_size(self):
        return self._step_size

    @step_size.setter
    def step_size(self, value):
        if value <= 0:
            raise ValueError("step_size must be >0")
        self._step_size = value

    @property
    def max_error(self):
        return self.config.max_error

    @abstractmethod
    def rhs(self, y: np.ndarray) -> np.ndarray:
        pass

    @abstractmethod
    def solve(
        self, y: np.ndarray, current_time: float, final_time: float | None = None
    ) -> tuple[np.ndarray, float]:
        pass

    @abstractmethod
    def dense_output(self) -> Callable[[float], np.ndarray]:
        pass

    def reset(self):
        """Forget the history of previous steps, e.g. after a discontinuous state update."""
        pass

    def _check_budget(self, current_time: float, y: np.ndarray):
        if self.n_steps >= self.config.max_steps:
            raise IntegrationFailure(
                f"exceeded the maximum number of steps ({self.config.max_steps})",
                time=current_time,
                state=y,
            )


class RungeKuttaSolver(Solver):
    """Embedded Runge-Kutta solver with adaptive step size"""

    def __init__(self, solver_config: SolverConfig, generator):
        super().__init__(solver_config, generator)
        self.c, self.a, self.b_higher, self.b_lower, self.order = get_parameters(
            self.config.RK_order
        )
        # (t_old, y_old, t_new, y_new) of the last accepted step
        self._last_step: tuple[float, np.ndarray, float, np.ndarray] | None = None

    def _runge_kutta_step(self, y: np.ndarray, h: float) -> tuple[np.ndarray, float]:
        """Single step of size h. Returns the higher order solution and the error estimate."""
        k = [h * self.rhs(y)]
        for j in range(1, len(self.b_higher)):
            addition = np.zeros_like(y)
            for ell in range(j):
                if self.a[j, ell] != 0:
                    addition = addition + self.a[j, ell] * k[ell]
            k += [h * self.rhs(y + addition)]

        total_high = np.zeros_like(y)
        total_low = np.zeros_like(y)
        for j, _ in enumerate(self.b_higher):
            total_high = total_high + self.b_higher[j] * k[j]
            total_low = total_low + self.b_lower[j] * k[j]

        error = total_high - total_low
        return y + total_high, float(np.linalg.norm(error, np.inf))

    def solve(
        self, y: np.ndarray, current_time: float, final_time: float | None = None
    ) -> tuple[np.ndarray, float]:
        """Compute single runge kutta step."""
        self._check_budget(current_time, y)

        while True:
            # land exactly on the final time
            landing = (
                final_time is not None and current_time + self.step_size >= final_time
            )
            h = final_time - current_time if landing else self.step_size
            if h <= 0:
                raise IntegrationFailure(
                    "no time left to integrate", time=current_time, state=y
                )

            y_new, actual_error = self._runge_kutta_step(y, h)
            if not np.all(np.isfinite(y_new)):
                raise IntegrationFailure(
                    "integrator diverged", time=current_time, state=y
                )

            if actual_error > ERROR_FLOOR:
                allowed_step_size = h * (self.max_error / actual_error) ** (
                    1 / self.order
                )
            else:
                allowed_step_size = (h * EXACT_STEP_GROWTH) / SAFETY

            # compare optimal step size to actual step size
            if allowed_step_size < h:
                # redo calculation with smaller step size
                self.step_size = allowed_step_size * SAFETY
                if self.step_size < self.config.min_step_size:
                    raise IntegrationFailure(
                        f"step size {self.step_size:.3e} fell below "
                        f"{self.config.min_step_size:.3e}",
                        time=current_time,
                        state=y,
                    )
                continue

            time = final_time if landing else current_time + h
            if not landing:
                self.step_size = allowed_step_size * SAFETY
            break

        self._last_step = (current_time, y, time, y_new)
        self.n_steps += 1
        logger.debug(
            f"finished Runge-Kutta time step at t={time:.6f} with adaptive stepsize {self.step_size:.3e}"
        )
        return y_new, time

    def dense_output(self) -> Callable[[float], np.ndarray]:
        """
        Continuous extension on the last accepted step: the state at t_old <= t <= t_new
        is obtained from a single step of size t - t_old starting at y_old. For linear
        equations this is a polynomial in t that reproduces both end points.
        """
        if self._last_step is None:
            raise RuntimeError("dense output requires an accepted step")
        t_old, y_old, t_new, y_new = self._last_step

        def interpolant(t: float) -> np.ndarray:
            if t == t_new:
                return y_new
            if t == t_old:
                return y_old
            if not t_old < t < t_new:
                raise ValueError(f"t={t} outside of the last step [{t_old}, {t_new}]")
            return self._runge_kutta_step(y_old, t - t_old)[0]

        return interpolant

    def reset(self):
        self._last_step = None
