from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Sequence

import numpy as np

from open_dynamics.config import SimulationConfig
from open_dynamics.config.monitor import ResultStore
from open_dynamics.core.runge_kutta_solvers.local_runge_kutta import get_solver
from open_dynamics.core.utils import validate_times
from open_dynamics.errors import DimensionMismatch, IntegrationFailure
from open_dynamics.mpi.mpi_funcs import get_mpi_variables
from open_dynamics.operators.quantum_object import QuantumObject

if TYPE_CHECKING:
    from open_dynamics.typedefs import Solver, SystemOperator

logger = logging.getLogger()
COMM, RANK, SIZE, NAME, PARALLEL = get_mpi_variables()

StateCallback = Callable[[float, QuantumObject], "QuantumObject | None"]


@dataclass
class EvolutionResult:
    """Output of a deterministic evolution."""

    # output times
    times: np.ndarray
    # expectation values, one row per observable and one column per output time
    expect: np.ndarray
    # state at the last output time
    final_state: QuantumObject
    # number of accepted integrator steps
    n_steps: int

    def __str__(self):
        string = "EvolutionResult:\n"
        string += "\t{:<25}: {}\n".format("output times", len(self.times))
        string += "\t{:<25}: [{}, {}]\n".format("time window", self.times[0], self.times[-1])
        string += "\t{:<25}: {}\n".format("observables", self.expect.shape[0])
        string += "\t{:<25}: {}\n".format("integrator steps", self.n_steps)
        return string


class System(ABC):
    """
    Deterministic evolution of a state under a fixed linear generator. Subclasses
    define how states are mapped onto the integrated vector and how expectation
    values are read off it; the stepping loop is shared.
    """

    solver: Solver

    def __init__(self, operator: SystemOperator, config: SimulationConfig | None = None):
        # Operator for time-evolution
        self._system_operator = operator
        # config dataclass
        self.config = config if config is not None else SimulationConfig()
        # results of all evolutions performed with this system
        self.data = ResultStore()
        self.solver = None

    @property
    def dims(self) -> list[int]:
        return self._system_operator.dims

    @property
    def size(self) -> int:
        return self._system_operator.size

    @property
    @abstractmethod
    def schroedinger(self) -> bool:
        """True if the generator G enters as dx/dt = -i G x"""
        pass

    @property
    @abstractmethod
    def generator(self):
        """Data matrix of the generator of motion"""
        pass

    @abstractmethod
    def _prepare_state(self, state: QuantumObject) -> np.ndarray:
        pass

    @abstractmethod
    def _to_quantum_object(self, y: np.ndarray) -> QuantumObject:
        pass

    @abstractmethod
    def _prepare_observables(self, e_ops: Sequence[QuantumObject]):
        pass

    @abstractmethod
    def _expect(self, observables, y: np.ndarray) -> np.ndarray:
        pass

    def _check_step(self, y: np.ndarray, time: float):
        """Invariant checks after every accepted step"""
        pass

    @classmethod
    @abstractmethod
    def from_checkpoint(cls, folder: str):
        pass

    def evolve(
        self,
        initial_state: QuantumObject,
        times: Sequence[float],
        e_ops: Sequence[QuantumObject] | None = None,
        callback: StateCallback | None = None,
        t0: float | None = None,
    ) -> EvolutionResult:
        """
        Evolve `initial_state` from `t0` (default: the first output time) and sample the
        expectation values of `e_ops` at every output time.
        :param initial_state: initial state
        :param times: strictly increasing output times
        :param e_ops: observables with the dims of the system
        :param callback: called as callback(t, state) after every accepted step; may return a
            replacement state of the same kind and dims
        :param t0: start time of the evolution, must not exceed the first output time
        :returns: EvolutionResult with one row of expectation values per observable
        """
        times = validate_times(times, t0)
        t0 = float(times[0]) if t0 is None else float(t0)
        e_ops = list(e_ops) if e_ops is not None else []
        self._system_operator.check_observables(e_ops)
        observables = self._prepare_observables(e_ops)
        y = self._prepare_state(initial_state)
        self._reference_vector = y

        self.solver = get_solver(
            self.config.solver_config, self.generator, schroedinger=self.schroedinger
        )
        expect = np.zeros((len(e_ops), len(times)), dtype=np.complex128)

        current_time = t0
        index = 0
        # output times coinciding with the start time
        while index < len(times) and times[index] <= current_time:
            expect[:, index] = self._expect(observables, y)
            index += 1

        try:
            while index < len(times):
                y_new, new_time = self.solver.solve(
                    y, current_time, final_time=float(times[-1])
                )
                interpolant = self.solver.dense_output()
                while index < len(times) and times[index] <= new_time:
                    expect[:, index] = self._expect(observables, interpolant(times[index]))
                    index += 1

                self._check_step(y_new, new_time)
                if callback is not None:
                    y_new = self._apply_callback(callback, new_time, y_new)
                y, current_time = y_new, new_time
        except IntegrationFailure as failure:
            if isinstance(failure.state, np.ndarray):
                failure.state = self._to_quantum_object(failure.state)
            logger.error(f"evolution failed: {failure}")
            raise

        result = EvolutionResult(
            times=times,
            expect=expect,
            final_state=self._to_quantum_object(y),
            n_steps=self.solver.n_steps,
        )
        logger.info(
            f"evolved {self.__class__.__name__} to t={current_time} in {result.n_steps} steps"
        )
        self.data.update(result)
        if self.config.save_checkpoint:
            self.save_checkpoint()
            logger.info(f"saved checkpoint under {self.config.checkpoint_folder}")
        return result

    def _apply_callback(
        self, callback: StateCallback, time: float, y: np.ndarray
    ) -> np.ndarray:
        state = self._to_quantum_object(y)
        replacement = callback(time, state)
        if replacement is None:
            return y
        if not isinstance(replacement, QuantumObject):
            raise TypeError(f"callback must return a QuantumObject or None, got {type(replacement)}")
        if replacement.kind is not state.kind or replacement.dims != state.dims:
            raise DimensionMismatch(
                f"callback returned {replacement.kind.value} with dims {replacement.dims}, "
                f"expected {state.kind.value} with dims {state.dims}"
            )
        # the continuous extension of the previous step is no longer valid
        self.solver.reset()
        y = self._prepare_state(replacement)
        self._reference_vector = y
        return y

    def save_checkpoint(self):
        self.data.attach_to_existing_file(self.config.checkpoint_folder)
        self.data = ResultStore(config=self.data.config)
        if RANK == 0:
            self._system_operator.save_checkpoint(self.config.checkpoint_folder)
            self.config.to_yaml()

    def __str__(self) -> str:
        info = f"{self.__class__.__name__}:\n"
        info += self.config.solver_config.__str__()
        info += self._system_operator.__str__()
        return info
