from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from open_dynamics.config import SimulationConfig
from open_dynamics.core.utils import (
    expectation_rows,
    trace_vectorized,
    vectorized_expectation,
)
from open_dynamics.errors import IntegrationFailure
from open_dynamics.mpi.mpi_funcs import get_mpi_variables
from open_dynamics.operators.constructors import ket2dm
from open_dynamics.operators.lindbladian import Lindbladian
from open_dynamics.operators.quantum_object import (
    ObjectKind,
    QuantumObject,
    operator_to_vector,
    vector_to_operator,
)
from open_dynamics.system import System

logger = logging.getLogger()
COMM, RANK, SIZE, NAME, PARALLEL = get_mpi_variables()


class OpenSystem(System):
    """
    Evolution of density matrices under the Lindblad master equation. The density
    matrix is integrated in its column-stacked form, d vec(rho)/dt = L vec(rho), and
    expectation values are tr(O rho). The trace is checked after every accepted step.
    """

    def __init__(self, lindbladian: Lindbladian, config: SimulationConfig | None = None):
        super().__init__(operator=lindbladian, config=config)

    @property
    def lindbladian(self) -> Lindbladian:
        return self._system_operator

    @property
    def schroedinger(self) -> bool:
        return False

    @property
    def generator(self):
        return self.lindbladian.liouvillian.data

    def _prepare_state(self, state: QuantumObject) -> np.ndarray:
        """Kets, density matrices and vectorized density matrices are accepted."""
        self._system_operator.check_state(
            state, (ObjectKind.KET, ObjectKind.OPERATOR, ObjectKind.OPERATOR_KET)
        )
        if state.kind is ObjectKind.KET:
            state = ket2dm(state)
        if state.kind is ObjectKind.OPERATOR:
            state = operator_to_vector(state)
        y = state.flat()
        trace = trace_vectorized(y, self.size)
        if abs(trace - 1.0) > self.config.solver_config.max_trace_deviation:
            # the trace is then conserved relative to this value, not to 1
            logger.warning(f"density matrix is not normalized: trace {trace.real:.6f}")
        return y

    def _to_quantum_object(self, y: np.ndarray) -> QuantumObject:
        vector = QuantumObject(y.reshape(-1, 1), self.dims, ObjectKind.OPERATOR_KET)
        return vector_to_operator(vector)

    def _prepare_observables(self, e_ops: Sequence[QuantumObject]):
        return expectation_rows(e_ops)

    def _expect(self, observables, y: np.ndarray) -> np.ndarray:
        return vectorized_expectation(observables, y)

    def _check_step(self, y: np.ndarray, time: float):
        initial_trace = trace_vectorized(self._reference_vector, self.size)
        trace = trace_vectorized(y, self.size)
        deviation = abs(trace - initial_trace)
        if deviation > self.config.solver_config.max_trace_deviation:
            raise IntegrationFailure(
                f"trace deviates from {initial_trace.real:.6f} by {deviation:.3e}",
                time=time,
                state=y,
            )

    @classmethod
    def from_checkpoint(cls, folder: str) -> OpenSystem:
        """
        load from checkpoint
        """
        config = SimulationConfig.from_yaml(folder)
        lindbladian = Lindbladian.from_checkpoint(folder)

        logger.info(f"loaded OpenSystem from {folder}")
        return cls(lindbladian=lindbladian, config=config)
