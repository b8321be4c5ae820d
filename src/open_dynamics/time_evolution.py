from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from open_dynamics.config import SimulationConfig
from open_dynamics.core.utils import ket_expectation
from open_dynamics.mpi.mpi_funcs import get_mpi_variables
from open_dynamics.operators.hamiltonian import Hamiltonian
from open_dynamics.operators.quantum_object import ObjectKind, QuantumObject
from open_dynamics.system import System

logger = logging.getLogger()
COMM, RANK, SIZE, NAME, PARALLEL = get_mpi_variables()


class ClosedSystem(System):
    """
    Unitary evolution of kets, d|psi>/dt = -i H |psi>. Expectation values are
    <psi|O|psi> of the evolved ket.
    """

    def __init__(self, hamiltonian: Hamiltonian, config: SimulationConfig | None = None):
        super().__init__(operator=hamiltonian, config=config)

    @property
    def hamiltonian(self) -> Hamiltonian:
        return self._system_operator

    @hamiltonian.setter
    def hamiltonian(self, hamiltonian: Hamiltonian):
        if hamiltonian.dims != self.dims:
            raise ValueError(
                f"can only update the Hamiltonian on the same system with dims {self.dims}"
            )
        self._system_operator = hamiltonian
        logger.debug("changed Hamiltonian")

    @property
    def schroedinger(self) -> bool:
        return True

    @property
    def generator(self):
        return self.hamiltonian.generator.data

    def _prepare_state(self, state: QuantumObject) -> np.ndarray:
        self._system_operator.check_state(state, (ObjectKind.KET,))
        return state.flat()

    def _to_quantum_object(self, y: np.ndarray) -> QuantumObject:
        return QuantumObject(y.reshape(-1, 1), self.dims, ObjectKind.KET)

    def _prepare_observables(self, e_ops: Sequence[QuantumObject]):
        return [e_op.data for e_op in e_ops]

    def _expect(self, observables, y: np.ndarray) -> np.ndarray:
        return ket_expectation(observables, y)

    @classmethod
    def from_checkpoint(cls, folder: str) -> ClosedSystem:
        """
        load from checkpoint
        """
        config = SimulationConfig.from_yaml(folder)
        hamiltonian = Hamiltonian.from_checkpoint(folder)

        logger.info(f"loaded ClosedSystem from {folder}")
        return cls(hamiltonian=hamiltonian, config=config)
