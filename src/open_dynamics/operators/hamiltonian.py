from __future__ import annotations

import logging

from open_dynamics.operators.liouvillian import check_hermitian
from open_dynamics.operators.operator import Operator
from open_dynamics.operators.quantum_object import QuantumObject

logger = logging.getLogger()


class Hamiltonian(Operator):
    """
    Generator of unitary evolution. Kets evolve according to d|psi>/dt = -i H |psi>.
    """

    checkpoint_name = "hamiltonian"

    def __init__(self, hamiltonian: QuantumObject):
        super().__init__(hamiltonian, name="Hamiltonian")
        check_hermitian(self.hamiltonian)

    @property
    def generator(self) -> QuantumObject:
        """The operator G in dx/dt = -i G x"""
        return self.hamiltonian

    @classmethod
    def from_checkpoint(cls, folder: str) -> Hamiltonian:
        """
        Load Hamiltonian from checkpoint.
        """
        [hamiltonian], _ = cls._load_checkpoint(folder)
        return cls(hamiltonian)
