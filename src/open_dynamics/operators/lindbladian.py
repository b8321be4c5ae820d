from __future__ import annotations

import logging
from functools import cached_property
from typing import Sequence

from open_dynamics.operators.liouvillian import (
    check_hermitian,
    check_operators,
    effective_hamiltonian,
    liouvillian,
)
from open_dynamics.operators.operator import Operator
from open_dynamics.operators.quantum_object import QuantumObject

logger = logging.getLogger()


class Lindbladian(Operator):
    """
    Open-system generator built from one Hamiltonian H and collapse operators {L_k}.
    Both derived generators are pure functions of (H, {L_k}) and are built lazily and
    cached on the instance:

    - `liouvillian`: the vectorized superoperator driving the master equation,
    - `effective_hamiltonian`: H_eff = H - i/2 sum_k L_k^dag L_k driving trajectories.

    The inputs are copied on construction and never modified afterwards so that a
    single instance can be shared read-only between worker threads.
    """

    checkpoint_name = "lindbladian"

    def __init__(
        self, hamiltonian: QuantumObject, c_ops: Sequence[QuantumObject] = ()
    ):
        super().__init__(hamiltonian, name="Lindbladian")
        c_ops = list(c_ops)
        check_operators(self.hamiltonian, c_ops)
        check_hermitian(self.hamiltonian)
        self._c_ops = tuple(c_op.copy() for c_op in c_ops)

        for k, c_op in enumerate(self._c_ops):
            if c_op.backend.matrix_norm(c_op.data) == 0:
                logger.warning(f"collapse operator {k} is identically zero")

    @property
    def c_ops(self) -> list[QuantumObject]:
        return list(self._c_ops)

    @property
    def n_channels(self) -> int:
        return len(self._c_ops)

    @cached_property
    def liouvillian(self) -> QuantumObject:
        return liouvillian(self.hamiltonian, self._c_ops, check_herm=False)

    @cached_property
    def effective_hamiltonian(self) -> QuantumObject:
        return effective_hamiltonian(self.hamiltonian, self._c_ops, check_herm=False)

    def _checkpoint_payload(self) -> list:
        return [self.hamiltonian, list(self._c_ops)]

    @classmethod
    def from_checkpoint(cls, folder: str) -> Lindbladian:
        """
        load Lindbladian from checkpoint.
        """
        [hamiltonian, c_ops], _ = cls._load_checkpoint(folder)
        return cls(hamiltonian, c_ops)
