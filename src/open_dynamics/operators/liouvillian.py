from __future__ import annotations

import logging
import warnings
from typing import Sequence

from open_dynamics.errors import DimensionMismatch, NonHermitianWarning
from open_dynamics.operators.backend import get_backend
from open_dynamics.operators.quantum_object import ObjectKind, QuantumObject

logger = logging.getLogger()

# relative tolerance for the Hermiticity check of Hamiltonians
HERMITIAN_TOL = 1e-10


def check_operators(hamiltonian: QuantumObject, c_ops: Sequence[QuantumObject]):
    """All operators must be Operators with exactly the dims of the Hamiltonian."""
    if hamiltonian.kind is not ObjectKind.OPERATOR:
        raise DimensionMismatch(
            f"Hamiltonian must be an operator, got {hamiltonian.kind.value}"
        )
    for k, c_op in enumerate(c_ops):
        if c_op.kind is not ObjectKind.OPERATOR:
            raise DimensionMismatch(
                f"collapse operator {k} must be an operator, got {c_op.kind.value}"
            )
        if c_op.dims != hamiltonian.dims:
            raise DimensionMismatch(
                f"collapse operator {k} has dims {c_op.dims}, "
                f"Hamiltonian has dims {hamiltonian.dims}"
            )


def check_hermitian(hamiltonian: QuantumObject, tol: float = HERMITIAN_TOL) -> bool:
    """Warn (never raise) if the Hamiltonian is not Hermitian within `tol`."""
    if hamiltonian.isherm(tol=tol):
        return True
    msg = "Hamiltonian is not Hermitian within tolerance {:.1e}".format(tol)
    logger.warning(msg)
    warnings.warn(msg, NonHermitianWarning, stacklevel=3)
    return False


def spre(operator: QuantumObject) -> QuantumObject:
    """Superoperator of left multiplication: vec(A rho) = (I x A) vec(rho)."""
    backend = get_backend(operator.data)
    data = backend.kron(backend.identity(operator.size), operator.data)
    return QuantumObject(data, operator.dims, ObjectKind.SUPER_OPERATOR)


def spost(operator: QuantumObject) -> QuantumObject:
    """Superoperator of right multiplication: vec(rho B) = (B^T x I) vec(rho)."""
    backend = get_backend(operator.data)
    data = backend.kron(operator.data.transpose(), backend.identity(operator.size))
    return QuantumObject(data, operator.dims, ObjectKind.SUPER_OPERATOR)


def lindblad_dissipator(c_op: QuantumObject) -> QuantumObject:
    """D[L] = conj(L) x L - 1/2 (I x L^dag L + (L^dag L)^T x I)"""
    backend = get_backend(c_op.data)
    jump = backend.kron(c_op.data.conj(), c_op.data)
    c_dag_c = c_op.dag() @ c_op
    data = jump - 0.5 * (spre(c_dag_c).data + spost(c_dag_c).data)
    return QuantumObject(data, c_op.dims, ObjectKind.SUPER_OPERATOR)


def liouvillian(
    hamiltonian: QuantumObject,
    c_ops: Sequence[QuantumObject] = (),
    check_herm: bool = True,
) -> QuantumObject:
    """
    Generator of the vectorized Lindblad master equation

        L = -i (I x H - H^T x I) + sum_k D[L_k]

    with column-stacking vectorization.
    """
    c_ops = list(c_ops)
    check_operators(hamiltonian, c_ops)
    if check_herm:
        check_hermitian(hamiltonian)

    generator = -1j * (spre(hamiltonian) - spost(hamiltonian))
    for c_op in c_ops:
        generator = generator + lindblad_dissipator(c_op)

    logger.debug(
        f"built Liouvillian of side {generator.shape[0]} with {len(c_ops)} collapse operators"
    )
    return generator


def effective_hamiltonian(
    hamiltonian: QuantumObject,
    c_ops: Sequence[QuantumObject] = (),
    check_herm: bool = True,
) -> QuantumObject:
    """Non-Hermitian H_eff = H - i/2 sum_k L_k^dag L_k used by the trajectory engine."""
    c_ops = list(c_ops)
    check_operators(hamiltonian, c_ops)
    if check_herm:
        check_hermitian(hamiltonian)

    h_eff = hamiltonian.copy()
    for c_op in c_ops:
        h_eff = h_eff - 0.5j * (c_op.dag() @ c_op)
    return h_eff
