from __future__ import annotations

from functools import reduce

import numpy as np
from scipy import sparse

from open_dynamics.errors import DimensionMismatch
from open_dynamics.operators.backend import get_backend
from open_dynamics.operators.quantum_object import ObjectKind, QuantumObject


def basis(n: int, k: int = 0) -> QuantumObject:
    """Fock state |k> in a Hilbert space of dimension n"""
    if not 0 <= k < n:
        raise ValueError(f"basis index {k} out of range for dimension {n}")
    vec = np.zeros((n, 1), dtype=np.complex128)
    vec[k, 0] = 1.0
    return QuantumObject(vec, [n], ObjectKind.KET)


def fock_dm(n: int, k: int = 0) -> QuantumObject:
    return ket2dm(basis(n, k))


def qeye(n: int) -> QuantumObject:
    return QuantumObject(
        sparse.identity(n, dtype=np.complex128, format="csr"), [n], ObjectKind.OPERATOR
    )


def destroy(n: int) -> QuantumObject:
    """Annihilation operator a with a|k> = sqrt(k)|k-1>"""
    data = sparse.diags(np.sqrt(np.arange(1, n, dtype=np.float64)), offsets=1, format="csr")
    return QuantumObject(data, [n], ObjectKind.OPERATOR)


def create(n: int) -> QuantumObject:
    return destroy(n).dag()


def num(n: int) -> QuantumObject:
    data = sparse.diags(np.arange(n, dtype=np.float64), offsets=0, format="csr")
    return QuantumObject(data, [n], ObjectKind.OPERATOR)


def _two_level(matrix) -> QuantumObject:
    return QuantumObject(sparse.csr_matrix(np.array(matrix, dtype=np.complex128)), [2])


# Two-level operators in the occupation convention: |0> is the ground state and
# |1> the excited state, sigmaz |1> = |1>, sigmam |1> = |0>.
def sigmax() -> QuantumObject:
    return _two_level([[0, 1], [1, 0]])


def sigmay() -> QuantumObject:
    return _two_level([[0, 1j], [-1j, 0]])


def sigmaz() -> QuantumObject:
    return _two_level([[-1, 0], [0, 1]])


def sigmap() -> QuantumObject:
    return _two_level([[0, 0], [1, 0]])


def sigmam() -> QuantumObject:
    return _two_level([[0, 1], [0, 0]])


def tensor(*objects: QuantumObject) -> QuantumObject:
    """Kronecker product of kets or of operators; dims are concatenated."""
    if len(objects) == 1 and isinstance(objects[0], (list, tuple)):
        objects = tuple(objects[0])
    if not objects:
        raise ValueError("tensor requires at least one quantum object")

    kind = objects[0].kind
    if kind not in (ObjectKind.KET, ObjectKind.BRA, ObjectKind.OPERATOR):
        raise DimensionMismatch(f"tensor product of {kind.value} is not supported")
    if any(obj.kind is not kind for obj in objects):
        raise DimensionMismatch("tensor product requires quantum objects of the same kind")

    backend = get_backend(*[obj.data for obj in objects])
    data = reduce(backend.kron, [obj.data for obj in objects])
    dims = [d for obj in objects for d in obj.dims]
    return QuantumObject(data, dims, kind)


def ket2dm(state: QuantumObject) -> QuantumObject:
    if state.kind is ObjectKind.BRA:
        state = state.dag()
    if state.kind is not ObjectKind.KET:
        raise DimensionMismatch(f"ket2dm expects a ket, got {state.kind.value}")
    return state @ state.dag()
