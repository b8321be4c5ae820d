from __future__ import annotations

import logging
from enum import Enum
from numbers import Number
from typing import Sequence

import numpy as np
from scipy import sparse

from open_dynamics.errors import DimensionMismatch
from open_dynamics.operators.backend import MatrixLike, get_backend

logger = logging.getLogger()


class ObjectKind(Enum):
    KET = "ket"
    BRA = "bra"
    OPERATOR = "oper"
    SUPER_OPERATOR = "super"
    OPERATOR_KET = "operator-ket"
    OPERATOR_BRA = "operator-bra"


_DUAL = {
    ObjectKind.KET: ObjectKind.BRA,
    ObjectKind.BRA: ObjectKind.KET,
    ObjectKind.OPERATOR: ObjectKind.OPERATOR,
    ObjectKind.SUPER_OPERATOR: ObjectKind.SUPER_OPERATOR,
    ObjectKind.OPERATOR_KET: ObjectKind.OPERATOR_BRA,
    ObjectKind.OPERATOR_BRA: ObjectKind.OPERATOR_KET,
}

# (left kind, right kind) -> kind of the product. None means a scalar.
_MATMUL_RULES = {
    (ObjectKind.OPERATOR, ObjectKind.OPERATOR): ObjectKind.OPERATOR,
    (ObjectKind.OPERATOR, ObjectKind.KET): ObjectKind.KET,
    (ObjectKind.BRA, ObjectKind.OPERATOR): ObjectKind.BRA,
    (ObjectKind.BRA, ObjectKind.KET): None,
    (ObjectKind.KET, ObjectKind.BRA): ObjectKind.OPERATOR,
    (ObjectKind.SUPER_OPERATOR, ObjectKind.SUPER_OPERATOR): ObjectKind.SUPER_OPERATOR,
    (ObjectKind.SUPER_OPERATOR, ObjectKind.OPERATOR_KET): ObjectKind.OPERATOR_KET,
    (ObjectKind.OPERATOR_BRA, ObjectKind.SUPER_OPERATOR): ObjectKind.OPERATOR_BRA,
    (ObjectKind.OPERATOR_BRA, ObjectKind.OPERATOR_KET): None,
    (ObjectKind.OPERATOR_KET, ObjectKind.OPERATOR_BRA): ObjectKind.SUPER_OPERATOR,
}


def expected_shape(kind: ObjectKind, dims: Sequence[int]) -> tuple[int, int]:
    """Shape a quantum object of `kind` with subsystem dimensions `dims` must have."""
    n = int(np.prod(dims))
    if kind is ObjectKind.KET:
        return n, 1
    elif kind is ObjectKind.BRA:
        return 1, n
    elif kind is ObjectKind.OPERATOR:
        return n, n
    elif kind is ObjectKind.SUPER_OPERATOR:
        return n * n, n * n
    elif kind is ObjectKind.OPERATOR_KET:
        return n * n, 1
    else:
        return 1, n * n


def infer_kind(shape: tuple[int, int], dims: Sequence[int]) -> ObjectKind:
    n = int(np.prod(dims))
    rows, cols = shape
    if cols == 1:
        if rows == n:
            return ObjectKind.KET
        if rows == n * n:
            return ObjectKind.OPERATOR_KET
    elif rows == 1:
        if cols == n:
            return ObjectKind.BRA
        if cols == n * n:
            return ObjectKind.OPERATOR_BRA
    elif rows == cols:
        if rows == n:
            return ObjectKind.OPERATOR
        if rows == n * n:
            return ObjectKind.SUPER_OPERATOR
    raise DimensionMismatch(f"shape {shape} is incompatible with dims {list(dims)}")


class QuantumObject:
    """
    Matrix or vector tagged with an object kind and the ordered list of subsystem
    dimensions. The data is a dense numpy array or a scipy sparse matrix. The shape
    is validated against kind and dims on construction and after every algebraic
    combination; violations raise DimensionMismatch.
    """

    __array_ufunc__ = None

    def __init__(
        self,
        data,
        dims: Sequence[int] | None = None,
        kind: ObjectKind | None = None,
    ):
        if isinstance(data, QuantumObject):
            data = data.data
        if sparse.issparse(data):
            data = sparse.csr_matrix(data, dtype=np.complex128)
        else:
            data = np.asarray(data, dtype=np.complex128)
            if data.ndim == 1:
                data = data.reshape(-1, 1)
            if data.ndim != 2:
                raise DimensionMismatch(
                    f"quantum objects must be two dimensional, got ndim={data.ndim}"
                )
        if not isinstance(data, MatrixLike):
            raise TypeError(f"{type(data)} does not support the required matrix operations")

        if dims is None:
            dims = self._default_dims(data.shape, kind)
        dims = [int(d) for d in dims]
        if not dims or any(d < 1 for d in dims):
            raise DimensionMismatch(f"invalid dims {dims}")

        if kind is None:
            kind = infer_kind(data.shape, dims)
        elif tuple(data.shape) != expected_shape(kind, dims):
            raise DimensionMismatch(
                f"{kind.value} with dims {dims} must have shape "
                f"{expected_shape(kind, dims)}, got {tuple(data.shape)}"
            )

        self._data = data
        self._dims = dims
        self._kind = kind

    @staticmethod
    def _default_dims(shape: tuple[int, int], kind: ObjectKind | None) -> list[int]:
        rows, cols = shape
        if kind in (ObjectKind.SUPER_OPERATOR, ObjectKind.OPERATOR_KET, ObjectKind.OPERATOR_BRA):
            side = int(round(np.sqrt(max(rows, cols))))
            return [side]
        if cols == 1:
            return [rows]
        return [cols]

    @property
    def data(self):
        return self._data

    @property
    def dims(self) -> list[int]:
        return list(self._dims)

    @property
    def kind(self) -> ObjectKind:
        return self._kind

    @property
    def shape(self) -> tuple[int, int]:
        return tuple(self._data.shape)

    @property
    def size(self) -> int:
        """Dimension of the underlying Hilbert space."""
        return int(np.prod(self._dims))

    @property
    def is_sparse(self) -> bool:
        return sparse.issparse(self._data)

    @property
    def isket(self) -> bool:
        return self._kind is ObjectKind.KET

    @property
    def isoper(self) -> bool:
        return self._kind is ObjectKind.OPERATOR

    @property
    def backend(self):
        return get_backend(self._data)

    def full(self) -> np.ndarray:
        """Dense copy of the data"""
        return self.backend.to_dense(self._data).copy()

    def flat(self) -> np.ndarray:
        """Dense flattened data, for vectors"""
        return self.full().reshape(-1)

    def copy(self) -> QuantumObject:
        return QuantumObject(self._data.copy(), self._dims, self._kind)

    def dag(self) -> QuantumObject:
        return QuantumObject(
            self.backend.adjoint(self._data), self._dims, _DUAL[self._kind]
        )

    def conj(self) -> QuantumObject:
        return QuantumObject(self._data.conj(), self._dims, self._kind)

    def trans(self) -> QuantumObject:
        return QuantumObject(self._data.transpose(), self._dims, _DUAL[self._kind])

    def norm(self) -> float:
        """Euclidean norm for vectors, trace norm for operators."""
        if self._kind in (ObjectKind.OPERATOR, ObjectKind.SUPER_OPERATOR):
            return float(np.sum(np.linalg.svd(self.full(), compute_uv=False)))
        return self.backend.norm(self.flat())

    def unit(self) -> QuantumObject:
        norm = self.norm()
        if norm == 0:
            raise ZeroDivisionError("cannot normalize a zero quantum object")
        return self / norm

    def tr(self) -> complex:
        if self._kind not in (ObjectKind.OPERATOR, ObjectKind.SUPER_OPERATOR):
            raise DimensionMismatch(f"trace undefined for {self._kind.value}")
        return complex(self._data.diagonal().sum())

    def isherm(self, tol: float = 1e-10) -> bool:
        if self._kind not in (ObjectKind.OPERATOR, ObjectKind.SUPER_OPERATOR):
            return False
        diff = self._data - self.backend.adjoint(self._data)
        return self.backend.matrix_norm(diff) <= tol * max(
            1.0, self.backend.matrix_norm(self._data)
        )

    def check_compatible(self, other: QuantumObject, kind: ObjectKind | None = None):
        """Raise DimensionMismatch unless `other` lives on the same subsystems (and has `kind`)."""
        if other.dims != self.dims:
            raise DimensionMismatch(f"dims {other.dims} do not match {self.dims}")
        if kind is not None and other.kind is not kind:
            raise DimensionMismatch(f"expected {kind.value}, got {other.kind.value}")

    def _combine(self, other: QuantumObject, sign: int) -> QuantumObject:
        if not isinstance(other, QuantumObject):
            return NotImplemented
        if other.kind is not self._kind or other.dims != self._dims:
            raise DimensionMismatch(
                f"cannot combine {self._kind.value} {self._dims} "
                f"with {other.kind.value} {other.dims}"
            )
        a, b = self._data, other.data
        if sparse.issparse(a) != sparse.issparse(b):
            a, b = self.full(), other.full()
        data = a + sign * b
        return QuantumObject(data, self._dims, self._kind)

    def __add__(self, other):
        if isinstance(other, Number) and other == 0:
            return self.copy()
        return self._combine(other, 1)

    def __radd__(self, other):
        # allows sum() over quantum objects
        return self.__add__(other)

    def __sub__(self, other):
        return self._combine(other, -1)

    def __neg__(self):
        return QuantumObject(-self._data, self._dims, self._kind)

    def __mul__(self, other):
        if isinstance(other, Number):
            return QuantumObject(self._data * other, self._dims, self._kind)
        if isinstance(other, QuantumObject):
            return self.__matmul__(other)
        return NotImplemented

    def __rmul__(self, other):
        if isinstance(other, Number):
            return QuantumObject(other * self._data, self._dims, self._kind)
        return NotImplemented

    def __truediv__(self, other):
        if isinstance(other, Number):
            return QuantumObject(self._data / other, self._dims, self._kind)
        return NotImplemented

    def __matmul__(self, other):
        if not isinstance(other, QuantumObject):
            return NotImplemented
        key = (self._kind, other.kind)
        if key not in _MATMUL_RULES or self._dims != other.dims:
            raise DimensionMismatch(
                f"cannot multiply {self._kind.value} {self._dims} "
                f"with {other.kind.value} {other.dims}"
            )
        data = self.backend.matmul(self._data, other.data)
        kind = _MATMUL_RULES[key]
        if kind is None:
            return complex(np.asarray(get_backend(data).to_dense(data)).reshape(-1)[0])
        return QuantumObject(data, self._dims, kind)

    def __eq__(self, other):
        if not isinstance(other, QuantumObject):
            return False
        return (
            self._kind is other.kind
            and self._dims == other.dims
            and np.allclose(self.full(), other.full())
        )

    def __repr__(self):
        return (
            f"QuantumObject(kind={self._kind.value}, dims={self._dims}, "
            f"shape={self.shape}, sparse={self.is_sparse})"
        )

    def __str__(self):
        string = f"{self.__class__.__name__}:\n"
        string += "\t{:<25}: {}\n".format("kind", self._kind.value)
        string += "\t{:<25}: {}\n".format("dims", self._dims)
        string += "\t{:<25}: {}\n".format("shape", self.shape)
        string += f"{self.full()}\n"
        return string


def operator_to_vector(operator: QuantumObject) -> QuantumObject:
    """Column-stacking vectorization of an operator into an operator-ket."""
    if operator.kind is not ObjectKind.OPERATOR:
        raise DimensionMismatch(f"can only vectorize operators, got {operator.kind.value}")
    vec = operator.full().reshape(-1, order="F").reshape(-1, 1)
    return QuantumObject(vec, operator.dims, ObjectKind.OPERATOR_KET)


def vector_to_operator(vector: QuantumObject) -> QuantumObject:
    """Inverse of operator_to_vector."""
    if vector.kind is not ObjectKind.OPERATOR_KET:
        raise DimensionMismatch(f"expected operator-ket, got {vector.kind.value}")
    n = vector.size
    return QuantumObject(
        vector.flat().reshape((n, n), order="F"), vector.dims, ObjectKind.OPERATOR
    )


def expect(operator: QuantumObject, state: QuantumObject) -> complex:
    """
    Expectation value of `operator` on a ket (<psi|O|psi>), a density matrix
    (tr(O rho)) or a vectorized density matrix. Kets are not normalized.
    """
    if operator.kind is not ObjectKind.OPERATOR:
        raise DimensionMismatch(f"observable must be an operator, got {operator.kind.value}")
    operator.check_compatible(state)
    if state.kind is ObjectKind.KET:
        psi = state.flat()
        backend = get_backend(operator.data)
        return backend.inner(psi, backend.matvec(operator.data, psi))
    if state.kind is ObjectKind.OPERATOR_KET:
        state = vector_to_operator(state)
    if state.kind is not ObjectKind.OPERATOR:
        raise DimensionMismatch(f"cannot take expectation values on a {state.kind.value}")
    return (operator @ state).tr()
