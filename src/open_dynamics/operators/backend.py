from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np
from scipy import sparse
from scipy.sparse import linalg as sparse_linalg


class MatrixLike(ABC):
    """
    Anything that can act as the data of a quantum object: it must provide
    matrix products, complex conjugation and transposition.
    """

    @classmethod
    def __subclasshook__(cls, C):
        if cls is MatrixLike:
            if (
                any("__matmul__" in B.__dict__ for B in C.__mro__)
                and any("conj" in B.__dict__ for B in C.__mro__)
                and any("transpose" in B.__dict__ for B in C.__mro__)
            ):
                return True
        return NotImplemented


class Backend(ABC):
    """
    Narrow linear-algebra interface used by the evolution engine. Integrators, the
    Liouvillian builder and the trajectory engine issue only these operations.
    """

    name: str = ""

    @staticmethod
    def matvec(matrix, vector: np.ndarray) -> np.ndarray:
        return np.asarray(matrix @ vector).reshape(vector.shape)

    @staticmethod
    def matmul(a, b):
        if sparse.issparse(a) and not sparse.issparse(b):
            return np.asarray(a @ b)
        if sparse.issparse(b) and not sparse.issparse(a):
            return np.asarray((b.transpose() @ a.transpose()).transpose())
        return a @ b

    @staticmethod
    def adjoint(matrix):
        return matrix.conj().transpose()

    @staticmethod
    def inner(a: np.ndarray, b: np.ndarray) -> complex:
        """<a|b> for flat vectors"""
        return complex(np.vdot(a, b))

    @staticmethod
    def norm(vector: np.ndarray) -> float:
        return float(np.linalg.norm(vector))

    @staticmethod
    @abstractmethod
    def kron(a, b):
        pass

    @staticmethod
    @abstractmethod
    def identity(n: int):
        pass

    @staticmethod
    @abstractmethod
    def to_dense(matrix) -> np.ndarray:
        pass

    @staticmethod
    @abstractmethod
    def matrix_norm(matrix) -> float:
        pass


class DenseBackend(Backend):
    name = "dense"

    @staticmethod
    def kron(a, b):
        return np.kron(DenseBackend.to_dense(a), DenseBackend.to_dense(b))

    @staticmethod
    def identity(n: int):
        return np.eye(n, dtype=np.complex128)

    @staticmethod
    def to_dense(matrix) -> np.ndarray:
        if sparse.issparse(matrix):
            return matrix.toarray()
        return np.asarray(matrix)

    @staticmethod
    def matrix_norm(matrix) -> float:
        return float(np.linalg.norm(DenseBackend.to_dense(matrix)))


class SparseBackend(Backend):
    name = "sparse"

    @staticmethod
    def kron(a, b):
        return sparse.kron(a, b, format="csr")

    @staticmethod
    def identity(n: int):
        return sparse.identity(n, dtype=np.complex128, format="csr")

    @staticmethod
    def to_dense(matrix) -> np.ndarray:
        if sparse.issparse(matrix):
            return matrix.toarray()
        return np.asarray(matrix)

    @staticmethod
    def matrix_norm(matrix) -> float:
        if sparse.issparse(matrix):
            return float(sparse_linalg.norm(matrix))
        return float(np.linalg.norm(matrix))


def get_backend(*matrices) -> type[Backend]:
    """Sparse backend if any of the inputs is sparse, dense otherwise."""
    if any(sparse.issparse(m) for m in matrices):
        return SparseBackend
    return DenseBackend
