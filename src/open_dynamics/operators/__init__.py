from .backend import Backend, DenseBackend, MatrixLike, SparseBackend, get_backend
from .quantum_object import (
    ObjectKind,
    QuantumObject,
    expect,
    operator_to_vector,
    vector_to_operator,
)
from .constructors import (
    basis,
    create,
    destroy,
    fock_dm,
    ket2dm,
    num,
    qeye,
    sigmam,
    sigmap,
    sigmax,
    sigmay,
    sigmaz,
    tensor,
)
from .liouvillian import (
    effective_hamiltonian,
    lindblad_dissipator,
    liouvillian,
    spost,
    spre,
)
from .operator import Operator
from .hamiltonian import Hamiltonian
from .lindbladian import Lindbladian

__all__ = [
    "Backend",
    "DenseBackend",
    "SparseBackend",
    "MatrixLike",
    "get_backend",
    "ObjectKind",
    "QuantumObject",
    "expect",
    "operator_to_vector",
    "vector_to_operator",
    "basis",
    "create",
    "destroy",
    "fock_dm",
    "ket2dm",
    "num",
    "qeye",
    "sigmam",
    "sigmap",
    "sigmax",
    "sigmay",
    "sigmaz",
    "tensor",
    "effective_hamiltonian",
    "lindblad_dissipator",
    "liouvillian",
    "spost",
    "spre",
    "Operator",
    "Hamiltonian",
    "Lindbladian",
]
