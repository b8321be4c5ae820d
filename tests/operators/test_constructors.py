import numpy as np
import pytest

from open_dynamics.errors import DimensionMismatch
from open_dynamics.operators.constructors import (
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


class TestConstructors:
    @pytest.mark.parametrize("n", [2, 3, 6])
    def test_ladder_operators(self, n):
        a = destroy(n)
        for k in range(1, n):
            assert a @ basis(n, k) == np.sqrt(k) * basis(n, k - 1)
        assert create(n) == a.dag()
        assert a.dag() @ a == num(n)

    def test_basis_out_of_range(self):
        with pytest.raises(ValueError):
            basis(3, 3)

    def test_two_level_convention(self):
        ground, excited = basis(2, 0), basis(2, 1)
        assert sigmam() @ excited == ground
        assert sigmap() @ ground == excited
        assert sigmaz() @ excited == excited
        assert sigmaz() @ ground == -1.0 * ground
        assert sigmap() == sigmam().dag()

    def test_pauli_algebra(self):
        identity = qeye(2)
        for sigma in (sigmax(), sigmay(), sigmaz()):
            assert sigma.isherm()
            assert sigma @ sigma == identity
        commutator = sigmax() @ sigmay() - sigmay() @ sigmax()
        assert commutator == 2j * sigmaz()

    def test_density_matrices(self):
        rho = fock_dm(3, 2)
        assert rho.tr() == pytest.approx(1.0)
        assert rho == ket2dm(basis(3, 2))
        assert ket2dm(basis(3, 2).dag()) == rho

    def test_tensor_requires_same_kind(self):
        with pytest.raises(DimensionMismatch):
            tensor(basis(2, 0), qeye(2))
        with pytest.raises(ValueError):
            tensor()
        assert tensor([qeye(2), qeye(3)]).dims == [2, 3]
