import warnings

import numpy as np
import pytest

from open_dynamics.errors import DimensionMismatch, NonHermitianWarning
from open_dynamics.operators.constructors import destroy, num, qeye, sigmam, sigmax, sigmaz
from open_dynamics.operators.liouvillian import (
    check_hermitian,
    effective_hamiltonian,
    liouvillian,
    spost,
    spre,
)
from open_dynamics.operators.quantum_object import (
    ObjectKind,
    QuantumObject,
    operator_to_vector,
)


def lindblad_rhs(H: np.ndarray, c_ops: list, rho: np.ndarray) -> np.ndarray:
    drho = -1j * (H @ rho - rho @ H)
    for L in c_ops:
        LdL = L.conj().T @ L
        drho += L @ rho @ L.conj().T - 0.5 * (LdL @ rho + rho @ LdL)
    return drho


class TestLiouvillian:
    @pytest.fixture
    def random_density_matrix(self, request):
        n = request.param
        rng = np.random.default_rng(n)
        a = rng.normal(size=(n, n)) + 1j * rng.normal(size=(n, n))
        rho = a @ a.conj().T
        return QuantumObject(rho / np.trace(rho), [n])

    @pytest.mark.parametrize("random_density_matrix", [2], indirect=True)
    def test_spre_spost(self, random_density_matrix):
        A = sigmax() + 0.5 * sigmaz()
        B = sigmam()
        vec = operator_to_vector(random_density_matrix)
        rho = random_density_matrix.full()
        np.testing.assert_allclose(
            (spre(A) @ vec).flat(), operator_to_vector(QuantumObject(A.full() @ rho)).flat()
        )
        np.testing.assert_allclose(
            (spost(B) @ vec).flat(), operator_to_vector(QuantumObject(rho @ B.full())).flat()
        )

    @pytest.mark.parametrize("random_density_matrix", [2, 4], indirect=True)
    def test_liouvillian_matches_master_equation(self, random_density_matrix):
        n = random_density_matrix.size
        a = destroy(n)
        H = 0.7 * num(n) + 0.3 * (a + a.dag())
        c_ops = [np.sqrt(0.4) * a, np.sqrt(0.1) * num(n)]

        generator = liouvillian(H, c_ops)
        assert generator.kind is ObjectKind.SUPER_OPERATOR
        assert generator.shape == (n * n, n * n)

        expected = lindblad_rhs(
            H.full(), [c.full() for c in c_ops], random_density_matrix.full()
        )
        result = generator @ operator_to_vector(random_density_matrix)
        np.testing.assert_allclose(
            result.flat(), expected.reshape(-1, order="F"), atol=1e-12
        )

    def test_liouvillian_is_trace_preserving(self):
        a = destroy(3)
        generator = liouvillian(num(3), [a, a.dag() @ a]).full()
        trace_row = np.eye(3).reshape(-1)
        np.testing.assert_allclose(trace_row @ generator, 0, atol=1e-12)

    def test_without_collapse_operators(self):
        H = sigmax()
        generator = liouvillian(H)
        np.testing.assert_allclose(
            generator.full(), (-1j * (spre(H) - spost(H))).full()
        )

    def test_dims_mismatch(self):
        with pytest.raises(DimensionMismatch):
            liouvillian(sigmaz(), [destroy(3)])
        with pytest.raises(DimensionMismatch):
            effective_hamiltonian(qeye(4), [QuantumObject(np.eye(4), [2, 2])])
        with pytest.raises(DimensionMismatch):
            liouvillian(QuantumObject(np.ones((2, 1)), [2]))

    def test_non_hermitian_hamiltonian_warns(self):
        with pytest.warns(NonHermitianWarning):
            generator = liouvillian(sigmam(), [sigmam()])
        assert generator.shape == (4, 4)

        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert check_hermitian(sigmax())

    def test_effective_hamiltonian(self):
        gamma = 0.5
        L = np.sqrt(gamma) * sigmam()
        h_eff = effective_hamiltonian(sigmaz(), [L])
        expected = sigmaz().full() - 0.5j * gamma * np.diag([0, 1])
        np.testing.assert_allclose(h_eff.full(), expected)
        assert not h_eff.isherm()
