import numpy as np
import pytest
from scipy.linalg import expm

from open_dynamics.config import SolverConfig
from open_dynamics.core.runge_kutta_solvers.local_runge_kutta import (
    LocalLindbladRungeKuttaSolver,
    LocalRungeKuttaSolver,
    get_solver,
)
from open_dynamics.core.runge_kutta_solvers.runge_kutta_parameters import get_parameters
from open_dynamics.core.runge_kutta_solvers.stiff_solver import StiffSolver, real_form
from open_dynamics.errors import IntegrationFailure
from open_dynamics.operators.constructors import destroy, num, sigmam, sigmax, sigmaz
from open_dynamics.operators.liouvillian import liouvillian


def integrate(solver, y, t0, t1):
    time = t0
    while time < t1:
        y, time = solver.solve(y, time, final_time=t1)
    return y, time


class TestRungeKutta:
    @pytest.fixture
    def test_hamiltonian(self):
        a = destroy(4)
        return (num(4) + 0.3 * (a + a.dag())).data

    @pytest.fixture
    def test_liouvillian(self):
        return liouvillian(sigmax() + 0.5 * sigmaz(), [np.sqrt(0.3) * sigmam()]).data

    @pytest.fixture
    def test_ket(self):
        psi = np.array([1.0, 1.0j, 0.5, 0.0], dtype=np.complex128)
        return psi / np.linalg.norm(psi)

    @pytest.mark.parametrize("order", ["23", "45"])
    def test_butcher_tableaus_are_consistent(self, order):
        c, a, b_high, b_low, _ = get_parameters(order)
        np.testing.assert_allclose(np.sum(b_high), 1.0)
        np.testing.assert_allclose(np.sum(b_low), 1.0)
        np.testing.assert_allclose(np.sum(a, axis=1), c, atol=1e-14)

    @pytest.mark.parametrize("order", ["23", "45"])
    def test_schroedinger_equation(self, order, test_hamiltonian, test_ket):
        config = SolverConfig(RK_order=order, max_error=1e-10)
        solver = LocalRungeKuttaSolver(config, test_hamiltonian)
        y, time = integrate(solver, test_ket, 0.0, 2.0)
        assert time == 2.0
        expected = expm(-2.0j * test_hamiltonian.toarray()) @ test_ket
        np.testing.assert_allclose(y, expected, atol=1e-6)
        assert solver.n_steps > 0

    @pytest.mark.parametrize("order", ["23", "45"])
    def test_master_equation(self, order, test_liouvillian):
        config = SolverConfig(RK_order=order, max_error=1e-10)
        solver = LocalLindbladRungeKuttaSolver(config, test_liouvillian)
        rho0 = np.array([0.0, 0.0, 0.0, 1.0], dtype=np.complex128)
        y, _ = integrate(solver, rho0, 0.0, 3.0)
        expected = expm(3.0 * test_liouvillian.toarray()) @ rho0
        np.testing.assert_allclose(y, expected, atol=1e-6)

    @pytest.mark.parametrize("method", ["BDF", "Radau"])
    def test_stiff_solvers(self, method, test_liouvillian):
        config = SolverConfig(method=method, max_error=1e-10)
        solver = get_solver(config, test_liouvillian, schroedinger=False)
        assert isinstance(solver, StiffSolver)
        rho0 = np.array([0.0, 0.0, 0.0, 1.0], dtype=np.complex128)
        y, time = integrate(solver, rho0, 0.0, 3.0)
        assert time == pytest.approx(3.0)
        expected = expm(3.0 * test_liouvillian.toarray()) @ rho0
        np.testing.assert_allclose(y, expected, atol=1e-6)

    def test_stiff_solver_schroedinger(self, test_hamiltonian, test_ket):
        config = SolverConfig(method="Radau", max_error=1e-10)
        solver = get_solver(config, test_hamiltonian, schroedinger=True)
        y, _ = integrate(solver, test_ket, 0.0, 1.0)
        expected = expm(-1.0j * test_hamiltonian.toarray()) @ test_ket
        np.testing.assert_allclose(y, expected, atol=1e-6)

    @pytest.mark.parametrize("dense", [True, False])
    def test_real_form(self, dense, test_liouvillian, test_ket):
        generator = test_liouvillian.toarray() if dense else test_liouvillian
        rho = np.outer(test_ket[:2], test_ket[:2].conj()).flatten(order="F")
        stacked = real_form(generator) @ np.concatenate([rho.real, rho.imag])
        assert np.isrealobj(stacked)
        np.testing.assert_allclose(
            stacked[:4] + 1j * stacked[4:], test_liouvillian @ rho, atol=1e-14
        )

    def test_radau_returns_complex_states(self, test_hamiltonian, test_ket):
        config = SolverConfig(method="Radau", max_error=1e-10)
        solver = get_solver(config, test_hamiltonian, schroedinger=True)
        y_new, _ = solver.solve(test_ket, 0.0, final_time=1.0)
        assert y_new.shape == test_ket.shape
        assert np.iscomplexobj(y_new)
        assert np.linalg.norm(y_new) == pytest.approx(1.0, abs=1e-8)

    def test_get_solver(self, test_hamiltonian):
        assert isinstance(
            get_solver(SolverConfig(), test_hamiltonian, schroedinger=True),
            LocalRungeKuttaSolver,
        )
        assert isinstance(
            get_solver(SolverConfig(), test_hamiltonian, schroedinger=False),
            LocalLindbladRungeKuttaSolver,
        )

    @pytest.mark.parametrize("method", ["runge_kutta", "BDF", "Radau"])
    def test_dense_output(self, method, test_hamiltonian, test_ket):
        config = SolverConfig(method=method, max_error=1e-10, step_size=0.2)
        solver = get_solver(config, test_hamiltonian, schroedinger=True)
        y_new, t_new = solver.solve(test_ket, 0.0, final_time=5.0)
        interpolant = solver.dense_output()

        np.testing.assert_allclose(interpolant(0.0), test_ket)
        np.testing.assert_allclose(interpolant(t_new), y_new)
        t_mid = 0.5 * t_new
        expected = expm(-1j * t_mid * test_hamiltonian.toarray()) @ test_ket
        np.testing.assert_allclose(interpolant(t_mid), expected, atol=1e-6)

    def test_dense_output_outside_step(self, test_hamiltonian, test_ket):
        solver = LocalRungeKuttaSolver(SolverConfig(), test_hamiltonian)
        with pytest.raises(RuntimeError):
            solver.dense_output()
        _, t_new = solver.solve(test_ket, 0.0)
        with pytest.raises(ValueError):
            solver.dense_output()(2 * t_new)

    def test_lands_on_final_time(self, test_hamiltonian, test_ket):
        config = SolverConfig(step_size=0.5)
        solver = LocalRungeKuttaSolver(config, test_hamiltonian)
        _, time = solver.solve(test_ket, 0.0, final_time=0.1)
        assert time == 0.1

    def test_max_steps(self, test_hamiltonian, test_ket):
        config = SolverConfig(max_steps=3, step_size=0.01)
        solver = LocalRungeKuttaSolver(config, test_hamiltonian)
        with pytest.raises(IntegrationFailure) as failure:
            integrate(solver, test_ket, 0.0, 10.0)
        assert failure.value.time is not None
        assert failure.value.time < 10.0
        assert failure.value.state is not None

    def test_step_size_underflow(self, test_ket):
        # a stiff generator the explicit method can not resolve with this step size floor
        generator = 1e12 * np.diag([1.0, 2.0, 3.0, 4.0]).astype(np.complex128)
        config = SolverConfig(max_error=1e-12, step_size=0.1, min_step_size=1e-6)
        solver = LocalRungeKuttaSolver(config, generator)
        with pytest.raises(IntegrationFailure, match="fell below"):
            solver.solve(test_ket, 0.0, final_time=1.0)

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            SolverConfig(method="euler")
        with pytest.raises(ValueError):
            SolverConfig(RK_order="1012")
        with pytest.raises(ValueError):
            SolverConfig(min_step_size=1.0, step_size=0.1)
