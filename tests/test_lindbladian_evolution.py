import logging
import shutil
from unittest.mock import patch, PropertyMock

import numpy as np
import pytest
from scipy.linalg import expm

from open_dynamics.config import SimulationConfig, SolverConfig
from open_dynamics.core.utils import unvectorize, vectorize
from open_dynamics.errors import DimensionMismatch, IntegrationFailure
from open_dynamics.lindblad_evolution import OpenSystem
from open_dynamics.operators.constructors import (
    basis,
    destroy,
    ket2dm,
    num,
    qeye,
    sigmam,
    sigmax,
    sigmaz,
)
from open_dynamics.operators.lindbladian import Lindbladian
from open_dynamics.operators.quantum_object import (
    ObjectKind,
    QuantumObject,
    operator_to_vector,
)

GAMMA = 0.7


class TestOpenSystem:
    @pytest.fixture
    def decay(self):
        return Lindbladian(0.0 * sigmaz(), [np.sqrt(GAMMA) * sigmam()])

    @pytest.fixture
    def driven(self):
        return Lindbladian(sigmax() + 0.5 * sigmaz(), [np.sqrt(0.3) * sigmam()])

    @pytest.fixture
    def accurate_config(self):
        return SimulationConfig(solver_config=SolverConfig(max_error=1e-10))

    @pytest.mark.parametrize("method", ["runge_kutta", "BDF", "Radau"])
    def test_spontaneous_decay(self, method, decay):
        config = SimulationConfig(
            solver_config=SolverConfig(method=method, max_error=1e-10)
        )
        system = OpenSystem(decay, config=config)
        times = np.linspace(0, 5, 21)
        result = system.evolve(basis(2, 1), times, e_ops=[sigmaz()])
        np.testing.assert_allclose(
            result.expect[0], 1 - 2 * (1 - np.exp(-GAMMA * times)), atol=1e-6
        )

    def test_matches_matrix_exponential(self, driven, accurate_config):
        system = OpenSystem(driven, config=accurate_config)
        rho0 = ket2dm(basis(2, 0))
        result = system.evolve(rho0, [0.0, 3.0])
        expected = expm(3.0 * driven.liouvillian.full()) @ vectorize(rho0.full())
        np.testing.assert_allclose(
            result.final_state.full(), unvectorize(expected, 2), atol=1e-7
        )
        assert result.final_state.kind is ObjectKind.OPERATOR

    def test_trace_is_preserved(self, driven, accurate_config):
        system = OpenSystem(driven, config=accurate_config)
        times = np.linspace(0, 10, 11)
        result = system.evolve(basis(2, 0), times, e_ops=[qeye(2)])
        np.testing.assert_allclose(result.expect[0], 1.0, atol=1e-8)
        assert result.final_state.tr() == pytest.approx(1.0, abs=1e-8)
        assert result.final_state.isherm(tol=1e-8)

    def test_state_inputs_are_equivalent(self, driven, accurate_config):
        system = OpenSystem(driven, config=accurate_config)
        psi0 = (basis(2, 0) + 1j * basis(2, 1)).unit()
        times = np.linspace(0, 2, 5)
        results = [
            system.evolve(state, times, e_ops=[sigmax(), sigmaz()])
            for state in (psi0, ket2dm(psi0), operator_to_vector(ket2dm(psi0)))
        ]
        for result in results[1:]:
            np.testing.assert_allclose(result.expect, results[0].expect, atol=1e-12)

    def test_invalid_states(self, driven):
        system = OpenSystem(driven)
        with pytest.raises(DimensionMismatch):
            system.evolve(basis(3, 0), [0.0, 1.0])
        with pytest.raises(DimensionMismatch):
            system.evolve(basis(2, 0).dag(), [0.0, 1.0])

    def test_closed_limit(self, accurate_config):
        # without collapse operators the master equation reduces to unitary evolution
        lindbladian = Lindbladian(1.3 * num(6))
        system = OpenSystem(lindbladian, config=accurate_config)
        a = destroy(6)
        times = np.linspace(0, 5, 11)
        result = system.evolve(
            (basis(6, 2) + basis(6, 3)).unit(), times, e_ops=[a + a.dag()]
        )
        np.testing.assert_allclose(
            result.expect[0], np.sqrt(3) * np.cos(1.3 * times), atol=1e-6
        )

    def test_trace_deviation(self, driven):
        # a generator that does not preserve the trace
        leaky = driven.liouvillian.full() - 0.1 * np.eye(4)
        system = OpenSystem(driven)
        with patch.object(
            OpenSystem, "generator", new_callable=PropertyMock, return_value=leaky
        ):
            with pytest.raises(IntegrationFailure, match="trace") as failure:
                system.evolve(basis(2, 0), [0.0, 5.0])
        assert failure.value.state.kind is ObjectKind.OPERATOR
        assert failure.value.time < 5.0

    def test_unnormalized_state_warns(self, decay, accurate_config, caplog):
        system = OpenSystem(decay, config=accurate_config)
        with caplog.at_level(logging.WARNING):
            system.evolve(ket2dm(basis(2, 1)), [0.0, 1.0])
        assert "not normalized" not in caplog.text

        with caplog.at_level(logging.WARNING):
            result = system.evolve(2.0 * ket2dm(basis(2, 1)), [0.0, 1.0])
        assert "not normalized: trace 2.000000" in caplog.text
        # the trace is conserved relative to the initial value
        assert result.final_state.tr() == pytest.approx(2.0, abs=1e-8)

    def test_callback_receives_density_matrix(self, decay):
        system = OpenSystem(decay)
        ground = ket2dm(basis(2, 0))
        kinds = set()

        def callback(time, state):
            kinds.add(state.kind)
            return ground

        result = system.evolve(basis(2, 1), [0.0, 1.0], e_ops=[sigmaz()], callback=callback)
        assert kinds == {ObjectKind.OPERATOR}
        assert result.expect[0, -1] == pytest.approx(-1.0)
        with pytest.raises(DimensionMismatch):
            system.evolve(
                basis(2, 1), [0.0, 1.0], callback=lambda t, s: basis(2, 0)
            )

    def test_checkpoint(self, driven):
        folder = "test_folder"
        config = SimulationConfig(save_checkpoint=True, checkpoint_folder=folder)
        system = OpenSystem(driven, config=config)
        try:
            system.evolve(basis(2, 0), [0.0, 1.0], e_ops=[sigmaz()])
            loaded = OpenSystem.from_checkpoint(folder)
            assert loaded.lindbladian == driven
            loaded.data.load_checkpoint(folder)
            np.testing.assert_allclose(loaded.data.results_dict["times"][0], [0.0, 1.0])
        finally:
            shutil.rmtree(folder, ignore_errors=True)

    def test_rejects_wrong_dims(self, driven):
        system = OpenSystem(driven)
        with pytest.raises(DimensionMismatch):
            system.evolve(QuantumObject(np.ones((4, 4))), [0.0, 1.0])
