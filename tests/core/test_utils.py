import numpy as np
import pytest

from open_dynamics.core.utils import (
    Status,
    Trigger,
    expectation_rows,
    ket_expectation,
    trace_indices,
    trace_vectorized,
    unvectorize,
    validate_times,
    vectorize,
    vectorized_expectation,
)
from open_dynamics.errors import TimeGridError
from open_dynamics.operators.constructors import destroy, ket2dm, basis, sigmax, sigmaz


class TestValidateTimes:
    def test_valid_grid(self):
        grid = validate_times([0, 0.5, 1.0])
        assert grid.dtype == np.float64
        np.testing.assert_allclose(grid, [0.0, 0.5, 1.0])

    def test_single_time(self):
        assert validate_times([2.0]).shape == (1,)

    @pytest.mark.parametrize(
        "times",
        [
            [],
            [0.0, 1.0, 1.0],
            [0.0, 2.0, 1.0],
            [0.0, np.nan],
            [0.0, np.inf],
            [[0.0, 1.0]],
            ["a", "b"],
        ],
    )
    def test_invalid_grid(self, times):
        with pytest.raises(TimeGridError):
            validate_times(times)

    def test_message_names_entry(self):
        with pytest.raises(TimeGridError, match="entry 2"):
            validate_times([0.0, 1.0, 0.5])

    def test_start_time(self):
        validate_times([1.0, 2.0], t0=1.0)
        with pytest.raises(TimeGridError):
            validate_times([0.5, 2.0], t0=1.0)

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            validate_times([1.0, 0.0])


class TestExpectation:
    def test_ket_expectation(self):
        psi = np.array([1.0, 1.0]) / np.sqrt(2)
        values = ket_expectation([sigmax().data, sigmaz().data], psi)
        np.testing.assert_allclose(values, [1.0, 0.0], atol=1e-14)

    def test_rows_match_trace(self):
        rng = np.random.default_rng(3)
        matrix = rng.normal(size=(3, 3)) + 1j * rng.normal(size=(3, 3))
        rho = matrix @ matrix.conj().T
        rho /= np.trace(rho)
        a = destroy(3)
        e_ops = [a.dag() @ a, a + a.dag()]

        rows = expectation_rows(e_ops)
        values = vectorized_expectation(rows, vectorize(rho))
        expected = [np.trace(e_op.full() @ rho) for e_op in e_ops]
        np.testing.assert_allclose(values, expected)

    def test_no_observables(self):
        rows = expectation_rows([])
        assert rows.shape == (0, 0)
        assert vectorized_expectation(rows, np.ones(4)).shape == (0,)

    def test_trace(self):
        rho = ket2dm(basis(4, 2)).full()
        y = vectorize(rho)
        np.testing.assert_array_equal(trace_indices(2), [0, 3])
        assert trace_vectorized(y, 4) == pytest.approx(1.0)
        np.testing.assert_array_equal(unvectorize(y, 4), rho)


def test_trigger():
    trigger = Trigger()
    assert trigger.status is Status.Continue
    trigger.pull()
    assert trigger.status is Status.Stop
    trigger.reset()
    assert trigger.status is Status.Continue
