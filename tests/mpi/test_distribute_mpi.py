"""
To run the tests in this file:
mpirun -n 2 python -m pytest --with-mpi test_distribute_mpi.py
"""

import numpy as np
import pytest

from open_dynamics.config import EnsembleConfig, SimulationConfig, SolverConfig
from open_dynamics.core.statistics import RunningStatistics
from open_dynamics.ensemble import EnsembleStatus, TrajectoryEnsemble
from open_dynamics.mpi.distribute import Distributor
from open_dynamics.mpi.mpi_funcs import get_mpi_variables, print_mpi
from open_dynamics.operators.constructors import basis, sigmam, sigmaz
from open_dynamics.operators.lindbladian import Lindbladian
from open_dynamics.operators.quantum_object import QuantumObject

COMM, RANK, SIZE, NAME, PARALLEL = get_mpi_variables()


class TestScatterGather:
    @pytest.mark.mpi(min_size=2)
    @pytest.mark.parametrize("n_tasks", [2, 3, 10, 101])
    def test_scatter(self, n_tasks):
        distributor = Distributor(n_tasks)
        indices_on_worker = distributor.scatter()
        print_mpi(RANK, indices_on_worker)
        np.testing.assert_array_equal(indices_on_worker, distributor.local_indices())

    @pytest.mark.mpi(min_size=2)
    @pytest.mark.parametrize("n_tasks", [2, 3, 10, 101])
    def test_gather(self, n_tasks):
        distributor = Distributor(n_tasks)
        indices_on_worker = distributor.scatter()
        gathered = distributor.gather(indices_on_worker)
        if RANK == 0:
            np.testing.assert_array_equal(np.concatenate(gathered), np.arange(n_tasks))
        else:
            assert gathered is None

    @pytest.mark.mpi(min_size=2)
    def test_distribute_non_root_is_none(self):
        distribution = Distributor(10).distribute()
        if RANK != 0:
            assert distribution is None

    @pytest.mark.mpi(min_size=2)
    def test_gather_and_merge(self):
        samples = np.arange(4 * SIZE, dtype=float).reshape(SIZE, 4)
        partial = RunningStatistics.from_samples(samples[RANK : RANK + 1])
        merged = Distributor(SIZE).gather_and_merge(partial)
        # every rank receives the merged result
        assert merged == RunningStatistics.from_samples(samples)


class TestDistributedEnsemble:
    @pytest.mark.mpi(min_size=2)
    def test_distributed_matches_local(self):
        lindbladian = Lindbladian(
            QuantumObject(np.zeros((2, 2))), [QuantumObject(sigmam().full())]
        )
        times = np.linspace(0, 2, 5)

        def run(distributed):
            config = SimulationConfig(
                solver_config=SolverConfig(max_error=1e-6),
                ensemble_config=EnsembleConfig(ntraj=40, seed=3, distributed=distributed),
            )
            ensemble = TrajectoryEnsemble(
                lindbladian, basis(2, 1), times, [QuantumObject(sigmaz().full())], config=config
            )
            return ensemble.run()

        distributed, local = run(True), run(False)
        assert distributed.status is EnsembleStatus.Complete
        assert distributed.n_completed == 40
        assert distributed.jump_logs == local.jump_logs
        np.testing.assert_allclose(distributed.expect, local.expect, atol=1e-12)
