"""
Distributes the trajectories of a damped, driven cavity over MPI ranks:
mpirun -n 4 python run_ensemble.py
"""

import sys

import numpy as np
import open_dynamics as od
from open_dynamics.mpi.mpi_funcs import get_mpi_variables, print_mpi

COMM, RANK, SIZE, NAME, PARALLEL = get_mpi_variables()

n = 15
kappa = 0.5
drive_list = [0.1, 0.5, 1.0, 2.0]
drive = drive_list[int(sys.argv[1])] if len(sys.argv) > 1 else drive_list[1]
checkpoint_folder = f"./driven_cavity_kappa={kappa}_drive={drive}"

a = od.destroy(n)
hamiltonian = drive * (a + a.dag())
lindbladian = od.Lindbladian(hamiltonian, [np.sqrt(kappa) * a])

config = od.SimulationConfig(
    save_checkpoint=True,
    checkpoint_folder=checkpoint_folder,
    ensemble_config=od.EnsembleConfig(
        ntraj=2000, seed=11, distributed=True, num_workers=2, trajectory_timeout=60.0
    ),
)
times = np.linspace(0.0, 10.0, 101)
ensemble = od.TrajectoryEnsemble(
    lindbladian, od.basis(n, 0), times, [a.dag() @ a, a + a.dag()], config=config
)
result = ensemble.run()
print_mpi(RANK, f"received merged result: {result.summary()}")

if RANK == 0:
    # the steady state is a coherent state with amplitude -2i drive / kappa
    print(f"photon number at t={times[-1]}: {result.expect[0, -1].real:.4f}")
    print(f"steady state photon number:  {(2 * drive / kappa) ** 2:.4f}")
