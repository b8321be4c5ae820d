import os

# sets the number of threads used in the first place for numpy matrix operations
os.environ["OMP_NUM_THREADS"] = "1"
import numpy as np
import open_dynamics as od


##### set some parameters #####
# decay rate of the excited level
gamma = 1.0
# number of trajectories of the Monte-Carlo ensemble
ntraj = 10_000
# output times
times = np.linspace(0.0, 5.0, 51)

# directory to store the data
checkpoint_folder = f"./spontaneous_decay_gamma={gamma}"

# set a SimulationConfig where all parameters relevant for the evolution are set
config = od.SimulationConfig(
    save_checkpoint=True,
    checkpoint_folder=checkpoint_folder,
    solver_config=od.SolverConfig(max_error=1e-6),
    ensemble_config=od.EnsembleConfig(ntraj=ntraj, seed=2024, num_workers=4),
)

# Two-level system without coherent dynamics, decaying through sigma^-.
# Dense matrices are faster than sparse ones for such a small Hilbert space.
hamiltonian = od.QuantumObject(np.zeros((2, 2)))
c_ops = [np.sqrt(gamma) * od.QuantumObject(od.sigmam().full())]
lindbladian = od.Lindbladian(hamiltonian, c_ops)

# start in the excited state |1>
initial_state = od.basis(2, 1)
sz = od.QuantumObject(od.sigmaz().full())

# deterministic reference from the master equation
master = od.OpenSystem(lindbladian, config=config).evolve(
    initial_state, times, e_ops=[sz]
)

# quantum-jump Monte-Carlo ensemble
ensemble = od.TrajectoryEnsemble(lindbladian, initial_state, times, [sz], config=config)
result = ensemble.run()
print(result)
print(result.summary())

exact = 1 - 2 * (1 - np.exp(-gamma * times))
print(f"max deviation master equation: {np.max(np.abs(master.expect[0] - exact)):.2e}")
print(f"max deviation trajectories:    {np.max(np.abs(result.expect[0] - exact)):.2e}")
print(f"max standard error:            {result.statistics.max_std_error:.2e}")
