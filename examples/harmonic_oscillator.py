import numpy as np
import open_dynamics as od

# truncated Fock space
n = 10
omega = 1.0
times = np.linspace(0.0, 20.0, 201)

a = od.destroy(n)
hamiltonian = omega * od.num(n)
initial_state = (od.basis(n, 2) + od.basis(n, 3)).unit()
x = a + a.dag()

# unitary evolution of the ket
closed = od.sesolve(hamiltonian, initial_state, times, e_ops=[x])

# the same evolution as a density matrix
config = od.SimulationConfig(solver_config=od.SolverConfig(method="Radau"))
open_ = od.mesolve(hamiltonian, initial_state, times, e_ops=[x], config=config)

# without collapse operators every trajectory is deterministic
trajectories = od.mcsolve(hamiltonian, initial_state, times, e_ops=[x], ntraj=2)

exact = np.sqrt(3) * np.cos(omega * times)
for name, result in [("sesolve", closed), ("mesolve", open_), ("mcsolve", trajectories)]:
    print(f"{name}: max deviation {np.max(np.abs(result.expect[0] - exact)):.2e}")
