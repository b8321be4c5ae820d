from __future__ import annotations

import logging
from dataclasses import replace
from typing import Sequence

from open_dynamics.config import SimulationConfig
from open_dynamics.ensemble import EnsembleResult, TrajectoryEnsemble
from open_dynamics.lindblad_evolution import OpenSystem
from open_dynamics.operators.hamiltonian import Hamiltonian
from open_dynamics.operators.lindbladian import Lindbladian
from open_dynamics.operators.quantum_object import QuantumObject
from open_dynamics.system import EvolutionResult
from open_dynamics.time_evolution import ClosedSystem

logger = logging.getLogger()


def sesolve(
    H: QuantumObject,
    psi0: QuantumObject,
    times: Sequence[float],
    e_ops: Sequence[QuantumObject] | None = None,
    config: SimulationConfig | None = None,
) -> EvolutionResult:
    """Unitary evolution of the ket psi0 under the Hamiltonian H."""
    system = ClosedSystem(Hamiltonian(H), config=config)
    return system.evolve(psi0, times, e_ops=e_ops)


def mesolve(
    H: QuantumObject,
    rho0: QuantumObject,
    times: Sequence[float],
    c_ops: Sequence[QuantumObject] | None = None,
    e_ops: Sequence[QuantumObject] | None = None,
    config: SimulationConfig | None = None,
) -> EvolutionResult:
    """
    Lindblad master equation for the initial state rho0 (ket, density matrix or
    vectorized density matrix). The final state is returned as a density matrix.
    """
    system = OpenSystem(Lindbladian(H, c_ops or []), config=config)
    return system.evolve(rho0, times, e_ops=e_ops)


def mcsolve(
    H: QuantumObject,
    psi0: QuantumObject,
    times: Sequence[float],
    c_ops: Sequence[QuantumObject] | None = None,
    e_ops: Sequence[QuantumObject] | None = None,
    ntraj: int | None = None,
    config: SimulationConfig | None = None,
) -> EnsembleResult:
    """
    Quantum-jump Monte-Carlo solution: averages `ntraj` trajectories starting in the
    ket psi0. `ntraj` overrides the number of trajectories of the ensemble config.
    """
    config = config if config is not None else SimulationConfig()
    if ntraj is not None:
        config = replace(
            config, ensemble_config=replace(config.ensemble_config, ntraj=ntraj)
        )
    ensemble = TrajectoryEnsemble(
        Lindbladian(H, c_ops or []), psi0, times, e_ops=e_ops or [], config=config
    )
    return ensemble.run()
