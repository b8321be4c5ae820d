from __future__ import annotations

from typing import Union

from open_dynamics.core.runge_kutta_solvers.runge_kutta_solver import Solver
from open_dynamics.operators.hamiltonian import Hamiltonian
from open_dynamics.operators.lindbladian import Lindbladian

SystemOperator = Union[Hamiltonian, Lindbladian]
__all__ = ["Solver", "SystemOperator"]
