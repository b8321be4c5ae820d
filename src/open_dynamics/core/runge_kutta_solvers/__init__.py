from .runge_kutta_solver import RungeKuttaSolver, Solver
from .stiff_solver import StiffSolver
from .local_runge_kutta import (
    LocalLindbladRungeKuttaSolver,
    LocalRungeKuttaSolver,
    get_solver,
)
