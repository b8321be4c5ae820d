from .errors import *
from .operators import *
from .config import *
from .core import *
from .system import EvolutionResult
from .lindblad_evolution import OpenSystem
from .time_evolution import ClosedSystem
from .trajectory import (
    JumpRecord,
    QuantumTrajectory,
    TrajectoryResult,
    TrajectoryStatus,
    jump_probabilities,
)
from .ensemble import (
    EnsembleResult,
    EnsembleStatus,
    ExecutionContext,
    TrajectoryEnsemble,
    TrajectoryFailure,
)
from .solve import mcsolve, mesolve, sesolve
