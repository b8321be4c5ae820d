from .config import (
    Config,
    EnsembleConfig,
    LoggingConfig,
    SimulationConfig,
    SolverConfig,
    TrajectoryConfig,
    configure_logging,
)
from .monitor import ResultConfig, ResultStore

__all__ = [
    "Config",
    "EnsembleConfig",
    "LoggingConfig",
    "SimulationConfig",
    "SolverConfig",
    "TrajectoryConfig",
    "configure_logging",
    "ResultConfig",
    "ResultStore",
]
