from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, asdict, field
from datetime import datetime
from pathlib import Path

import yaml
from cattrs import structure

from open_dynamics.mpi.mpi_funcs import get_mpi_variables

logger = logging.getLogger()
COMM, RANK, SIZE, NAME, PARALLEL = get_mpi_variables()

SOLVER_METHODS = ("runge_kutta", "BDF", "Radau")
RK_ORDERS = ("23", "45")


@dataclass
class Config:
    def __str__(self):
        string = "\n"
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            string += "\t{:<25}: {}\n".format(name, value.__str__())
        return string


@dataclass
class LoggingConfig(Config):
    """Logging configuration:
    logging_folder: folder to save log files
    log_level_console: set the level of logging to the console
    log_level_file: set the level of logging to log files"""

    # logging directory
    logging_folder: str = ""
    # log levels console output
    log_level_console: int = logging.INFO
    # log files output
    log_level_file: int = logging.DEBUG


@dataclass
class SolverConfig(Config):
    """Dataclass collecting the parameters of the adaptive integrators"""

    # 'runge_kutta' for the non-stiff embedded Runge-Kutta pairs,
    # 'BDF' or 'Radau' for stiff problems
    method: str = "runge_kutta"
    # order of the embedded Runge-Kutta pair: '45' (i.e. 4 (5)) or '23' (i.e. 3 (2))
    RK_order: str = "45"
    # maximum allowed local error per step
    max_error: float = 1e-8
    # initial step size, adapted during integration
    step_size: float = 0.015
    # step sizes below this value are treated as a failure of the integrator
    min_step_size: float = 1e-12
    # maximum number of accepted steps per evolution
    max_steps: int = 1_000_000
    # maximal deviation of the density matrix trace from its initial value
    max_trace_deviation: float = 1e-6

    def __post_init__(self):
        if self.method not in SOLVER_METHODS:
            raise ValueError(f"method must be one of {SOLVER_METHODS}, got {self.method}")
        if self.RK_order not in RK_ORDERS:
            raise ValueError(f"RK_order must be one of {RK_ORDERS}, got {self.RK_order}")
        if not self.max_error > 0:
            raise ValueError("max_error must be >0")
        if not self.step_size > 0:
            raise ValueError("step_size must be >0")
        if not 0 < self.min_step_size < self.step_size:
            raise ValueError("min_step_size must be >0 and smaller than step_size")
        if not self.max_trace_deviation > 0:
            raise ValueError("max_trace_deviation must be >0")


@dataclass
class TrajectoryConfig(Config):
    """Parameters of a single quantum trajectory"""

    # absolute tolerance of the root finding locating jump times
    jump_time_tolerance: float = 1e-10
    # channel weights sum_k |L_k psi|^2 below this value (relative to |psi|^2)
    # are treated as 'no viable jump channel'
    zero_weight_tolerance: float = 1e-14
    # keep the final normalized state of every trajectory
    store_final_state: bool = False

    def __post_init__(self):
        if not self.jump_time_tolerance > 0:
            raise ValueError("jump_time_tolerance must be >0")
        if not self.zero_weight_tolerance >= 0:
            raise ValueError("zero_weight_tolerance must be >=0")


@dataclass
class EnsembleConfig(Config):
    """
    Dataclass collecting the parameters of the trajectory ensemble.
    """

    # number of trajectories
    ntraj: int = 500
    # number of worker threads per process
    num_workers: int = 1
    # split the trajectory index range between MPI ranks
    distributed: bool = False
    # base seed; trajectory i uses SeedSequence(seed, spawn_key=(i,)). Drawn at random if None
    seed: int | None = None
    # stop once the largest standard error of all averages is below this value (0 disables)
    target_std_error: float = 0.0
    # convergence is only checked after this many trajectories completed
    min_trajectories: int = 10
    # wall-clock budget of a single trajectory in seconds (None disables)
    trajectory_timeout: float | None = None
    # failed trajectories are retried with the same seed this many times
    max_retries: int = 0
    # publish partial averages while trajectories complete
    streaming: bool = False
    # keep the jump log of every trajectory in the result
    keep_jump_logs: bool = True

    def __post_init__(self):
        if self.ntraj < 1:
            raise ValueError("ntraj must be >=1")
        if self.num_workers < 1:
            raise ValueError("num_workers must be >=1")
        if self.target_std_error < 0:
            raise ValueError("target_std_error must be >=0")
        if self.min_trajectories < 2:
            raise ValueError("min_trajectories must be >=2")
        if self.trajectory_timeout is not None and not self.trajectory_timeout > 0:
            raise ValueError("trajectory_timeout must be >0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >=0")


@dataclass
class SimulationConfig(Config):
    """
    Dataclass collecting all parameters of a simulation run.
    """

    # save results and configs after each evolution
    save_checkpoint: bool = False
    # folder to store data
    checkpoint_folder: str = "./data"
    # logging configuration
    logging_config: LoggingConfig = field(default_factory=LoggingConfig)
    # integrator parameters
    solver_config: SolverConfig = field(default_factory=SolverConfig)
    # parameters of single trajectories
    trajectory_config: TrajectoryConfig = field(default_factory=TrajectoryConfig)
    # parameters of the trajectory ensemble
    ensemble_config: EnsembleConfig = field(default_factory=EnsembleConfig)

    def __post_init__(self):
        # setup logging
        if not self.logging_config.logging_folder:
            self.logging_config.logging_folder = self.checkpoint_folder + "/logging"

        if not logger.hasHandlers():
            configure_logging(
                logger,
                folder=self.logging_config.logging_folder,
                log_level_file=self.logging_config.log_level_file,
                log_level_console=self.logging_config.log_level_console,
            )

        if self.save_checkpoint:
            if Path(self.checkpoint_folder).is_dir():
                logger.warning(
                    f"checkpoint_folder '{self.checkpoint_folder}' already exists"
                )

    @classmethod
    def from_yaml(cls, directory: str) -> SimulationConfig:
        p = Path(directory)
        config_path = p / "config.yaml"

        if not config_path.is_file():
            raise FileNotFoundError(f"no config available in {config_path}")
        with open(config_path, "r") as file:
            loaded = yaml.safe_load(file)

        return structure(loaded, cls)

    def to_yaml(self, directory: str | None = None):
        if directory:
            p = Path(directory)
        else:
            p = Path(self.checkpoint_folder)

        p.mkdir(parents=True, exist_ok=True)
        config_path = p / "config.yaml"
        config = asdict(self)
        with open(config_path, "w") as file:
            yaml.dump(config, file)


def configure_logging(
    logger, folder: str, log_level_console=logging.INFO, log_level_file=logging.DEBUG
):
    # set up logging to file and console; non-root ranks only report errors to the console
    msg = "starting process {0} of {1} on {2}.\n"
    sys.stdout.write(msg.format(RANK + 1, SIZE, NAME))
    sys.stdout.flush()

    if RANK != 0:
        log_level_console = logging.ERROR

    p = Path(folder)
    p.mkdir(parents=True, exist_ok=True)
    now = datetime.now()
    date = now.strftime("%d-%m-%Y-%H-%M-%S")
    filename = "run-" + date + ".log"
    filepath = p / filename

    logger.setLevel(logging.DEBUG)

    # create file handler
    fh = logging.FileHandler(filepath, mode="w")
    fh.setLevel(log_level_file)

    # create console handler
    ch = logging.StreamHandler(stream=sys.stdout)
    ch.setLevel(log_level_console)

    console_formatter = logging.Formatter(
        "%(asctime)s,%(msecs)03d %(levelname)-8s [%(filename)s:%(lineno)d] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if SIZE > 1:
        # logs each mpi process in log files
        rank_filter = RankContextFilter()
        logger.addFilter(rank_filter)
        fh.addFilter(rank_filter)
        ch.addFilter(rank_filter)
        file_formatter = logging.Formatter(
            "%(asctime)s,%(msecs)03d %(levelname)-8s [RANK %(RANK)d :%(filename)s:%(lineno)d] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        file_formatter = logging.Formatter(
            "%(asctime)s,%(msecs)03d %(levelname)-8s [%(threadName)s:%(filename)s:%(lineno)d] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    fh.setFormatter(file_formatter)
    logger.addHandler(fh)

    ch.setFormatter(console_formatter)
    logger.addHandler(ch)


class RankContextFilter(logging.Filter):
    """
    This is a filter which injects contextual information into the log. Adds the RANK variable to each log
    message
    """

    def filter(self, record):
        record.RANK = RANK
        return True
