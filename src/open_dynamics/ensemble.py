from __future__ import annotations

import logging
import pickle
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from itertools import islice
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator, Sequence

import numpy as np
import yaml

from open_dynamics.config import EnsembleConfig, SimulationConfig
from open_dynamics.config.monitor import ResultStore
from open_dynamics.core.statistics import RunningStatistics
from open_dynamics.core.utils import Status, Trigger, validate_times
from open_dynamics.errors import TrajectoryCancelled
from open_dynamics.mpi.mpi import MultiProcessing
from open_dynamics.mpi.mpi_funcs import get_mpi_variables
from open_dynamics.operators.quantum_object import ObjectKind, QuantumObject
from open_dynamics.trajectory import (
    JumpRecord,
    QuantumTrajectory,
    TrajectoryResult,
    trajectory_seed_sequence,
)

if TYPE_CHECKING:
    from open_dynamics.typedefs import SystemOperator

logger = logging.getLogger()
COMM, RANK, SIZE, NAME, PARALLEL = get_mpi_variables()

# futures kept in flight per worker thread
INFLIGHT_FACTOR = 2


@dataclass
class ExecutionContext:
    """
    Explicit execution resources of one ensemble run: the base seed from which every
    trajectory seed is derived, the number of worker threads, the MPI communicator and
    the event used for cooperative cancellation.
    """

    seed: int
    num_workers: int = 1
    distributed: bool = False
    comm: Any = None
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def __post_init__(self):
        if self.num_workers < 1:
            raise ValueError("num_workers must be >=1")
        self.comm, self.rank, self.size, self.name, _ = get_mpi_variables(self.comm)

    @classmethod
    def from_config(cls, config: EnsembleConfig, comm=None) -> ExecutionContext:
        comm, rank, size, _, parallel = get_mpi_variables(comm)
        seed = config.seed
        if seed is None:
            seed = np.random.SeedSequence().entropy
            if config.distributed and parallel:
                # all ranks must derive their trajectory seeds from the same base seed
                seed = comm.bcast(seed, root=0)
            logger.info(f"drew base seed {seed}")
        return cls(
            seed=seed,
            num_workers=config.num_workers,
            distributed=config.distributed,
            comm=comm,
        )

    @property
    def parallel(self) -> bool:
        return self.distributed and self.size > 1

    def seed_sequence(self, index: int) -> np.random.SeedSequence:
        return trajectory_seed_sequence(self.seed, index)

    def cancel(self):
        """Ask all running trajectories to stop at their next step."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


@dataclass(frozen=True)
class TrajectoryFailure:
    index: int
    seed: int
    reason: str
    attempts: int = 1


class EnsembleStatus(Enum):
    # snapshot of a run in progress
    Running = "running"
    # all requested trajectories completed
    Complete = "complete"
    # some trajectories failed
    Partial = "partial"
    # the run was stopped (converged or cancelled) before all trajectories were run
    StoppedEarly = "stopped_early"


class EnsembleAccumulator:
    """
    Partial aggregate of completed and failed trajectories. Accumulators of disjoint
    sets of trajectories merge into the accumulator of their union; the merge is
    commutative and associative.
    """

    def __init__(self, shape: tuple[int, int], n_channels: int, keep_jump_logs: bool = True):
        self.statistics = RunningStatistics(shape)
        self.failures: list[TrajectoryFailure] = []
        self.jump_counts = np.zeros(n_channels, dtype=np.int64)
        self.invalid_jumps = 0
        self.keep_jump_logs = keep_jump_logs
        self.jump_logs: dict[int, list[JumpRecord]] = {}
        self.final_states: dict[int, QuantumObject] = {}

    @property
    def n_completed(self) -> int:
        return self.statistics.count

    def add_result(self, result: TrajectoryResult):
        self.statistics.update(result.expect)
        self.jump_counts += result.jump_counts(len(self.jump_counts))
        self.invalid_jumps += result.invalid_jumps
        if self.keep_jump_logs:
            self.jump_logs[result.index] = list(result.jumps)
        if result.final_state is not None:
            self.final_states[result.index] = result.final_state

    def add_failure(self, failure: TrajectoryFailure):
        self.failures.append(failure)

    def merge(self, other: EnsembleAccumulator) -> EnsembleAccumulator:
        merged = EnsembleAccumulator(
            self.statistics.shape, len(self.jump_counts), self.keep_jump_logs
        )
        merged.statistics = self.statistics.merge(other.statistics)
        merged.failures = sorted(self.failures + other.failures, key=lambda f: f.index)
        merged.jump_counts = self.jump_counts + other.jump_counts
        merged.invalid_jumps = self.invalid_jumps + other.invalid_jumps
        merged.jump_logs = {**self.jump_logs, **other.jump_logs}
        merged.final_states = {**self.final_states, **other.final_states}
        return merged


@dataclass
class EnsembleResult:
    """
    Averaged observables of a trajectory ensemble. `status` distinguishes a complete
    run over all requested trajectories from partial and early-stopped runs; the
    averages are always taken over the `n_completed` successful trajectories only.
    """

    times: np.ndarray
    statistics: RunningStatistics
    n_requested: int
    status: EnsembleStatus
    seed: int
    failures: list[TrajectoryFailure] = field(default_factory=list)
    # number of jumps per collapse channel, summed over all trajectories
    jump_counts: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    # jump events without a viable collapse channel
    invalid_jumps: int = 0
    jump_logs: dict[int, list[JumpRecord]] | None = None
    final_states: dict[int, QuantumObject] | None = None

    checkpoint_name = "ensemble_result"

    @classmethod
    def from_accumulator(
        cls,
        accumulator: EnsembleAccumulator,
        times: np.ndarray,
        n_requested: int,
        status: EnsembleStatus,
        seed: int,
    ) -> EnsembleResult:
        return cls(
            times=times,
            statistics=accumulator.statistics.copy(),
            n_requested=n_requested,
            status=status,
            seed=seed,
            failures=list(accumulator.failures),
            jump_counts=accumulator.jump_counts.copy(),
            invalid_jumps=accumulator.invalid_jumps,
            jump_logs=dict(accumulator.jump_logs) if accumulator.keep_jump_logs else None,
            final_states=dict(accumulator.final_states) or None,
        )

    @property
    def mean(self) -> np.ndarray:
        return self.statistics.mean

    @property
    def expect(self) -> np.ndarray:
        """Ensemble mean, one row per observable and one column per output time"""
        return self.statistics.mean

    @property
    def variance(self) -> np.ndarray:
        return self.statistics.variance

    @property
    def std_error(self) -> np.ndarray:
        return self.statistics.std_error

    @property
    def n_completed(self) -> int:
        return self.statistics.count

    @property
    def n_failed(self) -> int:
        return len(self.failures)

    @property
    def is_complete(self) -> bool:
        return self.status is EnsembleStatus.Complete

    def summary(self) -> str:
        if self.status is EnsembleStatus.Complete:
            return f"complete: averaged over all {self.n_requested} trajectories"
        if self.status is EnsembleStatus.Running:
            return f"running: {self.n_completed} of {self.n_requested} trajectories completed"
        if self.status is EnsembleStatus.StoppedEarly:
            return (
                f"stopped early: averaged over {self.n_completed} of "
                f"{self.n_requested} trajectories with {self.n_failed} failures"
            )
        return (
            f"partial: averaged over {self.n_completed} of {self.n_requested} "
            f"trajectories with {self.n_failed} failures"
        )

    def _metadata(self) -> dict:
        return {
            "status": self.status.value,
            "n_requested": self.n_requested,
            "n_completed": self.n_completed,
            "n_failed": self.n_failed,
            "seed": int(self.seed),
            "invalid_jumps": int(self.invalid_jumps),
            "jump_counts": [int(count) for count in self.jump_counts],
            "failures": [
                {"index": int(f.index), "reason": f.reason, "attempts": f.attempts}
                for f in self.failures
            ],
        }

    def save_checkpoint(self, folder: str):
        p = Path(folder)
        p.mkdir(parents=True, exist_ok=True)
        filepath = p / f"{self.checkpoint_name}.pkl"
        metadata = p / f"{self.checkpoint_name}_config.yaml"
        if filepath.is_file():
            logger.warning(f"{filepath} exists and is overwritten")

        with open(filepath, "wb") as file:
            pickle.dump(self, file, protocol=pickle.HIGHEST_PROTOCOL)
        with open(metadata, "w") as file:
            yaml.dump(self._metadata(), file)
        logger.info(f"saved ensemble result in {filepath}")

    @classmethod
    def from_checkpoint(cls, folder: str) -> EnsembleResult:
        filepath = Path(folder) / f"{cls.checkpoint_name}.pkl"
        if not filepath.is_file():
            raise FileNotFoundError(f"no file available in {filepath}")
        with open(filepath, "rb") as file:
            result = pickle.load(file)
        logger.info(f"loaded ensemble result from {folder}")
        return result

    def __str__(self):
        string = "EnsembleResult:\n"
        string += "\t{:<25}: {}\n".format("status", self.status.value)
        string += "\t{:<25}: {}\n".format("requested trajectories", self.n_requested)
        string += "\t{:<25}: {}\n".format("completed trajectories", self.n_completed)
        string += "\t{:<25}: {}\n".format("failed trajectories", self.n_failed)
        string += "\t{:<25}: {}\n".format("jumps per channel", list(self.jump_counts))
        string += "\t{:<25}: {}\n".format("invalid jumps", self.invalid_jumps)
        string += "\t{:<25}: {:.3e}\n".format(
            "max standard error", self.statistics.max_std_error
        )
        return string


class TrajectoryEnsemble:
    """
    Runs `ntraj` independent quantum trajectories and averages their observables.

    Trajectory i is seeded from (context.seed, i) only. Locally the trajectories run on
    a pool of worker threads with a bounded number of submitted tasks; with
    `distributed=True` every MPI rank runs the shard np.array_split(range(ntraj), size)[rank]
    and the per-rank aggregates are merged at rank 0 and broadcast. Failed trajectories
    are retried with the same seed up to `max_retries` times and are otherwise reported
    in the result, never averaged.
    """

    def __init__(
        self,
        operator: SystemOperator,
        initial_state: QuantumObject,
        times: Sequence[float],
        e_ops: Sequence[QuantumObject] = (),
        config: SimulationConfig | None = None,
        context: ExecutionContext | None = None,
    ):
        self.config = config if config is not None else SimulationConfig()
        self.times = validate_times(times)
        operator.check_state(initial_state, (ObjectKind.KET,))
        self.e_ops = list(e_ops)
        operator.check_observables(self.e_ops)

        self._operator = operator
        self._initial_state = initial_state
        self.context = (
            context
            if context is not None
            else ExecutionContext.from_config(self.config.ensemble_config)
        )
        # build the shared generator once, before worker threads read it
        _ = operator.effective_hamiltonian

        self.data = ResultStore()
        self._trigger = Trigger()

    @property
    def ensemble_config(self) -> EnsembleConfig:
        return self.config.ensemble_config

    @property
    def ntraj(self) -> int:
        return self.ensemble_config.ntraj

    @property
    def n_channels(self) -> int:
        return len(self._operator.c_ops)

    @property
    def shape(self) -> tuple[int, int]:
        return len(self.e_ops), len(self.times)

    def run(self) -> EnsembleResult:
        """Run the ensemble and return the final result."""
        result = None
        for result in self._iterate(snapshots=self.ensemble_config.streaming):
            if result.status is EnsembleStatus.Running:
                logger.info(
                    f"{result.summary()}, max standard error "
                    f"{result.statistics.max_std_error:.3e}"
                )
        return result

    def iter_results(self) -> Iterator[EnsembleResult]:
        """
        Yields a snapshot with status `running` after every finished trajectory and the
        final result last. Distributed runs only yield the final, merged result.
        """
        return self._iterate(snapshots=True)

    def _iterate(self, snapshots: bool) -> Iterator[EnsembleResult]:
        self._trigger.reset()
        self.context.cancel_event.clear()
        logger.info(
            f"running {self.ntraj} trajectories on {self.context.num_workers} threads"
            + (f" and {self.context.size} ranks" if self.context.parallel else "")
        )
        start = time.monotonic()

        if self.context.parallel:
            if self.ensemble_config.target_std_error > 0:
                logger.warning(
                    "convergence based stopping is not supported for distributed "
                    "ensembles and is ignored"
                )
            accumulator = self._run_distributed(self.ntraj, comm=self.context.comm)
        else:
            accumulator = self._empty_accumulator()
            for accumulator in self._iter_local(np.arange(self.ntraj)):
                if snapshots:
                    yield self._snapshot(accumulator, EnsembleStatus.Running)

        result = self._snapshot(accumulator, self._final_status(accumulator))
        logger.info(
            f"{result.summary()} in {time.monotonic() - start:.2f}s "
            f"(seed {self.context.seed})"
        )
        self._report_channels(result)

        self.data.update(result)
        if self.config.save_checkpoint:
            self.save_checkpoint(result)
        yield result

    def _empty_accumulator(self) -> EnsembleAccumulator:
        return EnsembleAccumulator(
            self.shape, self.n_channels, self.ensemble_config.keep_jump_logs
        )

    def _snapshot(self, accumulator: EnsembleAccumulator, status: EnsembleStatus) -> EnsembleResult:
        return EnsembleResult.from_accumulator(
            accumulator,
            times=self.times,
            n_requested=self.ntraj,
            status=status,
            seed=self.context.seed,
        )

    def _final_status(self, accumulator: EnsembleAccumulator) -> EnsembleStatus:
        n_finished = accumulator.n_completed + len(accumulator.failures)
        if n_finished < self.ntraj and (
            self._trigger.status is Status.Stop or self.context.cancelled
        ):
            return EnsembleStatus.StoppedEarly
        if accumulator.failures or accumulator.n_completed < self.ntraj:
            return EnsembleStatus.Partial
        return EnsembleStatus.Complete

    def _run_trajectory(self, index: int) -> TrajectoryResult:
        timeout = self.ensemble_config.trajectory_timeout
        deadline = time.monotonic() + timeout if timeout is not None else None
        trajectory = QuantumTrajectory(
            self._operator,
            self._initial_state,
            self.times,
            self.e_ops,
            config=self.config,
            seed=self.context.seed,
            index=int(index),
            cancel_event=self.context.cancel_event,
            deadline=deadline,
        )
        return trajectory.run()

    def _iter_local(
        self, indices: np.ndarray, check_convergence: bool = True
    ) -> Iterator[EnsembleAccumulator]:
        """
        Runs the trajectories `indices` on the local thread pool and yields the
        accumulator after every finished trajectory. Without `check_convergence` all
        trajectories are run regardless of `target_std_error`.
        """
        accumulator = self._empty_accumulator()
        max_retries = self.ensemble_config.max_retries
        max_inflight = self.context.num_workers * INFLIGHT_FACTOR
        attempts = dict.fromkeys((int(i) for i in indices), 0)
        pending = iter(int(i) for i in indices)

        with ThreadPoolExecutor(
            max_workers=self.context.num_workers, thread_name_prefix="trajectory"
        ) as executor:
            futures = {}

            def submit_job(index: int):
                futures[executor.submit(self._run_trajectory, index)] = index

            def submit_next():
                index = next(pending, None)
                if index is not None:
                    submit_job(index)

            for index in islice(pending, max_inflight):
                submit_job(index)

            try:
                while futures:
                    done, _ = wait(futures, return_when=FIRST_COMPLETED)
                    for future in done:
                        index = futures.pop(future)
                        if future.cancelled():
                            continue
                        try:
                            result = future.result()
                        except TrajectoryCancelled:
                            continue
                        except Exception as error:
                            attempts[index] += 1
                            if attempts[index] <= max_retries and not self._stopping():
                                logger.info(
                                    f"retrying trajectory {index} ({attempts[index]}/{max_retries}) "
                                    f"after {type(error).__name__}: {error}"
                                )
                                submit_job(index)
                                continue
                            logger.warning(
                                f"trajectory {index} failed after {attempts[index]} attempts: "
                                f"{type(error).__name__}: {error}"
                            )
                            accumulator.add_failure(
                                TrajectoryFailure(
                                    index=index,
                                    seed=self.context.seed,
                                    reason=f"{type(error).__name__}: {error}",
                                    attempts=attempts[index],
                                )
                            )
                        else:
                            accumulator.add_result(result)

                        yield accumulator

                        if check_convergence and self._converged(accumulator):
                            logger.info(
                                f"converged after {accumulator.n_completed} trajectories: max "
                                f"standard error {accumulator.statistics.max_std_error:.3e}"
                            )
                            self._trigger.pull()
                            self.context.cancel()

                        if self._stopping():
                            for waiting in futures:
                                waiting.cancel()
                        else:
                            submit_next()
            except GeneratorExit:
                # the consumer stopped listening; let running trajectories end early
                self.context.cancel()
                raise

    def _stopping(self) -> bool:
        return self._trigger.status is Status.Stop or self.context.cancelled

    def _converged(self, accumulator: EnsembleAccumulator) -> bool:
        target = self.ensemble_config.target_std_error
        if target <= 0 or self._trigger.status is Status.Stop:
            return False
        if accumulator.n_completed < self.ensemble_config.min_trajectories:
            return False
        return accumulator.statistics.max_std_error < target

    @MultiProcessing(method=True)
    def _run_distributed(self, indices: np.ndarray) -> EnsembleAccumulator:
        accumulator = self._empty_accumulator()
        # ranks cannot agree on convergence before the final merge
        for accumulator in self._iter_local(indices, check_convergence=False):
            pass
        return accumulator

    def _report_channels(self, result: EnsembleResult):
        """Run-level diagnostics of collapse channels that never fired."""
        total_jumps = int(np.sum(result.jump_counts))
        if result.invalid_jumps > 0:
            if total_jumps == 0:
                logger.warning(
                    f"all {result.invalid_jumps} jump events found no viable collapse "
                    "channel; check the collapse operators"
                )
            else:
                logger.warning(
                    f"{result.invalid_jumps} jump events found no viable collapse channel"
                )
        if total_jumps > 0 and result.n_completed > 0:
            for channel, count in enumerate(result.jump_counts):
                if count == 0:
                    logger.warning(
                        f"collapse channel {channel} never fired in "
                        f"{result.n_completed} trajectories"
                    )

    def save_checkpoint(self, result: EnsembleResult):
        folder = self.config.checkpoint_folder
        self.data.attach_to_existing_file(folder)
        self.data = ResultStore(config=self.data.config)
        if RANK == 0:
            result.save_checkpoint(folder)
            self._operator.save_checkpoint(folder)
            self.config.to_yaml()
        logger.info(f"saved checkpoint under {folder}")
