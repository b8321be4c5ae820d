from __future__ import annotations

import logging
import threading
import time
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Sequence

import numpy as np
from scipy.optimize import brentq

from open_dynamics.config import SimulationConfig
from open_dynamics.core.runge_kutta_solvers.local_runge_kutta import get_solver
from open_dynamics.core.utils import ket_expectation, validate_times
from open_dynamics.errors import (
    InvalidJumpOperator,
    IntegrationFailure,
    TrajectoryCancelled,
    TrajectoryTimeout,
)
from open_dynamics.operators.backend import get_backend
from open_dynamics.operators.quantum_object import ObjectKind, QuantumObject

if TYPE_CHECKING:
    from open_dynamics.typedefs import SystemOperator

logger = logging.getLogger()


class TrajectoryStatus(Enum):
    Integrating = "integrating"
    JumpPending = "jump pending"
    Jumped = "jumped"
    Done = "done"


@dataclass(frozen=True)
class JumpRecord:
    time: float
    channel: int


@dataclass
class TrajectoryResult:
    """Observable record of a single quantum trajectory."""

    index: int
    # entropy of the seed sequence the trajectory was drawn from
    seed: int
    # expectation values of the normalized state, one row per observable
    expect: np.ndarray
    jumps: list[JumpRecord] = field(default_factory=list)
    # jump events without a viable collapse channel
    invalid_jumps: int = 0
    final_state: QuantumObject | None = None
    n_steps: int = 0

    @property
    def n_jumps(self) -> int:
        return len(self.jumps)

    def jump_counts(self, n_channels: int) -> np.ndarray:
        counts = np.zeros(n_channels, dtype=np.int64)
        for jump in self.jumps:
            counts[jump.channel] += 1
        return counts


def trajectory_seed_sequence(seed: int | None, index: int) -> np.random.SeedSequence:
    """
    Seed sequence of trajectory `index`. Depends only on the base seed and the
    index, so the partition of indices between workers does not change the result.
    """
    return np.random.SeedSequence(entropy=seed, spawn_key=(index,))


def jump_probabilities(
    psi, c_ops: Sequence, tolerance: float = 0.0
) -> np.ndarray | None:
    """
    Probabilities p_k = |L_k psi|^2 / sum_m |L_m psi|^2 of the collapse channels.
    Returns None if the total weight does not exceed `tolerance` * |psi|^2, i.e. if
    no channel can fire on the given state.
    """
    if isinstance(psi, QuantumObject):
        psi = psi.flat()
    matrices = [c_op.data if isinstance(c_op, QuantumObject) else c_op for c_op in c_ops]
    if not matrices:
        return None

    weights = np.empty(len(matrices), dtype=np.float64)
    for k, matrix in enumerate(matrices):
        backend = get_backend(matrix)
        weights[k] = backend.norm(backend.matvec(matrix, psi)) ** 2

    total = float(np.sum(weights))
    if not total > tolerance * float(np.vdot(psi, psi).real):
        return None
    return weights / total


class QuantumTrajectory:
    """
    One Monte-Carlo realization of the quantum-jump unravelling of the master equation.

    Between jumps the unnormalized ket evolves under H_eff = H - i/2 sum_k L_k^dag L_k,
    so its norm decays. A jump happens when |psi(t)|^2 falls below a threshold r drawn
    uniformly from (0, 1); the crossing time is located by root finding on the
    continuous extension of the integrator step. At the jump a channel k is drawn with
    probability p_k, the state is replaced by L_k psi / |L_k psi| and a new threshold is
    drawn. Observables are always evaluated on the normalized state.

    The random stream is derived from (seed, index) only and consumed in a fixed order:
    the initial threshold, then for every jump the channel draw followed by the new
    threshold. Rerunning with the same seed and index reproduces the trajectory exactly.
    """

    def __init__(
        self,
        operator: SystemOperator,
        initial_state: QuantumObject,
        times: Sequence[float],
        e_ops: Sequence[QuantumObject] = (),
        config: SimulationConfig | None = None,
        seed: int | None = None,
        index: int = 0,
        cancel_event: threading.Event | None = None,
        deadline: float | None = None,
    ):
        self.config = config if config is not None else SimulationConfig()
        self.times = validate_times(times)
        operator.check_state(initial_state, (ObjectKind.KET,))
        e_ops = list(e_ops)
        operator.check_observables(e_ops)

        self._operator = operator
        self._initial_state = initial_state
        self._e_ops = [e_op.data for e_op in e_ops]
        self._c_ops = [c_op.data for c_op in operator.c_ops]
        self._h_eff = operator.effective_hamiltonian.data

        self.index = index
        self.seed_sequence = trajectory_seed_sequence(seed, index)
        self.cancel_event = cancel_event
        # absolute time.monotonic() value after which the trajectory is abandoned
        self.deadline = deadline

        self.status = TrajectoryStatus.Integrating
        self.jumps: list[JumpRecord] = []
        self.invalid_jumps = 0

    @property
    def seed(self) -> int:
        return self.seed_sequence.entropy

    @property
    def n_channels(self) -> int:
        return len(self._c_ops)

    def run(self) -> TrajectoryResult:
        trajectory_config = self.config.trajectory_config
        rng = np.random.default_rng(self.seed_sequence)
        solver = get_solver(self.config.solver_config, self._h_eff, schroedinger=True)
        self.jumps = []
        self.invalid_jumps = 0

        psi = self._initial_state.flat()
        psi = psi / np.linalg.norm(psi)
        threshold = self._draw_threshold(rng)

        expect = np.zeros((len(self._e_ops), len(self.times)), dtype=np.complex128)
        current_time = float(self.times[0])
        expect[:, 0] = self._expect(psi)
        index = 1
        final_time = float(self.times[-1])

        self.status = TrajectoryStatus.Integrating
        while index < len(self.times):
            self._check_interrupt(current_time)
            try:
                psi_new, new_time = solver.solve(psi, current_time, final_time=final_time)
            except IntegrationFailure as failure:
                if isinstance(failure.state, np.ndarray):
                    failure.state = QuantumObject(
                        failure.state.reshape(-1, 1), self._operator.dims, ObjectKind.KET
                    )
                raise
            interpolant = solver.dense_output()

            if self.n_channels > 0 and self._norm_squared(psi_new) < threshold:
                self.status = TrajectoryStatus.JumpPending
                jump_time = self._locate_jump(
                    interpolant, current_time, new_time, threshold
                )
                psi_jump = interpolant(jump_time)
                index = self._sample(expect, index, interpolant, jump_time)

                psi = self._jump(psi_jump, jump_time, rng)
                threshold = self._draw_threshold(rng)
                self.status = TrajectoryStatus.Jumped
                solver.reset()
                current_time = jump_time
                self.status = TrajectoryStatus.Integrating
            else:
                index = self._sample(expect, index, interpolant, new_time)
                psi, current_time = psi_new, new_time

        self.status = TrajectoryStatus.Done
        final_state = None
        if trajectory_config.store_final_state:
            final_state = QuantumObject(
                (psi / np.linalg.norm(psi)).reshape(-1, 1),
                self._operator.dims,
                ObjectKind.KET,
            )
        logger.debug(
            f"trajectory {self.index} finished with {len(self.jumps)} jumps "
            f"in {solver.n_steps} steps"
        )
        return TrajectoryResult(
            index=self.index,
            seed=self.seed,
            expect=expect,
            jumps=list(self.jumps),
            invalid_jumps=self.invalid_jumps,
            final_state=final_state,
            n_steps=solver.n_steps,
        )

    def _locate_jump(
        self, interpolant, start: float, end: float, threshold: float
    ) -> float:
        """Time in [start, end] at which |psi(t)|^2 crosses the threshold"""
        if self._norm_squared(interpolant(start)) <= threshold:
            return start
        return brentq(
            lambda t: self._norm_squared(interpolant(t)) - threshold,
            start,
            end,
            xtol=self.config.trajectory_config.jump_time_tolerance,
        )

    @staticmethod
    def _draw_threshold(rng: np.random.Generator) -> float:
        # uniform in (0, 1)
        threshold = rng.random()
        while threshold == 0.0:
            threshold = rng.random()
        return threshold

    @staticmethod
    def _norm_squared(psi: np.ndarray) -> float:
        return float(np.vdot(psi, psi).real)

    def _expect(self, psi: np.ndarray) -> np.ndarray:
        return ket_expectation(self._e_ops, psi / np.sqrt(self._norm_squared(psi)))

    def _sample(self, expect: np.ndarray, index: int, interpolant, until: float) -> int:
        """Sample all output times up to and including `until`"""
        while index < len(self.times) and self.times[index] <= until:
            expect[:, index] = self._expect(interpolant(self.times[index]))
            index += 1
        return index

    def _jump(self, psi: np.ndarray, jump_time: float, rng: np.random.Generator) -> np.ndarray:
        probabilities = jump_probabilities(
            psi, self._c_ops, self.config.trajectory_config.zero_weight_tolerance
        )
        draw = rng.random()
        if probabilities is None:
            self.invalid_jumps += 1
            msg = (
                f"trajectory {self.index}: no collapse channel has weight at t={jump_time:.6f}; "
                "continuing without a jump"
            )
            logger.warning(msg)
            warnings.warn(msg, InvalidJumpOperator, stacklevel=2)
            return psi / np.sqrt(self._norm_squared(psi))

        channel = int(np.searchsorted(np.cumsum(probabilities), draw, side="right"))
        channel = min(channel, self.n_channels - 1)
        matrix = self._c_ops[channel]
        backend = get_backend(matrix)
        psi = backend.matvec(matrix, psi)
        self.jumps.append(JumpRecord(time=float(jump_time), channel=channel))
        return psi / backend.norm(psi)

    def _check_interrupt(self, current_time: float):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise TrajectoryCancelled(f"trajectory {self.index} cancelled at t={current_time}")
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise TrajectoryTimeout(
                f"trajectory {self.index} exceeded its time budget at t={current_time}",
                index=self.index,
                seed=self.seed,
            )
