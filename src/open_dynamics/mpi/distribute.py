from __future__ import annotations

import logging
from functools import cached_property

import numpy as np

from open_dynamics.mpi.mpi_funcs import get_mpi_variables

logger = logging.getLogger()
COMM, RANK, SIZE, NAME, PARALLEL = get_mpi_variables()


class Distributor:
    """
    Splits the index range [0, n_tasks) into contiguous, disjoint shards, one per
    MPI rank, and collects partial results. The shards are those of
    `np.array_split`, so the partition only depends on n_tasks and the number of ranks.
    Partial results must provide a `merge` method returning the combined result.
    """

    def __init__(self, n_tasks: int, comm=None):
        if n_tasks < 0:
            raise ValueError("number of tasks must be >=0")
        self._n_tasks = n_tasks
        self.comm, self.rank, self.size, _, _ = get_mpi_variables(comm)

    @property
    def n_tasks(self) -> int:
        return self._n_tasks

    @cached_property
    def _indices(self) -> np.ndarray:
        return np.arange(self._n_tasks)

    def _split_indices(self, number_of_splits: int) -> list[np.ndarray]:
        return np.array_split(self._indices, number_of_splits)

    def distribute(self, number_of_workers: int | None = None) -> list[np.ndarray] | None:
        if number_of_workers is None:
            number_of_workers = self.size
        if self.rank == 0:
            return self._split_indices(number_of_workers)
        return None

    def scatter(self) -> np.ndarray:
        # the return values of `distribute` are None for all but RANK == 0
        return self.comm.scatter(self.distribute(), root=0)

    def local_indices(self) -> np.ndarray:
        """Shard of this rank, computed without communication"""
        return self._split_indices(self.size)[self.rank]

    def gather(self, data) -> list | None:
        """Gather data at root. Returns None on all other processes."""
        return self.comm.gather(data, root=0)

    def gather_and_merge(self, data):
        """Merge the partial results of all ranks at root and broadcast the merged result."""
        gathered_data = self.gather(data)
        if self.rank == 0:
            merged = gathered_data[0]
            for partial in gathered_data[1:]:
                merged = merged.merge(partial)
            logger.debug(f"merged partial results of {len(gathered_data)} ranks")
        else:
            merged = None
        return self.comm.bcast(merged, root=0)
