from __future__ import annotations

import logging
from typing import Callable

from open_dynamics.mpi.distribute import Distributor

logger = logging.getLogger()


class MultiProcessing:
    """
    Decorator class to execute functions over an index range in parallel.

    The wrapped function is called as function(indices, *args, **kwargs) with the shard
    of [0, n_tasks) assigned to the calling rank and must return a partial result with
    a `merge` method. Partial results are gathered at RANK 0, merged and broadcast, so
    every rank returns the combined result. With a single rank the function is called
    with the full index range.
    """

    def __init__(self, method=False):
        # determines if the decorated function is bound or not
        self.method = method

    def __call__(self, function: Callable) -> Callable:
        if self.method:
            wrapper = self._get_method_wrapper(function)
        else:
            wrapper = self._get_function_wrapper(function)
        return wrapper

    def _get_method_wrapper(self, function: Callable) -> Callable:
        def wrapper(slf, n_tasks: int, *args, comm=None, **kwargs):
            return self._execute(function, n_tasks, *args, slf=slf, comm=comm, **kwargs)

        return wrapper

    def _get_function_wrapper(self, function: Callable) -> Callable:
        def wrapper(n_tasks: int, *args, comm=None, **kwargs):
            return self._execute(function, n_tasks, *args, slf=None, comm=comm, **kwargs)

        return wrapper

    def _execute(
        self,
        function: Callable,
        n_tasks: int,
        *args,
        slf: object | None = None,
        comm=None,
        **kwargs,
    ):
        distributor = Distributor(n_tasks, comm=comm)
        if distributor.size > 1:
            return self._execute_in_parallel(distributor, function, *args, slf=slf, **kwargs)
        else:
            return self._call_function(
                function, slf, distributor.local_indices(), *args, **kwargs
            )

    def _execute_in_parallel(
        self, distributor: Distributor, function: Callable, *args, slf=None, **kwargs
    ):
        # distribute tasks to workers
        indices_on_worker = distributor.scatter()
        logger.debug(
            f"rank {distributor.rank} runs {len(indices_on_worker)} of "
            f"{distributor.n_tasks} tasks"
        )
        result_on_worker = self._call_function(
            function, slf, indices_on_worker, *args, **kwargs
        )
        return distributor.gather_and_merge(result_on_worker)

    def _call_function(self, function: Callable, slf: object | None, *args, **kwargs):
        if slf is None:
            return function(*args, **kwargs)
        else:
            return function(slf, *args, **kwargs)
