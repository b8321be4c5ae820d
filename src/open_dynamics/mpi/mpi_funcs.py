from __future__ import annotations
from sys import stdout
from mpi4py import MPI


def get_mpi_variables(comm=None):
    """Returns communicator, rank, size, processor name and whether more than one rank is running."""
    if comm is None:
        comm = MPI.COMM_WORLD
    rank = comm.Get_rank()
    size = comm.Get_size()
    name = MPI.Get_processor_name()

    parallel = size > 1
    return comm, rank, size, name, parallel


def print_mpi(rank: int, message):
    print(f"RANK {rank}: ", message)
    stdout.flush()
