from .mpi_funcs import get_mpi_variables
from .distribute import Distributor
from .mpi import MultiProcessing
