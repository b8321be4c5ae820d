from .statistics import RunningStatistics
from .utils import validate_times

__all__ = ["RunningStatistics", "validate_times"]
