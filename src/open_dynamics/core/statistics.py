from __future__ import annotations

import numpy as np


class RunningStatistics:
    """
    Online mean and variance of array-valued complex samples.

    Uses the pairwise update of Chan et al.: two partial aggregates (n_a, mean_a, M2_a)
    and (n_b, mean_b, M2_b) combine to

        n = n_a + n_b
        mean = mean_a + delta * n_b / n
        M2 = M2_a + M2_b + |delta|^2 * n_a * n_b / n

    with delta = mean_b - mean_a. The combination is commutative and associative up to
    floating point rounding, so trajectories can be aggregated in any completion order
    and partial aggregates of different threads or MPI ranks can be merged.
    The variance of complex samples is E|x - E x|^2.
    """

    def __init__(self, shape: tuple[int, ...]):
        self.shape = tuple(shape)
        self.count = 0
        self._mean = np.zeros(self.shape, dtype=np.complex128)
        self._m2 = np.zeros(self.shape, dtype=np.float64)

    def update(self, sample: np.ndarray):
        sample = np.asarray(sample, dtype=np.complex128)
        if sample.shape != self.shape:
            raise ValueError(f"sample of shape {sample.shape} does not match {self.shape}")
        self.count += 1
        delta = sample - self._mean
        self._mean = self._mean + delta / self.count
        self._m2 = self._m2 + np.real(np.conj(delta) * (sample - self._mean))

    def merge(self, other: RunningStatistics) -> RunningStatistics:
        """New aggregate of both inputs; neither input is modified."""
        if other.shape != self.shape:
            raise ValueError(f"cannot merge statistics of shape {other.shape} and {self.shape}")
        merged = RunningStatistics(self.shape)
        merged.count = self.count + other.count
        if merged.count == 0:
            return merged
        delta = other._mean - self._mean
        merged._mean = self._mean + delta * (other.count / merged.count)
        merged._m2 = (
            self._m2
            + other._m2
            + np.abs(delta) ** 2 * (self.count * other.count / merged.count)
        )
        return merged

    def __add__(self, other: RunningStatistics) -> RunningStatistics:
        return self.merge(other)

    def copy(self) -> RunningStatistics:
        duplicate = RunningStatistics(self.shape)
        duplicate.count = self.count
        duplicate._mean = self._mean.copy()
        duplicate._m2 = self._m2.copy()
        return duplicate

    @classmethod
    def from_samples(cls, samples) -> RunningStatistics:
        samples = [np.asarray(sample, dtype=np.complex128) for sample in samples]
        if not samples:
            raise ValueError("at least one sample is required")
        statistics = cls(samples[0].shape)
        for sample in samples:
            statistics.update(sample)
        return statistics

    @property
    def mean(self) -> np.ndarray:
        return self._mean.copy()

    @property
    def variance(self) -> np.ndarray:
        """Unbiased sample variance; undefined (nan) for fewer than two samples."""
        if self.count < 2:
            return np.full(self.shape, np.nan)
        return self._m2 / (self.count - 1)

    @property
    def std_error(self) -> np.ndarray:
        if self.count < 2:
            return np.full(self.shape, np.nan)
        return np.sqrt(self.variance / self.count)

    @property
    def max_std_error(self) -> float:
        if self.count < 2:
            return np.inf
        if self._m2.size == 0:
            return 0.0
        return float(np.max(self.std_error))

    def __eq__(self, other):
        if not isinstance(other, RunningStatistics):
            return False
        return (
            self.shape == other.shape
            and self.count == other.count
            and np.allclose(self._mean, other._mean)
            and np.allclose(self._m2, other._m2)
        )

    def __str__(self):
        string = "\n"
        string += "\t{:<25}: {}\n".format("samples", self.count)
        string += "\t{:<25}: {}\n".format("shape", self.shape)
        string += "\t{:<25}: {:.3e}\n".format("max standard error", self.max_std_error)
        return string
