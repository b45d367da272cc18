"""Mergeable running-statistics accumulators.

An accumulator is fed one weighted sample at a time (or an array of them),
can be merged with another accumulator of the same kind, and exposes the
accumulated quantity through ``value``. Measurements combine one or more
accumulators into a scalar.
"""

import copy
import math
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, List, Tuple

import numpy as np


class Accumulator(ABC):
    """Base class of all accumulators."""

    @property
    def parameters(self) -> Tuple:
        """Parameters that distinguish two accumulators of the same type."""
        return ()

    @property
    @abstractmethod
    def value(self) -> float:
        """Accumulated quantity."""

    @abstractmethod
    def add(self, value: float, weight: float = 1.0):
        """Accumulate a single weighted sample."""

    @abstractmethod
    def merge(self, other: "Accumulator"):
        """Merge the state of another accumulator into this one."""

    def add_array(self, values: np.ndarray, weights: np.ndarray):
        """Accumulate an array of weighted samples."""
        for value, weight in zip(values, weights):
            self.add(float(value), float(weight))

    def new_instance(self) -> "Accumulator":
        """Create an empty accumulator with the same parameters."""
        return type(self)(*self.parameters)

    def copy(self) -> "Accumulator":
        """Deep copy of this accumulator, state included."""
        return copy.deepcopy(self)

    def has_same_parameters(self, other: "Accumulator") -> bool:
        """Check whether two accumulators compute the same quantity."""
        return type(self) is type(other) and self.parameters == other.parameters

    def __repr__(self) -> str:
        params = ", ".join(repr(p) for p in self.parameters)
        return f"{type(self).__name__}({params})"


class ArithmeticAccumulator(Accumulator):
    """Weighted sum of the samples."""

    def __init__(self):
        self._sum = 0.0

    @property
    def value(self) -> float:
        return self._sum

    def add(self, value: float, weight: float = 1.0):
        self._sum += weight * value

    def add_array(self, values: np.ndarray, weights: np.ndarray):
        self._sum += float(np.dot(weights, values))

    def merge(self, other: "ArithmeticAccumulator"):
        self._sum += other._sum


class PowerSumAccumulator(Accumulator):
    """Weighted sum of the samples raised to a fixed power."""

    def __init__(self, power: float = 2.0):
        self.power = power
        self._sum = 0.0

    @property
    def parameters(self) -> Tuple:
        return (self.power,)

    @property
    def value(self) -> float:
        return self._sum

    def add(self, value: float, weight: float = 1.0):
        self._sum += weight * value ** self.power

    def add_array(self, values: np.ndarray, weights: np.ndarray):
        self._sum += float(np.dot(weights, np.power(values, self.power)))

    def merge(self, other: "PowerSumAccumulator"):
        self._sum += other._sum


class LogAccumulator(Accumulator):
    """Weighted sum of the logarithm of the samples.

    A non-positive sample makes the accumulated value NaN for good.
    """

    def __init__(self):
        self._sum = 0.0

    @property
    def value(self) -> float:
        return self._sum

    def add(self, value: float, weight: float = 1.0):
        self._sum += weight * math.log(value) if value > 0 else math.nan

    def add_array(self, values: np.ndarray, weights: np.ndarray):
        if np.any(values <= 0):
            self._sum = math.nan
            return
        self._sum += float(np.dot(weights, np.log(values)))

    def merge(self, other: "LogAccumulator"):
        self._sum += other._sum


class InverseAccumulator(Accumulator):
    """Weighted sum of the inverse of the samples (zero samples give inf)."""

    def __init__(self):
        self._sum = 0.0

    @property
    def value(self) -> float:
        return self._sum

    def add(self, value: float, weight: float = 1.0):
        self._sum += weight / value if value != 0 else math.inf

    def add_array(self, values: np.ndarray, weights: np.ndarray):
        if np.any(values == 0):
            self._sum = math.inf
            return
        self._sum += float(np.dot(weights, 1.0 / values))

    def merge(self, other: "InverseAccumulator"):
        self._sum += other._sum


class MinAccumulator(Accumulator):
    """Smallest sample seen (weights are ignored)."""

    def __init__(self):
        self._min = math.inf

    @property
    def value(self) -> float:
        return self._min

    def add(self, value: float, weight: float = 1.0):
        self._min = min(self._min, value)

    def add_array(self, values: np.ndarray, weights: np.ndarray):
        if len(values):
            self._min = min(self._min, float(np.min(values)))

    def merge(self, other: "MinAccumulator"):
        self._min = min(self._min, other._min)


class MaxAccumulator(Accumulator):
    """Largest sample seen (weights are ignored)."""

    def __init__(self):
        self._max = -math.inf

    @property
    def value(self) -> float:
        return self._max

    def add(self, value: float, weight: float = 1.0):
        self._max = max(self._max, value)

    def add_array(self, values: np.ndarray, weights: np.ndarray):
        if len(values):
            self._max = max(self._max, float(np.max(values)))

    def merge(self, other: "MaxAccumulator"):
        self._max = max(self._max, other._max)


class QuantileAccumulator(Accumulator):
    """Keeps every weighted sample so that quantiles can be computed.

    Samples are stored as read-only chunks and only concatenated and sorted
    on demand. Merging shares the chunks of the other accumulator instead of
    copying them, so a sample scattered at the finest depth is stored once
    however many ancestors it is merged into. Scalar samples are buffered in
    lists and turned into a chunk when the samples are next read or merged.
    """

    def __init__(self):
        self._values: List[np.ndarray] = []
        self._weights: List[np.ndarray] = []
        self._pending_values: List[float] = []
        self._pending_weights: List[float] = []

    @property
    def value(self) -> float:
        """Number of stored samples."""
        return float(sum(len(chunk) for chunk in self._values) + len(self._pending_values))

    @property
    def chunks(self) -> List[Tuple[np.ndarray, np.ndarray]]:
        """(values, weights) chunks holding the samples."""
        self._flush()
        return list(zip(self._values, self._weights))

    def _flush(self):
        if self._pending_values:
            self._append(np.array(self._pending_values, dtype=np.float64),
                         np.array(self._pending_weights, dtype=np.float64))
            self._pending_values = []
            self._pending_weights = []

    def _append(self, values: np.ndarray, weights: np.ndarray):
        values.flags.writeable = False
        weights.flags.writeable = False
        self._values.append(values)
        self._weights.append(weights)

    def add(self, value: float, weight: float = 1.0):
        self._pending_values.append(float(value))
        self._pending_weights.append(float(weight))

    def add_array(self, values: np.ndarray, weights: np.ndarray):
        self._flush()
        self._append(np.array(values, dtype=np.float64), np.array(weights, dtype=np.float64))

    def merge(self, other: "QuantileAccumulator"):
        other._flush()
        self._flush()
        self._values.extend(other._values)
        self._weights.extend(other._weights)

    def sorted_samples(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return (values, weights) sorted by value."""
        self._flush()
        if not self._values:
            return np.empty(0), np.empty(0)
        values = np.concatenate(self._values)
        weights = np.concatenate(self._weights)
        order = np.argsort(values, kind="stable")
        return values[order], weights[order]


class BinsAccumulator(Accumulator):
    """Histogram of the weighted samples with a fixed bin width.

    Args:
        discretization_step: Width of a bin
    """

    def __init__(self, discretization_step: float = 1.0):
        if discretization_step <= 0:
            raise ValueError(
                f"discretization_step must be positive, got {discretization_step}"
            )
        self.discretization_step = discretization_step
        self._bins: Dict[int, float] = defaultdict(float)

    @property
    def parameters(self) -> Tuple:
        return (self.discretization_step,)

    @property
    def value(self) -> float:
        """Number of non-empty bins."""
        return float(len(self._bins))

    @property
    def bins(self) -> Dict[int, float]:
        return dict(self._bins)

    def add(self, value: float, weight: float = 1.0):
        self._bins[int(math.floor(value / self.discretization_step))] += weight

    def add_array(self, values: np.ndarray, weights: np.ndarray):
        keys = np.floor(np.asarray(values) / self.discretization_step).astype(np.int64)
        unique_keys, inverse = np.unique(keys, return_inverse=True)
        sums = np.bincount(inverse, weights=weights)
        for key, total in zip(unique_keys.tolist(), sums.tolist()):
            self._bins[key] += total

    def merge(self, other: "BinsAccumulator"):
        for key, total in other._bins.items():
            self._bins[key] += total
