"""Measurements computed from accumulated samples.

A measurement declares the accumulators it needs, tells whether a subtree
holding a given number of samples and total weight can be measured, and turns
the accumulated state into a scalar.
"""

import math
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Type

import numpy as np

from .accumulators import (
    Accumulator,
    ArithmeticAccumulator,
    BinsAccumulator,
    InverseAccumulator,
    LogAccumulator,
    MaxAccumulator,
    MinAccumulator,
    PowerSumAccumulator,
    QuantileAccumulator,
)


class Measurement(ABC):
    """Base class of all measurements.

    Subclasses implement ``create_accumulators`` and ``measure``. The
    accumulators returned by ``accumulators`` are templates: the resampler
    copies them for every grid element.
    """

    name: str = ""
    minimum_number_of_points: int = 1

    def __init__(self):
        self._accumulators = self.create_accumulators()

    @abstractmethod
    def create_accumulators(self) -> List[Accumulator]:
        """Create the (empty) accumulators this measurement reads."""

    @abstractmethod
    def measure(
        self,
        accumulators: Sequence[Accumulator],
        number_of_points: int,
        total_weight: float
    ) -> float:
        """Compute the measured value from accumulators in declaration order."""

    @property
    def accumulators(self) -> List[Accumulator]:
        """Accumulator templates."""
        return self._accumulators

    def can_measure(self, number_of_points: int, total_weight: float) -> bool:
        """Check whether a subtree with these totals holds enough samples."""
        return number_of_points >= self.minimum_number_of_points and total_weight > 0

    def measure_samples(
        self,
        values: np.ndarray,
        weights: Optional[np.ndarray] = None
    ) -> float:
        """Measure an array of samples directly.

        Args:
            values: Sample values
            weights: Sample weights (1 for every sample if not provided)

        Returns:
            Measured value, NaN if the samples cannot be measured
        """
        values = np.asarray(values, dtype=np.float64)
        weights = np.ones_like(values) if weights is None else np.asarray(weights, dtype=np.float64)
        total_weight = float(weights.sum())
        if not self.can_measure(len(values), total_weight):
            return math.nan

        accumulators = [accumulator.new_instance() for accumulator in self._accumulators]
        for accumulator in accumulators:
            accumulator.add_array(values, weights)
        return self.measure(accumulators, len(values), total_weight)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(accumulators={self._accumulators})"


class ArithmeticMeanMeasurement(Measurement):
    """Weighted arithmetic mean."""

    name = "mean"

    def create_accumulators(self) -> List[Accumulator]:
        return [ArithmeticAccumulator()]

    def measure(self, accumulators, number_of_points, total_weight):
        return accumulators[0].value / total_weight


class GeometricMeanMeasurement(Measurement):
    """Weighted geometric mean; NaN as soon as a sample is non-positive."""

    name = "geometric_mean"

    def create_accumulators(self) -> List[Accumulator]:
        return [LogAccumulator()]

    def measure(self, accumulators, number_of_points, total_weight):
        return math.exp(accumulators[0].value / total_weight)


class HarmonicMeanMeasurement(Measurement):
    """Weighted harmonic mean."""

    name = "harmonic_mean"

    def create_accumulators(self) -> List[Accumulator]:
        return [InverseAccumulator()]

    def measure(self, accumulators, number_of_points, total_weight):
        inverse_sum = accumulators[0].value
        if inverse_sum == 0:
            return math.nan
        return total_weight / inverse_sum


class StandardDeviationMeasurement(Measurement):
    """Weighted (population) standard deviation."""

    name = "standard_deviation"
    minimum_number_of_points = 2

    def create_accumulators(self) -> List[Accumulator]:
        return [ArithmeticAccumulator(), PowerSumAccumulator(2.0)]

    def measure(self, accumulators, number_of_points, total_weight):
        mean = accumulators[0].value / total_weight
        mean_of_squares = accumulators[1].value / total_weight
        return math.sqrt(max(mean_of_squares - mean * mean, 0.0))


class MinMeasurement(Measurement):
    """Smallest sample."""

    name = "min"

    def create_accumulators(self) -> List[Accumulator]:
        return [MinAccumulator()]

    def measure(self, accumulators, number_of_points, total_weight):
        return accumulators[0].value


class MaxMeasurement(Measurement):
    """Largest sample."""

    name = "max"

    def create_accumulators(self) -> List[Accumulator]:
        return [MaxAccumulator()]

    def measure(self, accumulators, number_of_points, total_weight):
        return accumulators[0].value


class QuantileMeasurement(Measurement):
    """Weighted quantile.

    The result is the smallest sample whose cumulative weight reaches
    ``percent`` of the total weight, so the median of an even number of equally
    weighted samples is the lower middle sample.

    Args:
        percent: Quantile in percent, 50 for the median
    """

    name = "quantile"

    def __init__(self, percent: float = 50.0):
        if not 0.0 <= percent <= 100.0:
            raise ValueError(f"percent must be in [0, 100], got {percent}")
        self.percent = percent
        super().__init__()

    def create_accumulators(self) -> List[Accumulator]:
        return [QuantileAccumulator()]

    def measure(self, accumulators, number_of_points, total_weight):
        values, weights = accumulators[0].sorted_samples()
        if not len(values):
            return math.nan
        cumulative = np.cumsum(weights)
        target = self.percent / 100.0 * cumulative[-1]
        index = int(np.searchsorted(cumulative, target, side="left"))
        return float(values[min(index, len(values) - 1)])


class MedianMeasurement(QuantileMeasurement):
    """Weighted median."""

    name = "median"

    def __init__(self):
        super().__init__(percent=50.0)


class EntropyMeasurement(Measurement):
    """Shannon entropy (natural log) of the binned sample distribution.

    Args:
        discretization_step: Width of the histogram bins
    """

    name = "entropy"

    def __init__(self, discretization_step: float = 1.0):
        self.discretization_step = discretization_step
        super().__init__()

    def create_accumulators(self) -> List[Accumulator]:
        return [BinsAccumulator(self.discretization_step)]

    def measure(self, accumulators, number_of_points, total_weight):
        counts = np.array(list(accumulators[0].bins.values()), dtype=np.float64)
        total = counts.sum()
        if total <= 0:
            return math.nan
        probabilities = counts[counts > 0] / total
        return float(-np.sum(probabilities * np.log(probabilities)))


MEASUREMENTS: Dict[str, Type[Measurement]] = {
    cls.name: cls
    for cls in (
        ArithmeticMeanMeasurement,
        GeometricMeanMeasurement,
        HarmonicMeanMeasurement,
        StandardDeviationMeasurement,
        MinMeasurement,
        MaxMeasurement,
        QuantileMeasurement,
        MedianMeasurement,
        EntropyMeasurement,
    )
}


def create_measurement(name: str, **kwargs) -> Measurement:
    """Create a measurement from its registered name.

    Args:
        name: One of the keys of ``MEASUREMENTS``
        **kwargs: Forwarded to the measurement constructor

    Raises:
        ValueError: If the name is unknown
    """
    try:
        cls = MEASUREMENTS[name]
    except KeyError:
        raise ValueError(
            f"Unknown measurement '{name}', choose from {sorted(MEASUREMENTS)}"
        ) from None
    return cls(**kwargs)
