"""Accumulator and measurement plugins."""

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
from .measurements import (
    MEASUREMENTS,
    ArithmeticMeanMeasurement,
    EntropyMeasurement,
    GeometricMeanMeasurement,
    HarmonicMeanMeasurement,
    MaxMeasurement,
    Measurement,
    MedianMeasurement,
    MinMeasurement,
    QuantileMeasurement,
    StandardDeviationMeasurement,
    create_measurement,
)

__all__ = [
    'Accumulator',
    'ArithmeticAccumulator',
    'BinsAccumulator',
    'InverseAccumulator',
    'LogAccumulator',
    'MaxAccumulator',
    'MinAccumulator',
    'PowerSumAccumulator',
    'QuantileAccumulator',
    'MEASUREMENTS',
    'ArithmeticMeanMeasurement',
    'EntropyMeasurement',
    'GeometricMeanMeasurement',
    'HarmonicMeanMeasurement',
    'MaxMeasurement',
    'Measurement',
    'MedianMeasurement',
    'MinMeasurement',
    'QuantileMeasurement',
    'StandardDeviationMeasurement',
    'create_measurement',
]
