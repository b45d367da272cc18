"""Adaptive resampling of point and cell datasets onto hyper tree grids."""

from .dataset.dataset import DataSet, FieldAssociation
from .measurement.measurements import create_measurement
from .pipeline import HyperTreeGridResampler
from .tree.hypertree import HyperTreeGrid
from .utils.config import ResamplerConfig

__version__ = "0.1.0"
__all__ = [
    "DataSet",
    "FieldAssociation",
    "create_measurement",
    "HyperTreeGridResampler",
    "HyperTreeGrid",
    "ResamplerConfig",
]
