"""Multi-resolution aggregation and tree generation."""

from .aggregator import Aggregator
from .builder import GridBuilder, field_to_scalars
from .extrapolation import PendingLeaf, extrapolate_gaps
from .gaps import GapResolver
from .generator import NUMBER_OF_LEAVES_ARRAY, NUMBER_OF_POINTS_ARRAY, TreeGenerator
from .grid import AccumulatorLayout, GridElement, MultiResolutionGrid

__all__ = [
    'Aggregator',
    'GridBuilder',
    'field_to_scalars',
    'PendingLeaf',
    'extrapolate_gaps',
    'GapResolver',
    'NUMBER_OF_LEAVES_ARRAY',
    'NUMBER_OF_POINTS_ARRAY',
    'TreeGenerator',
    'AccumulatorLayout',
    'GridElement',
    'MultiResolutionGrid',
]
