"""Output hyper tree grid."""

from .hypertree import FACE_OFFSETS, HyperTreeGrid, HyperTreeGridCursor, VonNeumannSuperCursor

__all__ = ['FACE_OFFSETS', 'HyperTreeGrid', 'HyperTreeGridCursor', 'VonNeumannSuperCursor']
