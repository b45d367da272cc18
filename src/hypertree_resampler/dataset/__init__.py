"""Input datasets and cell types."""

from .cells import (
    CELL_TYPES,
    Cell,
    Cell3D,
    ConvexPointSetCell,
    HexahedronCell,
    PyramidCell,
    TetraCell,
    TriangleCell,
    VertexCell,
    VoxelCell,
    WedgeCell,
)
from .dataset import DataSet, FieldAssociation

__all__ = [
    'CELL_TYPES',
    'Cell',
    'Cell3D',
    'ConvexPointSetCell',
    'HexahedronCell',
    'PyramidCell',
    'TetraCell',
    'TriangleCell',
    'VertexCell',
    'VoxelCell',
    'WedgeCell',
    'DataSet',
    'FieldAssociation',
]
