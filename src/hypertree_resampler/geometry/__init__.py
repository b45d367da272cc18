"""Box/cell intersection geometry."""

from .intersection import (
    box_volume,
    clip_polyhedron,
    intersect,
    intersect_cell,
    intersect_voxel,
    nudge_box_bounds,
)

__all__ = [
    'box_volume',
    'clip_polyhedron',
    'intersect',
    'intersect_cell',
    'intersect_voxel',
    'nudge_box_bounds',
]
