"""Intersection volume between an axis-aligned box and a 3-D cell.

Voxels use a per-axis overlap product. Other 3-D cells are clipped against the
six half-spaces of the box: each face polygon is clipped, the cut is closed by
a cap polygon lying on the clipping plane, and the volume of the resulting
closed polyhedron is accumulated from signed cones (divergence theorem).
"""

import warnings
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..dataset.cells import Cell, VoxelCell, polygon_volume_contribution

Bounds = Tuple[float, float, float, float, float, float]

# Per-axis overlaps below this are treated as empty
VOXEL_OVERLAP_FLOOR = float(np.finfo(np.float64).tiny ** (1.0 / 3.0))

# Relative distance under which a cell vertex is considered on a box face
BOUNDARY_TOLERANCE = 1e-9

# Relative distance under which a vertex is snapped onto a clipping plane
SNAP_TOLERANCE = 1e-12

# Relative excess over the box volume tolerated before discarding a result
SANITY_SLACK = 1e-9

MAX_NUDGE_PASSES = 16


def box_volume(bounds: Sequence[float]) -> float:
    """Volume of (xmin, xmax, ymin, ymax, zmin, zmax), 0 if inverted."""
    return float(
        max(bounds[1] - bounds[0], 0.0)
        * max(bounds[3] - bounds[2], 0.0)
        * max(bounds[5] - bounds[4], 0.0)
    )


def intersect_voxel(
    box_bounds: Sequence[float],
    voxel_bounds: Sequence[float],
    volume_unit: float = 1.0
) -> Tuple[float, bool]:
    """Overlap volume of two axis-aligned boxes.

    Args:
        box_bounds: (xmin, xmax, ymin, ymax, zmin, zmax) of the grid box
        voxel_bounds: Bounds of the voxel cell
        volume_unit: Volume normalization unit

    Returns:
        (volume / volume_unit, non_empty). An overlap thinner than the
        numerical floor along any axis gives (0.0, False).
    """
    floor = VOXEL_OVERLAP_FLOOR / min(volume_unit, 1.0)
    volume = 1.0
    for axis in range(3):
        overlap = (
            min(box_bounds[2 * axis + 1], voxel_bounds[2 * axis + 1])
            - max(box_bounds[2 * axis], voxel_bounds[2 * axis])
        )
        if overlap < floor:
            return 0.0, False
        volume *= overlap
    return volume / volume_unit, True


def nudge_box_bounds(
    box_bounds: Sequence[float],
    vertices: np.ndarray,
    tolerance: float
) -> Bounds:
    """Push box faces outward where cell vertices lie on them.

    A face moves by ``tolerance`` when a vertex within the box footprint on the
    two other axes is closer than ``tolerance`` to it. Moving a face can bring
    other vertices into range, so passes repeat until nothing moves.

    Args:
        box_bounds: (xmin, xmax, ymin, ymax, zmin, zmax)
        vertices: (n, 3) cell vertices
        tolerance: Absolute distance threshold and displacement

    Returns:
        Nudged bounds
    """
    bounds = [float(b) for b in box_bounds]
    vertices = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)

    for _ in range(MAX_NUDGE_PASSES):
        moved = False
        for axis in range(3):
            within = np.ones(len(vertices), dtype=bool)
            for other in range(3):
                if other == axis:
                    continue
                within &= vertices[:, other] > bounds[2 * other] - tolerance
                within &= vertices[:, other] < bounds[2 * other + 1] + tolerance
            coords = vertices[within, axis]
            if np.any(np.abs(coords - bounds[2 * axis]) < tolerance):
                bounds[2 * axis] -= tolerance
                moved = True
            if np.any(np.abs(coords - bounds[2 * axis + 1]) < tolerance):
                bounds[2 * axis + 1] += tolerance
                moved = True
        if not moved:
            break
    return tuple(bounds)


def unique_points(points: np.ndarray, tolerance: float) -> np.ndarray:
    """Drop points closer than ``tolerance`` (per axis) to an earlier one."""
    kept: List[np.ndarray] = []
    for point in points:
        if not any(np.all(np.abs(point - other) <= tolerance) for other in kept):
            kept.append(point)
    return np.array(kept).reshape(-1, 3)


def snap_to_plane(polygon: np.ndarray, axis: int, value: float, tolerance: float) -> np.ndarray:
    """Copy of a polygon with vertices near the plane x[axis] = value moved onto it."""
    polygon = polygon.copy()
    near = np.abs(polygon[:, axis] - value) <= tolerance
    polygon[near, axis] = value
    return polygon


def clip_polygon(polygon: np.ndarray, axis: int, value: float, sign: float) -> np.ndarray:
    """Clip a polygon to the half-space sign * (x[axis] - value) <= 0.

    Sutherland-Hodgman against a single axis-aligned plane. Intersection
    points are placed exactly on the plane.
    """
    distances = sign * (polygon[:, axis] - value)
    if np.all(distances <= 0):
        return polygon
    if np.all(distances >= 0):
        return polygon[:0]

    clipped = []
    count = len(polygon)
    for index in range(count):
        following = (index + 1) % count
        d0, d1 = distances[index], distances[following]
        if d0 <= 0:
            clipped.append(polygon[index])
        if (d0 < 0 < d1) or (d1 < 0 < d0):
            t = d0 / (d0 - d1)
            point = polygon[index] + t * (polygon[following] - polygon[index])
            point[axis] = value
            clipped.append(point)
    return np.array(clipped).reshape(-1, 3)


def cap_polygon(
    polygons: List[np.ndarray],
    axis: int,
    value: float,
    sign: float,
    tolerance: float
) -> Optional[np.ndarray]:
    """Polygon closing a polyhedron cut by the plane x[axis] = value.

    Gathers the clipped vertices lying on the plane and orders them by angle
    around their centroid. The result faces ``sign`` along ``axis``.
    """
    on_plane = [polygon[polygon[:, axis] == value] for polygon in polygons]
    if not on_plane:
        return None
    points = unique_points(np.concatenate(on_plane), tolerance)
    if len(points) < 3:
        return None

    u, w = (axis + 1) % 3, (axis + 2) % 3
    center = points.mean(axis=0)
    angles = np.arctan2(points[:, w] - center[w], points[:, u] - center[u])
    cap = points[np.argsort(angles, kind="stable")]
    # Counter-clockwise in (u, w) has its normal along +axis
    return cap if sign > 0 else cap[::-1]


def clip_polyhedron(
    polygons: List[np.ndarray],
    box_bounds: Sequence[float],
    tolerance: float
) -> List[np.ndarray]:
    """Clip a closed, outward oriented polyhedron to a box.

    Args:
        polygons: Outward oriented face polygons
        box_bounds: (xmin, xmax, ymin, ymax, zmin, zmax)
        tolerance: Snapping and deduplication distance

    Returns:
        Face polygons of the clipped polyhedron (empty if nothing is left)
    """
    for axis in range(3):
        for side, sign in ((0, -1.0), (1, 1.0)):
            value = box_bounds[2 * axis + side]
            polygons = [snap_to_plane(p, axis, value, tolerance) for p in polygons]
            if not any(np.any(sign * (p[:, axis] - value) > 0) for p in polygons):
                continue

            clipped = [clip_polygon(p, axis, value, sign) for p in polygons]
            clipped = [p for p in clipped if len(p) >= 3]
            cap = cap_polygon(clipped, axis, value, sign, tolerance)
            if cap is not None:
                clipped.append(cap)
            polygons = clipped
            if not polygons:
                return []
    return polygons


def polyhedron_volume(polygons: List[np.ndarray]) -> float:
    """Signed volume enclosed by closed face polygons."""
    return sum(polygon_volume_contribution(p) for p in polygons) / 6.0


def intersect_cell(
    box_bounds: Sequence[float],
    cell: Cell,
    volume_unit: float = 1.0
) -> Tuple[float, bool]:
    """Intersection volume of a box and a convex 3-D cell.

    Args:
        box_bounds: (xmin, xmax, ymin, ymax, zmin, zmax) of the grid box
        cell: 3-D cell, possibly inside out
        volume_unit: Volume normalization unit

    Returns:
        (volume / volume_unit, non_empty). A result larger than the box
        volume is a numerical failure: a warning is emitted and (0.0, False)
        is returned.
    """
    extent = max(
        box_bounds[1] - box_bounds[0],
        box_bounds[3] - box_bounds[2],
        box_bounds[5] - box_bounds[4],
    )
    if extent <= 0:
        return 0.0, False

    bounds = nudge_box_bounds(box_bounds, cell.points, BOUNDARY_TOLERANCE * extent)
    cell_bounds = cell.bounds
    for axis in range(3):
        if cell_bounds[2 * axis] > bounds[2 * axis + 1] or cell_bounds[2 * axis + 1] < bounds[2 * axis]:
            return 0.0, False

    # Work relative to the box corner to limit round-off
    origin = np.array(bounds[0::2])
    local_bounds = (
        0.0, bounds[1] - bounds[0],
        0.0, bounds[3] - bounds[2],
        0.0, bounds[5] - bounds[4],
    )
    polygons = [polygon - origin for polygon in cell.outward_faces()]
    polygons = clip_polyhedron(polygons, local_bounds, SNAP_TOLERANCE * extent)
    volume = polyhedron_volume(polygons)

    reference = box_volume(bounds)
    if abs(volume) > reference * (1.0 + SANITY_SLACK):
        warnings.warn(
            f"Intersection of {cell.cell_type} cell with box {tuple(box_bounds)} gave "
            f"volume {volume:g} larger than the box volume {reference:g}, ignoring it",
            RuntimeWarning
        )
        return 0.0, False

    if volume < np.finfo(np.float64).eps * reference:
        return 0.0, False
    return volume / volume_unit, True


def intersect(
    box_bounds: Sequence[float],
    cell: Cell,
    volume_unit: float = 1.0
) -> Tuple[float, bool]:
    """Intersection volume of a box and a cell, dispatched on the cell type.

    Raises:
        ValueError: If the cell is not three-dimensional
    """
    if isinstance(cell, VoxelCell):
        return intersect_voxel(box_bounds, cell.bounds, volume_unit)
    if not cell.is_3d:
        raise ValueError(f"Cannot intersect a box with a {cell.cell_type} cell")
    return intersect_cell(box_bounds, cell, volume_unit)
