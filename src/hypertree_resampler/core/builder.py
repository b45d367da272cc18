"""Scatter of input samples into the multi-resolution grid."""

import warnings
from collections import Counter
from typing import Optional, Tuple

import numpy as np
from tqdm import tqdm

from ..dataset.dataset import DataSet, FieldAssociation
from ..geometry.intersection import intersect
from .grid import MultiResolutionGrid

# Cell intersection volumes are reported in absolute units
VOLUME_UNIT = 1.0


def field_to_scalars(array: Optional[np.ndarray]) -> Optional[np.ndarray]:
    """Reduce a field array to one float per element.

    Multi-component fields are reduced to their Euclidean norm.
    """
    if array is None:
        return None
    array = np.asarray(array, dtype=np.float64)
    if array.ndim == 2:
        if array.shape[1] == 1:
            return array[:, 0]
        return np.linalg.norm(array, axis=1)
    return array


class GridBuilder:
    """Fill a multi-resolution grid with the samples of a dataset.

    Points land at the finest depth with weight 1. Cells land at the coarsest
    depth at which their bounding box spans more than one position along every
    axis, weighted by the volume they share with each grid position.

    Args:
        grid: Grid to fill
        show_progress: Whether to show progress bars
    """

    def __init__(self, grid: MultiResolutionGrid, show_progress: bool = False):
        self.grid = grid
        self.show_progress = show_progress

    def build(
        self,
        dataset: DataSet,
        values: Optional[np.ndarray],
        association: FieldAssociation
    ) -> MultiResolutionGrid:
        """Scatter every sample of the dataset.

        Args:
            dataset: Input dataset
            values: One scalar per point or cell (None to only count samples)
            association: Whether the samples are the points or the cells

        Returns:
            The filled grid
        """
        if association == FieldAssociation.POINTS:
            self.scatter_points(dataset.points, values)
        elif association == FieldAssociation.CELLS:
            self.scatter_cells(dataset, values)
        else:
            warnings.warn(
                f"Unknown field association {association!r}, supported are points and cells",
                UserWarning
            )
        return self.grid

    def scatter_points(self, points: np.ndarray, values: Optional[np.ndarray]):
        """Insert points at the finest depth.

        Points outside the domain bounds are ignored. Points sharing a grid
        position are inserted together, in input order.
        """
        grid = self.grid
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if not len(points):
            return

        bounds = np.array(grid.bounds).reshape(3, 2)
        lower, upper = bounds[:, 0], bounds[:, 1]
        inside = np.all((points >= lower) & (points <= upper), axis=1)
        ids = np.flatnonzero(inside)
        if not len(ids):
            return

        nx, ny, nz = grid.grid_shape
        resolution = grid.max_resolution
        cells = np.array(grid.grid_shape) * resolution
        finest = (
            ((points[ids] - lower) / (upper - lower) * cells) * (1.0 - np.finfo(np.float64).eps)
        ).astype(np.int64)
        finest = np.clip(finest, 0, cells - 1)

        coarse = finest // resolution
        local = finest % resolution
        coarse_index = coarse[:, 2] + coarse[:, 1] * nz + coarse[:, 0] * nz * ny
        local_index = local[:, 2] + local[:, 1] * resolution + local[:, 0] * resolution ** 2
        keys = coarse_index * resolution ** 3 + local_index

        order = np.argsort(keys, kind="stable")
        sorted_keys = keys[order]
        unique_keys, starts = np.unique(sorted_keys, return_index=True)
        ends = np.append(starts[1:], len(sorted_keys))

        groups = zip(unique_keys.tolist(), starts.tolist(), ends.tolist())
        if self.show_progress:
            groups = tqdm(groups, total=len(unique_keys), desc="Scattering points")

        for key, start, end in groups:
            members = ids[order[start:end]]
            grid.insert_samples(
                key // resolution ** 3,
                grid.max_depth,
                key % resolution ** 3,
                None if values is None else values[members],
                np.ones(len(members)),
            )

    def cell_footprint(
        self,
        cell_bounds: Tuple[float, ...]
    ) -> Optional[Tuple[int, Tuple[Tuple[int, int], ...]]]:
        """Depth and clamped index ranges at which a cell is scattered.

        Returns:
            (depth, ((imin, imax), (jmin, jmax), (kmin, kmax))), None if the
            cell misses the domain
        """
        grid = self.grid
        for depth in range(grid.max_depth + 1):
            spans = [
                grid.index_range(cell_bounds[2 * axis], cell_bounds[2 * axis + 1], axis, depth, clamp=False)
                for axis in range(3)
            ]
            if all(first != last for first, last in spans) or depth == grid.max_depth:
                ranges = [
                    grid.index_range(cell_bounds[2 * axis], cell_bounds[2 * axis + 1], axis, depth)
                    for axis in range(3)
                ]
                if any(r is None for r in ranges):
                    return None
                return depth, tuple(ranges)
        return None

    def scatter_cells(self, dataset: DataSet, values: Optional[np.ndarray]):
        """Insert cells weighted by their intersection volume with each position."""
        grid = self.grid
        unsupported = Counter()

        cell_ids = range(dataset.number_of_cells)
        if self.show_progress:
            cell_ids = tqdm(cell_ids, desc="Scattering cells")

        for cell_id in cell_ids:
            cell = dataset.get_cell(cell_id)
            if not cell.is_3d:
                unsupported[cell.cell_type] += 1
                continue

            footprint = self.cell_footprint(cell.bounds)
            if footprint is None:
                continue
            depth, ((imin, imax), (jmin, jmax), (kmin, kmax)) = footprint
            value = None if values is None else float(values[cell_id])

            for i in range(imin, imax + 1):
                for j in range(jmin, jmax + 1):
                    for k in range(kmin, kmax + 1):
                        box = grid.position_bounds((i, j, k), depth)
                        volume, non_empty = intersect(box, cell, VOLUME_UNIT)
                        if not non_empty:
                            continue
                        coarse, local = grid.split_global((i, j, k), depth)
                        grid.insert(
                            grid.coarse_index(*coarse),
                            depth,
                            grid.local_index(*local, depth),
                            value,
                            volume,
                        )

        for cell_type, count in sorted(unsupported.items()):
            warnings.warn(
                f"Cell type '{cell_type}' not supported, skipped {count} cell(s)",
                UserWarning
            )
