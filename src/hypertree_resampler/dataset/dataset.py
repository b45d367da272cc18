"""In-memory dataset of points and cells carrying field arrays."""

from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from .cells import CELL_TYPES, Cell, VertexCell, VoxelCell


class FieldAssociation(str, Enum):
    """Whether field values live on the points or on the cells."""

    POINTS = "points"
    CELLS = "cells"


class DataSet:
    """Points, cells and the field arrays attached to them.

    When no cells are given the dataset is a point cloud: every point is an
    implicit vertex cell.

    Args:
        points: (N, 3) point coordinates
        cells: Cells built on the points, or (cell type name, point ids)
            pairs resolved against ``points``
        point_data: Arrays of shape (N,) or (N, C) keyed by name
        cell_data: Arrays of shape (M,) or (M, C) keyed by name
    """

    def __init__(
        self,
        points: np.ndarray,
        cells: Optional[Sequence[Union[Cell, Tuple[str, Sequence[int]]]]] = None,
        point_data: Optional[Dict[str, np.ndarray]] = None,
        cell_data: Optional[Dict[str, np.ndarray]] = None
    ):
        self.points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        self._cells: Optional[List[Cell]] = None
        if cells is not None:
            self._cells = [self._resolve_cell(cell) for cell in cells]

        self.point_data: Dict[str, np.ndarray] = {}
        self.cell_data: Dict[str, np.ndarray] = {}
        for name, array in (point_data or {}).items():
            self.add_array(name, array, FieldAssociation.POINTS)
        for name, array in (cell_data or {}).items():
            self.add_array(name, array, FieldAssociation.CELLS)

    def _resolve_cell(self, cell: Union[Cell, Tuple[str, Sequence[int]]]) -> Cell:
        if isinstance(cell, Cell):
            return cell
        cell_type, point_ids = cell
        try:
            cls = CELL_TYPES[cell_type]
        except KeyError:
            raise ValueError(
                f"Unknown cell type '{cell_type}', choose from {sorted(CELL_TYPES)}"
            ) from None
        return cls(self.points[list(point_ids)], point_ids)

    @classmethod
    def from_voxels(
        cls,
        voxel_bounds: Sequence[Sequence[float]],
        cell_data: Optional[Dict[str, np.ndarray]] = None
    ) -> "DataSet":
        """Create a dataset of voxel cells from their (xmin, xmax, ..., zmax) bounds."""
        cells = [VoxelCell.from_bounds(bounds) for bounds in voxel_bounds]
        points = np.concatenate([cell.points for cell in cells]) if cells else np.empty((0, 3))
        for index, cell in enumerate(cells):
            cell.point_ids = tuple(range(8 * index, 8 * index + 8))
        return cls(points, cells, cell_data=cell_data)

    @property
    def is_point_cloud(self) -> bool:
        return self._cells is None

    @property
    def number_of_points(self) -> int:
        return len(self.points)

    @property
    def number_of_cells(self) -> int:
        if self.is_point_cloud:
            return self.number_of_points
        return len(self._cells)

    def get_cell(self, cell_id: int) -> Cell:
        if self.is_point_cloud:
            return VertexCell(self.points[cell_id], (cell_id,))
        return self._cells[cell_id]

    def volumetric_cells(self) -> Iterator[Tuple[int, Cell]]:
        """Iterate over (cell id, cell) for the 3-D cells only."""
        if self.is_point_cloud:
            return
        for cell_id, cell in enumerate(self._cells):
            if cell.is_3d:
                yield cell_id, cell

    @property
    def bounds(self) -> Tuple[float, float, float, float, float, float]:
        """(xmin, xmax, ymin, ymax, zmin, zmax) of the points."""
        if not self.number_of_points:
            return (0.0, -1.0, 0.0, -1.0, 0.0, -1.0)
        lower = self.points.min(axis=0)
        upper = self.points.max(axis=0)
        return (
            float(lower[0]), float(upper[0]),
            float(lower[1]), float(upper[1]),
            float(lower[2]), float(upper[2]),
        )

    def add_array(self, name: str, array: np.ndarray, association: FieldAssociation):
        """Attach a field array.

        Raises:
            ValueError: If the first dimension does not match the number of
                points or cells
        """
        association = FieldAssociation(association)
        array = np.asarray(array)
        expected = (
            self.number_of_points if association is FieldAssociation.POINTS
            else self.number_of_cells
        )
        if array.ndim not in (1, 2) or len(array) != expected:
            raise ValueError(
                f"Array '{name}' must have shape ({expected},) or ({expected}, C), "
                f"got {array.shape}"
            )
        target = self.point_data if association is FieldAssociation.POINTS else self.cell_data
        target[name] = array

    def get_array(
        self,
        name: Optional[str] = None,
        association: Optional[FieldAssociation] = None
    ) -> Tuple[Optional[str], Optional[np.ndarray], Optional[FieldAssociation]]:
        """Look up a field array.

        Without a name the first point array is returned, then the first cell
        array. Without an association points are searched before cells.

        Returns:
            (name, array, association), all None if nothing matches
        """
        if association is None:
            searched = [FieldAssociation.POINTS, FieldAssociation.CELLS]
        else:
            searched = [FieldAssociation(association)]

        for candidate in searched:
            arrays = self.point_data if candidate is FieldAssociation.POINTS else self.cell_data
            if name is None and arrays:
                first = next(iter(arrays))
                return first, arrays[first], candidate
            if name is not None and name in arrays:
                return name, arrays[name], candidate
        return None, None, None

    def __repr__(self) -> str:
        return (
            f"DataSet(points={self.number_of_points}, cells={self.number_of_cells}, "
            f"point_data={list(self.point_data)}, cell_data={list(self.cell_data)})"
        )
