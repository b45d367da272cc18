"""Detection of grid positions that hold no sample but lie inside input cells."""

from typing import Tuple

from tqdm import tqdm

from ..dataset.cells import Cell
from ..dataset.dataset import DataSet
from .grid import MultiResolutionGrid


class GapResolver:
    """Walk the grid under every input cell looking for uncovered positions.

    A position without a grid element whose centre lies inside an input cell
    is a gap. With ``mark_empty`` an empty placeholder element is inserted
    there so the position is kept (unmasked) in the output and later filled
    by extrapolation. Without it, a gap forbids its parent from subdividing
    so that no masked node appears where geometry is present.

    Args:
        grid: Aggregated multi-resolution grid
        mark_empty: Whether to insert placeholders at gaps
        show_progress: Whether to show a progress bar
    """

    def __init__(self, grid: MultiResolutionGrid, mark_empty: bool, show_progress: bool = False):
        self.grid = grid
        self.mark_empty = mark_empty
        self.show_progress = show_progress

    def mark_empty_cells(self, dataset: DataSet) -> int:
        """Process every 3-D cell of the dataset.

        Returns:
            Number of placeholders inserted
        """
        grid = self.grid
        before = grid.number_of_elements()

        cells = dataset.volumetric_cells()
        if self.show_progress:
            cells = tqdm(cells, desc="Resolving gaps")

        for _, cell in cells:
            cell_bounds = cell.bounds
            ranges = [
                grid.index_range(cell_bounds[2 * axis], cell_bounds[2 * axis + 1], axis, 0)
                for axis in range(3)
            ]
            if any(r is None for r in ranges):
                continue
            (imin, imax), (jmin, jmax), (kmin, kmax) = ranges
            for i in range(imin, imax + 1):
                for j in range(jmin, jmax + 1):
                    for k in range(kmin, kmax + 1):
                        self.resolve(cell, (i, j, k), 0, (0, 0, 0))

        return grid.number_of_elements() - before

    def resolve(
        self,
        cell: Cell,
        coarse: Tuple[int, int, int],
        depth: int,
        local: Tuple[int, int, int]
    ) -> bool:
        """Descend from a grid position under a cell.

        Returns:
            False if the position is a gap, True otherwise
        """
        grid = self.grid
        coarse_index = grid.coarse_index(*coarse)
        local_index = grid.local_index(*local, depth)
        element = grid.get(coarse_index, depth, local_index)

        if element is None:
            covered = cell.contains(grid.box_center(coarse, depth, local))
            if covered and self.mark_empty:
                grid.insert_placeholder(coarse_index, depth, local_index)
            return not covered

        number_of_children = grid.branch_factor ** 3
        if (
            depth == grid.max_depth
            or not element.can_subdivide
            or (
                element.number_of_non_masked_children == number_of_children
                and element.unmasked_children_have_no_masked_leaves
            )
        ):
            return True

        cell_bounds = cell.bounds
        branch_factor = grid.branch_factor
        for oz in range(branch_factor):
            for oy in range(branch_factor):
                for ox in range(branch_factor):
                    child = (
                        local[0] * branch_factor + ox,
                        local[1] * branch_factor + oy,
                        local[2] * branch_factor + oz,
                    )
                    box = grid.box_bounds(coarse, depth + 1, child)
                    if not all(
                        box[2 * axis] <= cell_bounds[2 * axis + 1]
                        and box[2 * axis + 1] >= cell_bounds[2 * axis]
                        for axis in range(3)
                    ):
                        continue
                    resolved = self.resolve(cell, coarse, depth + 1, child)
                    if not self.mark_empty and not resolved:
                        element.can_subdivide = False
                        return True
        return True
