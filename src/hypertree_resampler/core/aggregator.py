"""Bottom-up propagation of aggregated samples."""

from typing import Dict, Optional

from tqdm import tqdm

from ..measurement.measurements import Measurement
from .grid import GridElement, MultiResolutionGrid


class Aggregator:
    """Fold every depth of a multi-resolution grid into the depth above.

    Args:
        min_points_in_subtree: Minimum number of samples every child must hold
            for its parent to be subdivided
        measurement: Primary measurement (optional)
        display_measurement: Display measurement (optional)
        show_progress: Whether to show a progress bar
    """

    def __init__(
        self,
        min_points_in_subtree: int = 1,
        measurement: Optional[Measurement] = None,
        display_measurement: Optional[Measurement] = None,
        show_progress: bool = False
    ):
        self.min_points_in_subtree = min_points_in_subtree
        self.measurement = measurement
        self.display_measurement = display_measurement
        self.show_progress = show_progress

    def child_is_refinable(self, child: GridElement) -> bool:
        """Whether a child holds enough samples for its parent to subdivide."""
        points = child.number_of_points_in_subtree
        weight = child.accumulated_weight
        if points < self.min_points_in_subtree:
            return False
        if self.measurement is not None and not self.measurement.can_measure(points, weight):
            return False
        if self.display_measurement is not None and not self.display_measurement.can_measure(points, weight):
            return False
        return True

    def propagate(self, grid: MultiResolutionGrid):
        """Aggregate depth MaxDepth..1 into their parents, in place."""
        coarse_indices = grid.coarse_indices()
        if self.show_progress:
            coarse_indices = tqdm(coarse_indices, desc="Aggregating")

        for coarse_index in coarse_indices:
            levels = grid.levels(coarse_index)
            for depth in range(grid.max_depth, 0, -1):
                self._fold(grid, levels[depth], levels[depth - 1], depth)

    def _fold(
        self,
        grid: MultiResolutionGrid,
        children: Dict[int, GridElement],
        parents: Dict[int, GridElement],
        depth: int
    ):
        branch_factor = grid.branch_factor
        number_of_children = branch_factor ** 3
        refinable: Dict[int, bool] = {}

        for local_index in sorted(children):
            child = children[local_index]
            ii, jj, kk = grid.local_coordinates(local_index, depth)
            parent_index = grid.local_index(
                ii // branch_factor, jj // branch_factor, kk // branch_factor, depth - 1
            )
            parent = parents.get(parent_index)
            if parent is None:
                parent = GridElement(accumulators=grid.layout.new_accumulators())
                parents[parent_index] = parent

            parent.number_of_leaves_in_subtree += child.number_of_leaves_in_subtree
            parent.number_of_points_in_subtree += child.number_of_points_in_subtree
            parent.accumulated_weight += child.accumulated_weight
            for accumulator, child_accumulator in zip(parent.accumulators, child.accumulators):
                accumulator.merge(child_accumulator)

            parent.unmasked_children_have_no_masked_leaves &= (
                child.unmasked_children_have_no_masked_leaves
                and child.number_of_non_masked_children == number_of_children
            )
            parent.number_of_non_masked_children += 1

            refinable[parent_index] = (
                refinable.get(parent_index, True) and self.child_is_refinable(child)
            )

        # Decided once every child of the depth has been folded
        for parent_index, value in refinable.items():
            parents[parent_index].can_subdivide = value
