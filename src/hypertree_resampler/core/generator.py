"""Top-down generation of the output trees."""

import math
from typing import Optional, Tuple

from tqdm import tqdm

from ..tree.hypertree import HyperTreeGrid, HyperTreeGridCursor
from ..utils.config import ResamplerConfig
from .grid import GridElement, MultiResolutionGrid

NUMBER_OF_LEAVES_ARRAY = "Number of leaves"
NUMBER_OF_POINTS_ARRAY = "Number of points"


class TreeGenerator:
    """Create one tree per coarse cell from an aggregated grid.

    Every visited node receives its measured value, display value, leaf and
    point counts and mask before its subdivision is decided.

    Args:
        grid: Aggregated multi-resolution grid
        config: Resampling configuration
        value_name: Name of the measured value array (None without primary
            measurement)
        display_name: Name of the display value array (None without display
            measurement)
    """

    def __init__(
        self,
        grid: MultiResolutionGrid,
        config: ResamplerConfig,
        value_name: Optional[str] = None,
        display_name: Optional[str] = None
    ):
        self.grid = grid
        self.config = config
        self.value_name = value_name if config.measurement is not None else None
        self.display_name = display_name if config.display_measurement is not None else None

    def generate(self, output: HyperTreeGrid):
        """Build every tree of the output, in (i, j, k) order with k fastest."""
        if self.value_name is not None:
            output.add_array(self.value_name)
        if self.display_name is not None:
            output.add_array(self.display_name)
        output.add_array(NUMBER_OF_LEAVES_ARRAY, dtype="int64", fill_value=0)
        output.add_array(NUMBER_OF_POINTS_ARRAY, dtype="int64", fill_value=0)

        nx, ny, nz = output.grid_shape
        coarse_cells = [(i, j, k) for i in range(nx) for j in range(ny) for k in range(nz)]
        if self.config.show_progress:
            coarse_cells = tqdm(coarse_cells, desc="Generating trees")

        for coarse in coarse_cells:
            cursor = output.new_cursor(output.tree_index(*coarse), create=True)
            self.subdivide_leaves(output, cursor, coarse, (0, 0, 0))

    def measure(self, element: Optional[GridElement]) -> Tuple[float, float]:
        """(value, display value) of an element, NaN when undefined."""
        if element is None:
            return math.nan, math.nan
        layout = self.grid.layout
        value = layout.measure(self.config.measurement, layout.primary, element)
        display = layout.measure(self.config.display_measurement, layout.display, element)
        return value, display

    def should_subdivide(self, level: int, element: Optional[GridElement], value: float) -> bool:
        if level >= self.grid.max_depth or element is None:
            return False
        has_measurement = self.config.measurement is not None
        if has_measurement and math.isnan(value):
            return False
        if element.number_of_leaves_in_subtree <= 1 or not element.can_subdivide:
            return False
        return not has_measurement or self.config.value_in_subdivision_range(value)

    def subdivide_leaves(
        self,
        output: HyperTreeGrid,
        cursor: HyperTreeGridCursor,
        coarse: Tuple[int, int, int],
        local: Tuple[int, int, int]
    ):
        grid = self.grid
        level = cursor.level
        element = grid.get(grid.coarse_index(*coarse), level, grid.local_index(*local, level))
        value, display = self.measure(element)

        node = cursor.global_node_index
        if self.value_name is not None:
            output.set_value(self.value_name, node, value)
        if self.display_name is not None:
            output.set_value(self.display_name, node, display)
        output.set_value(
            NUMBER_OF_LEAVES_ARRAY, node, element.number_of_leaves_in_subtree if element else 0
        )
        output.set_value(
            NUMBER_OF_POINTS_ARRAY, node, element.number_of_points_in_subtree if element else 0
        )
        output.set_mask(node, element is None)

        if not self.should_subdivide(level, element, value):
            return

        cursor.subdivide_leaf()
        bf = grid.branch_factor
        for child in range(cursor.number_of_children):
            offset = (child % bf, (child // bf) % bf, child // (bf * bf))
            cursor.to_child(child)
            self.subdivide_leaves(
                output,
                cursor,
                coarse,
                tuple(l * bf + o for l, o in zip(local, offset)),
            )
            cursor.to_parent()
