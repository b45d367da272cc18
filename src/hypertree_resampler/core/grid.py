"""Multi-resolution grid of aggregated samples.

Each coarse cell of the top-level grid owns a stack of sparse grids, one per
depth. A sparse grid maps the flattened local index of a position to the
``GridElement`` aggregating every sample that fell there.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ..measurement.accumulators import Accumulator
from ..measurement.measurements import Measurement

Bounds = Tuple[float, float, float, float, float, float]


@dataclass
class GridElement:
    """One node of the multi-resolution grid.

    Attributes:
        number_of_points_in_subtree: Samples aggregated below (and at) this node
        number_of_leaves_in_subtree: Leaves of the fully refined subtree
        accumulated_weight: Total sample weight (point count or cell volume)
        accumulators: Owned accumulators, laid out by ``AccumulatorLayout``
        can_subdivide: Whether every child holds enough samples to be measured
        unmasked_children_have_no_masked_leaves: Whether the existing children
            have complete, mask-free subtrees
        number_of_non_masked_children: Number of existing children
    """

    number_of_points_in_subtree: int = 0
    number_of_leaves_in_subtree: int = 0
    accumulated_weight: float = 0.0
    accumulators: List[Accumulator] = field(default_factory=list)
    can_subdivide: bool = True
    unmasked_children_have_no_masked_leaves: bool = True
    number_of_non_masked_children: int = 0

    @classmethod
    def placeholder(cls) -> "GridElement":
        """Empty element standing for a position covered by input geometry."""
        return cls(can_subdivide=False)


@dataclass
class AccumulatorLayout:
    """Accumulators stored in every grid element.

    The primary and display measurements share accumulators that compute the
    same quantity: each such accumulator is stored once and both index lists
    point at it.

    Attributes:
        templates: Empty accumulator prototypes in storage order
        primary: Storage index of each primary measurement accumulator
        display: Storage index of each display measurement accumulator
    """

    templates: List[Accumulator] = field(default_factory=list)
    primary: List[int] = field(default_factory=list)
    display: List[int] = field(default_factory=list)

    @classmethod
    def from_measurements(
        cls,
        measurement: Optional[Measurement],
        display_measurement: Optional[Measurement] = None
    ) -> "AccumulatorLayout":
        layout = cls()
        layout.primary = layout._place(measurement)
        layout.display = layout._place(display_measurement)
        return layout

    def _place(self, measurement: Optional[Measurement]) -> List[int]:
        if measurement is None:
            return []
        indices = []
        for accumulator in measurement.accumulators:
            for position, template in enumerate(self.templates):
                if template.has_same_parameters(accumulator):
                    indices.append(position)
                    break
            else:
                self.templates.append(accumulator.new_instance())
                indices.append(len(self.templates) - 1)
        return indices

    def new_accumulators(self) -> List[Accumulator]:
        return [template.new_instance() for template in self.templates]

    def measure(
        self,
        measurement: Optional[Measurement],
        indices: Sequence[int],
        element: GridElement
    ) -> float:
        """Measure an element, NaN for placeholders and unmeasurable subtrees."""
        if measurement is None or not element.accumulators:
            return math.nan
        if not measurement.can_measure(
            element.number_of_points_in_subtree, element.accumulated_weight
        ):
            return math.nan
        accumulators = [element.accumulators[i] for i in indices]
        return float(measurement.measure(
            accumulators, element.number_of_points_in_subtree, element.accumulated_weight
        ))


class MultiResolutionGrid:
    """Sparse per-depth grids for every coarse cell.

    Args:
        grid_shape: Number of coarse cells along x, y and z
        branch_factor: Subdivisions per axis at each depth
        max_depth: Finest depth
        bounds: Domain (xmin, xmax, ymin, ymax, zmin, zmax)
        layout: Accumulators stored in every element
    """

    def __init__(
        self,
        grid_shape: Sequence[int],
        branch_factor: int,
        max_depth: int,
        bounds: Sequence[float],
        layout: Optional[AccumulatorLayout] = None
    ):
        self.grid_shape = tuple(int(n) for n in grid_shape)
        self.branch_factor = branch_factor
        self.max_depth = max_depth
        self.bounds: Bounds = tuple(float(b) for b in bounds)
        self.layout = layout or AccumulatorLayout()
        self.resolutions = [branch_factor ** depth for depth in range(max_depth + 1)]
        self._grids: Dict[int, List[Dict[int, GridElement]]] = {}

    @property
    def max_resolution(self) -> int:
        return self.resolutions[-1]

    def coarse_index(self, i: int, j: int, k: int) -> int:
        _, ny, nz = self.grid_shape
        return k + j * nz + i * nz * ny

    def local_index(self, ii: int, jj: int, kk: int, depth: int) -> int:
        resolution = self.resolutions[depth]
        return kk + jj * resolution + ii * resolution * resolution

    def local_coordinates(self, index: int, depth: int) -> Tuple[int, int, int]:
        resolution = self.resolutions[depth]
        return (
            index // (resolution * resolution),
            (index // resolution) % resolution,
            index % resolution,
        )

    def levels(self, coarse_index: int) -> List[Dict[int, GridElement]]:
        """Per-depth sparse grids of a coarse cell, created on first access."""
        levels = self._grids.get(coarse_index)
        if levels is None:
            levels = [{} for _ in range(self.max_depth + 1)]
            self._grids[coarse_index] = levels
        return levels

    def coarse_indices(self) -> List[int]:
        return sorted(self._grids)

    def get(self, coarse_index: int, depth: int, local_index: int) -> Optional[GridElement]:
        levels = self._grids.get(coarse_index)
        if levels is None:
            return None
        return levels[depth].get(local_index)

    def insert(
        self,
        coarse_index: int,
        depth: int,
        local_index: int,
        value: Optional[float],
        weight: float = 1.0
    ) -> GridElement:
        """Insert one weighted sample, creating the element on first insertion."""
        grid = self.levels(coarse_index)[depth]
        element = grid.get(local_index)
        if element is None:
            element = GridElement(
                number_of_leaves_in_subtree=1,
                accumulators=self.layout.new_accumulators(),
            )
            grid[local_index] = element
        element.number_of_points_in_subtree += 1
        element.accumulated_weight += weight
        if value is not None:
            for accumulator in element.accumulators:
                accumulator.add(value, weight)
        return element

    def insert_samples(
        self,
        coarse_index: int,
        depth: int,
        local_index: int,
        values: Optional[np.ndarray],
        weights: np.ndarray
    ) -> GridElement:
        """Insert a batch of weighted samples falling at the same position."""
        grid = self.levels(coarse_index)[depth]
        element = grid.get(local_index)
        if element is None:
            element = GridElement(
                number_of_leaves_in_subtree=1,
                accumulators=self.layout.new_accumulators(),
            )
            grid[local_index] = element
        element.number_of_points_in_subtree += len(weights)
        element.accumulated_weight += float(np.sum(weights))
        if values is not None:
            for accumulator in element.accumulators:
                accumulator.add_array(values, weights)
        return element

    def insert_placeholder(self, coarse_index: int, depth: int, local_index: int) -> GridElement:
        """Insert an empty element unless one already exists."""
        grid = self.levels(coarse_index)[depth]
        return grid.setdefault(local_index, GridElement.placeholder())

    def number_of_elements(self, depth: Optional[int] = None) -> int:
        depths = range(self.max_depth + 1) if depth is None else [depth]
        return sum(len(levels[d]) for levels in self._grids.values() for d in depths)

    def items(self, depth: int) -> Iterator[Tuple[int, int, GridElement]]:
        """Iterate over (coarse index, local index, element) at a depth."""
        for coarse_index in self.coarse_indices():
            for local_index, element in self._grids[coarse_index][depth].items():
                yield coarse_index, local_index, element

    def global_coordinates(
        self,
        coarse: Tuple[int, int, int],
        depth: int,
        local: Tuple[int, int, int]
    ) -> Tuple[int, int, int]:
        """Index of a position in the whole domain at a depth."""
        resolution = self.resolutions[depth]
        return tuple(c * resolution + l for c, l in zip(coarse, local))

    def split_global(
        self,
        position: Tuple[int, int, int],
        depth: int
    ) -> Tuple[Tuple[int, int, int], Tuple[int, int, int]]:
        """Split a domain-wide index into (coarse cell, local) coordinates."""
        resolution = self.resolutions[depth]
        coarse = tuple(p // resolution for p in position)
        local = tuple(p % resolution for p in position)
        return coarse, local

    def box_bounds(
        self,
        coarse: Tuple[int, int, int],
        depth: int,
        local: Tuple[int, int, int]
    ) -> Bounds:
        """Spatial extent of a grid position."""
        return self.position_bounds(self.global_coordinates(coarse, depth, local), depth)

    def position_bounds(self, position: Tuple[int, int, int], depth: int) -> Bounds:
        """Spatial extent of a domain-wide index at a depth."""
        resolution = self.resolutions[depth]
        box = []
        for axis in range(3):
            lower, upper = self.bounds[2 * axis], self.bounds[2 * axis + 1]
            cells = self.grid_shape[axis] * resolution
            box.append(lower + position[axis] / cells * (upper - lower))
            box.append(lower + (position[axis] + 1.0) / cells * (upper - lower))
        return tuple(box)

    def box_center(
        self,
        coarse: Tuple[int, int, int],
        depth: int,
        local: Tuple[int, int, int]
    ) -> np.ndarray:
        resolution = self.resolutions[depth]
        position = self.global_coordinates(coarse, depth, local)
        return np.array([
            self.bounds[2 * axis]
            + (position[axis] + 0.5) / (self.grid_shape[axis] * resolution)
            * (self.bounds[2 * axis + 1] - self.bounds[2 * axis])
            for axis in range(3)
        ])

    def index_range(
        self,
        lower: float,
        upper: float,
        axis: int,
        depth: int,
        clamp: bool = True
    ) -> Optional[Tuple[int, int]]:
        """Domain-wide index range covered by [lower, upper] along an axis.

        Returns:
            (first, last) clamped to the domain, None if the interval misses it.
            With ``clamp=False`` the raw range is returned.
        """
        b0, b1 = self.bounds[2 * axis], self.bounds[2 * axis + 1]
        cells = self.grid_shape[axis] * self.resolutions[depth]
        first = math.floor((lower - b0) * cells / (b1 - b0))
        last = math.floor(((upper - b0) * cells / (b1 - b0)) * (1.0 - np.finfo(np.float64).eps))
        last = max(last, first)
        if not clamp:
            return first, last
        if last < 0 or first >= cells:
            return None
        return max(first, 0), min(last, cells - 1)

    def clear(self):
        """Release every element."""
        self._grids.clear()
