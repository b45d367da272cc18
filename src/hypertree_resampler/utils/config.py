"""Configuration management for hyper tree grid resampling."""

import math
from dataclasses import dataclass, field
from typing import Optional, Tuple

from ..measurement.measurements import Measurement


@dataclass
class ResamplerConfig:
    """Configuration for resampling a dataset onto a hyper tree grid.

    Attributes:
        branch_factor: Number of subdivisions per axis at each refinement step
        max_depth: Deepest refinement level (0 = coarse cells only)
        grid_shape: Number of coarse cells (trees) along x, y and z
        min_points_in_subtree: Minimum number of samples every child must hold
            for its parent to be subdivided
        min_value: Lower bound of the subdivision range
        max_value: Upper bound of the subdivision range
        in_range: If True, subdivide where the measured value lies strictly
            inside (min_value, max_value); if False, where it lies outside
        no_empty_cells: If True, forbid subdivisions that would leave a masked
            child where input geometry is present
        extrapolate: If True, fill undefined leaves from their neighbours
            (point-associated data only)
        measurement: Measurement driving the subdivision criterion (optional)
        display_measurement: Secondary measurement written for display (optional)
        bounds: Explicit domain (xmin, xmax, ymin, ymax, zmin, zmax); the
            dataset bounds are used when None
        show_progress: Whether to show progress bars
    """

    branch_factor: int = 2
    max_depth: int = 1
    grid_shape: Tuple[int, int, int] = (1, 1, 1)
    min_points_in_subtree: int = 1
    min_value: float = -math.inf
    max_value: float = math.inf
    in_range: bool = True
    no_empty_cells: bool = False
    extrapolate: bool = True
    measurement: Optional[Measurement] = None
    display_measurement: Optional[Measurement] = None
    bounds: Optional[Tuple[float, float, float, float, float, float]] = None
    show_progress: bool = False

    # Last finite bounds, restored by set_min_state / set_max_state
    _min_cache: float = field(default=-math.inf, init=False, repr=False)
    _max_cache: float = field(default=math.inf, init=False, repr=False)

    def __post_init__(self):
        """Validate configuration."""
        if self.branch_factor < 2:
            raise ValueError(f"branch_factor must be >= 2, got {self.branch_factor}")

        if self.max_depth < 0:
            raise ValueError(f"max_depth must be >= 0, got {self.max_depth}")

        self.grid_shape = tuple(int(n) for n in self.grid_shape)
        if len(self.grid_shape) != 3 or any(n < 1 for n in self.grid_shape):
            raise ValueError(
                f"grid_shape must hold 3 positive cell counts, got {self.grid_shape}"
            )

        if self.min_points_in_subtree < 0:
            raise ValueError(
                f"min_points_in_subtree must be non-negative, got {self.min_points_in_subtree}"
            )

        if self.bounds is not None:
            self.bounds = tuple(float(b) for b in self.bounds)
            if len(self.bounds) != 6:
                raise ValueError(f"bounds must hold 6 values, got {len(self.bounds)}")
            for axis in range(3):
                if self.bounds[2 * axis] > self.bounds[2 * axis + 1]:
                    raise ValueError(
                        f"bounds along axis {axis} are inverted: "
                        f"{self.bounds[2 * axis]} > {self.bounds[2 * axis + 1]}"
                    )

        if self.measurement is not None and not isinstance(self.measurement, Measurement):
            raise ValueError(
                f"measurement must be a Measurement, got {type(self.measurement).__name__}"
            )
        if self.display_measurement is not None and not isinstance(
            self.display_measurement, Measurement
        ):
            raise ValueError(
                "display_measurement must be a Measurement, got "
                f"{type(self.display_measurement).__name__}"
            )

        self._min_cache = self.min_value
        self._max_cache = self.max_value

    @property
    def number_of_children(self) -> int:
        """Number of children of a subdivided node."""
        return self.branch_factor ** 3

    @property
    def level_resolutions(self) -> list[int]:
        """Get the per-axis resolution of a tree at each depth."""
        return [self.branch_factor ** depth for depth in range(self.max_depth + 1)]

    @property
    def max_resolution_per_tree(self) -> int:
        """Per-axis resolution of a tree at the deepest level."""
        return self.branch_factor ** self.max_depth

    def value_in_subdivision_range(self, value: float) -> bool:
        """Check the range criterion for a measured value."""
        inside = self.min_value < value < self.max_value
        return inside if self.in_range else not inside

    def set_min_state(self, state: bool):
        """Enable or disable the lower range bound.

        Disabling stores the current bound and sets it to -inf; enabling
        restores the stored bound.
        """
        if not state:
            if self.min_value == -math.inf:
                return
            self._min_cache = self.min_value
            self.min_value = -math.inf
        else:
            self.min_value = max(self._min_cache, self.min_value)

    def set_max_state(self, state: bool):
        """Enable or disable the upper range bound.

        Disabling stores the current bound and sets it to +inf; enabling
        restores the stored bound.
        """
        if not state:
            if self.max_value == math.inf:
                return
            self._max_cache = self.max_value
            self.max_value = math.inf
        else:
            self.max_value = min(self._max_cache, self.max_value)
