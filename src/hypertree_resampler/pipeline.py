"""Main pipeline for resampling datasets onto hyper tree grids."""

import dataclasses
import warnings
from pathlib import Path
from typing import List, Optional, Union

import numpy as np

from .core.aggregator import Aggregator
from .core.builder import GridBuilder, field_to_scalars
from .core.extrapolation import extrapolate_gaps
from .core.gaps import GapResolver
from .core.generator import TreeGenerator
from .core.grid import AccumulatorLayout, MultiResolutionGrid
from .dataset.dataset import DataSet, FieldAssociation
from .measurement.measurements import MEASUREMENTS, create_measurement
from .tree.hypertree import HyperTreeGrid
from .utils.config import ResamplerConfig

DEFAULT_ARRAY_NAME = "values"


class HyperTreeGridResampler:
    """Resample a point or cell dataset onto an adaptive hyper tree grid.

    This class orchestrates the whole process:
    1. Scatter of the samples into a multi-resolution grid
    2. Bottom-up aggregation and subdivision eligibility
    3. Gap detection under input cells
    4. Top-down generation of one tree per coarse cell
    5. Extrapolation of undefined leaves (point data only)
    """

    def __init__(self, config: Optional[ResamplerConfig] = None):
        """Initialize the resampler.

        Args:
            config: Configuration object (uses defaults if not provided)
        """
        self.config = config or ResamplerConfig()

        # Filled by execute, kept for inspection
        self.bounds: Optional[tuple] = None
        self.resolution_per_tree: List[int] = []
        self.layout: Optional[AccumulatorLayout] = None

    def domain_bounds(self, dataset: DataSet) -> tuple:
        """Resampled domain: the configured bounds or the dataset bounds.

        Flat axes are widened by 0.5 on each side. An empty dataset gives the
        unit cube centred on the origin.
        """
        bounds = list(self.config.bounds if self.config.bounds is not None else dataset.bounds)
        for axis in range(3):
            if bounds[2 * axis + 1] < bounds[2 * axis]:
                bounds[2 * axis] = bounds[2 * axis + 1] = 0.0
            if bounds[2 * axis + 1] == bounds[2 * axis]:
                bounds[2 * axis] -= 0.5
                bounds[2 * axis + 1] += 0.5
        return tuple(bounds)

    def execute(
        self,
        dataset: DataSet,
        array_name: Optional[str] = None,
        association: Optional[Union[FieldAssociation, str]] = None,
        output: Optional[HyperTreeGrid] = None
    ) -> HyperTreeGrid:
        """Resample a dataset.

        Args:
            dataset: Input dataset
            array_name: Field array to process (first available if None)
            association: Whether the array lives on points or cells (searched
                points first if None)
            output: Hyper tree grid to fill (a new one if None)

        Returns:
            The filled hyper tree grid

        Raises:
            TypeError: If ``output`` is not a HyperTreeGrid
        """
        if output is None:
            output = HyperTreeGrid()
        elif not isinstance(output, HyperTreeGrid):
            raise TypeError(
                f"Output must be a HyperTreeGrid, got {type(output).__name__}"
            )

        config = self.config
        self.bounds = self.domain_bounds(dataset)
        coordinates = [
            np.linspace(self.bounds[2 * axis], self.bounds[2 * axis + 1], n + 1)
            for axis, n in enumerate(config.grid_shape)
        ]
        output.initialize(config.grid_shape, config.branch_factor, coordinates)

        if dataset.number_of_cells == 0 or dataset.number_of_points == 0:
            return output

        valid = association is None or association in [member.value for member in FieldAssociation]
        requested = FieldAssociation(association) if association is not None and valid else None

        name, array, found = dataset.get_array(array_name, requested)
        if array is None:
            if config.measurement is not None or config.display_measurement is not None:
                warnings.warn(
                    f"No input array '{array_name or ''}' found, resampling sample counts only",
                    UserWarning
                )
                config = dataclasses.replace(config, measurement=None, display_measurement=None)
            name = array_name or DEFAULT_ARRAY_NAME
            found = requested or FieldAssociation.POINTS
        if not valid:
            # Reported by the builder, nothing is scattered
            found = association

        self.resolution_per_tree = config.level_resolutions
        self.layout = AccumulatorLayout.from_measurements(
            config.measurement, config.display_measurement
        )

        grid = MultiResolutionGrid(
            config.grid_shape,
            config.branch_factor,
            config.max_depth,
            self.bounds,
            self.layout,
        )
        GridBuilder(grid, config.show_progress).build(dataset, field_to_scalars(array), found)

        Aggregator(
            config.min_points_in_subtree,
            config.measurement,
            config.display_measurement,
            config.show_progress,
        ).propagate(grid)

        mark_empty = config.extrapolate and found == FieldAssociation.POINTS
        if config.no_empty_cells or mark_empty:
            GapResolver(grid, mark_empty, config.show_progress).mark_empty_cells(dataset)

        value_name = f"{name}_measure"
        display_name = name
        TreeGenerator(grid, config, value_name, display_name).generate(output)

        if mark_empty and config.measurement is not None:
            extrapolate_gaps(
                output,
                value_name,
                display_name if config.display_measurement is not None else None,
                config.show_progress,
            )

        grid.clear()
        return output


def load_point_cloud(path: Path) -> DataSet:
    """Load a point cloud from a NumPy archive.

    The archive must hold a (N, 3) ``points`` array; every other array of
    length N becomes a point field.
    """
    with np.load(path) as archive:
        if "points" not in archive.files:
            raise ValueError(f"{path} holds no 'points' array")
        points = archive["points"]
        point_data = {name: archive[name] for name in archive.files if name != "points"}
    return DataSet(points, point_data=point_data)


def main(argv=None):
    """Resample a point cloud stored in a NumPy archive and print a summary."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Resample a point cloud onto an adaptive hyper tree grid"
    )
    parser.add_argument(
        "input",
        type=Path,
        help="NumPy archive (.npz) holding 'points' and point field arrays"
    )
    parser.add_argument(
        "--array",
        default=None,
        help="Point field to resample (first array if omitted)"
    )
    parser.add_argument(
        "--measurement",
        choices=sorted(MEASUREMENTS),
        default="mean",
        help="Measurement driving the subdivision"
    )
    parser.add_argument(
        "--display-measurement",
        choices=sorted(MEASUREMENTS),
        default=None,
        help="Secondary measurement written for display"
    )
    parser.add_argument(
        "--branch-factor",
        type=int,
        default=2,
        help="Subdivisions per axis"
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=3,
        help="Maximum refinement depth"
    )
    parser.add_argument(
        "--grid-shape",
        type=int,
        nargs=3,
        default=[1, 1, 1],
        help="Number of coarse cells along x, y and z"
    )
    parser.add_argument(
        "--min-points",
        type=int,
        default=1,
        help="Minimum number of points in every child of a subdivided node"
    )
    parser.add_argument(
        "--min-value",
        type=float,
        default=-np.inf,
        help="Lower bound of the subdivision range"
    )
    parser.add_argument(
        "--max-value",
        type=float,
        default=np.inf,
        help="Upper bound of the subdivision range"
    )
    parser.add_argument(
        "--outside-range",
        action="store_true",
        help="Subdivide where the value lies outside the range"
    )
    parser.add_argument(
        "--no-empty-cells",
        action="store_true",
        help="Forbid subdivisions leaving masked children under input geometry"
    )
    parser.add_argument(
        "--no-extrapolate",
        action="store_true",
        help="Leave undefined leaves as NaN"
    )
    parser.add_argument(
        "--bounds",
        type=float,
        nargs=6,
        default=None,
        help="Domain bounds xmin xmax ymin ymax zmin zmax"
    )
    parser.add_argument(
        "--progress",
        action="store_true",
        help="Show progress bars"
    )

    args = parser.parse_args(argv)

    config = ResamplerConfig(
        branch_factor=args.branch_factor,
        max_depth=args.max_depth,
        grid_shape=tuple(args.grid_shape),
        min_points_in_subtree=args.min_points,
        min_value=args.min_value,
        max_value=args.max_value,
        in_range=not args.outside_range,
        no_empty_cells=args.no_empty_cells,
        extrapolate=not args.no_extrapolate,
        measurement=create_measurement(args.measurement),
        display_measurement=(
            create_measurement(args.display_measurement) if args.display_measurement else None
        ),
        bounds=tuple(args.bounds) if args.bounds else None,
        show_progress=args.progress,
    )

    dataset = load_point_cloud(args.input)
    print(f"Loaded {dataset.number_of_points:,} points from {args.input}")

    resampler = HyperTreeGridResampler(config)
    output = resampler.execute(dataset, args.array, FieldAssociation.POINTS)

    summary = output.summary()
    print(f"\nResampling complete!")
    print(f"Trees: {summary['trees']}")
    print(f"Nodes: {summary['nodes']:,}")
    print(f"Leaves: {summary['leaves']:,}")
    print(f"Masked leaves: {summary['masked_leaves']:,}")
    print(f"Depth: {summary['depth']}")
    return output


if __name__ == "__main__":
    main()
