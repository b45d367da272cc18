"""Basic usage example for the hyper tree grid resampler."""

import numpy as np

from hypertree_resampler import (
    DataSet,
    HyperTreeGridResampler,
    ResamplerConfig,
    create_measurement,
)


def example_point_cloud():
    """Resample a noisy point cloud, refining where the field is high."""
    rng = np.random.default_rng(0)
    points = rng.uniform(-1.0, 1.0, size=(50000, 3))

    # Field peaking at the origin
    temperature = np.exp(-4.0 * np.sum(points ** 2, axis=1)) + rng.normal(0.0, 0.01, len(points))
    dataset = DataSet(points, point_data={"temperature": temperature})

    # Create configuration
    config = ResamplerConfig(
        branch_factor=2,
        max_depth=4,
        grid_shape=(2, 2, 2),
        min_points_in_subtree=5,
        min_value=0.2,
        measurement=create_measurement("mean"),
        display_measurement=create_measurement("max"),
        show_progress=True,
    )

    output = HyperTreeGridResampler(config).execute(dataset, "temperature")

    summary = output.summary()
    print(f"Trees: {summary['trees']}, nodes: {summary['nodes']:,}, leaves: {summary['leaves']:,}")
    print(f"Depth: {summary['depth']}")

    values = output.cell_data["temperature_measure"]
    leaves = list(output.leaves())
    print(f"Leaf values: min={np.nanmin(values[leaves]):.3f}, max={np.nanmax(values[leaves]):.3f}")


def example_cells():
    """Resample voxel cells carrying a cell field."""
    voxels = [
        (0.0, 1.0, 0.0, 1.0, 0.0, 1.0),
        (1.0, 2.0, 0.0, 1.0, 0.0, 1.0),
        (0.0, 2.0, 1.0, 2.0, 0.0, 1.0),
    ]
    dataset = DataSet.from_voxels(voxels, cell_data={"density": np.array([1.0, 5.0, 2.0])})

    config = ResamplerConfig(
        max_depth=2,
        measurement=create_measurement("standard_deviation"),
        min_value=0.0,
    )
    output = HyperTreeGridResampler(config).execute(dataset, "density", "cells")

    print(f"\nCell dataset resampled into {output.number_of_leaves} leaves")
    print(f"Masked leaves: {output.summary()['masked_leaves']}")


if __name__ == "__main__":
    print("Hyper Tree Grid Resampler - Basic Usage Examples\n")

    print("=" * 60)
    print("Example 1: Point cloud")
    print("=" * 60)
    example_point_cloud()

    print("\n" + "=" * 60)
    print("Example 2: Voxel cells")
    print("=" * 60)
    example_cells()
