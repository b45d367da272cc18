"""End-to-end tests for the resampling pipeline."""

import math

import numpy as np
import pytest

from hypertree_resampler import (
    DataSet,
    FieldAssociation,
    HyperTreeGrid,
    HyperTreeGridResampler,
    ResamplerConfig,
    create_measurement,
)
from hypertree_resampler.core import (
    NUMBER_OF_LEAVES_ARRAY,
    NUMBER_OF_POINTS_ARRAY,
    Aggregator,
    AccumulatorLayout,
    GridBuilder,
    MultiResolutionGrid,
    extrapolate_gaps,
    field_to_scalars,
)
from hypertree_resampler.pipeline import load_point_cloud, main

UNIT_BOUNDS = (0.0, 1.0, 0.0, 1.0, 0.0, 1.0)


def uniform_cloud(n, seed=0):
    """Random points in the unit cube with a random scalar field."""
    rng = np.random.default_rng(seed)
    points = rng.uniform(0.0, 1.0, size=(n, 3))
    return DataSet(points, point_data={"v": rng.uniform(-1.0, 1.0, size=n)})


def hexahedron(lower, upper):
    (x0, y0, z0), (x1, y1, z1) = lower, upper
    return np.array([
        (x0, y0, z0), (x1, y0, z0), (x1, y1, z0), (x0, y1, z0),
        (x0, y0, z1), (x1, y0, z1), (x1, y1, z1), (x0, y1, z1),
    ], dtype=np.float64)


def forest(grid_shape, values):
    """Unrefined forest with one 'v' value per tree, NaN for undefined."""
    output = HyperTreeGrid(grid_shape, 2)
    output.add_array("v")
    for tree_index, value in enumerate(values):
        cursor = output.new_cursor(tree_index, create=True)
        output.set_value("v", cursor.global_node_index, value)
    return output


def tree_values(output, name="v"):
    return [output.get_value(name, output.root(t)) for t in output.tree_indices()]


class TestPointClouds:
    """Resampling of point-associated data."""

    def test_uniform_cloud(self):
        dataset = uniform_cloud(20000)
        config = ResamplerConfig(
            max_depth=3,
            bounds=UNIT_BOUNDS,
            measurement=create_measurement("mean"),
        )
        output = HyperTreeGridResampler(config).execute(dataset, "v")

        assert output.number_of_trees == 1
        assert output.number_of_leaves == 512
        assert output.number_of_nodes == 1 + 8 + 64 + 512
        assert output.summary()["masked_leaves"] == 0

        data = output.cell_data
        points = data[NUMBER_OF_POINTS_ARRAY]
        assert points.dtype == np.int64
        assert points[0] == 20000
        assert data[NUMBER_OF_LEAVES_ARRAY][0] == 512
        assert data["v_measure"][0] == pytest.approx(np.mean(dataset.point_data["v"]))

        # Point counts are conserved from every node to its children
        for node in range(output.number_of_nodes):
            children = output.children(node)
            if len(children):
                assert points[node] == sum(points[child] for child in children)

        # Uniform density spreads the points evenly
        for child in output.children(0):
            assert abs(points[child] - 2500) < 250

        print(" Uniform cloud test passed")

    def test_grid_conserves_points(self):
        """Every depth of the aggregated grid holds every point in the domain."""
        dataset = uniform_cloud(1000, seed=3)
        outside = np.array([[5.0, 5.0, 5.0], [-1.0, 0.5, 0.5]])
        points = np.vstack([dataset.points, outside])

        grid = MultiResolutionGrid((2, 1, 1), 2, 2, (0.0, 1.0, 0.0, 1.0, 0.0, 1.0))
        GridBuilder(grid).scatter_points(points, None)
        Aggregator().propagate(grid)

        for depth in range(3):
            elements = [element for _, _, element in grid.items(depth)]
            assert sum(e.number_of_points_in_subtree for e in elements) == 1000
            assert sum(e.accumulated_weight for e in elements) == pytest.approx(1000.0)
        assert grid.number_of_elements(0) == 2

    def test_min_points_blocks_subdivision(self):
        dataset = uniform_cloud(100, seed=1)
        config = ResamplerConfig(
            max_depth=2,
            grid_shape=(2, 2, 2),
            bounds=UNIT_BOUNDS,
            min_points_in_subtree=1000,
            measurement=create_measurement("mean"),
        )
        output = HyperTreeGridResampler(config).execute(dataset)
        assert output.number_of_nodes == 8
        assert output.cell_data[NUMBER_OF_POINTS_ARRAY].sum() == 100

    def test_subdivision_range(self):
        rng = np.random.default_rng(5)
        dataset = DataSet(rng.uniform(size=(200, 3)), point_data={"v": np.full(200, 100.0)})

        def resample(in_range):
            config = ResamplerConfig(
                max_depth=1,
                min_value=0.0,
                max_value=10.0,
                in_range=in_range,
                measurement=create_measurement("mean"),
            )
            return HyperTreeGridResampler(config).execute(dataset, "v")

        assert resample(True).number_of_nodes == 1
        assert resample(False).number_of_nodes == 9

    def test_display_measurement(self):
        dataset = uniform_cloud(500, seed=2)
        config = ResamplerConfig(
            max_depth=1,
            measurement=create_measurement("mean"),
            display_measurement=create_measurement("max"),
        )
        output = HyperTreeGridResampler(config).execute(dataset, "v")
        data = output.cell_data
        assert set(data) == {"v_measure", "v", NUMBER_OF_LEAVES_ARRAY, NUMBER_OF_POINTS_ARRAY}
        assert data["v"][0] == pytest.approx(dataset.point_data["v"].max())

        config = ResamplerConfig(max_depth=1, measurement=create_measurement("mean"))
        output = HyperTreeGridResampler(config).execute(dataset, "v")
        assert not output.has_array("v")
        assert output.has_array("v_measure")

    def test_missing_array_counts_only(self):
        dataset = DataSet(np.random.default_rng(4).uniform(size=(300, 3)))
        config = ResamplerConfig(max_depth=1, measurement=create_measurement("mean"))
        with pytest.warns(UserWarning, match="No input array"):
            output = HyperTreeGridResampler(config).execute(dataset)

        assert not output.has_array("values_measure")
        assert output.cell_data[NUMBER_OF_POINTS_ARRAY][0] == 300
        # Without measurement the subdivision only depends on the samples
        assert output.number_of_nodes == 9

    def test_vector_field(self):
        rng = np.random.default_rng(6)
        vectors = rng.normal(size=(100, 3))
        dataset = DataSet(rng.uniform(size=(100, 3)), point_data={"velocity": vectors})
        config = ResamplerConfig(max_depth=0, measurement=create_measurement("mean"))
        output = HyperTreeGridResampler(config).execute(dataset, "velocity")
        expected = np.linalg.norm(vectors, axis=1).mean()
        assert output.get_value("velocity_measure", 0) == pytest.approx(expected)

    def test_shuffled_input(self):
        """The result does not depend on the order of the points."""
        dataset = uniform_cloud(3000, seed=8)
        order = np.random.default_rng(9).permutation(3000)
        shuffled = DataSet(dataset.points[order], point_data={"v": dataset.point_data["v"][order]})

        config = ResamplerConfig(
            max_depth=2,
            grid_shape=(2, 1, 1),
            bounds=(0.0, 1.0, 0.0, 1.0, 0.0, 1.0),
            measurement=create_measurement("standard_deviation"),
            display_measurement=create_measurement("median"),
        )
        first = HyperTreeGridResampler(config).execute(dataset, "v")
        second = HyperTreeGridResampler(config).execute(shuffled, "v")

        assert first.summary() == second.summary()
        for name, values in first.cell_data.items():
            np.testing.assert_allclose(values, second.cell_data[name])

    def test_reexecution_is_idempotent(self):
        dataset = uniform_cloud(2000, seed=10)
        resampler = HyperTreeGridResampler(
            ResamplerConfig(max_depth=2, measurement=create_measurement("mean"))
        )
        output = HyperTreeGrid()
        resampler.execute(dataset, "v", output=output)
        summary = output.summary()
        data = output.cell_data

        resampler.execute(dataset, "v", output=output)
        assert output.summary() == summary
        for name, values in data.items():
            np.testing.assert_array_equal(values, output.cell_data[name])


class TestCellData:
    """Resampling of cell-associated data."""

    def test_voxels(self):
        dataset = DataSet.from_voxels(
            [(0, 1, 0, 2, 0, 2), (1, 2, 0, 2, 0, 2)],
            cell_data={"v": np.array([1.0, 3.0])},
        )
        config = ResamplerConfig(max_depth=1, measurement=create_measurement("mean"))
        output = HyperTreeGridResampler(config).execute(dataset, "v", FieldAssociation.CELLS)

        assert output.bounds == (0.0, 2.0, 0.0, 2.0, 0.0, 2.0)
        assert output.get_value("v_measure", 0) == pytest.approx(2.0)
        assert output.get_value(NUMBER_OF_POINTS_ARRAY, 0) == 8
        for child_index, child in enumerate(output.children(0)):
            expected = 1.0 if child_index % 2 == 0 else 3.0
            assert output.get_value("v_measure", child) == pytest.approx(expected)
        assert not output.mask.any()

    def test_point_cloud_has_implicit_vertices(self):
        cloud = DataSet([(0, 0, 0), (1, 2, 3)])
        assert cloud.is_point_cloud
        assert cloud.number_of_cells == 2
        assert cloud.get_cell(1).cell_type == "vertex"
        assert cloud.get_cell(1).point_ids == (1,)
        assert list(cloud.volumetric_cells()) == []

        voxels = DataSet.from_voxels([(0, 1, 0, 1, 0, 1)])
        assert not voxels.is_point_cloud
        assert voxels.number_of_cells == 1
        assert [cell_id for cell_id, _ in voxels.volumetric_cells()] == [0]

    def test_tetra_weights(self):
        points = [(0, 0, 0), (1, 0, 0), (0, 1, 0), (0, 0, 1)]
        dataset = DataSet(points, cells=[("tetra", range(4))], cell_data={"v": np.array([2.0])})
        measurement = create_measurement("mean")
        layout = AccumulatorLayout.from_measurements(measurement)
        grid = MultiResolutionGrid((1, 1, 1), 2, 1, UNIT_BOUNDS, layout)
        GridBuilder(grid).build(dataset, dataset.cell_data["v"], FieldAssociation.CELLS)

        elements = [element for _, _, element in grid.items(1)]
        assert len(elements) == 4
        assert grid.number_of_elements(0) == 0
        assert sum(e.accumulated_weight for e in elements) == pytest.approx(1.0 / 6.0, rel=1e-6)
        for element in elements:
            assert layout.measure(measurement, layout.primary, element) == pytest.approx(2.0)

    def test_cell_outside_domain(self):
        dataset = DataSet.from_voxels([(10, 11, 10, 11, 10, 11)], cell_data={"v": np.array([1.0])})
        config = ResamplerConfig(
            grid_shape=(2, 2, 2),
            bounds=UNIT_BOUNDS,
            measurement=create_measurement("mean"),
        )
        output = HyperTreeGridResampler(config).execute(dataset, "v", "cells")

        assert output.number_of_trees == 8
        assert output.number_of_nodes == 8
        assert output.mask.all()
        assert np.isnan(output.cell_data["v_measure"]).all()

    def test_unsupported_cells(self):
        points = [(0, 0, 0), (1, 0, 0), (0, 1, 0), (0, 0, 1)]
        dataset = DataSet(
            points,
            cells=[("triangle", [0, 1, 2]), ("tetra", [0, 1, 2, 3])],
            cell_data={"v": np.array([1.0, 2.0])},
        )
        config = ResamplerConfig(max_depth=0, measurement=create_measurement("mean"))
        with pytest.warns(UserWarning, match="Cell type 'triangle' not supported, skipped 1 cell"):
            output = HyperTreeGridResampler(config).execute(dataset, "v", "cells")
        assert output.get_value("v_measure", 0) == pytest.approx(2.0)


class TestGaps:
    """Positions without samples lying inside input cells."""

    @staticmethod
    def spanning_hexahedron():
        """One hexahedron across three trees, point values only at its ends."""
        points = hexahedron((0.0, 0.0, 0.0), (3.0, 1.0, 1.0))
        values = np.where(points[:, 0] == 0.0, 1.0, 3.0)
        return DataSet(points, cells=[("hexahedron", range(8))], point_data={"v": values})

    def test_gap_is_extrapolated(self):
        config = ResamplerConfig(
            max_depth=1,
            grid_shape=(3, 1, 1),
            measurement=create_measurement("mean"),
        )
        output = HyperTreeGridResampler(config).execute(
            self.spanning_hexahedron(), "v", FieldAssociation.POINTS
        )

        middle = output.root(1)
        assert not output.is_masked(middle)
        assert output.get_value("v_measure", middle) == pytest.approx(2.0)
        assert output.get_value(NUMBER_OF_POINTS_ARRAY, middle) == 0
        assert output.summary()["masked_leaves"] == 0

    def test_gap_is_masked_without_extrapolation(self):
        config = ResamplerConfig(
            max_depth=1,
            grid_shape=(3, 1, 1),
            extrapolate=False,
            measurement=create_measurement("mean"),
        )
        output = HyperTreeGridResampler(config).execute(self.spanning_hexahedron(), "v")
        middle = output.root(1)
        assert output.is_masked(middle)
        assert math.isnan(output.get_value("v_measure", middle))

    def test_no_empty_cells(self):
        """A covered position without samples prevents the subdivision."""
        points = np.vstack([
            hexahedron((-1.0, -1.0, -1.0), (2.0, 2.0, 2.0)),
            [[0.25, 0.25, 0.25], [0.75, 0.75, 0.75]],
        ])
        dataset = DataSet(points, cells=[("hexahedron", range(8))], point_data={"v": np.ones(10)})

        def resample(no_empty_cells):
            config = ResamplerConfig(
                max_depth=1,
                bounds=UNIT_BOUNDS,
                no_empty_cells=no_empty_cells,
                extrapolate=False,
                measurement=create_measurement("mean"),
            )
            return HyperTreeGridResampler(config).execute(dataset, "v")

        assert resample(True).number_of_nodes == 1

        output = resample(False)
        assert output.number_of_nodes == 9
        assert output.summary()["masked_leaves"] == 6

    def test_no_empty_cells_with_cell_data(self):
        """A small voxel refines one octant that the large voxel leaves partly empty."""
        dataset = DataSet.from_voxels(
            [(0.0, 1.0, 0.0, 1.0, 0.0, 1.0), (0.05, 0.2, 0.05, 0.2, 0.05, 0.2)],
            cell_data={"v": np.array([1.0, 2.0])},
        )

        def resample(no_empty_cells):
            config = ResamplerConfig(
                max_depth=2,
                no_empty_cells=no_empty_cells,
                measurement=create_measurement("mean"),
            )
            return HyperTreeGridResampler(config).execute(dataset, "v", FieldAssociation.CELLS)

        output = resample(False)
        assert output.number_of_nodes == 1 + 8 + 8
        assert output.summary()["masked_leaves"] == 7

        output = resample(True)
        assert output.number_of_nodes == 1 + 8
        assert output.summary()["masked_leaves"] == 0
        assert not output.mask.any()
        first_octant = output.children(0)[0]
        assert output.is_leaf(first_octant)
        assert output.get_value(NUMBER_OF_POINTS_ARRAY, first_octant) == 2

        print(" No empty cells with cell data test passed")


class TestExtrapolation:
    """Filling of undefined leaves."""

    def test_surrounded_leaf(self):
        values = [0.0, 1.0, 0.0, 2.0, math.nan, 3.0, 0.0, 4.0, 0.0]
        output = forest((3, 3, 1), values)
        assert extrapolate_gaps(output, "v") == 1
        assert output.get_value("v", output.root(4)) == pytest.approx(2.5)

    def test_tier_is_committed_together(self):
        """Leaves of the same rank do not see each other's new values."""
        output = forest((4, 1, 1), [1.0, math.nan, math.nan, 4.0])
        assert extrapolate_gaps(output, "v") == 2
        assert tree_values(output) == [1.0, 1.0, 4.0, 4.0]

    def test_propagation(self):
        output = forest((4, 1, 1), [1.0, math.nan, math.nan, math.nan])
        assert extrapolate_gaps(output, "v") == 2
        values = tree_values(output)
        assert values[:3] == [1.0, 1.0, 1.0]
        assert math.isnan(values[3])

    def test_isolated_leaves_stay_undefined(self):
        output = forest((2, 1, 1), [math.nan, math.nan])
        assert extrapolate_gaps(output, "v") == 0
        assert all(math.isnan(value) for value in tree_values(output))

    def test_masked_neighbors_ignored(self):
        output = forest((3, 1, 1), [1.0, math.nan, 5.0])
        output.set_mask(output.root(2), True)
        assert extrapolate_gaps(output, "v") == 1
        assert output.get_value("v", output.root(1)) == 1.0

    def test_display_values(self):
        output = forest((3, 1, 1), [1.0, math.nan, 3.0])
        output.add_array("d")
        output.set_value("d", output.root(0), 10.0)
        output.set_value("d", output.root(2), 30.0)
        extrapolate_gaps(output, "v", "d")
        assert output.get_value("v", output.root(1)) == 2.0
        assert output.get_value("d", output.root(1)) == 20.0


class TestPipeline:
    """Inputs, outputs and the command line."""

    def test_wrong_output_type(self):
        with pytest.raises(TypeError):
            HyperTreeGridResampler().execute(DataSet(np.zeros((1, 3))), output=object())

    def test_empty_dataset(self):
        output = HyperTreeGridResampler().execute(DataSet(np.empty((0, 3))))
        assert output.number_of_trees == 0
        assert output.bounds == (-0.5, 0.5, -0.5, 0.5, -0.5, 0.5)

    def test_flat_domain_is_widened(self):
        points = np.array([[0.0, 0.0, 2.0], [1.0, 1.0, 2.0]])
        resampler = HyperTreeGridResampler()
        resampler.execute(DataSet(points))
        assert resampler.bounds == (0.0, 1.0, 0.0, 1.0, 1.5, 2.5)

    def test_inspection_state(self):
        resampler = HyperTreeGridResampler(
            ResamplerConfig(max_depth=3, measurement=create_measurement("mean"))
        )
        assert resampler.resolution_per_tree == []
        resampler.execute(uniform_cloud(100), "v")
        assert resampler.bounds is not None
        assert resampler.resolution_per_tree == [1, 2, 4, 8]
        assert len(resampler.layout.templates) == 1
        assert not hasattr(resampler, "squared_diagonals")

    def test_unknown_association(self):
        dataset = uniform_cloud(50)
        config = ResamplerConfig(measurement=create_measurement("mean"))
        with pytest.warns(UserWarning, match="Unknown field association"):
            output = HyperTreeGridResampler(config).execute(dataset, "v", "edges")
        assert output.number_of_nodes == 1
        assert output.mask.all()

    def test_field_to_scalars(self):
        np.testing.assert_allclose(field_to_scalars(np.array([[3.0, 4.0], [0.0, 0.0]])), [5.0, 0.0])
        np.testing.assert_allclose(field_to_scalars(np.array([[2.0], [7.0]])), [2.0, 7.0])
        assert field_to_scalars(None) is None

    def test_load_point_cloud(self, tmp_path):
        path = tmp_path / "missing.npz"
        np.savez(path, values=np.zeros(3))
        with pytest.raises(ValueError):
            load_point_cloud(path)

    def test_cli(self, tmp_path, capsys):
        rng = np.random.default_rng(11)
        path = tmp_path / "cloud.npz"
        np.savez(path, points=rng.uniform(size=(400, 3)), temperature=rng.normal(size=400))

        output = main([str(path), "--max-depth", "2", "--grid-shape", "2", "1", "1"])

        captured = capsys.readouterr().out
        assert "Loaded 400 points" in captured
        assert "Resampling complete!" in captured
        assert "Trees: 2" in captured
        assert output.has_array("temperature_measure")
        assert output.cell_data[NUMBER_OF_POINTS_ARRAY].sum() >= 400
