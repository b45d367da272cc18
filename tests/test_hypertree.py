"""Tests for the hyper tree grid and its cursors."""

import math

import numpy as np
import pytest

from hypertree_resampler.tree import HyperTreeGrid, VonNeumannSuperCursor


def two_tree_grid(refine_second=True):
    """Grid of two trees along x, the first refined once."""
    grid = HyperTreeGrid((2, 1, 1), 2)
    grid.new_cursor(0, create=True).subdivide_leaf()
    cursor = grid.new_cursor(1, create=True)
    if refine_second:
        cursor.subdivide_leaf()
    return grid


class TestHyperTreeGrid:
    """Tests for HyperTreeGrid."""

    def test_tree_indexing(self):
        grid = HyperTreeGrid((2, 3, 4), 2)
        assert grid.max_number_of_trees == 24
        assert grid.tree_index(1, 2, 3) == 23
        assert grid.tree_coordinates(23) == (1, 2, 3)
        assert grid.tree_index(0, 0, 1) == 1
        assert grid.number_of_trees == 0
        assert grid.depth == 0

    def test_cursor_navigation(self):
        grid = HyperTreeGrid((1, 1, 1), 3)
        cursor = grid.new_cursor(0, create=True)
        assert cursor.is_root()
        assert cursor.is_leaf()
        assert cursor.number_of_children == 27

        cursor.subdivide_leaf()
        assert not cursor.is_leaf()
        cursor.to_child(5)
        assert cursor.level == 1
        # x varies fastest
        assert cursor.position == (2, 1, 0)

        child = cursor.clone()
        cursor.to_parent()
        assert cursor.global_node_index == 0
        assert child.global_node_index == 6

        child.subdivide_leaf()
        child.to_child(26)
        assert child.level == 2
        assert child.position == (8, 5, 2)
        child.to_root()
        assert child.is_root()

        assert grid.number_of_nodes == 1 + 27 + 27
        assert grid.number_of_leaves == 26 + 27
        assert grid.depth == 3

    def test_node_bounds(self):
        grid = two_tree_grid()
        assert grid.node_bounds(0) == (0.0, 1.0, 0.0, 1.0, 0.0, 1.0)
        assert grid.node_bounds(2) == (0.5, 1.0, 0.0, 0.5, 0.0, 0.5)
        assert grid.node_bounds(17) == (1.5, 2.0, 0.5, 1.0, 0.5, 1.0)
        assert grid.bounds == (0.0, 2.0, 0.0, 1.0, 0.0, 1.0)

    def test_explicit_coordinates(self):
        grid = HyperTreeGrid((1, 1, 1), 2, [[-2.0, 2.0], [0.0, 1.0], [10.0, 12.0]])
        grid.new_cursor(0, create=True).subdivide_leaf()
        assert grid.node_bounds(8) == (0.0, 2.0, 0.5, 1.0, 11.0, 12.0)

    def test_face_neighbors(self):
        grid = two_tree_grid()
        assert grid.face_neighbors(2) == [1, 10, None, 4, None, 6]
        assert grid.face_neighbors(9) == [0, None, None, None, None, None]

    def test_coarser_neighbor(self):
        """A neighbour across an unrefined tree is that tree's root leaf."""
        grid = two_tree_grid(refine_second=False)
        assert grid.face_neighbors(2)[1] == 9
        assert grid.find_node(1, 3, (0, 0, 0)) == 9
        assert grid.find_node(0, 1, (1, 1, 1)) == 8

    def test_missing_tree_neighbor(self):
        grid = HyperTreeGrid((2, 1, 1), 2)
        grid.new_cursor(0, create=True)
        assert grid.face_neighbors(0)[1] is None

    def test_masked_neighbor_excluded(self):
        grid = two_tree_grid()
        grid.set_mask(10, True)
        cursor = VonNeumannSuperCursor(grid, 2)
        assert cursor.unmasked_neighbors() == [1, 4, 6]
        assert cursor.clone().neighbors() == [1, 10, None, 4, None, 6]

    def test_arrays(self):
        grid = HyperTreeGrid((1, 1, 1), 2)
        grid.new_cursor(0, create=True)
        grid.add_array("values")
        grid.add_array("counts", dtype=np.int64, fill_value=0)
        grid.set_value("values", 0, 1.5)
        grid.subdivide(0)

        assert grid.get_value("values", 0) == 1.5
        assert math.isnan(grid.get_value("values", 8))
        data = grid.cell_data
        assert data["counts"].dtype == np.int64
        assert data["counts"].shape == (9,)
        assert np.isnan(data["values"][1:]).all()
        assert grid.has_array("counts")
        assert not grid.has_array("missing")

    def test_mask_and_summary(self):
        grid = two_tree_grid()
        grid.set_mask(3, True)
        grid.set_mask(9, True)
        summary = grid.summary()
        assert summary == {
            "trees": 2,
            "nodes": 18,
            "leaves": 16,
            "masked_nodes": 2,
            "masked_leaves": 1,
            "depth": 2,
        }
        assert grid.mask.sum() == 2

    def test_errors(self):
        grid = HyperTreeGrid((2, 1, 1), 2)
        with pytest.raises(IndexError):
            grid.new_cursor(2)
        with pytest.raises(KeyError):
            grid.new_cursor(1)

        cursor = grid.new_cursor(0, create=True)
        with pytest.raises(ValueError):
            cursor.to_child(0)
        with pytest.raises(ValueError):
            cursor.to_parent()
        cursor.subdivide_leaf()
        with pytest.raises(ValueError):
            cursor.subdivide_leaf()
        with pytest.raises(IndexError):
            cursor.to_child(8)

        with pytest.raises(ValueError):
            HyperTreeGrid((2, 1), 2)
        with pytest.raises(ValueError):
            HyperTreeGrid((1, 1, 1), 1)
        with pytest.raises(ValueError):
            HyperTreeGrid((2, 1, 1), 2, [[0.0, 1.0], [0.0, 1.0], [0.0, 1.0]])

    def test_initialize_resets(self):
        grid = two_tree_grid()
        grid.add_array("values")
        grid.initialize((1, 1, 1), 3)
        assert grid.number_of_nodes == 0
        assert grid.number_of_trees == 0
        assert grid.cell_data == {}
        assert grid.number_of_children == 27
