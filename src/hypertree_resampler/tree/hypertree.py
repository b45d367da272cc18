"""Hyper tree grid: a forest of refinement trees over a regular coarse grid.

Nodes of every tree share one global index space. Node attributes (parent,
first child, level, position) and per-node arrays are stored in flat lists
indexed by that global index. Children of a subdivided node occupy
``branch_factor ** 3`` consecutive indices, ordered with x varying fastest,
then y, then z.
"""

import math
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

# Face neighbour offsets, ordered -x, +x, -y, +y, -z, +z
FACE_OFFSETS = (
    (-1, 0, 0), (1, 0, 0),
    (0, -1, 0), (0, 1, 0),
    (0, 0, -1), (0, 0, 1),
)


class HyperTreeGrid:
    """Forest of hyper trees with per-node arrays and a mask.

    Args:
        grid_shape: Number of coarse cells (trees) along x, y and z
        branch_factor: Subdivisions per axis when a node is refined
        coordinates: Coarse grid node coordinates per axis (n + 1 values);
            unit spacing from 0 if not provided
    """

    def __init__(
        self,
        grid_shape: Sequence[int] = (1, 1, 1),
        branch_factor: int = 2,
        coordinates: Optional[Sequence[np.ndarray]] = None
    ):
        self.initialize(grid_shape, branch_factor, coordinates)

    def initialize(
        self,
        grid_shape: Sequence[int],
        branch_factor: int,
        coordinates: Optional[Sequence[np.ndarray]] = None
    ):
        """Reset the grid to an empty forest of the given shape."""
        grid_shape = tuple(int(n) for n in grid_shape)
        if len(grid_shape) != 3 or any(n < 1 for n in grid_shape):
            raise ValueError(f"grid_shape must hold 3 positive cell counts, got {grid_shape}")
        if branch_factor < 2:
            raise ValueError(f"branch_factor must be >= 2, got {branch_factor}")

        if coordinates is None:
            coordinates = [np.arange(n + 1, dtype=np.float64) for n in grid_shape]
        coordinates = tuple(np.asarray(c, dtype=np.float64) for c in coordinates)
        for axis, (n, c) in enumerate(zip(grid_shape, coordinates)):
            if len(c) != n + 1:
                raise ValueError(
                    f"Expected {n + 1} coordinates along axis {axis}, got {len(c)}"
                )

        self.grid_shape = grid_shape
        self.branch_factor = branch_factor
        self.coordinates = coordinates

        self._roots: Dict[int, int] = {}
        self._parent: List[int] = []
        self._first_child: List[int] = []
        self._level: List[int] = []
        self._tree: List[int] = []
        self._position: List[Tuple[int, int, int]] = []

        self._arrays: Dict[str, list] = {}
        self._array_specs: Dict[str, Tuple[np.dtype, object]] = {}
        self._mask: List[bool] = []

    @property
    def number_of_children(self) -> int:
        return self.branch_factor ** 3

    @property
    def max_number_of_trees(self) -> int:
        nx, ny, nz = self.grid_shape
        return nx * ny * nz

    @property
    def number_of_trees(self) -> int:
        return len(self._roots)

    @property
    def number_of_nodes(self) -> int:
        return len(self._parent)

    @property
    def number_of_leaves(self) -> int:
        return sum(1 for child in self._first_child if child < 0)

    @property
    def depth(self) -> int:
        """Number of levels of the deepest tree (0 if empty)."""
        return max(self._level) + 1 if self._level else 0

    @property
    def bounds(self) -> Tuple[float, float, float, float, float, float]:
        x, y, z = self.coordinates
        return (x[0], x[-1], y[0], y[-1], z[0], z[-1])

    def tree_index(self, i: int, j: int, k: int) -> int:
        _, ny, nz = self.grid_shape
        return k + j * nz + i * nz * ny

    def tree_coordinates(self, tree_index: int) -> Tuple[int, int, int]:
        _, ny, nz = self.grid_shape
        return tree_index // (ny * nz), (tree_index // nz) % ny, tree_index % nz

    def tree_indices(self) -> List[int]:
        return sorted(self._roots)

    def has_tree(self, tree_index: int) -> bool:
        return tree_index in self._roots

    def root(self, tree_index: int) -> Optional[int]:
        return self._roots.get(tree_index)

    def new_cursor(self, tree_index: int, create: bool = False) -> "HyperTreeGridCursor":
        """Cursor on the root of a tree.

        Args:
            tree_index: Index of the tree
            create: Whether to create the tree if it does not exist

        Raises:
            KeyError: If the tree does not exist and ``create`` is False
        """
        if not 0 <= tree_index < self.max_number_of_trees:
            raise IndexError(f"Tree index {tree_index} out of range")
        if tree_index not in self._roots:
            if not create:
                raise KeyError(f"Tree {tree_index} does not exist")
            self._roots[tree_index] = self._allocate(1, -1, tree_index, 0, [(0, 0, 0)])
        return HyperTreeGridCursor(self, self._roots[tree_index])

    def _allocate(
        self,
        count: int,
        parent: int,
        tree_index: int,
        level: int,
        positions: List[Tuple[int, int, int]]
    ) -> int:
        first = len(self._parent)
        self._parent.extend([parent] * count)
        self._first_child.extend([-1] * count)
        self._level.extend([level] * count)
        self._tree.extend([tree_index] * count)
        self._position.extend(positions)
        for name, values in self._arrays.items():
            values.extend([self._array_specs[name][1]] * count)
        self._mask.extend([False] * count)
        return first

    def is_leaf(self, node: int) -> bool:
        return self._first_child[node] < 0

    def parent(self, node: int) -> Optional[int]:
        parent = self._parent[node]
        return None if parent < 0 else parent

    def children(self, node: int) -> range:
        first = self._first_child[node]
        if first < 0:
            return range(0)
        return range(first, first + self.number_of_children)

    def level(self, node: int) -> int:
        return self._level[node]

    def tree_of(self, node: int) -> int:
        return self._tree[node]

    def position(self, node: int) -> Tuple[int, int, int]:
        """Coordinates of a node within its tree, at its level."""
        return self._position[node]

    def subdivide(self, node: int) -> int:
        """Refine a leaf and return the index of its first child."""
        if not self.is_leaf(node):
            raise ValueError(f"Node {node} is already subdivided")
        bf = self.branch_factor
        px, py, pz = self._position[node]
        positions = [
            (px * bf + ox, py * bf + oy, pz * bf + oz)
            for oz in range(bf)
            for oy in range(bf)
            for ox in range(bf)
        ]
        first = self._allocate(
            self.number_of_children, node, self._tree[node], self._level[node] + 1, positions
        )
        self._first_child[node] = first
        return first

    def node_bounds(self, node: int) -> Tuple[float, float, float, float, float, float]:
        """Spatial extent of a node."""
        resolution = self.branch_factor ** self._level[node]
        tree = self.tree_coordinates(self._tree[node])
        position = self._position[node]
        box = []
        for axis in range(3):
            lower = self.coordinates[axis][tree[axis]]
            upper = self.coordinates[axis][tree[axis] + 1]
            size = (upper - lower) / resolution
            box.append(float(lower + position[axis] * size))
            box.append(float(lower + (position[axis] + 1) * size))
        return tuple(box)

    def find_node(
        self,
        tree_index: int,
        level: int,
        position: Tuple[int, int, int]
    ) -> Optional[int]:
        """Node at a level and position, or the leaf covering it if coarser.

        Returns:
            Global node index, None if the tree does not exist
        """
        node = self._roots.get(tree_index)
        if node is None:
            return None
        bf = self.branch_factor
        for current in range(level):
            if self.is_leaf(node):
                return node
            shift = bf ** (level - current - 1)
            ox, oy, oz = ((p // shift) % bf for p in position)
            node = self._first_child[node] + ox + oy * bf + oz * bf * bf
        return node

    def face_neighbors(self, node: int) -> List[Optional[int]]:
        """Face neighbours of a node, ordered -x, +x, -y, +y, -z, +z.

        A neighbour is the node at the same level across the face, or the
        coarser leaf covering that position. Positions outside the grid or in
        a missing tree give None.
        """
        level = self._level[node]
        resolution = self.branch_factor ** level
        tree = self.tree_coordinates(self._tree[node])
        position = self._position[node]
        center = [tree[axis] * resolution + position[axis] for axis in range(3)]

        neighbors: List[Optional[int]] = []
        for offset in FACE_OFFSETS:
            target = [c + o for c, o in zip(center, offset)]
            if any(t < 0 or t >= n * resolution for t, n in zip(target, self.grid_shape)):
                neighbors.append(None)
                continue
            tree_index = self.tree_index(*(t // resolution for t in target))
            local = tuple(t % resolution for t in target)
            neighbors.append(self.find_node(tree_index, level, local))
        return neighbors

    def add_array(self, name: str, dtype=np.float64, fill_value=math.nan):
        """Register a per-node array, filled for the existing nodes."""
        self._array_specs[name] = (np.dtype(dtype), fill_value)
        self._arrays[name] = [fill_value] * self.number_of_nodes

    def has_array(self, name: str) -> bool:
        return name in self._arrays

    def get_value(self, name: str, node: int):
        return self._arrays[name][node]

    def set_value(self, name: str, node: int, value):
        self._arrays[name][node] = value

    @property
    def cell_data(self) -> Dict[str, np.ndarray]:
        """Per-node arrays indexed by global node index."""
        return {
            name: np.array(values, dtype=self._array_specs[name][0])
            for name, values in self._arrays.items()
        }

    def set_mask(self, node: int, masked: bool):
        self._mask[node] = bool(masked)

    def is_masked(self, node: int) -> bool:
        return self._mask[node]

    @property
    def mask(self) -> np.ndarray:
        return np.array(self._mask, dtype=bool)

    def leaves(self) -> Iterator[int]:
        for node, child in enumerate(self._first_child):
            if child < 0:
                yield node

    def summary(self) -> Dict[str, int]:
        """Counts describing the forest."""
        mask = self._mask
        return {
            "trees": self.number_of_trees,
            "nodes": self.number_of_nodes,
            "leaves": self.number_of_leaves,
            "masked_nodes": sum(mask),
            "masked_leaves": sum(1 for node in self.leaves() if mask[node]),
            "depth": self.depth,
        }

    def __repr__(self) -> str:
        return (
            f"HyperTreeGrid(grid_shape={self.grid_shape}, branch_factor={self.branch_factor}, "
            f"trees={self.number_of_trees}, nodes={self.number_of_nodes})"
        )


class HyperTreeGridCursor:
    """Navigate and refine one tree of a hyper tree grid."""

    def __init__(self, grid: HyperTreeGrid, node: int):
        self.grid = grid
        self.node = node

    @property
    def global_node_index(self) -> int:
        return self.node

    @property
    def tree_index(self) -> int:
        return self.grid.tree_of(self.node)

    @property
    def level(self) -> int:
        return self.grid.level(self.node)

    @property
    def position(self) -> Tuple[int, int, int]:
        return self.grid.position(self.node)

    @property
    def number_of_children(self) -> int:
        return self.grid.number_of_children

    @property
    def bounds(self) -> Tuple[float, float, float, float, float, float]:
        return self.grid.node_bounds(self.node)

    def is_leaf(self) -> bool:
        return self.grid.is_leaf(self.node)

    def is_root(self) -> bool:
        return self.grid.parent(self.node) is None

    def is_masked(self) -> bool:
        return self.grid.is_masked(self.node)

    def subdivide_leaf(self):
        self.grid.subdivide(self.node)

    def to_child(self, child: int):
        if self.is_leaf():
            raise ValueError(f"Node {self.node} is a leaf")
        if not 0 <= child < self.number_of_children:
            raise IndexError(f"Child index {child} out of range")
        self.node = self.grid.children(self.node)[child]

    def to_parent(self):
        parent = self.grid.parent(self.node)
        if parent is None:
            raise ValueError("Cursor is at the root")
        self.node = parent

    def to_root(self):
        while not self.is_root():
            self.to_parent()

    def clone(self) -> "HyperTreeGridCursor":
        return HyperTreeGridCursor(self.grid, self.node)


class VonNeumannSuperCursor(HyperTreeGridCursor):
    """Cursor that also exposes the six face neighbours of its node."""

    def neighbors(self) -> List[Optional[int]]:
        """Face neighbours, ordered -x, +x, -y, +y, -z, +z (None outside)."""
        return self.grid.face_neighbors(self.node)

    def unmasked_neighbors(self) -> List[int]:
        """Existing, unmasked face neighbours, the node itself excluded."""
        return [
            neighbor for neighbor in self.neighbors()
            if neighbor is not None and neighbor != self.node and not self.grid.is_masked(neighbor)
        ]

    def clone(self) -> "VonNeumannSuperCursor":
        return VonNeumannSuperCursor(self.grid, self.node)
