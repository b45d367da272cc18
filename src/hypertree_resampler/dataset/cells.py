"""Cell types of an input dataset.

Every cell carries its own vertex coordinates. Three-dimensional cells also
describe their faces as tuples of local vertex ids ordered counter-clockwise
when seen from outside a positively oriented cell. The point orderings follow
the usual unstructured-grid conventions (hexahedron bottom face then top face,
voxel with x varying fastest, etc.).
"""

from typing import Dict, List, Optional, Sequence, Tuple, Type

import numpy as np
from scipy.spatial import ConvexHull

# Relative tolerance of the point containment test
CONTAINMENT_TOLERANCE = 1e-9

# Relative distance to the mean plane above which a face is not planar
PLANARITY_TOLERANCE = 1e-12


class Cell:
    """Base class of all cells.

    Args:
        points: (n, 3) vertex coordinates
        point_ids: Ids of the vertices in the owning dataset (optional)
    """

    cell_type: str = "cell"
    number_of_points: Optional[int] = None
    is_3d: bool = False

    def __init__(self, points: np.ndarray, point_ids: Optional[Sequence[int]] = None):
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if self.number_of_points is not None and len(points) != self.number_of_points:
            raise ValueError(
                f"{self.cell_type} cell needs {self.number_of_points} points, got {len(points)}"
            )
        self.points = points
        self.point_ids = None if point_ids is None else tuple(int(i) for i in point_ids)

    @property
    def bounds(self) -> Tuple[float, float, float, float, float, float]:
        """(xmin, xmax, ymin, ymax, zmin, zmax) of the vertices."""
        lower = self.points.min(axis=0)
        upper = self.points.max(axis=0)
        return (
            float(lower[0]), float(upper[0]),
            float(lower[1]), float(upper[1]),
            float(lower[2]), float(upper[2]),
        )

    def contains(self, x: Sequence[float]) -> bool:
        """Check whether a position lies inside the cell (or on its boundary)."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(points={self.points.tolist()})"


class VertexCell(Cell):
    """Single point."""

    cell_type = "vertex"
    number_of_points = 1

    def contains(self, x: Sequence[float]) -> bool:
        return bool(np.allclose(self.points[0], x, rtol=0.0, atol=CONTAINMENT_TOLERANCE))


class TriangleCell(Cell):
    """Planar triangle. Has no volume."""

    cell_type = "triangle"
    number_of_points = 3

    def contains(self, x: Sequence[float]) -> bool:
        a, b, c = self.points
        x = np.asarray(x, dtype=np.float64)
        normal = np.cross(b - a, c - a)
        area2 = np.linalg.norm(normal)
        if area2 == 0.0:
            return False
        scale = max(np.ptp(self.points, axis=0).max(), 1.0)
        if abs(np.dot(normal / area2, x - a)) > CONTAINMENT_TOLERANCE * scale:
            return False
        for p, q in ((a, b), (b, c), (c, a)):
            if np.dot(np.cross(q - p, x - p), normal) < -CONTAINMENT_TOLERANCE * area2 * scale:
                return False
        return True


class Cell3D(Cell):
    """Convex three-dimensional cell bounded by polygonal faces.

    The vertices are not expected to move once the cell is created: the
    orientation and the outward face polygons are computed on first use and
    cached.
    """

    is_3d = True
    face_connectivity: Tuple[Tuple[int, ...], ...] = ()

    def __init__(self, points: np.ndarray, point_ids: Optional[Sequence[int]] = None):
        super().__init__(points, point_ids)
        self._inside_out: Optional[bool] = None
        self._outward_faces: Optional[List[np.ndarray]] = None

    @property
    def faces(self) -> List[Tuple[int, ...]]:
        return list(self.face_connectivity)

    def face_points(self, face_id: int) -> np.ndarray:
        """(m, 3) coordinates of a face's vertices."""
        return self.points[list(self.faces[face_id])]

    def signed_volume(self) -> float:
        """Volume of the cell, negative if the cell is inside out."""
        origin = self.points.min(axis=0)
        total = 0.0
        for face in self.faces:
            total += polygon_volume_contribution(self.points[list(face)] - origin)
        return total / 6.0

    def is_inside_out(self) -> bool:
        """Check whether the faces are oriented inward."""
        if self._inside_out is None:
            self._inside_out = self.signed_volume() < 0.0
        return self._inside_out

    def outward_faces(self) -> List[np.ndarray]:
        """Planar face polygons oriented outward.

        Non-planar faces are split into triangles fanned around their vertex
        centroid, the surface ``signed_volume`` integrates over.
        """
        if self._outward_faces is None:
            scale = max(float(np.ptp(self.points, axis=0).max()), np.finfo(np.float64).tiny)
            polygons = []
            for face in self.faces:
                polygon = self.points[list(face)]
                if is_planar(polygon, PLANARITY_TOLERANCE * scale):
                    polygons.append(polygon)
                else:
                    polygons.extend(fan_triangles(polygon))
            if self.is_inside_out():
                polygons = [polygon[::-1] for polygon in polygons]
            self._outward_faces = polygons
        return list(self._outward_faces)

    def contains(self, x: Sequence[float]) -> bool:
        x = np.asarray(x, dtype=np.float64)
        scale = max(float(np.ptp(self.points, axis=0).max()), np.finfo(np.float64).tiny)
        tolerance = CONTAINMENT_TOLERANCE * scale
        for polygon in self.outward_faces():
            normal = newell_normal(polygon)
            length = np.linalg.norm(normal)
            if length == 0.0:
                continue
            if np.dot(normal / length, x - polygon.mean(axis=0)) > tolerance:
                return False
        return True


class TetraCell(Cell3D):
    cell_type = "tetra"
    number_of_points = 4
    face_connectivity = ((0, 1, 3), (1, 2, 3), (2, 0, 3), (0, 2, 1))


class HexahedronCell(Cell3D):
    cell_type = "hexahedron"
    number_of_points = 8
    face_connectivity = (
        (0, 4, 7, 3),
        (1, 2, 6, 5),
        (0, 1, 5, 4),
        (3, 7, 6, 2),
        (0, 3, 2, 1),
        (4, 5, 6, 7),
    )


class VoxelCell(Cell3D):
    """Axis-aligned hexahedron, vertices ordered with x varying fastest."""

    cell_type = "voxel"
    number_of_points = 8
    face_connectivity = (
        (0, 4, 6, 2),
        (1, 3, 7, 5),
        (0, 1, 5, 4),
        (2, 6, 7, 3),
        (0, 2, 3, 1),
        (4, 5, 7, 6),
    )

    @classmethod
    def from_bounds(cls, bounds: Sequence[float]) -> "VoxelCell":
        """Create a voxel from (xmin, xmax, ymin, ymax, zmin, zmax)."""
        xmin, xmax, ymin, ymax, zmin, zmax = bounds
        points = [
            (x, y, z)
            for z in (zmin, zmax)
            for y in (ymin, ymax)
            for x in (xmin, xmax)
        ]
        return cls(np.array(points))

    def contains(self, x: Sequence[float]) -> bool:
        b = self.bounds
        scale = max(b[1] - b[0], b[3] - b[2], b[5] - b[4])
        tolerance = CONTAINMENT_TOLERANCE * scale
        return all(
            b[2 * axis] - tolerance <= x[axis] <= b[2 * axis + 1] + tolerance
            for axis in range(3)
        )


class WedgeCell(Cell3D):
    cell_type = "wedge"
    number_of_points = 6
    face_connectivity = (
        (0, 1, 2),
        (3, 5, 4),
        (0, 3, 4, 1),
        (1, 4, 5, 2),
        (2, 5, 3, 0),
    )


class PyramidCell(Cell3D):
    cell_type = "pyramid"
    number_of_points = 5
    face_connectivity = (
        (0, 3, 2, 1),
        (0, 1, 4),
        (1, 2, 4),
        (2, 3, 4),
        (3, 0, 4),
    )


class ConvexPointSetCell(Cell3D):
    """Convex hull of an arbitrary set of points.

    Faces are the outward oriented triangles of the hull computed with
    ``scipy.spatial.ConvexHull``.
    """

    cell_type = "convex_point_set"

    def __init__(self, points: np.ndarray, point_ids: Optional[Sequence[int]] = None):
        super().__init__(points, point_ids)
        if len(self.points) < 4:
            raise ValueError(
                f"convex_point_set cell needs at least 4 points, got {len(self.points)}"
            )
        hull = ConvexHull(self.points)
        center = self.points[hull.vertices].mean(axis=0)
        faces = []
        for simplex in hull.simplices:
            a, b, c = self.points[simplex]
            if np.dot(np.cross(b - a, c - a), a - center) < 0:
                simplex = simplex[::-1]
            faces.append(tuple(int(i) for i in simplex))
        self._faces = faces

    @property
    def faces(self) -> List[Tuple[int, ...]]:
        return list(self._faces)


CELL_TYPES: Dict[str, Type[Cell]] = {
    cls.cell_type: cls
    for cls in (
        VertexCell,
        TriangleCell,
        TetraCell,
        HexahedronCell,
        VoxelCell,
        WedgeCell,
        PyramidCell,
        ConvexPointSetCell,
    )
}


def newell_normal(polygon: np.ndarray) -> np.ndarray:
    """Area-weighted normal of a (possibly non-planar) polygon."""
    following = np.roll(polygon, -1, axis=0)
    return np.array([
        np.sum((polygon[:, 1] - following[:, 1]) * (polygon[:, 2] + following[:, 2])),
        np.sum((polygon[:, 2] - following[:, 2]) * (polygon[:, 0] + following[:, 0])),
        np.sum((polygon[:, 0] - following[:, 0]) * (polygon[:, 1] + following[:, 1])),
    ])


def is_planar(polygon: np.ndarray, tolerance: float) -> bool:
    """Check whether every vertex lies within ``tolerance`` of the mean plane."""
    if len(polygon) <= 3:
        return True
    normal = newell_normal(polygon)
    length = np.linalg.norm(normal)
    if length == 0.0:
        return True
    distances = (polygon - polygon.mean(axis=0)) @ (normal / length)
    return bool(np.all(np.abs(distances) <= tolerance))


def fan_triangles(polygon: np.ndarray) -> List[np.ndarray]:
    """Triangles joining the vertex centroid to every edge of a polygon."""
    center = polygon.mean(axis=0)
    following = np.roll(polygon, -1, axis=0)
    return [np.array([center, p, q]) for p, q in zip(polygon, following)]


def polygon_volume_contribution(polygon: np.ndarray) -> float:
    """Six times the signed volume of the cone from the origin to a polygon.

    The polygon is fanned around its vertex centroid, which also handles
    non-planar (curved) faces. Summed over the closed faces of a polyhedron,
    this yields six times its signed volume.
    """
    if len(polygon) < 3:
        return 0.0
    center = polygon.mean(axis=0)
    following = np.roll(polygon, -1, axis=0)
    return float(np.sum(np.einsum("ij,ij->i", np.broadcast_to(center, polygon.shape),
                                  np.cross(polygon, following))))
