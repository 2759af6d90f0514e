import logging
import numpy as np
from typing import List, Optional
from scipy.spatial import cKDTree

logger = logging.getLogger("thinshell")


class ObstacleIndex:
    """
    Spatial index over the faces of a static triangle mesh.

    Face bounding boxes are located through a KD-tree on their centres; a
    query box is first turned into a ball that contains every face box that
    could touch it, then the candidates are filtered with an exact AABB test.
    """

    def __init__(self, V: np.ndarray, F: np.ndarray):
        tri = V[F]                                   # (Nfaces, 3, 3)
        self.face_min = tri.min(axis=1)
        self.face_max = tri.max(axis=1)
        centers = 0.5 * (self.face_min + self.face_max)
        self.max_radius = float(0.5 * np.linalg.norm(self.face_max - self.face_min, axis=1).max())
        self.tree = cKDTree(centers)

    def intersect(self, box_min: np.ndarray, box_max: np.ndarray) -> List[int]:
        """Indices (ascending) of the faces whose bounding box overlaps [box_min, box_max]."""
        box_min = np.asarray(box_min, dtype=float)
        box_max = np.asarray(box_max, dtype=float)
        center = 0.5 * (box_min + box_max)
        radius = 0.5 * np.linalg.norm(box_max - box_min) + self.max_radius

        cand = np.asarray(self.tree.query_ball_point(center, radius), dtype=int)
        if cand.size == 0:
            return []
        hit = np.all(self.face_min[cand] <= box_max, axis=1) & np.all(self.face_max[cand] >= box_min, axis=1)
        return sorted(cand[hit].tolist())


class Obstacle:
    """A static triangle mesh the shell may collide with."""

    def __init__(self, V: np.ndarray, F: np.ndarray):
        self.V = np.asarray(V, dtype=float).reshape(-1, 3)
        self.F = np.asarray(F, dtype=int).reshape(-1, 3)
        # Meshes without faces cannot be hit and carry no index
        self.index: Optional[ObstacleIndex] = ObstacleIndex(self.V, self.F) if len(self.F) else None
        if self.index is None:
            logger.debug("Obstacle with %d vertices has no faces, it is ignored.", len(self.V))

    @property
    def n_faces(self) -> int:
        return self.F.shape[0]

    def triangle(self, face: int) -> np.ndarray:
        """(3, 3) corner positions of a face."""
        return self.V[self.F[face]]
