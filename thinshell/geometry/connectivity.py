import numpy as np
from typing import Dict, Optional, Tuple

from thinshell.core.exceptions import ConfigurationError

# --- 1. Edge-to-ID Lookup Helper ---

def get_edge_map(faces: np.ndarray) -> Dict[Tuple[int, int], int]:
    """
    Creates a dictionary mapping an undirected node pair (n_min, n_max) to its
    Edge ID (eid). Edge IDs are assigned in order of first appearance when
    walking the faces, edge i of a face being the one opposite its vertex i.

    Parameters:
        faces (np.ndarray): (Nfaces, 3) vertex indices per face.

    Returns:
        Dict[Tuple[int, int], int]: Mapping from sorted node tuple to edge ID.
    """
    edge_dict = {}
    for tri in np.asarray(faces, dtype=int):
        for i in range(3):
            a, b = tri[(i + 1) % 3], tri[(i + 2) % 3]
            key = (min(a, b), max(a, b))
            if key not in edge_dict:
                edge_dict[key] = len(edge_dict)
    return edge_dict

# --- 2. Mesh Connectivity ---

class MeshConnectivity:
    """
    Edge/face adjacency of a triangle mesh.

    Attributes:
        faces (Nfaces, 3): vertex indices per face.
        edges (Nedges, 2): edge endpoints, oriented as in the first face using it.
        face_edges (Nfaces, 3): edge ID opposite each face vertex.
        edge_faces (Nedges, 2): the (up to) two faces of each edge, -1 on the boundary.
        edge_opp_verts (Nedges, 2): vertex opposite the edge in each of edge_faces.
        face_opp_verts (Nfaces, 3): vertex across edge i in the neighbouring face, -1 on the boundary.
    """

    def __init__(self, faces: np.ndarray, n_verts: Optional[int] = None):
        faces = np.asarray(faces, dtype=int)
        if faces.size == 0:
            faces = faces.reshape(0, 3)
        if faces.ndim != 2 or faces.shape[1] != 3:
            raise ConfigurationError("faces must have shape (Nfaces, 3).")

        self.faces = faces
        self.n_faces = faces.shape[0]
        self.n_verts = int(faces.max()) + 1 if n_verts is None and faces.size else int(n_verts or 0)
        if faces.size and (faces.min() < 0 or faces.max() >= self.n_verts):
            raise ConfigurationError(f"Face indices must lie in [0, {self.n_verts}).")

        edge_dict = get_edge_map(faces)
        self.n_edges = len(edge_dict)

        self.edges = np.zeros((self.n_edges, 2), dtype=int)
        self.edge_faces = -np.ones((self.n_edges, 2), dtype=int)
        self.edge_opp_verts = -np.ones((self.n_edges, 2), dtype=int)
        self.face_edges = np.zeros((self.n_faces, 3), dtype=int)

        for f, tri in enumerate(faces):
            for i in range(3):
                a, b = tri[(i + 1) % 3], tri[(i + 2) % 3]
                eid = edge_dict[(min(a, b), max(a, b))]
                self.face_edges[f, i] = eid

                if self.edge_faces[eid, 0] < 0:
                    self.edges[eid] = (a, b)
                    self.edge_faces[eid, 0] = f
                    self.edge_opp_verts[eid, 0] = tri[i]
                elif self.edge_faces[eid, 1] < 0:
                    self.edge_faces[eid, 1] = f
                    self.edge_opp_verts[eid, 1] = tri[i]
                else:
                    raise ConfigurationError(f"Edge ({a}, {b}) is shared by more than two faces.")

        # Vertex across each face edge, seen from the neighbouring face
        self.face_opp_verts = -np.ones((self.n_faces, 3), dtype=int)
        for f in range(self.n_faces):
            for i in range(3):
                eid = self.face_edges[f, i]
                side = 0 if self.edge_faces[eid, 1] == f else 1
                self.face_opp_verts[f, i] = self.edge_opp_verts[eid, side]

    @property
    def is_interior(self) -> np.ndarray:
        """Boolean mask of edges shared by two faces."""
        return self.edge_faces[:, 1] >= 0

    def hinge_quads(self) -> np.ndarray:
        """
        Ordered nodes of every interior edge for dihedral angle calculations.

        For each hinge [eid, n0, n1, oppA, oppB] the triangles (n0, n1, oppA)
        and (n1, n0, oppB) keep the orientation of the mesh faces, so the
        dihedral angle of a flat, consistently oriented patch is zero.

        Returns:
            np.ndarray: (Nhinges, 5) integer array.
        """
        eids = np.flatnonzero(self.is_interior)
        if eids.size == 0:
            return np.zeros((0, 5), dtype=int)
        return np.column_stack([eids,
                                self.edges[eids, 0],
                                self.edges[eids, 1],
                                self.edge_opp_verts[eids, 0],
                                self.edge_opp_verts[eids, 1]]).astype(int)
