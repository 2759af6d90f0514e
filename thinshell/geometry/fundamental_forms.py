import numpy as np
from typing import Tuple

from thinshell.core.params import SFFKind
from thinshell.energies.hinge_geometry import get_theta
from thinshell.geometry.connectivity import MeshConnectivity

# --- 1. Per-face Geometry ---

def face_frames(pos: np.ndarray, faces: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Edge vectors e1 = q1 - q0 and e2 = q2 - q0 for every face."""
    q0 = pos[faces[:, 0]]
    return pos[faces[:, 1]] - q0, pos[faces[:, 2]] - q0


def face_normals(pos: np.ndarray, faces: np.ndarray, normalize: bool = True) -> np.ndarray:
    e1, e2 = face_frames(pos, faces)
    n = np.cross(e1, e2)
    if not normalize:
        return n
    norms = np.linalg.norm(n, axis=1, keepdims=True)
    return n / np.where(norms > 0, norms, 1.0)


def face_areas(pos: np.ndarray, faces: np.ndarray) -> np.ndarray:
    return 0.5 * np.linalg.norm(face_normals(pos, faces, normalize=False), axis=1)


def first_fundamental_forms(pos: np.ndarray, faces: np.ndarray) -> np.ndarray:
    """
    Metric a = [[e1.e1, e1.e2], [e2.e1, e2.e2]] of every face.

    Returns:
        np.ndarray: (Nfaces, 2, 2)
    """
    e1, e2 = face_frames(pos, faces)
    a = np.empty((faces.shape[0], 2, 2))
    a[:, 0, 0] = np.einsum('ij,ij->i', e1, e1)
    a[:, 1, 1] = np.einsum('ij,ij->i', e2, e2)
    a[:, 0, 1] = a[:, 1, 0] = np.einsum('ij,ij->i', e1, e2)
    return a


def compute_vert_area(pos: np.ndarray, faces: np.ndarray, n_verts: int) -> np.ndarray:
    """Lumped (barycentric) vertex areas: each face gives a third of its area to each corner."""
    area = np.zeros(n_verts)
    if faces.size:
        np.add.at(area, faces.ravel(), np.repeat(face_areas(pos, faces) / 3.0, 3))
    return area

# --- 2. Mid-edge Second Fundamental Form ---
#
# The director on the mid-point of edge i (opposite vertex i) is the face
# normal rotated by psi_i about the edge, towards the outward in-plane edge
# normal m_i. psi_i is half the dihedral angle of the edge (zero on the
# boundary) plus the edge DOF of the angle-based kinds. With altitudes h_i and
# tilt coefficients c_i = sin(psi_i) or tan(psi_i), the discrete second
# fundamental form is
#
#     b = 2 sum_i c_i h_i B_i,   B_0 = [[1, 1], [1, 1]], B_1 = [[1, 0], [0, 0]], B_2 = [[0, 0], [0, 1]].

SFF_BASIS = np.array([[[1.0, 1.0], [1.0, 1.0]],
                      [[1.0, 0.0], [0.0, 0.0]],
                      [[0.0, 0.0], [0.0, 1.0]]])

# Squared length of edge i as a linear form in (a00, a11, a01)
EDGE_LENGTH_FORMS = np.array([[1.0, 1.0, -2.0],
                              [0.0, 1.0, 0.0],
                              [1.0, 0.0, 0.0]])

# Slots in [q0, q1, q2, p0, p1, p2] of the hinge across edge i, ordered
# [edge start, edge end, own opposite vertex, neighbour opposite vertex]
HINGE_SLOTS = np.array([[1, 2, 0, 3],
                        [2, 0, 1, 4],
                        [0, 1, 2, 5]])


def face_stencils(mesh: MeshConnectivity) -> np.ndarray:
    """
    Vertices [q0, q1, q2, p0, p1, p2] of every face, p_i being the vertex
    across edge i in the neighbouring face (q_i itself on a boundary edge).

    Returns:
        np.ndarray: (Nfaces, 6) integer array.
    """
    opp = mesh.face_opp_verts
    return np.concatenate([mesh.faces, np.where(opp >= 0, opp, mesh.faces)], axis=1)


def edge_dihedral_angles(pos: np.ndarray, mesh: MeshConnectivity) -> np.ndarray:
    """Signed dihedral angle across every face edge, 0 on the boundary. Shape (Nfaces, 3)."""
    stencil = face_stencils(mesh)
    interior = mesh.face_opp_verts >= 0
    theta = np.zeros((mesh.n_faces, 3))
    for i in range(3):
        rows = interior[:, i]
        if rows.any():
            theta[rows, i] = get_theta(pos[stencil[rows][:, HINGE_SLOTS[i]]].reshape(-1, 12))
    return theta


def midedge_tilts(psi: np.ndarray, sff: SFFKind) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Tilt coefficients c(psi) of the mid-edge directors and their first two derivatives."""
    if sff is SFFKind.MIDEDGE_TAN:
        c = np.tan(psi)
        dc = 1.0 + c * c
        return c, dc, 2.0 * c * dc
    c = np.sin(psi)
    return c, np.cos(psi), -c


def tilt_angles(theta: np.ndarray, mesh: MeshConnectivity, edge_dofs: np.ndarray, sff: SFFKind) -> np.ndarray:
    """psi = theta / 2, plus the edge DOF for the angle-based kinds. Shape (Nfaces, 3)."""
    psi = 0.5 * theta
    if sff.num_extra_dofs:
        psi = psi + np.asarray(edge_dofs, dtype=float)[mesh.face_edges]
    return psi


def altitudes(a: np.ndarray) -> np.ndarray:
    """
    Altitude of every face corner over its opposite edge, h_i = sqrt(det a / |e_i|^2).

    Parameters:
        a (np.ndarray): (Nfaces, 2, 2) first fundamental forms.

    Returns:
        np.ndarray: (Nfaces, 3)
    """
    P = np.stack([a[:, 0, 0], a[:, 1, 1], a[:, 0, 1]], axis=1)
    det = P[:, 0] * P[:, 1] - P[:, 2] ** 2
    return np.sqrt(det[:, None] / (P @ EDGE_LENGTH_FORMS.T))


def second_fundamental_forms(pos: np.ndarray,
                             mesh: MeshConnectivity,
                             edge_dofs: np.ndarray,
                             sff: SFFKind) -> np.ndarray:
    """
    Discrete mid-edge second fundamental form of every face.

    Returns:
        np.ndarray: (Nfaces, 2, 2), symmetric.
    """
    theta = edge_dihedral_angles(pos, mesh)
    c, _, _ = midedge_tilts(tilt_angles(theta, mesh, edge_dofs, sff), sff)
    h = altitudes(first_fundamental_forms(pos, mesh.faces))
    return 2.0 * np.einsum('fi,ijk->fjk', c * h, SFF_BASIS)


def build_rest_fundamental_forms(rest_pos: np.ndarray,
                                 mesh: MeshConnectivity,
                                 rest_edge_dofs: np.ndarray,
                                 sff: SFFKind,
                                 rest_flat: bool = True) -> Tuple[np.ndarray, np.ndarray]:
    """
    Rest first and second fundamental forms, one 2x2 matrix per face.

    Parameters:
        rest_pos (np.ndarray): (Nverts, 3) rest positions.
        mesh (MeshConnectivity): Connectivity of the rest mesh.
        rest_edge_dofs (np.ndarray): Extra DOFs at rest (sff.num_extra_dofs per edge).
        sff (SFFKind): Second fundamental form discretization.
        rest_flat (bool): If True the rest shape is flat and bbars are zero.

    Returns:
        Tuple[np.ndarray, np.ndarray]: abars (Nfaces, 2, 2), bbars (Nfaces, 2, 2).
    """
    abars = first_fundamental_forms(rest_pos, mesh.faces)
    if rest_flat or mesh.n_faces == 0:
        bbars = np.zeros_like(abars)
    else:
        bbars = second_fundamental_forms(rest_pos, mesh, rest_edge_dofs, sff)
    return abars, bbars
