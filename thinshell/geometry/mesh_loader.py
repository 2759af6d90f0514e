import logging
import numpy as np
from typing import Dict, List, Tuple

logger = logging.getLogger("thinshell")


def load_mesh(filename: str) -> Tuple[np.ndarray, np.ndarray]:
    """
    Loads nodal coordinates and triangle connectivity from a custom mesh
    text file.

    The file format uses marker lines (*...) to denote sections:
    *shellNodes: [ID, X, Y, Z]
    *FaceNodes: [EID, N1, N2, N3]
    Other sections (e.g. *Edges) are skipped, edges are rebuilt from the faces.

    Parameters:
        filename (str): The path to the mesh file.

    Returns:
        Tuple[np.ndarray, np.ndarray]:
            vertices (Nnodes, 3): x, y, z per node, ordered by node ID.
            faces (Ntris, 3): 0-based node indices per triangle.
    """
    nodes: List[List[float]] = []
    triangles: List[List[int]] = []

    section = None
    try:
        with open(filename, 'r') as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue

                # Detect new section
                if line.startswith('*'):
                    if 'shellNodes' in line:
                        section = 'nodes'
                    elif 'FaceNodes' in line:
                        section = 'triangles'
                    else:
                        section = None
                    continue

                parts = [p.strip() for p in line.split(',')]
                if not parts or parts[0] == '':
                    continue

                if section == 'nodes' and len(parts) >= 4:
                    nid = int(parts[0])
                    x, y, z = map(float, parts[1:4])
                    nodes.append([nid, x, y, z])

                elif section == 'triangles' and len(parts) >= 4:
                    n1, n2, n3 = map(int, parts[1:4])
                    triangles.append([n1, n2, n3])

    except FileNotFoundError:
        logger.error("Mesh file not found at %s", filename)
        raise
    except ValueError as e:
        logger.error("Error parsing mesh file %s: %s", filename, e)
        raise

    nodes = np.array(nodes, dtype=float).reshape(-1, 4)
    order = np.argsort(nodes[:, 0], kind='stable')
    vertices = nodes[order, 1:4]
    faces = np.array(triangles, dtype=int).reshape(-1, 3)

    logger.info("Loaded %d nodes and %d faces from %s", vertices.shape[0], faces.shape[0], filename)
    return vertices, faces


def load_dof_values(filename: str) -> Dict[int, float]:
    """
    Reads 'dof, value' lines (clamped DOFs or point forces).
    Blank lines and lines starting with '#' are ignored.
    """
    values: Dict[int, float] = {}
    with open(filename, 'r') as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            parts = [p for p in line.replace(',', ' ').split() if p]
            if len(parts) < 2:
                raise ValueError(f"Expected 'dof, value' in {filename}, got: {line!r}")
            values[int(parts[0])] = float(parts[1])
    return values


def make_rectangle_mesh(width: float = 1.0,
                        height: float = 1.0,
                        nx: int = 4,
                        ny: int = 4) -> Tuple[np.ndarray, np.ndarray]:
    """
    Builds a flat, consistently oriented (+z normals) triangulated rectangle
    in the z = 0 plane.

    Parameters:
        width (float), height (float): Extent along x and y.
        nx (int), ny (int): Number of cells along x and y.

    Returns:
        Tuple[np.ndarray, np.ndarray]: vertices (Nnodes, 3) and faces (Ntris, 3).
    """
    xs = np.linspace(0.0, width, nx + 1)
    ys = np.linspace(0.0, height, ny + 1)
    X, Y = np.meshgrid(xs, ys)
    vertices = np.column_stack([X.ravel(), Y.ravel(), np.zeros(X.size)])

    faces = []
    for j in range(ny):
        for i in range(nx):
            v00 = j * (nx + 1) + i
            v10 = v00 + 1
            v01 = v00 + (nx + 1)
            v11 = v01 + 1
            # Alternate the diagonal to avoid a directional bias
            if (i + j) % 2 == 0:
                faces.append([v00, v10, v11])
                faces.append([v00, v11, v01])
            else:
                faces.append([v00, v10, v01])
                faces.append([v10, v11, v01])
    return vertices, np.array(faces, dtype=int)
