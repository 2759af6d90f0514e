import numpy as np
import matplotlib.pyplot as plt
from mpl_toolkits.mplot3d.art3d import Poly3DCollection


def plot_shell_3d(pos,
                  faces,
                  obstacles=(),
                  title=None,
                  figsize=(6, 6),
                  show_labels=False,
                  face_values=None):
    """
    Plot a triangulated shell in 3D, optionally with static obstacles.

    Parameters
    ----------
    pos : array-like, shape (Nnodes, 3) or (3*Nnodes,)
        Current nodal coordinates.
    faces : array-like, shape (Nfaces, 3)
        Vertex indices per triangle.
    obstacles : iterable of Obstacle, optional
        Drawn as translucent grey meshes.
    title : str, optional
        Title for the plot.
    figsize : tuple, optional
        Figure size.
    show_labels : bool, optional
        Whether to draw node ID labels.
    face_values : array-like, shape (Nfaces,), optional
        Per-face scalar used to colour the shell (e.g. energy density).

    Returns
    -------
    (fig, ax)
    """
    pos = np.asarray(pos, dtype=float).reshape(-1, 3)
    faces = np.asarray(faces, dtype=int)

    fig = plt.figure(figsize=figsize)
    ax = fig.add_subplot(111, projection='3d')

    shell = Poly3DCollection(pos[faces], edgecolor='gray', linewidths=0.5, alpha=0.9)
    if face_values is not None:
        vals = np.asarray(face_values, dtype=float)
        span = np.ptp(vals) if vals.size else 0.0
        norm = (vals - vals.min()) / span if span > 0 else np.zeros_like(vals)
        shell.set_facecolor(plt.cm.viridis(norm))
    else:
        shell.set_facecolor('lightskyblue')
    ax.add_collection3d(shell)

    pts = [pos]
    for ob in obstacles:
        if ob.n_faces == 0:
            continue
        ax.add_collection3d(Poly3DCollection(ob.V[ob.F], facecolor='lightgray',
                                             edgecolor='dimgray', linewidths=0.3, alpha=0.3))
        pts.append(ob.V)

    if show_labels:
        for nid, p in enumerate(pos):
            ax.text(*p, str(nid), color='black', fontsize=8, ha='center', va='center')

    allp = np.vstack(pts)
    lo, hi = allp.min(axis=0), allp.max(axis=0)
    mid = 0.5 * (lo + hi)
    half = 0.5 * max(np.max(hi - lo), 1e-12)
    ax.set_xlim(mid[0] - half, mid[0] + half)
    ax.set_ylim(mid[1] - half, mid[1] + half)
    ax.set_zlim(mid[2] - half, mid[2] + half)

    if title:
        ax.set_title(title)

    ax.set_xlabel('x')
    ax.set_ylabel('y')
    ax.set_zlabel('z')
    return fig, ax
