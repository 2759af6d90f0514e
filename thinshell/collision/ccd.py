import numpy as np
from typing import Optional, Tuple

# Feature of a triangle holding the closest point to a query point
VERTEX, EDGE, FACE = 0, 1, 2

DEFAULT_ETA = 1e-5


# --- 1. Point-Triangle Distance ---

def closest_point_triangle(p: np.ndarray, tri: np.ndarray) -> Tuple[np.ndarray, int, Optional[np.ndarray]]:
    """
    Closest point on a triangle to p, by Voronoi region classification.

    Parameters:
        p (np.ndarray): (3,) query point.
        tri (np.ndarray): (3, 3) triangle corners a, b, c.

    Returns:
        Tuple: (closest point, feature kind, unit edge direction for EDGE else None).
    """
    a, b, c = tri
    ab = b - a
    ac = c - a
    ap = p - a
    d1 = ab @ ap
    d2 = ac @ ap
    if d1 <= 0.0 and d2 <= 0.0:
        return a.copy(), VERTEX, None

    bp = p - b
    d3 = ab @ bp
    d4 = ac @ bp
    if d3 >= 0.0 and d4 <= d3:
        return b.copy(), VERTEX, None

    vc = d1 * d4 - d3 * d2
    if vc <= 0.0 and d1 >= 0.0 and d3 <= 0.0:
        v = d1 / (d1 - d3)
        return a + v * ab, EDGE, ab / np.linalg.norm(ab)

    cp = p - c
    d5 = ab @ cp
    d6 = ac @ cp
    if d6 >= 0.0 and d5 <= d6:
        return c.copy(), VERTEX, None

    vb = d5 * d2 - d1 * d6
    if vb <= 0.0 and d2 >= 0.0 and d6 <= 0.0:
        w = d2 / (d2 - d6)
        return a + w * ac, EDGE, ac / np.linalg.norm(ac)

    va = d3 * d6 - d5 * d4
    if va <= 0.0 and (d4 - d3) >= 0.0 and (d5 - d6) >= 0.0:
        w = (d4 - d3) / ((d4 - d3) + (d5 - d6))
        bc = c - b
        return b + w * bc, EDGE, bc / np.linalg.norm(bc)

    denom = 1.0 / (va + vb + vc)
    v = vb * denom
    w = vc * denom
    return a + ab * v + ac * w, FACE, None


def point_triangle_distance(p: np.ndarray, tri: np.ndarray) -> float:
    closest, _, _ = closest_point_triangle(p, tri)
    return float(np.linalg.norm(p - closest))


# --- 2. Vertex-Face Continuous Collision ---

def _clip_to_triangle(p0: np.ndarray, d: np.ndarray, tri: np.ndarray, n: np.ndarray,
                      t_lo: float, t_hi: float, tol: float) -> Optional[float]:
    """
    Earliest t in [t_lo, t_hi] at which the projection of p0 + t d lies in the
    triangle (grown by tol), or None.
    """
    for i in range(3):
        u, v = tri[i], tri[(i + 1) % 3]
        m = np.cross(n, v - u)
        m /= np.linalg.norm(m)                       # inward in-plane edge normal
        f0 = m @ (p0 - u) + tol
        df = m @ d
        if abs(df) < 1e-300:
            if f0 < 0.0:
                return None
            continue
        t_edge = -f0 / df
        if df > 0.0:
            t_lo = max(t_lo, t_edge)
        else:
            t_hi = min(t_hi, t_edge)
        if t_lo > t_hi:
            return None
    return t_lo


def vertex_face_ccd(p_start: np.ndarray, p_end: np.ndarray, tri: np.ndarray,
                    eta: float = DEFAULT_ETA) -> Tuple[bool, float]:
    """
    First time a vertex moving linearly from p_start to p_end comes within eta
    of a static triangle.

    Contacts already present at t = 0 are not reported; a vertex starting
    inside the eta band only registers a hit when it crosses the face plane.

    Returns:
        Tuple[bool, float]: (collision found, time of impact in (0, 1]).
    """
    a = tri[0]
    n = np.cross(tri[1] - a, tri[2] - a)
    nn = np.linalg.norm(n)
    if nn <= 1e-300:
        return False, 1.0
    n = n / nn

    d = p_end - p_start
    s0 = float(n @ (p_start - a))
    s1 = float(n @ (p_end - a))

    # Distances along the side the vertex starts on
    sigma = 1.0 if s0 >= 0.0 else -1.0
    s0, s1 = sigma * s0, sigma * s1

    if s0 > eta:
        if s1 > eta:
            return False, 1.0
        t_in = (s0 - eta) / (s0 - s1)
        t_out = min(1.0, (s0 + eta) / (s0 - s1))
        t = _clip_to_triangle(p_start, d, tri, n, t_in, t_out, eta)
    else:
        if s0 <= 0.0 or s1 >= 0.0:
            return False, 1.0
        t_cross = s0 / (s0 - s1)
        t = _clip_to_triangle(p_start, d, tri, n, t_cross, t_cross, eta)

    if t is None or t <= 0.0:
        return False, 1.0
    return True, float(t)


# --- 3. Swept Vertices vs Obstacles ---

def earliest_time_of_impact(start_pos: np.ndarray,
                            end_pos: np.ndarray,
                            obstacles,
                            eta: float = DEFAULT_ETA) -> Tuple[bool, float]:
    """
    Earliest time of impact of the linearly moving vertices against a set of
    static obstacles.

    Parameters:
        start_pos (np.ndarray): (Nverts, 3) vertex positions at t = 0.
        end_pos (np.ndarray): (Nverts, 3) vertex positions at t = 1.
        obstacles (Iterable[Obstacle]): Obstacles with their spatial index.
        eta (float): Contact gap of the CCD test.

    Returns:
        Tuple[bool, float]: (any collision, earliest t; 1.0 if none).
    """
    is_collision = False
    t_min = 1.0

    box_min = np.minimum(start_pos, end_pos)
    box_max = np.maximum(start_pos, end_pos)

    for obstacle in obstacles:
        if obstacle.index is None:
            continue
        for vid in range(start_pos.shape[0]):
            candidates = obstacle.index.intersect(box_min[vid] - eta, box_max[vid] + eta)
            for face in candidates:
                hit, t = vertex_face_ccd(start_pos[vid], end_pos[vid], obstacle.triangle(face), eta)
                if hit:
                    is_collision = True
                    t_min = min(t_min, t)
    return is_collision, t_min
