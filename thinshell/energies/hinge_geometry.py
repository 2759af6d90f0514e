"""
Dihedral angle of a hinge and its first and second derivatives, evaluated for
a batch of hinges at once.

Every routine takes x of shape (m, 12): the stacked positions
[x0, x1, x2, x3] of m hinges, where (x0, x1) is the shared edge and x2, x3 are
the vertices opposite to it in the two adjacent triangles.
"""

import numpy as np
from typing import Tuple

from thinshell.core.utils import mmt


def _dot(u, v):
    return np.einsum('mi,mi->m', u, v)


def _outer(u, v):
    return np.einsum('mi,mj->mij', u, v)


def _norm(u):
    return np.linalg.norm(u, axis=1)


def signed_angle(u: np.ndarray, v: np.ndarray, n: np.ndarray) -> np.ndarray:
    """
    Signed angle from u to v (row-wise), positive when the rotation follows the
    right-hand rule around n.
    """
    w = np.cross(u, v)
    angle = np.arctan2(_norm(w), _dot(u, v))
    return np.where(_dot(n, w) < 0, -angle, angle)


def get_theta(x: np.ndarray) -> np.ndarray:
    """Dihedral angles, shape (m,)."""
    x = np.atleast_2d(x)
    x0, x1, x2, x3 = x[:, 0:3], x[:, 3:6], x[:, 6:9], x[:, 9:12]

    m_e0 = x1 - x0
    m_e1 = x2 - x0
    m_e2 = x3 - x0

    n0 = np.cross(m_e0, m_e1)
    n1 = np.cross(m_e2, m_e0)
    return signed_angle(n0, n1, m_e0)


class _HingeFrame:
    """Edge vectors, angles, normals and heights shared by the gradient and Hessian."""

    def __init__(self, x: np.ndarray):
        x = np.atleast_2d(x)
        x0, x1, x2, x3 = x[:, 0:3], x[:, 3:6], x[:, 6:9], x[:, 9:12]

        self.e0 = x1 - x0
        self.e1 = x2 - x0
        self.e2 = x3 - x0
        self.e3 = x2 - x1
        self.e4 = x3 - x1

        self.l0 = _norm(self.e0)
        self.l1 = _norm(self.e1)
        self.l2 = _norm(self.e2)
        self.l3 = _norm(self.e3)
        self.l4 = _norm(self.e4)

        self.cosA1 = _dot(self.e0, self.e1) / (self.l0 * self.l1)
        self.cosA2 = _dot(self.e0, self.e2) / (self.l0 * self.l2)
        self.cosA3 = -_dot(self.e0, self.e3) / (self.l0 * self.l3)
        self.cosA4 = -_dot(self.e0, self.e4) / (self.l0 * self.l4)

        sinA1 = _norm(np.cross(self.e0, self.e1)) / (self.l0 * self.l1)
        sinA2 = _norm(np.cross(self.e0, self.e2)) / (self.l0 * self.l2)
        sinA3 = -_norm(np.cross(self.e0, self.e3)) / (self.l0 * self.l3)
        sinA4 = -_norm(np.cross(self.e0, self.e4)) / (self.l0 * self.l4)

        nn1 = np.cross(self.e0, self.e3)
        self.nn1 = nn1 / _norm(nn1)[:, None]
        nn2 = -np.cross(self.e0, self.e4)
        self.nn2 = nn2 / _norm(nn2)[:, None]

        self.h1 = self.l0 * sinA1
        self.h2 = self.l0 * sinA2
        self.h3 = -self.l0 * sinA3
        self.h4 = -self.l0 * sinA4
        self.h01 = self.l1 * sinA1
        self.h02 = self.l2 * sinA2

    def gradient(self) -> np.ndarray:
        c = lambda s: s[:, None]
        grad = np.zeros((self.l0.size, 12))
        grad[:, 0:3] = c(self.cosA3 / self.h3) * self.nn1 + c(self.cosA4 / self.h4) * self.nn2
        grad[:, 3:6] = c(self.cosA1 / self.h1) * self.nn1 + c(self.cosA2 / self.h2) * self.nn2
        grad[:, 6:9] = -self.nn1 / c(self.h01)
        grad[:, 9:12] = -self.nn2 / c(self.h02)
        return grad

    def hessian(self) -> np.ndarray:
        c = lambda s: s[:, None, None]
        nn1, nn2 = self.nn1, self.nn2

        m1 = np.cross(nn1, self.e1) / self.l1[:, None]
        m2 = -np.cross(nn2, self.e2) / self.l2[:, None]
        m3 = -np.cross(nn1, self.e3) / self.l3[:, None]
        m4 = np.cross(nn2, self.e4) / self.l4[:, None]
        m01 = -np.cross(nn1, self.e0) / self.l0[:, None]
        m02 = np.cross(nn2, self.e0) / self.l0[:, None]

        h1, h2, h3, h4, h01, h02 = self.h1, self.h2, self.h3, self.h4, self.h01, self.h02

        M331 = c(self.cosA3 / h3 ** 2) * _outer(m3, nn1)
        M311 = c(self.cosA3 / (h3 * h1)) * _outer(m1, nn1)
        M131 = c(self.cosA1 / (h1 * h3)) * _outer(m3, nn1)
        M3011 = c(self.cosA3 / (h3 * h01)) * _outer(m01, nn1)
        M111 = c(self.cosA1 / h1 ** 2) * _outer(m1, nn1)
        M1011 = c(self.cosA1 / (h1 * h01)) * _outer(m01, nn1)

        M442 = c(self.cosA4 / h4 ** 2) * _outer(m4, nn2)
        M422 = c(self.cosA4 / (h4 * h2)) * _outer(m2, nn2)
        M242 = c(self.cosA2 / (h2 * h4)) * _outer(m4, nn2)
        M4022 = c(self.cosA4 / (h4 * h02)) * _outer(m02, nn2)
        M222 = c(self.cosA2 / h2 ** 2) * _outer(m2, nn2)
        M2022 = c(self.cosA2 / (h2 * h02)) * _outer(m02, nn2)

        B1 = c(1.0 / self.l0 ** 2) * _outer(nn1, m01)
        B2 = c(1.0 / self.l0 ** 2) * _outer(nn2, m02)

        N13 = c(1.0 / (h01 * h3)) * _outer(nn1, m3)
        N24 = c(1.0 / (h02 * h4)) * _outer(nn2, m4)
        N11 = c(1.0 / (h01 * h1)) * _outer(nn1, m1)
        N22 = c(1.0 / (h02 * h2)) * _outer(nn2, m2)
        N101 = c(1.0 / h01 ** 2) * _outer(nn1, m01)
        N202 = c(1.0 / h02 ** 2) * _outer(nn2, m02)

        T = lambda M: np.swapaxes(M, 1, 2)

        hess = np.zeros((self.l0.size, 12, 12))
        hess[:, 0:3, 0:3] = mmt(M331) - B1 + mmt(M442) - B2
        hess[:, 0:3, 3:6] = M311 + T(M131) + B1 + M422 + T(M242) + B2
        hess[:, 0:3, 6:9] = M3011 - N13
        hess[:, 0:3, 9:12] = M4022 - N24
        hess[:, 3:6, 3:6] = mmt(M111) - B1 + mmt(M222) - B2
        hess[:, 3:6, 6:9] = M1011 - N11
        hess[:, 3:6, 9:12] = M2022 - N22
        hess[:, 6:9, 6:9] = -mmt(N101)
        hess[:, 9:12, 9:12] = -mmt(N202)

        # Lower blocks by symmetry
        hess[:, 3:6, 0:3] = T(hess[:, 0:3, 3:6])
        hess[:, 6:9, 0:3] = T(hess[:, 0:3, 6:9])
        hess[:, 9:12, 0:3] = T(hess[:, 0:3, 9:12])
        hess[:, 6:9, 3:6] = T(hess[:, 3:6, 6:9])
        hess[:, 9:12, 3:6] = T(hess[:, 3:6, 9:12])
        return hess


def grad_theta(x: np.ndarray) -> np.ndarray:
    """Gradient of the dihedral angles, shape (m, 12)."""
    return _HingeFrame(x).gradient()


def hess_theta(x: np.ndarray) -> np.ndarray:
    """Hessian of the dihedral angles, shape (m, 12, 12)."""
    return _HingeFrame(x).hessian()


def theta_grad_hess(x: np.ndarray, need_hess: bool = True) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Angle, gradient and (optionally) Hessian sharing one frame computation."""
    frame = _HingeFrame(x)
    return get_theta(x), frame.gradient(), frame.hessian() if need_hess else None
