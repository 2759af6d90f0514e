import numpy as np

from thinshell.energies.base import EnergyTerm, vertex_dofs
from thinshell.energies.hinge_geometry import get_theta, theta_grad_hess
from thinshell.geometry.fundamental_forms import face_areas


def _hinge_rest_data(pos: np.ndarray, faces: np.ndarray, edge_faces: np.ndarray, quads: np.ndarray):
    """Rest edge lengths squared and the summed area of the two hinge faces."""
    areas = face_areas(pos, faces)
    eids = quads[:, 0]
    e = pos[quads[:, 2]] - pos[quads[:, 1]]
    len2 = np.einsum('ij,ij->i', e, e)
    area = areas[edge_faces[eids, 0]] + areas[edge_faces[eids, 1]]
    return len2, area


class HingeBending(EnergyTerm):
    """
    Discrete-shells bending energy on interior edges

        E_e = 1/2 k_e (theta - theta_bar)^2,   k_e = 6 D |e_bar|^2 / (A_bar0 + A_bar1),

    with theta the signed dihedral angle, D the flexural rigidity and the rest
    quantities taken from the rest mesh.
    """

    name = "bending"

    def compute(self, state, setup, deriv=None, hessian=None, proj_pd=False, parallel=False) -> float:
        mesh = state.mesh
        quads = mesh.hinge_quads()
        if quads.shape[0] == 0:
            return 0.0

        rest = setup.rest_vertices
        nodes = quads[:, 1:5]
        theta_bar = get_theta(rest[nodes].reshape(-1, 12))
        len2, area = _hinge_rest_data(rest, mesh.faces, mesh.edge_faces, quads)
        kb = 6.0 * setup.material.bending_modulus * len2 / area

        pos = state.cur_pos

        def kernel(start, stop, need_grad, need_hess):
            x = pos[nodes[start:stop]].reshape(-1, 12)
            k = kb[start:stop]
            if not (need_grad or need_hess):
                diff = get_theta(x) - theta_bar[start:stop]
                return 0.5 * k * diff ** 2, None, None

            theta, g_theta, h_theta = theta_grad_hess(x, need_hess)
            diff = theta - theta_bar[start:stop]
            energy = 0.5 * k * diff ** 2
            grad = (k * diff)[:, None] * g_theta if need_grad else None
            hess = None
            if need_hess:
                hess = k[:, None, None] * (np.einsum('mi,mj->mij', g_theta, g_theta)
                                           + diff[:, None, None] * h_theta)
            return energy, grad, hess

        return self._accumulate(vertex_dofs(nodes), kernel, deriv, hessian, proj_pd, parallel)


def _cot(u: np.ndarray, v: np.ndarray) -> np.ndarray:
    return np.einsum('ij,ij->i', u, v) / np.linalg.norm(np.cross(u, v), axis=1)


class QuadraticBending(EnergyTerm):
    """
    Quadratic bending energy for nearly isometric deformations

        E_e = 1/2 * 3 D / (A0 + A1) * |K0 x0 + K1 x1 + K2 x2 + K3 x3|^2,

    where the cotangent weights K and the areas are measured on the reference
    configuration (the initial guess). The Hessian is constant.
    """

    name = "bending"

    @staticmethod
    def stencil(ref: np.ndarray, quads: np.ndarray):
        """Cotangent weights (m, 4) and face area sums (m,) of each hinge."""
        x0, x1, x2, x3 = (ref[quads[:, i]] for i in range(1, 5))
        cot_a0 = _cot(x1 - x0, x2 - x0)
        cot_a1 = _cot(x0 - x1, x2 - x1)
        cot_b0 = _cot(x1 - x0, x3 - x0)
        cot_b1 = _cot(x0 - x1, x3 - x1)
        K = np.column_stack([cot_a1 + cot_b1,
                             cot_a0 + cot_b0,
                             -(cot_a0 + cot_a1),
                             -(cot_b0 + cot_b1)])
        area = 0.5 * (np.linalg.norm(np.cross(x1 - x0, x2 - x0), axis=1)
                      + np.linalg.norm(np.cross(x1 - x0, x3 - x0), axis=1))
        return K, area

    def compute(self, state, setup, deriv=None, hessian=None, proj_pd=False, parallel=False) -> float:
        quads = state.mesh.hinge_quads()
        if quads.shape[0] == 0:
            return 0.0

        K, area = self.stencil(state.initial_guess, quads)
        w = 3.0 * setup.material.bending_modulus / area
        nodes = quads[:, 1:5]
        pos = state.cur_pos

        def kernel(start, stop, need_grad, need_hess):
            x = pos[nodes[start:stop]]                       # (n, 4, 3)
            Kc = K[start:stop]
            wc = w[start:stop]
            v = np.einsum('mi,mia->ma', Kc, x)               # (n, 3)
            energy = 0.5 * wc * np.einsum('ma,ma->m', v, v)
            grad = None
            if need_grad:
                grad = (wc[:, None, None] * Kc[:, :, None] * v[:, None, :]).reshape(-1, 12)
            hess = None
            if need_hess:
                Q = wc[:, None, None] * np.einsum('mi,mj->mij', Kc, Kc)
                hess = np.einsum('mij,ab->miajb', Q, np.eye(3)).reshape(-1, 12, 12)
            return energy, grad, hess

        return self._accumulate(vertex_dofs(nodes), kernel, deriv, hessian, proj_pd, parallel)
