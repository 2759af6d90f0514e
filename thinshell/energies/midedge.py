import numpy as np

from thinshell.energies.base import EnergyTerm, vertex_dofs
from thinshell.energies.hinge_geometry import get_theta, theta_grad_hess
from thinshell.energies.stretching import D2A, metric_and_derivative
from thinshell.geometry.fundamental_forms import (EDGE_LENGTH_FORMS, HINGE_SLOTS, SFF_BASIS, face_stencils,
                                                  midedge_tilts)

# Hessian of det a = a00 a11 - a01^2 over P = (a00, a11, a01)
_D2_DET = np.array([[0.0, 1.0, 0.0],
                    [1.0, 0.0, 0.0],
                    [0.0, 0.0, -2.0]])
# Hessians of P with respect to the 9 corner coordinates
_D2P = np.stack([D2A[0, 0], D2A[1, 1], D2A[0, 1]])
# Coordinate slots of the 4 hinge vertices across each face edge
_HINGE_COLS = (3 * HINGE_SLOTS[:, :, None] + np.arange(3)).reshape(3, 12)


def altitude_derivatives(x: np.ndarray, need_hess: bool = True):
    """
    Face altitudes h_i = sqrt(det a / |e_i|^2) and their derivatives with
    respect to the corner positions.

    Parameters:
        x (np.ndarray): (m, 9) stacked corner positions.
        need_hess (bool): Also return the second derivatives.

    Returns:
        Tuple: h (m, 3), dh (m, 3, 9) and d2h (m, 3, 9, 9) or None.
    """
    a, da = metric_and_derivative(x)
    P = np.stack([a[:, 0, 0], a[:, 1, 1], a[:, 0, 1]], axis=1)
    dP = np.stack([da[:, 0, 0], da[:, 1, 1], da[:, 0, 1]], axis=1)
    det = P[:, 0] * P[:, 1] - P[:, 2] ** 2
    ddet = np.stack([P[:, 1], P[:, 0], -2.0 * P[:, 2]], axis=1)

    L = P @ EDGE_LENGTH_FORMS.T                      # (m, 3) squared edge lengths
    l = EDGE_LENGTH_FORMS
    t = det[:, None] / L
    h = np.sqrt(t)

    dt = ddet[:, None, :] / L[:, :, None] - (det[:, None] / L ** 2)[:, :, None] * l[None]
    dh_dP = dt / (2.0 * h)[:, :, None]
    dh = np.einsum('mep,mpa->mea', dh_dP, dP)
    if not need_hess:
        return h, dh, None

    d2t = (_D2_DET[None, None] / L[:, :, None, None]
           - (np.einsum('mp,eq->mepq', ddet, l) + np.einsum('ep,mq->mepq', l, ddet)) / (L ** 2)[:, :, None, None]
           + (2.0 * det[:, None] / L ** 3)[:, :, None, None] * np.einsum('ep,eq->epq', l, l)[None])
    d2h_dP = d2t / (2.0 * h)[:, :, None, None] - np.einsum('mep,meq->mepq', dt, dt) / (4.0 * h ** 3)[:, :, None, None]
    d2h = np.einsum('mepq,mpa,mqb->meab', d2h_dP, dP, dP) + np.einsum('mep,pab->meab', dh_dP, _D2P)
    return h, dh, d2h


class MidEdgeBending(EnergyTerm):
    """
    Mid-edge shell bending energy

        E_f = (h^3 / 12) dA (alpha / 2 tr(M)^2 + beta tr(M^2)),   M = abar^-1 (b - bbar),

    with b the mid-edge second fundamental form of the configured SFF kind
    (see geometry/fundamental_forms.py) and dA the rest face area. Each face
    depends on its own corners, the three vertices across its edges and, for
    the angle-based kinds, the DOFs of its three edges.
    """

    name = "bending"

    def compute(self, state, setup, deriv=None, hessian=None, proj_pd=False, parallel=False) -> float:
        mesh = state.mesh
        if mesh.n_faces == 0:
            return 0.0

        sff = setup.formulation.sff
        n_extra = sff.num_extra_dofs
        mat = setup.material
        alpha, beta = mat.lame_alpha, mat.lame_beta

        stencil = face_stencils(mesh)
        interior = mesh.face_opp_verts >= 0
        pos = state.cur_pos
        phi = state.cur_edge_dofs[mesh.face_edges] if n_extra else np.zeros((mesh.n_faces, 3))

        Ainv = np.linalg.inv(setup.abars)
        bbars = setup.bbars
        coeff = mat.thickness ** 3 / 12.0 * 0.5 * np.sqrt(np.linalg.det(setup.abars))
        # M is linear in g_i = c_i h_i: dM/dg_i = N_i
        N = 2.0 * np.einsum('fjk,ikl->fijl', Ainv, SFF_BASIS)
        trN = np.trace(N, axis1=2, axis2=3)
        trNN = np.einsum('fijk,flkj->fil', N, N)

        dofs = vertex_dofs(stencil)
        if n_extra:
            dofs = np.concatenate([dofs, 3 * state.n_verts + mesh.face_edges], axis=1)
        n_loc = dofs.shape[1]

        def kernel(start, stop, need_grad, need_hess):
            m = stop - start
            x = pos[stencil[start:stop]]                     # (m, 6, 3)
            inner = interior[start:stop]
            need_d = need_grad or need_hess

            theta = np.zeros((m, 3))
            g_theta = np.zeros((m, 3, 12)) if need_d else None
            h_theta = np.zeros((m, 3, 12, 12)) if need_hess else None
            for i in range(3):
                rows = inner[:, i]
                if not rows.any():
                    continue
                xi = x[rows][:, HINGE_SLOTS[i]].reshape(-1, 12)
                if need_d:
                    theta[rows, i], g_theta[rows, i], hi = theta_grad_hess(xi, need_hess)
                    if need_hess:
                        h_theta[rows, i] = hi
                else:
                    theta[rows, i] = get_theta(xi)

            psi = 0.5 * theta + phi[start:stop]
            c, dc, d2c = midedge_tilts(psi, sff)
            h, dh, d2h = altitude_derivatives(x[:, :3].reshape(-1, 9), need_hess)
            g = c * h

            b = 2.0 * np.einsum('mi,ijk->mjk', g, SFF_BASIS)
            M = Ainv[start:stop] @ (b - bbars[start:stop])
            trM = np.trace(M, axis1=1, axis2=2)
            k = coeff[start:stop]
            energy = k * (0.5 * alpha * trM ** 2 + beta * np.einsum('mij,mji->m', M, M))
            if not need_d:
                return energy, None, None

            Nc = N[start:stop]
            dE_dg = k[:, None] * (alpha * trM[:, None] * trN[start:stop]
                                  + 2.0 * beta * np.einsum('mjk,mikj->mi', M, Nc))

            # Derivatives of the tilt angles and altitudes in element coordinates
            dpsi = np.zeros((m, 3, n_loc))
            dh_loc = np.zeros((m, 3, n_loc))
            dh_loc[:, :, :9] = dh
            for i in range(3):
                dpsi[:, i, _HINGE_COLS[i]] = 0.5 * g_theta[:, i]
                if n_extra:
                    dpsi[:, i, 18 + i] = 1.0
            dc_loc = dc[:, :, None] * dpsi
            dg = c[:, :, None] * dh_loc + h[:, :, None] * dc_loc

            grad = np.einsum('mi,mia->ma', dE_dg, dg) if need_grad else None
            if not need_hess:
                return energy, grad, None

            Q = k[:, None, None] * (alpha * np.einsum('mi,mj->mij', trN[start:stop], trN[start:stop])
                                    + 2.0 * beta * trNN[start:stop])
            hess = np.einsum('mij,mia,mjb->mab', Q, dg, dg)
            for i in range(3):
                cols = _HINGE_COLS[i]
                d2g = h[:, i, None, None] * d2c[:, i, None, None] * np.einsum('ma,mb->mab', dpsi[:, i], dpsi[:, i])
                d2g[:, cols[:, None], cols[None, :]] += (h[:, i] * dc[:, i] * 0.5)[:, None, None] * h_theta[:, i]
                d2g[:, :9, :9] += c[:, i, None, None] * d2h[:, i]
                cross = np.einsum('ma,mb->mab', dc_loc[:, i], dh_loc[:, i])
                d2g += cross + np.swapaxes(cross, 1, 2)
                hess += dE_dg[:, i, None, None] * d2g
            return energy, grad, hess

        return self._accumulate(dofs, kernel, deriv, hessian, proj_pd, parallel)
