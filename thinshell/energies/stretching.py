import abc

import numpy as np

from thinshell.energies.base import EnergyTerm, vertex_dofs

# --- 1. Metric Derivatives ---
#
# With x = [q0, q1, q2] (9,) and the selectors S1 x = q1 - q0, S2 x = q2 - q0,
# the face metric is a_ij = x^T S_i^T S_j x. Its first derivative is
# (S_i^T S_j + S_j^T S_i) x and its second derivative is constant.

def _selectors() -> np.ndarray:
    I = np.eye(3)
    S = np.zeros((2, 3, 9))
    S[0, :, 0:3] = -I
    S[0, :, 3:6] = I
    S[1, :, 0:3] = -I
    S[1, :, 6:9] = I
    return S


_S = _selectors()
# D2A[i, j] = S_i^T S_j + S_j^T S_i, shape (2, 2, 9, 9)
D2A = np.einsum('iab,jac->ijbc', _S, _S) + np.einsum('jab,iac->ijbc', _S, _S)


def metric_and_derivative(x: np.ndarray):
    """
    Face metrics and their first derivatives.

    Parameters:
        x (np.ndarray): (m, 9) stacked corner positions.

    Returns:
        Tuple[np.ndarray, np.ndarray]: a (m, 2, 2) and da (m, 2, 2, 9).
    """
    da = np.einsum('ijab,mb->mija', D2A, x)
    a = 0.5 * np.einsum('mija,ma->mij', da, x)
    return a, da


def _chain(G, H, da, need_grad, need_hess):
    """Pull a metric gradient G (m, 2, 2) and Hessian H (m, 2, 2, 2, 2) back to positions."""
    grad = np.einsum('mij,mija->ma', G, da) if need_grad else None
    hess = None
    if need_hess:
        hess = np.einsum('mijkl,mija,mklb->mab', H, da, da) + np.einsum('mij,ijab->mab', G, D2A)
    return grad, hess

# --- 2. Membrane Energies ---

class _MembraneEnergy(EnergyTerm):
    """Sum of per-face membrane energies depending on the face metric only."""

    def compute(self, state, setup, deriv=None, hessian=None, proj_pd=False, parallel=False) -> float:
        faces = state.mesh.faces
        pos = state.cur_pos
        abars = setup.abars
        mat = setup.material

        def kernel(start, stop, need_grad, need_hess):
            x = pos[faces[start:stop]].reshape(-1, 9)
            a, da = metric_and_derivative(x)
            energy, G, H = self.density(a, abars[start:stop], mat, need_grad or need_hess, need_hess)
            grad, hess = _chain(G, H, da, need_grad, need_hess) if G is not None else (None, None)
            return energy, grad, hess

        return self._accumulate(vertex_dofs(faces), kernel, deriv, hessian, proj_pd, parallel)

    @abc.abstractmethod
    def density(self, a, abar, mat, need_grad, need_hess):
        """Energy per face and its derivatives with respect to the metric entries."""


class StVKStretching(_MembraneEnergy):
    """
    Saint Venant-Kirchhoff membrane energy

        E_f = (h / 4) dA (alpha / 2 tr(M)^2 + beta tr(M^2)),   M = abar^-1 (a - abar),

    with dA = sqrt(det abar) / 2 the rest face area.
    """

    name = "stretching"

    def density(self, a, abar, mat, need_grad, need_hess):
        alpha, beta = mat.lame_alpha, mat.lame_beta
        Ainv = np.linalg.inv(abar)
        D = a - abar
        M = Ainv @ D
        trM = np.trace(M, axis1=1, axis2=2)
        trMM = np.einsum('mij,mji->m', M, M)
        c = 0.25 * mat.thickness * 0.5 * np.sqrt(np.linalg.det(abar))

        energy = c * (0.5 * alpha * trM ** 2 + beta * trMM)
        if not need_grad:
            return energy, None, None

        ADA = Ainv @ D @ Ainv
        G = c[:, None, None] * (alpha * trM[:, None, None] * np.swapaxes(Ainv, 1, 2)
                                + 2.0 * beta * np.swapaxes(ADA, 1, 2))
        H = None
        if need_hess:
            H = c[:, None, None, None, None] * (
                alpha * np.einsum('mji,mlk->mijkl', Ainv, Ainv)
                + 2.0 * beta * np.einsum('mjk,mli->mijkl', Ainv, Ainv))
        return energy, G, H


class NeoHookeanStretching(_MembraneEnergy):
    """
    Compressible neo-Hookean membrane energy

        E_f = h dA (beta / 2 (tr(abar^-1 a) - 2 - 2 lnJ) + alpha / 2 lnJ^2),

    with lnJ = ln(det a / det abar) / 2.
    """

    name = "stretching"

    def density(self, a, abar, mat, need_grad, need_hess):
        alpha, beta = mat.lame_alpha, mat.lame_beta
        Ainv = np.linalg.inv(abar)
        det_abar = np.linalg.det(abar)
        det_a = np.linalg.det(a)
        with np.errstate(divide='ignore', invalid='ignore'):
            lnJ = 0.5 * np.log(det_a / det_abar)
        trC = np.einsum('mij,mji->m', Ainv, a)
        c = mat.thickness * 0.5 * np.sqrt(det_abar)

        energy = c * (0.5 * beta * (trC - 2.0 - 2.0 * lnJ) + 0.5 * alpha * lnJ ** 2)
        if not need_grad:
            return energy, None, None

        ainv = np.linalg.inv(a)
        coef = 0.5 * (alpha * lnJ - beta)
        G = c[:, None, None] * (0.5 * beta * np.swapaxes(Ainv, 1, 2)
                                + coef[:, None, None] * np.swapaxes(ainv, 1, 2))
        H = None
        if need_hess:
            H = c[:, None, None, None, None] * (
                0.25 * alpha * np.einsum('mji,mlk->mijkl', ainv, ainv)
                - coef[:, None, None, None, None] * np.einsum('mjk,mli->mijkl', ainv, ainv))
        return energy, G, H
