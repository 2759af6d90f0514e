import numpy as np

from thinshell.collision.ccd import EDGE, FACE, closest_point_triangle
from thinshell.core.utils import skew
from thinshell.energies.base import EnergyTerm, vertex_dofs

# --- 1. Pressure ---

class PressureEnergy(EnergyTerm):
    """
    Work of a uniform internal pressure, E = -p V, with V the signed volume
    enclosed by the (closed, outward oriented) surface.

    The volume Hessian is indefinite; it is assembled as is even when PSD
    projection is requested.
    """

    name = "pressure"
    honors_proj_pd = False

    def compute(self, state, setup, deriv=None, hessian=None, proj_pd=False, parallel=False) -> float:
        p = setup.loads.pressure
        faces = state.mesh.faces
        pos = state.cur_pos

        def kernel(start, stop, need_grad, need_hess):
            q0, q1, q2 = (pos[faces[start:stop, i]] for i in range(3))
            volume = np.einsum('mi,mi->m', q0, np.cross(q1, q2)) / 6.0
            energy = -p * volume
            grad = None
            if need_grad:
                grad = -p / 6.0 * np.concatenate([np.cross(q1, q2),
                                                  np.cross(q2, q0),
                                                  np.cross(q0, q1)], axis=1)
            hess = None
            if need_hess:
                hess = np.zeros((q0.shape[0], 9, 9))
                H01 = -skew(q2)
                H02 = skew(q1)
                H12 = -skew(q0)
                hess[:, 0:3, 3:6] = H01
                hess[:, 0:3, 6:9] = H02
                hess[:, 3:6, 6:9] = H12
                hess[:, 3:6, 0:3] = np.swapaxes(H01, 1, 2)
                hess[:, 6:9, 0:3] = np.swapaxes(H02, 1, 2)
                hess[:, 6:9, 3:6] = np.swapaxes(H12, 1, 2)
                hess *= -p / 6.0
            return energy, grad, hess

        return self._accumulate(vertex_dofs(faces), kernel, deriv, hessian, proj_pd, parallel)

# --- 2. Gravity and Point Loads ---

class GravityEnergy(EnergyTerm):
    """
    Potential of gravity on lumped vertex masses,
    E = -sum_i (A_i h rho g) . x_i. The Hessian is zero.
    """

    name = "gravity"

    def compute(self, state, setup, deriv=None, hessian=None, proj_pd=False, parallel=False) -> float:
        mat = setup.material
        mg = (setup.vert_area * mat.thickness * mat.density)[:, None] * setup.loads.gravity_vector[None, :]
        if deriv is not None:
            deriv[:mg.size] -= mg.ravel()
        return -float(np.sum(mg * state.cur_pos))


class PointForceEnergy(EnergyTerm):
    """Work of constant point forces, E = -sum f_d x_d over the loaded DOFs."""

    name = "point_force"

    def compute(self, state, setup, deriv=None, hessian=None, proj_pd=False, parallel=False) -> float:
        if not setup.point_forces:
            return 0.0
        dofs = np.fromiter(setup.point_forces.keys(), dtype=int)
        forces = np.fromiter(setup.point_forces.values(), dtype=float)
        q = state.full_dofs()
        if deriv is not None:
            np.add.at(deriv, dofs, -forces)
        return -float(forces @ q[dofs])

# --- 3. Contact Penalty ---

class PenaltyEnergy(EnergyTerm):
    """
    One-sided penalty keeping shell vertices away from obstacle faces

        E = k / 3 (d_hat - d)^3   for d < d_hat,

    summed over vertex/face pairs, with d the point-triangle distance and
    d_hat the contact distance.
    """

    name = "penalty"

    def compute(self, state, setup, deriv=None, hessian=None, proj_pd=False, parallel=False) -> float:
        k = setup.material.penalty_k
        d_hat = setup.material.contact_distance
        obstacles = [ob for ob in setup.obstacles if ob.index is not None]
        pos = state.cur_pos
        n_verts = pos.shape[0]
        if not obstacles or n_verts == 0:
            return 0.0
        I3 = np.eye(3)

        def kernel(start, stop, need_grad, need_hess):
            n = stop - start
            energy = np.zeros(n)
            grad = np.zeros((n, 3)) if need_grad else None
            hess = np.zeros((n, 3, 3)) if need_hess else None
            for local, vid in enumerate(range(start, stop)):
                p = pos[vid]
                for ob in obstacles:
                    for face in ob.index.intersect(p - d_hat, p + d_hat):
                        closest, feature, tangent = closest_point_triangle(p, ob.triangle(face))
                        r = p - closest
                        d = float(np.linalg.norm(r))
                        if d >= d_hat or d <= 0.0:
                            continue
                        gap = d_hat - d
                        u = r / d
                        energy[local] += k / 3.0 * gap ** 3
                        if need_grad:
                            grad[local] -= k * gap ** 2 * u
                        if need_hess:
                            uu = np.outer(u, u)
                            if feature == FACE:
                                hess_d = np.zeros((3, 3))
                            elif feature == EDGE:
                                hess_d = (I3 - uu - np.outer(tangent, tangent)) / d
                            else:
                                hess_d = (I3 - uu) / d
                            hess[local] += 2.0 * k * gap * uu - k * gap ** 2 * hess_d
            return energy, grad, hess

        dofs = vertex_dofs(np.arange(n_verts)[:, None])
        return self._accumulate(dofs, kernel, deriv, hessian, proj_pd, parallel)
