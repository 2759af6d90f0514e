import numpy as np
import pytest

from thinshell.collision.obstacle import Obstacle
from thinshell.core.params import ElasticSetup, FormulationParams, LoadParams, MaterialParams
from thinshell.energies.base import TripletList
from thinshell.geometry.mesh_loader import make_rectangle_mesh
from thinshell.model.shell_model import ElasticShellModel
from thinshell.model.state import ElasticState

MATERIAL = MaterialParams(thickness=0.1, youngs_modulus=1.0, poissons_ratio=0.3, density=1.0)


@pytest.fixture
def sheet():
    """Flat 2 x 2 cell unit square: 9 vertices, 8 faces, 16 edges."""
    return make_rectangle_mesh(1.0, 1.0, 2, 2)


@pytest.fixture
def noisy_sheet(sheet):
    V, F = sheet
    rng = np.random.default_rng(42)
    return V + 0.05 * rng.standard_normal(V.shape), F


@pytest.fixture
def ground():
    """Large triangle in the z = 0 plane below the unit square."""
    return Obstacle(np.array([[-5.0, -5.0, 0.0], [10.0, -5.0, 0.0], [-5.0, 10.0, 0.0]]),
                    np.array([[0, 1, 2]]))


@pytest.fixture
def make_model(sheet):
    """Factory for a shell model on the flat sheet."""

    def _make(positions=None, material=MATERIAL, loads=None, formulation=None,
              clamped_dofs=None, point_forces=None, obstacles=(), rest=None, **model_kwargs):
        V, F = sheet if rest is None else rest
        setup = ElasticSetup.build(V, F,
                                   material=material,
                                   loads=loads or LoadParams(),
                                   formulation=formulation or FormulationParams(),
                                   clamped_dofs=clamped_dofs or {},
                                   point_forces=point_forces or {},
                                   obstacles=obstacles)
        state = ElasticState.from_setup(setup, positions)
        return ElasticShellModel(setup, state, **model_kwargs)

    return _make


def evaluate_term(term, setup, state, q, **kwargs):
    """Energy, full gradient and dense full Hessian of one term at flat positions q."""
    st = state.copy()
    st.cur_pos = np.asarray(q, dtype=float).reshape(-1, 3)
    n = st.n_full_dofs
    deriv = np.zeros(n)
    triplets = TripletList()
    energy = term.compute(st, setup, deriv, triplets, **kwargs)
    return energy, deriv, triplets.to_sparse((n, n)).toarray()


def finite_difference(term, setup, state, q, eps=1e-6):
    """Central-difference gradient and Hessian of a term with respect to positions."""
    q = np.asarray(q, dtype=float).ravel()
    n = q.size
    g_fd = np.zeros(n)
    H_fd = np.zeros((n, n))
    for i in range(n):
        dq = np.zeros(n)
        dq[i] = eps
        ep, gp, _ = evaluate_term(term, setup, state, q + dq)
        em, gm, _ = evaluate_term(term, setup, state, q - dq)
        g_fd[i] = (ep - em) / (2 * eps)
        H_fd[:, i] = (gp[:n] - gm[:n]) / (2 * eps)
    return g_fd, H_fd


def rel_error(A, B):
    scale = max(np.linalg.norm(A), np.linalg.norm(B), 1e-12)
    return np.linalg.norm(A - B) / scale
