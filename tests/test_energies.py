import numpy as np
import pytest

from conftest import MATERIAL, evaluate_term, finite_difference, rel_error
from thinshell.collision.obstacle import Obstacle
from thinshell.core.params import BendingKind, ElasticSetup, FormulationParams, LoadParams, MaterialParams, SFFKind
from thinshell.energies.base import TripletList, project_psd
from thinshell.energies.bending import HingeBending, QuadraticBending
from thinshell.energies.external import GravityEnergy, PenaltyEnergy, PointForceEnergy, PressureEnergy
from thinshell.energies.hinge_geometry import get_theta, grad_theta, hess_theta
from thinshell.energies.midedge import MidEdgeBending, altitude_derivatives
from thinshell.energies.stretching import NeoHookeanStretching, StVKStretching, _MembraneEnergy
from thinshell.model.state import ElasticState


def _setup_and_state(V, F, **kwargs):
    kwargs.setdefault('material', MATERIAL)
    setup = ElasticSetup.build(V, F, **kwargs)
    return setup, ElasticState.from_setup(setup)


# --- Hinge geometry ---

def test_flat_hinge_has_zero_angle():
    x = np.array([0, 0, 0, 1, 0, 0, 0.3, 1, 0, 0.6, -1, 0], dtype=float)
    assert get_theta(x)[0] == pytest.approx(0.0, abs=1e-14)


def test_hinge_angle_derivatives_match_finite_differences():
    rng = np.random.default_rng(1)
    x = np.array([0, 0, 0, 1, 0, 0, 0.3, 1, 0.2, 0.6, -1, 0.4]) + 0.05 * rng.standard_normal(12)
    g = grad_theta(x)[0]
    H = hess_theta(x)[0]

    eps = 1e-6
    g_fd = np.zeros(12)
    H_fd = np.zeros((12, 12))
    for i in range(12):
        dx = np.zeros(12)
        dx[i] = eps
        g_fd[i] = (get_theta(x + dx)[0] - get_theta(x - dx)[0]) / (2 * eps)
        H_fd[:, i] = (grad_theta(x + dx)[0] - grad_theta(x - dx)[0]) / (2 * eps)

    assert rel_error(g, g_fd) < 1e-6
    assert rel_error(H, H_fd) < 1e-5
    assert np.allclose(H, H.T)


# --- Membrane and bending terms ---

@pytest.mark.parametrize("term_cls", [StVKStretching, NeoHookeanStretching, HingeBending, QuadraticBending,
                                      MidEdgeBending])
def test_elastic_terms_vanish_at_rest(sheet, term_cls):
    setup, state = _setup_and_state(*sheet)
    energy, grad, _ = evaluate_term(term_cls(), setup, state, setup.rest_vertices)
    assert energy == pytest.approx(0.0, abs=1e-14)
    assert np.allclose(grad, 0.0, atol=1e-12)


@pytest.mark.parametrize("term_cls", [StVKStretching, NeoHookeanStretching, HingeBending, QuadraticBending,
                                      MidEdgeBending])
def test_elastic_term_derivatives(sheet, noisy_sheet, term_cls):
    setup, state = _setup_and_state(*sheet)
    q = noisy_sheet[0].ravel()
    term = term_cls()

    energy, grad, hess = evaluate_term(term, setup, state, q)
    g_fd, H_fd = finite_difference(term, setup, state, q)

    assert energy > 0.0
    assert rel_error(grad, g_fd) < 1e-5
    assert rel_error(hess, H_fd) < 1e-4


def test_membrane_energy_base_is_abstract():
    with pytest.raises(TypeError):
        _MembraneEnergy()


# --- Mid-edge shell bending ---

HINGE_V = np.array([[0, 0, 0], [1, 0, 0], [0.5, 1, 0], [0.5, -0.8, 0.6]], dtype=float)
HINGE_F = np.array([[0, 1, 2], [1, 0, 3]])


def _evaluate_full(term, setup, state, z):
    st = state.copy()
    n_pos = 3 * st.n_verts
    st.cur_pos = z[:n_pos].reshape(-1, 3)
    st.cur_edge_dofs = z[n_pos:]
    n = st.n_full_dofs
    deriv = np.zeros(n)
    triplets = TripletList()
    energy = term.compute(st, setup, deriv, triplets)
    return energy, deriv, triplets.to_sparse((n, n)).toarray()


def test_altitude_derivatives_match_finite_differences():
    rng = np.random.default_rng(5)
    x = np.array([0, 0, 0, 1, 0, 0, 0.3, 1, 0]) + 0.05 * rng.standard_normal(9)
    h, dh, d2h = altitude_derivatives(x[None])
    # Corner 2 sits at unit height over the base edge before the noise
    assert h[0, 2] == pytest.approx(1.0, abs=0.2)

    eps = 1e-6
    for j in range(9):
        dx = np.zeros(9)
        dx[j] = eps
        hp, dhp, _ = altitude_derivatives((x + dx)[None], need_hess=False)
        hm, dhm, _ = altitude_derivatives((x - dx)[None], need_hess=False)
        assert np.allclose(dh[0, :, j], (hp - hm)[0] / (2 * eps), atol=1e-7)
        assert np.allclose(d2h[0, :, :, j], (dhp - dhm)[0] / (2 * eps), atol=1e-6)


@pytest.mark.parametrize("sff", [SFFKind.MIDEDGE_AVERAGE, SFFKind.MIDEDGE_SIN, SFFKind.MIDEDGE_TAN])
def test_midedge_derivatives_over_positions_and_edge_dofs(sheet, noisy_sheet, sff):
    setup, state = _setup_and_state(*sheet, formulation=FormulationParams(bending=BendingKind.MID_EDGE, sff=sff))
    rng = np.random.default_rng(7)
    z = np.concatenate([noisy_sheet[0].ravel(), 0.1 * rng.standard_normal(state.cur_edge_dofs.size)])
    term = MidEdgeBending()

    energy, grad, hess = _evaluate_full(term, setup, state, z)
    eps = 1e-6
    g_fd = np.zeros(z.size)
    H_fd = np.zeros((z.size, z.size))
    for i in range(z.size):
        dz = np.zeros(z.size)
        dz[i] = eps
        ep, gp, _ = _evaluate_full(term, setup, state, z + dz)
        em, gm, _ = _evaluate_full(term, setup, state, z - dz)
        g_fd[i] = (ep - em) / (2 * eps)
        H_fd[:, i] = (gp - gm) / (2 * eps)

    assert energy > 0.0
    assert rel_error(grad, g_fd) < 1e-5
    assert rel_error(hess, H_fd) < 1e-4
    assert np.allclose(hess, hess.T, atol=1e-10)
    if sff.num_extra_dofs:
        assert np.abs(grad[27:]).max() > 0.0


def test_midedge_vanishes_at_curved_rest_shape():
    rng = np.random.default_rng(3)
    setup, state = _setup_and_state(HINGE_V, HINGE_F, rest_flat=False,
                                    formulation=FormulationParams(bending=BendingKind.MID_EDGE,
                                                                  sff=SFFKind.MIDEDGE_SIN),
                                    rest_edge_dofs=0.2 * rng.standard_normal(5))
    assert np.abs(setup.bbars).max() > 1e-3

    z = np.concatenate([HINGE_V.ravel(), setup.rest_edge_dofs])
    energy, grad, _ = _evaluate_full(MidEdgeBending(), setup, state, z)
    assert energy == pytest.approx(0.0, abs=1e-14)
    assert np.allclose(grad, 0.0, atol=1e-12)

    z[12] += 0.1
    assert _evaluate_full(MidEdgeBending(), setup, state, z)[0] > 0.0


def test_stvk_uniform_stretch_energy():
    # One right triangle stretched by 10% along x: closed-form StVK energy
    V = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
    F = np.array([[0, 1, 2]])
    setup, state = _setup_and_state(V, F)
    q = V * np.array([1.1, 1.0, 1.0])

    energy, _, _ = evaluate_term(StVKStretching(), setup, state, q)

    mat = setup.material
    M = np.diag([1.1 ** 2 - 1.0, 0.0])
    expected = 0.25 * mat.thickness * 0.5 * (0.5 * mat.lame_alpha * np.trace(M) ** 2 + mat.lame_beta * np.trace(M @ M))
    assert energy == pytest.approx(expected, rel=1e-12)


def test_hinge_bending_is_quadratic_in_angle():
    V = np.array([[0, 0, 0], [1, 0, 0], [0.5, 1, 0], [0.5, -1, 0]], dtype=float)
    F = np.array([[0, 1, 2], [1, 0, 3]])
    setup, state = _setup_and_state(V, F)

    def folded(phi):
        q = V.copy()
        q[3] = [0.5, -np.cos(phi), np.sin(phi)]
        return q

    e1, _, _ = evaluate_term(HingeBending(), setup, state, folded(0.01))
    e2, _, _ = evaluate_term(HingeBending(), setup, state, folded(0.02))
    assert e2 / e1 == pytest.approx(4.0, rel=1e-3)


# --- External terms ---

def test_gravity_energy_and_gradient(noisy_sheet, sheet):
    g = np.array([0.0, 0.0, -9.8])
    setup, state = _setup_and_state(*sheet, loads=LoadParams(gravity_vector=g))
    q = noisy_sheet[0]

    energy, grad, hess = evaluate_term(GravityEnergy(), setup, state, q)

    mat = setup.material
    mg = (setup.vert_area * mat.thickness * mat.density)[:, None] * g
    assert energy == pytest.approx(-np.sum(mg * q))
    assert np.allclose(grad, -mg.ravel())
    assert not hess.any()


def test_point_force_energy(sheet, noisy_sheet):
    setup, state = _setup_and_state(*sheet, point_forces={5: 2.0, 26: -1.5})
    q = noisy_sheet[0].ravel()

    energy, grad, hess = evaluate_term(PointForceEnergy(), setup, state, q)

    assert energy == pytest.approx(-(2.0 * q[5] - 1.5 * q[26]))
    expected = np.zeros_like(grad)
    expected[5], expected[26] = -2.0, 1.5
    assert np.allclose(grad, expected)
    assert not hess.any()


def _tetra():
    V = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1]], dtype=float)
    # Outward oriented faces
    F = np.array([[0, 2, 1], [0, 1, 3], [0, 3, 2], [1, 2, 3]])
    return V, F


def test_pressure_energy_is_minus_pressure_times_volume():
    V, F = _tetra()
    setup, state = _setup_and_state(V, F, loads=LoadParams(pressure=2.0))
    energy, _, _ = evaluate_term(PressureEnergy(), setup, state, V)
    assert energy == pytest.approx(-2.0 / 6.0)


def test_pressure_derivatives_and_psd_flag_is_ignored():
    V, F = _tetra()
    setup, state = _setup_and_state(V, F, loads=LoadParams(pressure=2.0))
    rng = np.random.default_rng(3)
    q = (V + 0.05 * rng.standard_normal(V.shape)).ravel()
    term = PressureEnergy()

    _, grad, hess = evaluate_term(term, setup, state, q)
    _, _, hess_pd = evaluate_term(term, setup, state, q, proj_pd=True)
    g_fd, H_fd = finite_difference(term, setup, state, q)

    assert rel_error(grad, g_fd) < 1e-6
    assert rel_error(hess, H_fd) < 1e-6
    assert np.array_equal(hess, hess_pd)
    assert np.linalg.eigvalsh(hess).min() < 0.0


@pytest.mark.parametrize("corner", [(-5.0, -5.0), (0.5, -5.0), (0.5, 0.5)],
                         ids=["face", "edge", "vertex"])
def test_penalty_derivatives(corner):
    # Small sheet hovering over an obstacle; depending on the obstacle corner the
    # closest features are faces, edges or vertices.
    cx, cy = corner
    obstacle = Obstacle(np.array([[cx, cy, 0.0], [10.0, cy, 0.0], [cx, 10.0, 0.0]]), np.array([[0, 1, 2]]))

    from thinshell.geometry.mesh_loader import make_rectangle_mesh
    V, F = make_rectangle_mesh(0.1, 0.1, 2, 2)
    V = V + np.array([0.42, 0.42, 0.03])
    rng = np.random.default_rng(7)
    q = (V + 0.004 * rng.standard_normal(V.shape)).ravel()

    material = MaterialParams(thickness=0.01, youngs_modulus=1.0, penalty_k=10.0, penalty_distance=0.1)
    setup, state = _setup_and_state(V, F, material=material, obstacles=(obstacle,))
    term = PenaltyEnergy()

    energy, grad, hess = evaluate_term(term, setup, state, q)
    g_fd, H_fd = finite_difference(term, setup, state, q)

    assert energy > 0.0
    assert rel_error(grad, g_fd) < 1e-5
    assert rel_error(hess, H_fd) < 1e-4


def test_penalty_inactive_beyond_contact_distance(sheet, ground):
    material = MaterialParams(thickness=0.01, penalty_k=10.0, penalty_distance=0.1)
    V, F = sheet
    setup, state = _setup_and_state(V, F, material=material, obstacles=(ground,))
    energy, grad, _ = evaluate_term(PenaltyEnergy(), setup, state, V + [0.0, 0.0, 0.5])
    assert energy == 0.0
    assert not grad.any()


# --- Assembly helpers ---

def test_project_psd_clips_negative_eigenvalues():
    rng = np.random.default_rng(0)
    A = rng.standard_normal((5, 6, 6))
    A = A + np.swapaxes(A, 1, 2)
    P = project_psd(A)

    for a, p in zip(A, P):
        w, v = np.linalg.eigh(a)
        assert np.linalg.eigvalsh(p).min() > -1e-10
        assert np.allclose(p, v @ np.diag(np.clip(w, 0, None)) @ v.T)


def test_proj_pd_makes_element_hessians_psd(sheet, noisy_sheet):
    setup, state = _setup_and_state(*sheet)
    _, _, hess = evaluate_term(HingeBending(), setup, state, noisy_sheet[0], proj_pd=True)
    assert np.linalg.eigvalsh(hess).min() > -1e-12


def test_triplets_sum_duplicates():
    triplets = TripletList()
    triplets.append([0, 1, 0], [0, 1, 0], [1.0, 2.0, 3.0])
    triplets.append([1], [0], [5.0])
    assert len(triplets) == 4
    assert np.array_equal(triplets.to_sparse((2, 2)).toarray(), [[4.0, 0.0], [5.0, 2.0]])


@pytest.mark.parametrize("term_cls", [StVKStretching, HingeBending, QuadraticBending, MidEdgeBending])
def test_parallel_matches_serial(sheet, noisy_sheet, term_cls):
    setup, state = _setup_and_state(*sheet)
    q = noisy_sheet[0]

    e_s, g_s, H_s = evaluate_term(term_cls(), setup, state, q)
    e_p, g_p, H_p = evaluate_term(term_cls(n_workers=3), setup, state, q, parallel=True)

    assert e_p == pytest.approx(e_s, rel=1e-12)
    assert np.allclose(g_p, g_s, rtol=1e-12, atol=1e-15)
    assert np.allclose(H_p, H_s, rtol=1e-12, atol=1e-15)
