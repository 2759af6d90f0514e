import numpy as np
import pytest

from thinshell.collision.ccd import (DEFAULT_ETA, EDGE, FACE, VERTEX, closest_point_triangle,
                                     earliest_time_of_impact, point_triangle_distance, vertex_face_ccd)
from thinshell.collision.obstacle import Obstacle
from thinshell.core.params import LoadParams, MaterialParams

TRI = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])


# --- Closest point ---

@pytest.mark.parametrize("p, feature, closest", [
    ([0.2, 0.2, 0.5], FACE, [0.2, 0.2, 0.0]),
    ([0.5, -1.0, 0.0], EDGE, [0.5, 0.0, 0.0]),
    ([1.0, 1.0, 0.0], EDGE, [0.5, 0.5, 0.0]),
    ([-1.0, -1.0, 1.0], VERTEX, [0.0, 0.0, 0.0]),
    ([2.0, -0.5, 0.0], VERTEX, [1.0, 0.0, 0.0]),
])
def test_closest_point_regions(p, feature, closest):
    c, kind, _ = closest_point_triangle(np.array(p), TRI)
    assert kind == feature
    assert np.allclose(c, closest)


def test_point_triangle_distance():
    assert point_triangle_distance(np.array([0.2, 0.2, -0.3]), TRI) == pytest.approx(0.3)
    assert point_triangle_distance(np.array([0.5, -1.0, 0.0]), TRI) == pytest.approx(1.0)


# --- Vertex-face CCD ---

def test_vertex_falling_through_face():
    hit, t = vertex_face_ccd(np.array([0.25, 0.25, 1.0]), np.array([0.25, 0.25, -1.0]), TRI)
    assert hit
    assert t == pytest.approx((1.0 - DEFAULT_ETA) / 2.0)


def test_vertex_falling_from_below():
    hit, t = vertex_face_ccd(np.array([0.25, 0.25, -1.0]), np.array([0.25, 0.25, 0.0]), TRI)
    assert hit
    assert t == pytest.approx(1.0 - DEFAULT_ETA)


def test_vertex_missing_the_face():
    hit, t = vertex_face_ccd(np.array([2.0, 2.0, 1.0]), np.array([2.0, 2.0, -1.0]), TRI)
    assert not hit
    assert t == 1.0


def test_vertex_stopping_short_of_the_face():
    hit, _ = vertex_face_ccd(np.array([0.25, 0.25, 1.0]), np.array([0.25, 0.25, 0.5]), TRI)
    assert not hit


def test_oblique_vertex_entering_over_the_face():
    # Reaches the contact band outside the triangle, then slides in over it
    start = np.array([-2.0, 0.25, 1.0])
    end = np.array([2.0, 0.25, -1.0])
    hit, t = vertex_face_ccd(start, end, TRI)
    assert hit
    p = start + t * (end - start)
    assert p[0] == pytest.approx(-DEFAULT_ETA, abs=1e-9)
    assert abs(p[2]) <= DEFAULT_ETA


def test_contact_already_present_is_ignored_unless_crossing():
    start = np.array([0.25, 0.25, 0.5 * DEFAULT_ETA])
    hit, _ = vertex_face_ccd(start, np.array([0.25, 0.25, 1.0]), TRI)
    assert not hit
    hit, t = vertex_face_ccd(start, np.array([0.25, 0.25, -0.5 * DEFAULT_ETA]), TRI)
    assert hit
    assert t == pytest.approx(0.5)


def test_degenerate_face_is_never_hit():
    flat = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0]])
    assert vertex_face_ccd(np.array([0.5, 0.0, 1.0]), np.array([0.5, 0.0, -1.0]), flat) == (False, 1.0)


# --- Obstacle index ---

def test_obstacle_index_returns_overlapping_faces():
    V = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [5, 5, 0], [6, 5, 0], [5, 6, 0]], dtype=float)
    obstacle = Obstacle(V, np.array([[0, 1, 2], [3, 4, 5]]))

    assert obstacle.index.intersect([0.2, 0.2, -1.0], [0.3, 0.3, 1.0]) == [0]
    assert obstacle.index.intersect([4.0, 4.0, -1.0], [7.0, 7.0, 1.0]) == [1]
    assert obstacle.index.intersect([-1.0, -1.0, -1.0], [10.0, 10.0, 1.0]) == [0, 1]
    assert obstacle.index.intersect([2.0, 2.0, -1.0], [3.0, 3.0, 1.0]) == []


def test_obstacle_without_faces_has_no_index():
    obstacle = Obstacle(np.zeros((3, 3)), np.zeros((0, 3), dtype=int))
    assert obstacle.index is None
    hit, t = earliest_time_of_impact(np.array([[0.0, 0.0, 1.0]]), np.array([[0.0, 0.0, -1.0]]), [obstacle])
    assert not hit and t == 1.0


def test_earliest_time_over_vertices():
    obstacle = Obstacle(TRI, np.array([[0, 1, 2]]))
    start = np.array([[0.2, 0.2, 1.0], [0.3, 0.3, 0.5], [3.0, 3.0, 0.5]])
    end = start - np.array([0.0, 0.0, 2.0])
    hit, t = earliest_time_of_impact(start, end, [obstacle])
    assert hit
    assert t == pytest.approx((0.5 - DEFAULT_ETA) / 2.0)


# --- Step limiter on the model ---

@pytest.fixture
def falling_model(make_model):
    floor = Obstacle(np.array([[-5.0, -5.0, -1.0], [10.0, -5.0, -1.0], [-5.0, 10.0, -1.0]]),
                     np.array([[0, 1, 2]]))
    return make_model(material=MaterialParams(thickness=0.1, youngs_modulus=1.0, penalty_k=1.0),
                      obstacles=(floor,))


def test_step_is_cut_at_first_contact(falling_model):
    x = falling_model.convert_state_to_variables()
    direction = np.tile([0.0, 0.0, -2.0], x.size // 3)

    step = falling_model.get_max_step(x, direction, 1.0)
    assert step == pytest.approx(0.95 * (1.0 - DEFAULT_ETA) / 2.0)

    step = falling_model.get_max_step(x, direction, 0.5)
    # Ends exactly on the obstacle plane
    assert step == pytest.approx(0.5 * 0.95 * (1.0 - DEFAULT_ETA))


def test_full_step_without_contact(falling_model):
    x = falling_model.convert_state_to_variables()
    direction = np.tile([0.0, 0.0, 1.0], x.size // 3)
    assert falling_model.get_max_step(x, direction, 0.7) == pytest.approx(0.7)


def test_without_penalty_the_configured_bound_is_returned(make_model):
    x = np.zeros(27)
    model = make_model(loads=LoadParams(max_step_size=0.5))
    assert model.get_max_step(x, np.ones(27), 2.0) == 0.5
    model = make_model(loads=LoadParams(max_step_size=0.0))
    assert model.get_max_step(x, np.ones(27), 2.0) == 1.0
