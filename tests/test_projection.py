import numpy as np
import pytest

from thinshell.core.exceptions import DofIndexError
from thinshell.energies.base import TripletList
from thinshell.model.projection import Projection


@pytest.fixture
def projection():
    # DOFs 1 and 4 clamped
    return Projection([True, False, True, True, False, True])


def test_maps_are_inverse(projection):
    assert projection.full_dofs == 6
    assert projection.proj_dofs == 4
    assert projection.invdofmap.tolist() == [0, 2, 3, 5]
    assert projection.dofmap.tolist() == [0, -1, 1, 2, -1, 3]
    for i, full in enumerate(projection.invdofmap):
        assert projection.dofmap[full] == i


def test_vector_round_trip(projection):
    v = np.array([1.0, 2.0, 3.0, 4.0])
    full = projection.unproject_vector(v)
    assert full.tolist() == [1.0, 0.0, 2.0, 3.0, 0.0, 4.0]
    assert np.array_equal(projection.project_vector(full), v)


def test_project_vector_keeps_free_entries_in_order(projection):
    full = np.arange(6, dtype=float) * 10
    assert projection.project_vector(full).tolist() == [0.0, 20.0, 30.0, 50.0]


def test_length_mismatch_raises(projection):
    with pytest.raises(ValueError):
        projection.project_vector(np.zeros(5))
    with pytest.raises(ValueError):
        projection.unproject_vector(np.zeros(6))


def test_project_matrix_zeroes_clamped_entries(projection):
    triplets = TripletList()
    triplets.append([0, 1, 2, 5, 4], [0, 0, 3, 5, 2], [1.0, 2.0, 3.0, 4.0, 5.0])

    projection.project_matrix(triplets)
    rows, cols, vals = triplets.arrays()

    assert len(triplets) == 5
    assert rows.tolist() == [0, 0, 1, 3, 0]
    assert cols.tolist() == [0, 0, 2, 3, 0]
    assert vals.tolist() == [1.0, 0.0, 3.0, 4.0, 0.0]

    H = triplets.to_sparse((4, 4)).toarray()
    assert H[0, 0] == 1.0 and H[1, 2] == 3.0 and H[3, 3] == 4.0


def test_project_matrix_rejects_out_of_range_index(projection):
    triplets = TripletList()
    triplets.append([6], [0], [1.0])
    with pytest.raises(DofIndexError):
        projection.project_matrix(triplets)


def test_from_clamped_validates_indices():
    projection = Projection.from_clamped(4, [3, 0])
    assert projection.invdofmap.tolist() == [1, 2]
    with pytest.raises(DofIndexError) as err:
        Projection.from_clamped(4, [4])
    assert err.value.index == 4
    assert err.value.ndofs == 4


def test_nothing_clamped_is_identity():
    projection = Projection(np.ones(5, dtype=bool))
    v = np.arange(5, dtype=float)
    assert np.array_equal(projection.project_vector(v), v)
    assert np.array_equal(projection.unproject_vector(v), v)
