import dataclasses
import typing
import numpy as np

from thinshell.geometry.connectivity import MeshConnectivity


@dataclasses.dataclass
class ElasticState:
    """
    Mutable configuration of the shell.

    Attributes:
        mesh: Connectivity of the shell mesh.
        cur_pos (Nverts, 3): current vertex positions.
        cur_edge_dofs (Nedges * extra,): extra per-edge DOFs of the second fundamental form.
        initial_guess (Nverts, 3): reference configuration used by the quadratic bending stencil.
    """

    mesh: MeshConnectivity
    cur_pos: np.ndarray
    cur_edge_dofs: np.ndarray = dataclasses.field(default_factory=lambda: np.zeros(0))
    initial_guess: typing.Optional[np.ndarray] = None

    def __post_init__(self):
        self.cur_pos = np.array(self.cur_pos, dtype=float).reshape(-1, 3)
        self.cur_edge_dofs = np.array(self.cur_edge_dofs, dtype=float).ravel()
        if self.initial_guess is None:
            self.initial_guess = self.cur_pos.copy()
        else:
            self.initial_guess = np.asarray(self.initial_guess, dtype=float).reshape(-1, 3)

    @classmethod
    def from_setup(cls, setup, positions: typing.Optional[np.ndarray] = None) -> 'ElasticState':
        """State on the setup's mesh, at the rest shape unless positions are given."""
        mesh = MeshConnectivity(setup.rest_faces, n_verts=setup.n_verts)
        pos = setup.rest_vertices if positions is None else positions
        return cls(mesh=mesh, cur_pos=pos, cur_edge_dofs=np.array(setup.rest_edge_dofs, dtype=float))

    @property
    def n_verts(self) -> int:
        return self.cur_pos.shape[0]

    @property
    def n_full_dofs(self) -> int:
        return 3 * self.n_verts + self.cur_edge_dofs.size

    def full_dofs(self) -> np.ndarray:
        """Positions followed by the edge DOFs, as one flat vector."""
        return np.concatenate([self.cur_pos.ravel(), self.cur_edge_dofs])

    def copy(self) -> 'ElasticState':
        # The reference configuration is never written, it is shared
        return ElasticState(self.mesh, self.cur_pos.copy(), self.cur_edge_dofs.copy(), self.initial_guess)
