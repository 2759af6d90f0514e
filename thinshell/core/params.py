import dataclasses
import enum
import typing
import numpy as np

from thinshell.core.exceptions import ConfigurationError

if typing.TYPE_CHECKING:
    from thinshell.collision.obstacle import Obstacle

# A common utility type for clarity
Array = typing.NewType('Array', np.ndarray)


# --- 1. Formulation Selectors ---

class StretchingKind(str, enum.Enum):
    """Membrane (stretching) energy formulations."""
    STVK = 'StVK'
    NEO_HOOKEAN = 'NeoHookean'


class BendingKind(str, enum.Enum):
    """Bending energy formulations."""
    HINGE = 'hinge'        # discrete-shells dihedral angle energy
    QUADRATIC = 'QS'       # quadratic (isometric) bending
    MID_EDGE = 'midEdgeShell'  # mid-edge second fundamental form bending


class SFFKind(str, enum.Enum):
    """Discretizations of the second fundamental form."""
    MIDEDGE_AVERAGE = 'midedgeAverage'
    MIDEDGE_SIN = 'midedgeSin'
    MIDEDGE_TAN = 'midedgeTan'

    @property
    def num_extra_dofs(self) -> int:
        """Number of extra DOFs stored per mesh edge."""
        return 0 if self is SFFKind.MIDEDGE_AVERAGE else 1


def _as_kind(kind_cls, value):
    try:
        return kind_cls(value)
    except ValueError:
        valid = [k.value for k in kind_cls]
        raise ConfigurationError(f"Unknown {kind_cls.__name__} {value!r}. Valid options are: {valid}") from None


# --- 2. Parameter Groups ---

@dataclasses.dataclass(frozen=True)
class MaterialParams:
    """Parameters defining the shell material and the contact penalty."""

    thickness: float = 1.0e-3
    youngs_modulus: float = 1.0e5
    poissons_ratio: float = 0.3
    density: float = 1.0e3

    # Vertex-obstacle penalty stiffness (0 disables penalty contact)
    penalty_k: float = 0.0
    # Activation distance of the penalty, defaults to the thickness
    penalty_distance: typing.Optional[float] = None

    # Internal viscosity, consumed by the outer driver only
    inner_eta: float = 0.0

    @property
    def lame_alpha(self) -> float:
        nu = self.poissons_ratio
        return self.youngs_modulus * nu / (1.0 - nu * nu)

    @property
    def lame_beta(self) -> float:
        return self.youngs_modulus / 2.0 / (1.0 + self.poissons_ratio)

    @property
    def bending_modulus(self) -> float:
        """Flexural rigidity D = E h^3 / (12 (1 - nu^2))."""
        nu = self.poissons_ratio
        return self.youngs_modulus * self.thickness ** 3 / (12.0 * (1.0 - nu * nu))

    @property
    def contact_distance(self) -> float:
        return self.thickness if self.penalty_distance is None else float(self.penalty_distance)


@dataclasses.dataclass(frozen=True)
class LoadParams:
    """External loads and the unconstrained step bound."""

    pressure: float = 0.0
    gravity_vector: Array = dataclasses.field(default_factory=lambda: np.zeros(3))
    # Returned by the step limiter when penalty contact is off (<= 0 means unset)
    max_step_size: float = 1.0


@dataclasses.dataclass(frozen=True)
class FormulationParams:
    stretching: StretchingKind = StretchingKind.STVK
    bending: BendingKind = BendingKind.HINGE
    sff: SFFKind = SFFKind.MIDEDGE_AVERAGE

    def __post_init__(self):
        object.__setattr__(self, 'stretching', _as_kind(StretchingKind, self.stretching))
        object.__setattr__(self, 'bending', _as_kind(BendingKind, self.bending))
        object.__setattr__(self, 'sff', _as_kind(SFFKind, self.sff))
        if self.sff.num_extra_dofs and self.bending is not BendingKind.MID_EDGE:
            raise ConfigurationError(
                f"SFF {self.sff.value} adds edge DOFs that only {BendingKind.MID_EDGE.value} bending uses, "
                f"got bending {self.bending.value}.")


# --- 3. Full Elastic Setup ---

@dataclasses.dataclass(frozen=True)
class ElasticSetup:
    """
    Immutable per-run configuration of a shell model.

    The derived rest quantities (``abars``, ``bbars``, ``vert_area``) are filled
    in once by :meth:`build` and never recomputed. A setup may be shared by
    several models working on different states.
    """

    rest_vertices: Array
    rest_faces: Array

    material: MaterialParams = dataclasses.field(default_factory=MaterialParams)
    loads: LoadParams = dataclasses.field(default_factory=LoadParams)
    formulation: FormulationParams = dataclasses.field(default_factory=FormulationParams)

    # Dirichlet constraints and point loads, keyed by full DOF index
    clamped_dofs: typing.Mapping[int, float] = dataclasses.field(default_factory=dict)
    point_forces: typing.Mapping[int, float] = dataclasses.field(default_factory=dict)

    obstacles: typing.Tuple['Obstacle', ...] = ()

    rest_edge_dofs: typing.Optional[Array] = None
    rest_flat: bool = True

    # Derived from the above
    abars: typing.Optional[Array] = None
    bbars: typing.Optional[Array] = None
    vert_area: typing.Optional[Array] = None

    @property
    def n_verts(self) -> int:
        return self.rest_vertices.shape[0]

    @classmethod
    def build(cls,
              rest_vertices: np.ndarray,
              rest_faces: np.ndarray,
              **kwargs) -> 'ElasticSetup':
        """
        Create a setup and precompute the rest fundamental forms and the
        lumped vertex areas.

        Parameters:
            rest_vertices (np.ndarray): (Nverts, 3) undeformed positions.
            rest_faces (np.ndarray): (Nfaces, 3) vertex indices per face.
            **kwargs: Any other field of ElasticSetup (except the derived ones).

        Returns:
            ElasticSetup: The frozen setup with abars, bbars and vert_area filled.
        """
        from thinshell.geometry.connectivity import MeshConnectivity
        from thinshell.geometry.fundamental_forms import (build_rest_fundamental_forms,
                                                          compute_vert_area)

        rest_vertices = np.asarray(rest_vertices, dtype=float)
        rest_faces = np.asarray(rest_faces, dtype=int)
        if rest_vertices.ndim != 2 or rest_vertices.shape[1] != 3:
            raise ConfigurationError("rest_vertices must have shape (Nverts, 3).")

        mesh = MeshConnectivity(rest_faces, n_verts=rest_vertices.shape[0])
        formulation = kwargs.pop('formulation', None) or FormulationParams()

        n_extra = formulation.sff.num_extra_dofs * mesh.n_edges
        rest_edge_dofs = kwargs.pop('rest_edge_dofs', None)
        if rest_edge_dofs is None:
            rest_edge_dofs = np.zeros(n_extra)
        rest_edge_dofs = np.asarray(rest_edge_dofs, dtype=float)
        if rest_edge_dofs.shape != (n_extra,):
            raise ConfigurationError(
                f"rest_edge_dofs has length {rest_edge_dofs.size}, expected {n_extra} "
                f"({formulation.sff.num_extra_dofs} per edge x {mesh.n_edges} edges).")

        rest_flat = kwargs.pop('rest_flat', True)
        abars, bbars = build_rest_fundamental_forms(rest_vertices, mesh, rest_edge_dofs,
                                                    formulation.sff, rest_flat)
        vert_area = compute_vert_area(rest_vertices, mesh.faces, mesh.n_verts)

        obstacles = tuple(kwargs.pop('obstacles', ()))
        clamped = {int(k): float(v) for k, v in dict(kwargs.pop('clamped_dofs', {})).items()}
        forces = {int(k): float(v) for k, v in dict(kwargs.pop('point_forces', {})).items()}

        loads = kwargs.pop('loads', None) or LoadParams()
        gravity = np.asarray(loads.gravity_vector, dtype=float)
        if gravity.shape != (3,):
            raise ConfigurationError("Gravity vector must have length 3.")
        loads = dataclasses.replace(loads, gravity_vector=gravity)

        return cls(rest_vertices=rest_vertices,
                   rest_faces=mesh.faces,
                   formulation=formulation,
                   loads=loads,
                   clamped_dofs=clamped,
                   point_forces=forces,
                   obstacles=obstacles,
                   rest_edge_dofs=rest_edge_dofs,
                   rest_flat=rest_flat,
                   abars=abars,
                   bbars=bbars,
                   vert_area=vert_area,
                   **kwargs)
