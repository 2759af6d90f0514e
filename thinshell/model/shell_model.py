import dataclasses
import logging
import os
import time
from typing import List, Optional, Sequence

import numpy as np
from scipy.sparse import csr_matrix

from thinshell.analysis.energy_check import test_gradient_and_hessian, test_value_and_gradient
from thinshell.collision.ccd import DEFAULT_ETA, earliest_time_of_impact
from thinshell.core.exceptions import ConfigurationError, DofIndexError
from thinshell.core.params import ElasticSetup
from thinshell.core.utils import save_results
from thinshell.energies.base import EnergyTerm, TripletList
from thinshell.energies.registry import make_bending_term, make_external_terms, make_stretching_term
from thinshell.model.projection import Projection
from thinshell.model.state import ElasticState

logger = logging.getLogger("thinshell")

# Fraction of the collision-free step actually taken
STEP_SAFETY = 0.95


# --- 1. Results and Timings ---

@dataclasses.dataclass
class EvaluationResult:
    """Outcome of one evaluation: the state it was computed on and the requested quantities."""
    state: ElasticState
    energy: float
    gradient: Optional[np.ndarray] = None
    hessian: Optional[csr_matrix] = None


@dataclasses.dataclass
class TimeCost:
    """Wall-clock seconds spent per phase of one outer iteration."""
    gradient_time: float = 0.0
    hessian_time: float = 0.0
    solver_time: float = 0.0
    collision_detection_time: float = 0.0
    line_search_time: float = 0.0
    update_time: float = 0.0
    convergence_check_time: float = 0.0

    def total_time(self) -> float:
        return sum(dataclasses.astuple(self))


# --- 2. Pure Evaluation ---

def reconstruct_state(setup: ElasticSetup,
                      state: ElasticState,
                      projection: Projection,
                      x: np.ndarray) -> ElasticState:
    """
    New state whose free DOFs come from x and whose clamped DOFs hold their
    prescribed values. The input state is not modified.
    """
    full = projection.unproject_vector(x)
    if setup.clamped_dofs:
        dofs = np.fromiter(setup.clamped_dofs.keys(), dtype=int)
        full[dofs] = np.fromiter(setup.clamped_dofs.values(), dtype=float)

    new_state = state.copy()
    n_pos = 3 * state.n_verts
    new_state.cur_pos = full[:n_pos].reshape(-1, 3)
    new_state.cur_edge_dofs = full[n_pos:]
    return new_state


def _check_finite(energy: float,
                  gradient: Optional[np.ndarray],
                  hessian_values: Optional[np.ndarray] = None) -> None:
    if not np.isfinite(energy):
        logger.warning("Non-finite energy: %s", energy)
    if gradient is not None and not np.all(np.isfinite(gradient)):
        logger.warning("Non-finite gradient entries: %d", int(np.sum(~np.isfinite(gradient))))
    if hessian_values is not None and not np.all(np.isfinite(hessian_values)):
        logger.warning("Non-finite Hessian entries: %d", int(np.sum(~np.isfinite(hessian_values))))


def evaluate(setup: ElasticSetup,
             state: ElasticState,
             projection: Projection,
             terms: Sequence[EnergyTerm],
             x: np.ndarray,
             want_gradient: bool = False,
             want_hessian: bool = False,
             proj_pd: bool = False,
             parallel: bool = False) -> EvaluationResult:
    """
    Energy (and optionally reduced gradient and Hessian) of the configuration x.

    Parameters:
        setup (ElasticSetup): Run configuration.
        state (ElasticState): Template state providing the mesh and reference shape.
        projection (Projection): Full/reduced DOF map.
        terms (Sequence[EnergyTerm]): Energy terms to sum.
        x (np.ndarray): Reduced DOF vector.

    Returns:
        EvaluationResult: The reconstructed state and the requested quantities.
    """
    new_state = reconstruct_state(setup, state, projection, x)

    deriv = np.zeros(projection.full_dofs) if want_gradient else None
    triplets = TripletList() if want_hessian else None

    energy = 0.0
    for term in terms:
        start = time.perf_counter()
        energy += term.compute(new_state, setup, deriv, triplets, proj_pd, parallel)
        if want_hessian:
            logger.debug("%s assembled in %.3e s", term.name, time.perf_counter() - start)

    _check_finite(energy, deriv, triplets.arrays()[2] if want_hessian else None)

    result = EvaluationResult(state=new_state, energy=energy)
    if want_gradient:
        result.gradient = projection.project_vector(deriv)
    if want_hessian:
        n = projection.proj_dofs
        if n == 0:
            # Every DOF is clamped
            result.hessian = csr_matrix((0, 0))
        else:
            projection.project_matrix(triplets)
            result.hessian = triplets.to_sparse((n, n))
    return result


# --- 3. Shell Model ---

class ElasticShellModel:
    """
    Energy, gradient and Hessian of a thin shell over the free DOFs.

    The reduced vector x holds every unclamped DOF: vertex positions first
    (3 per vertex), then the extra edge DOFs. ``value``, ``gradient`` and
    ``hessian`` store the state reconstructed from x on the model, so a model
    instance must not be evaluated from several threads at once.
    """

    def __init__(self,
                 setup: ElasticSetup,
                 initial_state: ElasticState,
                 file_prefix: str = "",
                 pos_hess: bool = False,
                 parallel: bool = False,
                 n_workers: Optional[int] = None):
        """
        Parameters:
            setup (ElasticSetup): Run configuration (rest fundamental forms precomputed).
            initial_state (ElasticState): Starting configuration, copied.
            file_prefix (str): Path prefix of the files written by save().
            pos_hess (bool): Project element Hessians to PSD.
            parallel (bool): Evaluate element kernels in worker threads.
            n_workers (int): Thread pool size (default: CPU count).

        Raises:
            ConfigurationError: The edge DOFs do not match the formulation.
            DofIndexError: A clamped or loaded DOF is out of range.
        """
        self.setup = setup
        self.file_prefix = file_prefix
        self.pos_hess = pos_hess
        self.parallel = parallel

        state = initial_state.copy()
        sff = setup.formulation.sff
        expected = sff.num_extra_dofs * state.mesh.n_edges
        if state.cur_edge_dofs.size != expected:
            raise ConfigurationError(
                f"Edge DOF count {state.cur_edge_dofs.size} does not match {sff.value} "
                f"({sff.num_extra_dofs} per edge x {state.mesh.n_edges} edges = {expected}).")
        if state.n_verts != setup.n_verts:
            raise ConfigurationError(
                f"State has {state.n_verts} vertices, the setup has {setup.n_verts}.")
        self.state = state

        self.projection = Projection.from_clamped(state.n_full_dofs, setup.clamped_dofs.keys())

        n_full = self.projection.full_dofs
        for dof in setup.point_forces:
            if not 0 <= dof < n_full:
                raise DofIndexError(dof, n_full, f"Point force DOF {dof} is outside [0, {n_full}).")

        self.stretching_term = make_stretching_term(setup, n_workers)
        self.bending_term = make_bending_term(setup, n_workers)
        self.external_terms = make_external_terms(setup, n_workers)

        mat, loads = setup.material, setup.loads
        logger.info("Stretching: %s, bending: %s, SFF: %s",
                    setup.formulation.stretching.value, setup.formulation.bending.value, sff.value)
        logger.info("Pressure: %g, gravity: %s, penalty constant: %g",
                    loads.pressure, np.array2string(loads.gravity_vector), mat.penalty_k)
        logger.info("Free DOFs: %d of %d", self.projection.proj_dofs, n_full)

    @property
    def terms(self) -> List[EnergyTerm]:
        return [self.stretching_term, self.bending_term] + self.external_terms

    # --- State conversion ---

    def convert_variables_to_state(self, x: np.ndarray) -> ElasticState:
        return reconstruct_state(self.setup, self.state, self.projection, x)

    def convert_state_to_variables(self, state: Optional[ElasticState] = None) -> np.ndarray:
        state = self.state if state is None else state
        return self.projection.project_vector(state.full_dofs())

    # --- Evaluation ---

    def evaluate(self, x: np.ndarray, want_gradient: bool = False, want_hessian: bool = False,
                 terms: Optional[Sequence[EnergyTerm]] = None) -> EvaluationResult:
        result = evaluate(self.setup, self.state, self.projection,
                          self.terms if terms is None else terms, x,
                          want_gradient=want_gradient, want_hessian=want_hessian,
                          proj_pd=self.pos_hess, parallel=self.parallel)
        self.state = result.state
        return result

    def value(self, x: np.ndarray) -> float:
        return self.evaluate(x).energy

    def gradient(self, x: np.ndarray) -> np.ndarray:
        return self.evaluate(x, want_gradient=True).gradient

    def hessian(self, x: np.ndarray) -> csr_matrix:
        return self.evaluate(x, want_hessian=True).hessian

    # Per-component quantities, mainly for diagnostics

    def stretching_value(self, x: np.ndarray) -> float:
        return self.evaluate(x, terms=[self.stretching_term]).energy

    def bending_value(self, x: np.ndarray) -> float:
        return self.evaluate(x, terms=[self.bending_term]).energy

    def penalty_value(self, x: np.ndarray) -> float:
        penalty = [t for t in self.external_terms if t.name == "penalty"]
        return self.evaluate(x, terms=penalty).energy

    def membrane_grad(self, x: np.ndarray) -> np.ndarray:
        return self.evaluate(x, want_gradient=True, terms=[self.stretching_term]).gradient

    def bending_grad(self, x: np.ndarray) -> np.ndarray:
        return self.evaluate(x, want_gradient=True, terms=[self.bending_term]).gradient

    def external_forces(self, x: np.ndarray) -> np.ndarray:
        return self.evaluate(x, want_gradient=True, terms=self.external_terms).gradient

    def membrane_hessian(self, x: np.ndarray) -> csr_matrix:
        return self.evaluate(x, want_hessian=True, terms=[self.stretching_term]).hessian

    def bending_hessian(self, x: np.ndarray) -> csr_matrix:
        return self.evaluate(x, want_hessian=True, terms=[self.bending_term]).hessian

    def exter_hessian(self, x: np.ndarray) -> csr_matrix:
        return self.evaluate(x, want_hessian=True, terms=self.external_terms).hessian

    # --- Step limiter ---

    def get_max_step(self, x: np.ndarray, direction: np.ndarray, step: float) -> float:
        """
        Largest step along direction from x that keeps the vertices clear of
        the obstacles.

        Returns:
            float: step when nothing is hit, 0.95 * t * step when the vertices
            first come within the contact gap at fraction t of the step, and the
            configured maximum step size when penalty contact is off.
        """
        if self.setup.material.penalty_k <= 0:
            max_step = self.setup.loads.max_step_size
            return max_step if max_step > 0 else 1.0

        start = time.perf_counter()
        start_pos = self.convert_variables_to_state(x).cur_pos
        end_pos = self.convert_variables_to_state(np.asarray(x) + step * np.asarray(direction)).cur_pos
        is_collision, t = earliest_time_of_impact(start_pos, end_pos, self.setup.obstacles, DEFAULT_ETA)
        logger.debug("Collision check took %.3e s (hit: %s, t: %.6g)", time.perf_counter() - start, is_collision, t)

        if is_collision:
            return t * step * STEP_SAFETY
        return t * step

    # --- Diagnostics ---

    def test_value_and_gradient(self, x: np.ndarray) -> list:
        return test_value_and_gradient(self, x)

    def test_gradient_and_hessian(self, x: np.ndarray) -> list:
        return test_gradient_and_hessian(self, x)

    def save(self,
             cur_iterations: int,
             time_cost: TimeCost,
             step_size: float,
             old_energy: float,
             cur_energy: float,
             grad_norm: float,
             dir_norm: float,
             reg: float,
             psd_hess: bool) -> None:
        """
        Append the iteration status, timings and energy split to the log files
        under file_prefix, and write a .mat snapshot of the current state.
        """
        mode = 'w' if cur_iterations == 0 else 'a'
        prefix = self.file_prefix
        conv_dir = prefix + "_convergence"
        os.makedirs(conv_dir, exist_ok=True)
        folder = os.path.dirname(prefix)
        if folder:
            os.makedirs(folder, exist_ok=True)

        x = self.convert_state_to_variables()
        stretching = self.stretching_value(x)
        bending = self.bending_value(x)
        total = self.value(x)

        with open(prefix + "_elastic_status.txt", mode) as f:
            f.write(f"iter: {cur_iterations}, step size: {step_size:.6e}, "
                    f"f_old: {old_energy:.16g}, f_new: {cur_energy:.16g}, "
                    f"delta_f: {old_energy - cur_energy:.6e}, |grad|: {grad_norm:.6e}, "
                    f"|dir|: {dir_norm:.6e}, reg: {reg:.6e}, PSD hessian: {int(psd_hess)}\n")

        with open(prefix + "_elastic_timing.txt", mode) as f:
            f.write(f"iter: {cur_iterations}, total: {time_cost.total_time():.6e}, "
                    f"gradient: {time_cost.gradient_time:.6e}, hessian: {time_cost.hessian_time:.6e}, "
                    f"solver: {time_cost.solver_time:.6e}, collision: {time_cost.collision_detection_time:.6e}, "
                    f"line search: {time_cost.line_search_time:.6e}, update: {time_cost.update_time:.6e}, "
                    f"convergence check: {time_cost.convergence_check_time:.6e}\n")

        with open(os.path.join(conv_dir, "elastic_energy.txt"), mode) as f:
            f.write(f"{cur_iterations} {stretching:.16g} {bending:.16g} "
                    f"{total - stretching - bending:.16g} {total:.16g}\n")

        save_results(os.path.join(conv_dir, f"state_{cur_iterations}.mat"),
                     {'V': self.state.cur_pos,
                      'F': self.state.mesh.faces + 1,
                      'edge_dofs': self.state.cur_edge_dofs,
                      'energy': total})
