import dataclasses
import logging
import time

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import spsolve

# --- Core and Utilities
from thinshell.core.utils import parse_args, save_results, setup_logging
from thinshell.core.params import ElasticSetup, FormulationParams, LoadParams, MaterialParams

# --- Geometry
from thinshell.geometry.mesh_loader import load_dof_values, load_mesh, make_rectangle_mesh

# --- Model
from thinshell.analysis.energy_check import full_derivative_check
from thinshell.model.shell_model import ElasticShellModel, TimeCost
from thinshell.model.state import ElasticState

logger = logging.getLogger("thinshell")


def newton_solve(model: ElasticShellModel,
                 x: np.ndarray,
                 max_iters: int = 20,
                 tol: float = 1e-8,
                 reg: float = 1e-8) -> np.ndarray:
    """
    Damped Newton iterations on the model energy, with the step bounded by the
    collision limiter and halved until the energy decreases.
    """
    for it in range(max_iters):
        cost = TimeCost()

        t0 = time.perf_counter()
        result = model.evaluate(x, want_gradient=True, want_hessian=True)
        energy, g, H = result.energy, result.gradient, result.hessian
        cost.gradient_time = time.perf_counter() - t0

        grad_norm = np.linalg.norm(g)
        if grad_norm < tol:
            logger.info("Converged after %d iterations, |grad| = %.3e", it, grad_norm)
            break

        t0 = time.perf_counter()
        direction = -spsolve((H + reg * sp.identity(H.shape[0])).tocsc(), g)
        if g @ direction >= 0:
            # Not a descent direction, fall back to the gradient
            direction = -g
        cost.solver_time = time.perf_counter() - t0

        t0 = time.perf_counter()
        step = model.get_max_step(x, direction, 1.0)
        cost.collision_detection_time = time.perf_counter() - t0

        t0 = time.perf_counter()
        new_energy = model.value(x + step * direction)
        while new_energy > energy and step > 1e-12:
            step *= 0.5
            new_energy = model.value(x + step * direction)
        cost.line_search_time = time.perf_counter() - t0

        x = x + step * direction
        model.value(x)
        logger.info("iter %d: E = %.10g, |grad| = %.3e, step = %.3e", it, new_energy, grad_norm, step)

        if model.file_prefix:
            model.save(it, cost, step, energy, new_energy, grad_norm,
                       np.linalg.norm(direction), reg, model.pos_hess)
    return x


def run_simulation(argv=None) -> None:
    """
    Build a shell from the command line options, evaluate it and optionally
    relax it with a few Newton iterations.
    """
    args = parse_args(argv)
    setup_logging(args.log_file, logging.DEBUG if args.verbose else logging.INFO)

    # --- 1. PARAMETERS AND OVERRIDES ---

    P_MAT = MaterialParams()
    P_LOAD = LoadParams()
    P_FORM = FormulationParams()

    if args.thickness is not None:
        P_MAT = dataclasses.replace(P_MAT, thickness=args.thickness)
    if args.youngs is not None:
        P_MAT = dataclasses.replace(P_MAT, youngs_modulus=args.youngs)
    if args.poisson is not None:
        P_MAT = dataclasses.replace(P_MAT, poissons_ratio=args.poisson)
    if args.penalty is not None:
        P_MAT = dataclasses.replace(P_MAT, penalty_k=args.penalty)
    if args.pressure is not None:
        P_LOAD = dataclasses.replace(P_LOAD, pressure=args.pressure)
    if args.gravity is not None:
        P_LOAD = dataclasses.replace(P_LOAD, gravity_vector=np.array(args.gravity))
    if args.stretching is not None:
        P_FORM = dataclasses.replace(P_FORM, stretching=args.stretching)
    if args.bending is not None or args.sff is not None:
        P_FORM = dataclasses.replace(P_FORM,
                                     bending=args.bending or P_FORM.bending,
                                     sff=args.sff or P_FORM.sff)

    # --- 2. MESH AND CONSTRAINTS ---

    if args.mesh:
        V, F = load_mesh(args.mesh)
    else:
        V, F = make_rectangle_mesh(1.0, 1.0, args.nx, args.ny)

    if args.clamped:
        clamped = load_dof_values(args.clamped)
    else:
        # Clamp the x = min edge of the sheet at its rest position
        left = np.flatnonzero(np.isclose(V[:, 0], V[:, 0].min()))
        clamped = {3 * v + c: V[v, c] for v in left for c in range(3)}
    forces = load_dof_values(args.forces) if args.forces else {}

    setup = ElasticSetup.build(V, F,
                               material=P_MAT,
                               loads=P_LOAD,
                               formulation=P_FORM,
                               clamped_dofs=clamped,
                               point_forces=forces)

    # --- 3. MODEL ---

    state = ElasticState.from_setup(setup)
    model = ElasticShellModel(setup, state,
                              file_prefix=args.out[:-4] if args.out and args.out.endswith('.mat') else (args.out or ""),
                              pos_hess=args.pos_hess,
                              parallel=args.parallel)

    x0 = model.convert_state_to_variables()

    if args.do_test:
        rng = np.random.default_rng(0)
        x_test = x0 + 1e-3 * rng.standard_normal(x0.size)
        model.test_value_and_gradient(x_test)
        model.test_gradient_and_hessian(x_test)
        full_derivative_check(model, x_test, plot=args.do_plot)

    x = newton_solve(model, x0)
    result = model.evaluate(x, want_gradient=True, want_hessian=True)
    logger.info("Final energy: %.10g (stretching %.6g, bending %.6g)",
                result.energy, model.stretching_value(x), model.bending_value(x))

    if args.out:
        save_results(args.out, {'V': model.state.cur_pos,
                                'F': F + 1,
                                'energy': result.energy,
                                'gradient': result.gradient,
                                'hessian': result.hessian})
        logger.info("Results saved to %s", args.out)

    if args.do_plot:
        import matplotlib.pyplot as plt
        from thinshell.viz.mesh_plots import plot_shell_3d

        plot_shell_3d(model.state.cur_pos, F, setup.obstacles, title="Final configuration")
        plt.show()


if __name__ == "__main__":
    run_simulation()
