import dataclasses
import logging
from typing import List, Optional, Union

import numpy as np

logger = logging.getLogger("thinshell")

# Step sizes of the directional checks: 1e-3 ... 1e-9
CHECK_EPS = [10.0 ** -k for k in range(3, 10)]


@dataclasses.dataclass
class DerivativeCheck:
    """One finite-difference comparison along a direction."""
    eps: float
    finite_difference: Union[float, np.ndarray]
    analytic: Union[float, np.ndarray]
    error: float


def _random_direction(n: int, seed: Optional[int]) -> np.ndarray:
    rng = np.random.default_rng(seed)
    direction = rng.standard_normal(n)
    return direction / np.linalg.norm(direction)


def test_value_and_gradient(model, x: np.ndarray, seed: Optional[int] = None) -> List[DerivativeCheck]:
    """
    Compare the directional derivative g . d with (E(x + eps d) - E(x)) / eps
    along a random unit direction d, for eps = 1e-3 ... 1e-9.

    Parameters:
        model: Object exposing value(x) and gradient(x).
        x (np.ndarray): Reduced DOF vector.
        seed (int): Optional seed of the random direction.

    Returns:
        List[DerivativeCheck]: One record per eps.
    """
    x = np.asarray(x, dtype=float)
    f = model.value(x)
    g = model.gradient(x)
    direction = _random_direction(x.size, seed)
    analytic = float(g @ direction)

    logger.info("Energy: %.10g, gradient norm: %.6e", f, np.linalg.norm(g))
    records = []
    for eps in CHECK_EPS:
        fd = (model.value(x + eps * direction) - f) / eps
        err = abs(fd - analytic)
        records.append(DerivativeCheck(eps, fd, analytic, err))
        logger.info("eps: %.1e, finite difference: %.10g, directional derivative: %.10g, error: %.6e",
                    eps, fd, analytic, err)

    # Leave the model at x
    model.value(x)
    return records


def test_gradient_and_hessian(model, x: np.ndarray, seed: Optional[int] = None) -> List[DerivativeCheck]:
    """
    Compare H d with (g(x + eps d) - g(x)) / eps along a random unit direction.
    PSD projection is switched off during the check.

    Parameters:
        model: Object exposing gradient(x), hessian(x) and a pos_hess flag.
        x (np.ndarray): Reduced DOF vector.
        seed (int): Optional seed of the random direction.

    Returns:
        List[DerivativeCheck]: One record per eps; error is the norm of the difference.
    """
    x = np.asarray(x, dtype=float)
    saved = model.pos_hess
    model.pos_hess = False
    try:
        g = model.gradient(x)
        H = model.hessian(x)
        direction = _random_direction(x.size, seed)
        analytic = H @ direction

        records = []
        for eps in CHECK_EPS:
            fd = (model.gradient(x + eps * direction) - g) / eps
            err = float(np.linalg.norm(fd - analytic))
            records.append(DerivativeCheck(eps, fd, analytic, err))
            logger.info("eps: %.1e, |finite difference|: %.10g, |H d|: %.10g, error: %.6e",
                        eps, np.linalg.norm(fd), np.linalg.norm(analytic), err)
        model.gradient(x)
    finally:
        model.pos_hess = saved
    return records


def full_derivative_check(model, x: np.ndarray, eps: float = 1e-6, plot: bool = False) -> dict:
    """
    Entry-by-entry finite-difference check of the gradient (central
    differences of the energy) and of the Hessian (forward differences of the
    gradient). Meant for small meshes.

    Returns:
        dict: relative Frobenius errors of the gradient and the Hessian.
    """
    x = np.asarray(x, dtype=float)
    nd = x.size

    saved = model.pos_hess
    model.pos_hess = False
    try:
        G0 = model.gradient(x)
        H0 = model.hessian(x).toarray()

        G_fd = np.zeros(nd)
        for i in range(nd):
            dq = np.zeros(nd)
            dq[i] = eps
            G_fd[i] = (model.value(x + dq) - model.value(x - dq)) / (2 * eps)

        H_fd = np.zeros((nd, nd))
        for j in range(nd):
            dq = np.zeros(nd)
            dq[j] = eps
            H_fd[:, j] = (model.gradient(x + dq) - G0) / eps
        model.value(x)
    finally:
        model.pos_hess = saved

    def report(A, B, name):
        scale = np.linalg.norm(A)
        rel = np.linalg.norm(A - B) / scale if scale > 0 else np.linalg.norm(A - B)
        logger.info("%s: relative Frobenius = %.3e, L_inf = %.3e", name, rel, np.max(np.abs(A - B), initial=0.0))
        return rel

    errors = {'gradient': report(G0, G_fd, "gradient"),
              'hessian': report(H0, H_fd, "Hessian")}

    if plot:
        import matplotlib.pyplot as plt

        plt.figure(figsize=(10, 4))
        plt.subplot(1, 2, 1)
        plt.plot(G0, 'ro', label='analytic')
        plt.plot(G_fd, 'b.', label='FD')
        plt.title('Gradient of the total energy')
        plt.xlabel('DOF index')
        plt.legend()

        plt.subplot(1, 2, 2)
        plt.plot(H0.flatten(), 'ro', label='analytic')
        plt.plot(H_fd.flatten(), 'b.', label='FD')
        plt.title('Hessian of the total energy')
        plt.xlabel('entry index')
        plt.legend()

        plt.tight_layout()
        plt.show()

    return errors


# Not pytest tests, despite the names
test_value_and_gradient.__test__ = False
test_gradient_and_hessian.__test__ = False
