import argparse
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

import numpy as np
import scipy.io as sio

# --- 1. Matrix Math Utilities ---

def mmt(matrix: np.ndarray) -> np.ndarray:
    """
    Computes the matrix plus its transpose: (M + M^T).
    Works on a single matrix or on a stack of matrices (..., n, n).
    """
    return matrix + np.swapaxes(matrix, -1, -2)


def skew(v: np.ndarray) -> np.ndarray:
    """Cross-product matrices [v]x for a (..., 3) array of vectors."""
    v = np.asarray(v, dtype=float)
    S = np.zeros(v.shape[:-1] + (3, 3))
    S[..., 0, 1] = -v[..., 2]
    S[..., 0, 2] = v[..., 1]
    S[..., 1, 0] = v[..., 2]
    S[..., 1, 2] = -v[..., 0]
    S[..., 2, 0] = -v[..., 1]
    S[..., 2, 1] = v[..., 0]
    return S

# --- 2. Logging ---

def setup_logging(log_file: Optional[str] = None,
                  level: int = logging.INFO,
                  quiet: bool = False) -> logging.Logger:
    """
    Configure the ``thinshell`` package logger.

    Parameters:
        log_file (str): Optional path of a rotating log file.
        level (int): Logging level of the package logger.
        quiet (bool): If True, only warnings and errors reach the console.

    Returns:
        logging.Logger: The configured package logger.
    """
    logger = logging.getLogger("thinshell")
    logger.setLevel(level)

    # Avoid stacking handlers when called more than once
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if log_file:
        file_handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    console_handler.setLevel(logging.WARNING if quiet else level)
    logger.addHandler(console_handler)

    logger.propagate = False
    return logger

# --- 3. CLI Argument Parsing ---

def parse_args(argv=None):
    """
    Parses command-line arguments and returns an object containing
    CLI overrides for the shell parameters. These flags are used in
    main.py to override default values in the dataclasses.
    """
    p = argparse.ArgumentParser(description="Thin-shell energy core demo")

    # Geometry
    p.add_argument('--mesh', type=str, help="Mesh file in the *shellNodes / *FaceNodes format. Default: generated rectangle.")
    p.add_argument('--nx', type=int, default=6, help="Rectangle subdivisions along x (generated mesh only).")
    p.add_argument('--ny', type=int, default=6, help="Rectangle subdivisions along y (generated mesh only).")
    p.add_argument('--clamped', type=str, help="File of 'dof, value' lines fixing DOFs.")
    p.add_argument('--forces', type=str, help="File of 'dof, value' lines applying point forces.")

    # Material / formulation overrides
    p.add_argument('--thickness', type=float, help="Shell thickness (MaterialParams.thickness).")
    p.add_argument('--youngs', type=float, help="Young's modulus (MaterialParams.youngs_modulus).")
    p.add_argument('--poisson', type=float, help="Poisson's ratio (MaterialParams.poissons_ratio).")
    p.add_argument('--stretching', type=str, help="Stretching formulation: StVK or NeoHookean.")
    p.add_argument('--bending', type=str, help="Bending formulation: hinge, QS or midEdgeShell.")
    p.add_argument('--sff', type=str, help="Second fundamental form: midedgeAverage, midedgeSin or midedgeTan.")

    # Loads
    p.add_argument('--pressure', type=float, help="Internal pressure (LoadParams.pressure).")
    p.add_argument('--gravity', type=float, nargs=3, metavar=('GX', 'GY', 'GZ'), help="Gravity vector (LoadParams.gravity_vector).")
    p.add_argument('--penalty', type=float, help="Contact penalty stiffness (MaterialParams.penalty_k).")

    # Console flags
    p.add_argument('--parallel', action='store_true', help="Evaluate element kernels in worker threads.")
    p.add_argument('--psd', dest='pos_hess', action='store_true', help="Project element Hessians to PSD.")
    p.add_argument('--plot', dest='do_plot', action='store_true', help="Plot the shell after evaluation.")
    p.add_argument('--test', dest='do_test', action='store_true', help="Run the finite-difference derivative checks.")
    p.add_argument('--out', type=str, help="Write energy, gradient and Hessian to this .mat file.")
    p.add_argument('--log-file', type=str, help="Also log to this (rotating) file.")
    p.add_argument('-v', '--verbose', action='store_true', help="Debug-level logging.")

    return p.parse_args(argv)

# --- 4. Output ---

def save_results(filename: str, data: dict) -> None:
    """
    Write a dictionary of arrays to a MATLAB .mat file, creating the
    parent folder if needed.
    """
    folder = os.path.dirname(filename)
    if folder:
        os.makedirs(folder, exist_ok=True)
    sio.savemat(filename, data)
