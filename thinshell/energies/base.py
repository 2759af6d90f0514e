import abc
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple

import numpy as np
from scipy.sparse import coo_matrix, csr_matrix

# --- 1. Sparse Assembly Buffer ---

class TripletList:
    """
    Append-only (row, col, value) buffer for sparse Hessian assembly.

    Entries are stored chunk by chunk; duplicate (row, col) pairs are allowed
    and are summed when the matrix is built.
    """

    def __init__(self):
        self.rows: List[np.ndarray] = []
        self.cols: List[np.ndarray] = []
        self.vals: List[np.ndarray] = []

    def __len__(self) -> int:
        return int(sum(v.size for v in self.vals))

    def append(self, rows, cols, vals) -> None:
        rows = np.asarray(rows, dtype=int).ravel()
        cols = np.asarray(cols, dtype=int).ravel()
        vals = np.asarray(vals, dtype=float).ravel()
        if not (rows.size == cols.size == vals.size):
            raise ValueError("rows, cols and vals must have the same length.")
        self.rows.append(rows)
        self.cols.append(cols)
        self.vals.append(vals)

    def append_blocks(self, dofs: np.ndarray, blocks: np.ndarray) -> None:
        """
        Append dense element matrices.

        Parameters:
            dofs (np.ndarray): (m, k) global DOF indices per element.
            blocks (np.ndarray): (m, k, k) element matrices.
        """
        k = dofs.shape[1]
        rows = np.repeat(dofs, k, axis=1)            # (m, k*k): d0 d0 .. d1 d1 ..
        cols = np.tile(dofs, (1, k))                 # (m, k*k): d0 d1 .. d0 d1 ..
        self.append(rows, cols, blocks)

    def extend(self, other: 'TripletList') -> None:
        self.rows.extend(other.rows)
        self.cols.extend(other.cols)
        self.vals.extend(other.vals)

    def arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        if not self.vals:
            return np.zeros(0, dtype=int), np.zeros(0, dtype=int), np.zeros(0)
        return np.concatenate(self.rows), np.concatenate(self.cols), np.concatenate(self.vals)

    def to_sparse(self, shape: Tuple[int, int]) -> csr_matrix:
        """Build the matrix; duplicate entries are summed."""
        rows, cols, vals = self.arrays()
        return coo_matrix((vals, (rows, cols)), shape=shape).tocsr()

# --- 2. Element Helpers ---

def vertex_dofs(verts: np.ndarray) -> np.ndarray:
    """Global position DOFs of element vertices: (m, p) vertex indices -> (m, 3p)."""
    verts = np.asarray(verts, dtype=int)
    return (3 * verts[:, :, None] + np.arange(3)).reshape(verts.shape[0], -1)


def project_psd(H: np.ndarray) -> np.ndarray:
    """Clamp negative eigenvalues of a stack of symmetric matrices (m, k, k) to zero."""
    if H.shape[0] == 0:
        return H
    w, V = np.linalg.eigh(0.5 * (H + np.swapaxes(H, 1, 2)))
    w = np.clip(w, 0.0, None)
    return np.einsum('mij,mj,mkj->mik', V, w, V)


def map_chunks(kernel: Callable[[int, int], tuple],
               n_elements: int,
               parallel: bool = False,
               n_workers: Optional[int] = None) -> Tuple[List[Tuple[int, int]], list]:
    """
    Run kernel(start, stop) over contiguous element ranges.

    With parallel=True the ranges are evaluated by a thread pool; results are
    returned in element order either way.

    Returns:
        Tuple[List, List]: The (start, stop) ranges and the kernel results.
    """
    if n_elements == 0:
        return [], []
    if not parallel or n_elements < 2:
        bounds = [(0, n_elements)]
        return bounds, [kernel(0, n_elements)]

    n_workers = n_workers or os.cpu_count() or 1
    n_chunks = max(1, min(n_workers, n_elements))
    edges = np.linspace(0, n_elements, n_chunks + 1).astype(int)
    bounds = list(zip(edges[:-1].tolist(), edges[1:].tolist()))
    with ThreadPoolExecutor(max_workers=n_workers) as executor:
        results = list(executor.map(lambda b: kernel(*b), bounds))
    return bounds, results

# --- 3. Energy Term Contract ---

class EnergyTerm(abc.ABC):
    """
    A pluggable contribution to the total potential energy.

    ``compute`` returns the term's energy and, when given, adds its gradient
    into ``deriv`` (full DOF space) and its Hessian entries into ``hessian``.
    """

    name = "energy"
    # Whether element Hessians are projected to PSD when asked to
    honors_proj_pd = True

    def __init__(self, n_workers: Optional[int] = None):
        self.n_workers = n_workers

    @abc.abstractmethod
    def compute(self, state, setup,
                deriv: Optional[np.ndarray] = None,
                hessian: Optional[TripletList] = None,
                proj_pd: bool = False,
                parallel: bool = False) -> float:
        ...

    def _accumulate(self,
                    dofs: np.ndarray,
                    kernel: Callable[[int, int, bool, bool], tuple],
                    deriv: Optional[np.ndarray],
                    hessian: Optional[TripletList],
                    proj_pd: bool,
                    parallel: bool) -> float:
        """
        Evaluate an element kernel and scatter its results.

        Parameters:
            dofs (np.ndarray): (m, k) global DOFs of each element.
            kernel: kernel(start, stop, need_grad, need_hess) returning
                (energies (n,), grads (n, k) or None, hessians (n, k, k) or None)
                for elements start..stop-1.

        Returns:
            float: Summed energy.
        """
        need_grad = deriv is not None
        need_hess = hessian is not None
        project = proj_pd and self.honors_proj_pd

        def run(start: int, stop: int):
            energy, grad, hess = kernel(start, stop, need_grad, need_hess)
            if hess is not None and project:
                hess = project_psd(hess)
            return energy, grad, hess

        bounds, results = map_chunks(run, dofs.shape[0], parallel, self.n_workers)

        total = 0.0
        for (start, stop), (energy, grad, hess) in zip(bounds, results):
            total += float(np.sum(energy))
            if need_grad and grad is not None:
                np.add.at(deriv, dofs[start:stop].ravel(), np.asarray(grad).ravel())
            if need_hess and hess is not None:
                hessian.append_blocks(dofs[start:stop], hess)
        return total

