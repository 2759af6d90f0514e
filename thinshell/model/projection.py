import numpy as np
from typing import Iterable, Sequence

from thinshell.core.exceptions import DofIndexError
from thinshell.energies.base import TripletList


class Projection:
    """
    Map between the full DOF space and the reduced space of free DOFs.

    Attributes:
        dofmap (Nfull,): reduced index of every full DOF, -1 if clamped.
        invdofmap (Nproj,): full index of every reduced DOF, increasing.
    """

    def __init__(self, keep_dofs: Sequence[bool]):
        keep = np.asarray(keep_dofs, dtype=bool).ravel()
        self.invdofmap = np.flatnonzero(keep)
        self.dofmap = -np.ones(keep.size, dtype=int)
        self.dofmap[self.invdofmap] = np.arange(self.invdofmap.size)

    @classmethod
    def from_clamped(cls, n_full_dofs: int, clamped_dofs: Iterable[int]) -> 'Projection':
        keep = np.ones(n_full_dofs, dtype=bool)
        for dof in clamped_dofs:
            if not 0 <= dof < n_full_dofs:
                raise DofIndexError(dof, n_full_dofs, f"Clamped DOF {dof} is outside [0, {n_full_dofs}).")
            keep[dof] = False
        return cls(keep)

    @property
    def full_dofs(self) -> int:
        return self.dofmap.size

    @property
    def proj_dofs(self) -> int:
        return self.invdofmap.size

    def project_vector(self, full_vec: np.ndarray) -> np.ndarray:
        """Free entries of a full-space vector, in full-index order."""
        full_vec = np.asarray(full_vec, dtype=float)
        if full_vec.shape != (self.full_dofs,):
            raise ValueError(f"Expected a vector of length {self.full_dofs}, got shape {full_vec.shape}.")
        return full_vec[self.invdofmap]

    def unproject_vector(self, proj_vec: np.ndarray) -> np.ndarray:
        """Full-space vector with zeros in the clamped slots."""
        proj_vec = np.asarray(proj_vec, dtype=float)
        if proj_vec.shape != (self.proj_dofs,):
            raise ValueError(f"Expected a vector of length {self.proj_dofs}, got shape {proj_vec.shape}.")
        full_vec = np.zeros(self.full_dofs)
        full_vec[self.invdofmap] = proj_vec
        return full_vec

    def project_matrix(self, triplets: TripletList) -> None:
        """
        Rewrite full-space triplets into the reduced space, in place.

        Entries touching a clamped row or column become (0, 0, 0.0), so the
        number of triplets does not change.
        """
        for k in range(len(triplets.vals)):
            rows, cols = triplets.rows[k], triplets.cols[k]
            for idx in (rows, cols):
                if idx.size and (idx.min() < 0 or idx.max() >= self.full_dofs):
                    bad = int(idx[(idx < 0) | (idx >= self.full_dofs)][0])
                    raise DofIndexError(bad, self.full_dofs)
            r = self.dofmap[rows]
            c = self.dofmap[cols]
            clamped = (r < 0) | (c < 0)
            r[clamped] = 0
            c[clamped] = 0
            vals = triplets.vals[k].copy()
            vals[clamped] = 0.0
            triplets.rows[k], triplets.cols[k], triplets.vals[k] = r, c, vals
