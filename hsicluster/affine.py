"""
Best-fit affine subspaces.

An affine subspace is stored as ``(offset, basis)`` and represents
``{offset + basis @ z}``. Fitted bases are orthonormal; randomly initialized
ones are not, and ``distances`` uses ``basis @ basis.T`` as given.
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class AffineSubspace:
    offset: np.ndarray  # [D]
    basis: np.ndarray   # [D, d]

    @property
    def ambient_dim(self) -> int:
        return self.offset.shape[0]

    @property
    def dim(self) -> int:
        return self.basis.shape[1]

    def project(self, X: np.ndarray) -> np.ndarray:
        """Map the columns of ``X`` onto the subspace."""
        Y = X - self.offset[:, None]
        return self.basis @ (self.basis.T @ Y) + self.offset[:, None]


def fit_affine(X: np.ndarray, d: int) -> AffineSubspace:
    """
    Fit a rank-``d`` affine subspace to the columns of ``X`` ([D, m]).

    The offset is the column mean and the basis holds the leading ``d`` left
    singular vectors of the centered data. With fewer than ``d`` points the
    thin SVD has fewer columns and the basis is truncated accordingly.
    """
    if X.shape[1] == 0:
        raise ValueError("Cannot fit an affine subspace to an empty point set")

    offset = X.mean(axis=1)
    U, _, _ = np.linalg.svd(X - offset[:, None], full_matrices=False)
    return AffineSubspace(offset=offset, basis=U[:, :d])


def random_subspace(D: int, d: int, rng: np.random.Generator) -> AffineSubspace:
    """Standard-normal basis and offset, used for initialization."""
    basis = rng.standard_normal((D, d))
    offset = rng.standard_normal(D)
    return AffineSubspace(offset=offset, basis=basis)


def distances(X: np.ndarray, subspace: AffineSubspace) -> np.ndarray:
    """Residual norm of every column of ``X`` w.r.t. ``subspace``."""
    residual = X - subspace.project(X)
    return np.linalg.norm(residual, axis=0)


def distance(x: np.ndarray, subspace: AffineSubspace) -> float:
    return float(distances(np.asarray(x).reshape(-1, 1), subspace)[0])
