"""
K-Affine subspace clustering.

Lloyd-style alternation between fitting one affine subspace per cluster and
reassigning every point to its closest subspace. Cluster ids are 1-based.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .affine import AffineSubspace, distances, fit_affine, random_subspace
from .errors import ShapeMismatchError

logger = logging.getLogger(__name__)


@dataclass
class KAffineResult:
    """Terminal state of one K-Affine run."""

    subspaces: List[AffineSubspace]
    assignment: np.ndarray
    n_iter: int
    converged: bool

    @property
    def n_clusters(self) -> int:
        return len(self.subspaces)


def _validate(X: np.ndarray, dims: Sequence[int]) -> None:
    if X.ndim != 2:
        raise ShapeMismatchError(f"Expected a [D, N] matrix, got shape {X.shape}")
    if len(dims) == 0:
        raise ValueError("At least one cluster is required")
    D = X.shape[0]
    for k, d in enumerate(dims):
        if d < 0 or d >= D:
            raise ShapeMismatchError(
                f"Subspace dimension {d} for cluster {k + 1} must lie in [0, {D - 1}] for {D} bands"
            )


def assign_to_subspaces(X: np.ndarray, subspaces: Sequence[AffineSubspace]) -> np.ndarray:
    """Closest subspace per column (1-based, ties go to the lowest id)."""
    dist = np.stack([distances(X, S) for S in subspaces])
    return np.argmin(dist, axis=0) + 1


def k_affine(X: np.ndarray, dims: Sequence[int], niters: int = 100,
             rng: Optional[np.random.Generator] = None,
             initial_assignment: Optional[np.ndarray] = None) -> KAffineResult:
    """
    Cluster the columns of ``X`` ([D, N]) into ``len(dims)`` affine subspaces.

    Args:
        X: Pixel matrix, one spectrum per column
        dims: Subspace dimension of each cluster
        niters: Maximum number of update rounds
        rng: Random generator for the initialization
        initial_assignment: Optional starting assignment with values in 1..K

    Returns:
        KAffineResult with the fitted subspaces and final assignment
    """
    X = np.asarray(X, dtype=np.float64)
    _validate(X, dims)
    rng = rng if rng is not None else np.random.default_rng()

    K = len(dims)
    D, N = X.shape

    subspaces = [random_subspace(D, d, rng) for d in dims]
    if initial_assignment is None:
        assignment = rng.integers(1, K + 1, size=N)
    else:
        assignment = np.array(initial_assignment, dtype=np.int64)
        if assignment.shape != (N,):
            raise ShapeMismatchError(f"Initial assignment has shape {assignment.shape}, expected ({N},)")
        if assignment.min() < 1 or assignment.max() > K:
            raise ValueError(f"Initial assignment values must lie in [1, {K}]")

    converged = False
    n_iter = 0
    for t in range(1, niters + 1):
        n_iter = t

        # Update subspaces
        for k in range(K):
            members = np.flatnonzero(assignment == k + 1)
            if members.size == 0:
                logger.debug(f"Cluster {k + 1} is empty at iteration {t}, reinitializing")
                subspaces[k] = random_subspace(D, dims[k], rng)
            else:
                subspaces[k] = fit_affine(X[:, members], dims[k])

        # Update clusters
        new_assignment = assign_to_subspaces(X, subspaces)

        if np.array_equal(new_assignment, assignment):
            logger.debug(f"Terminated early at iteration {t}")
            converged = True
            break
        assignment = new_assignment

    return KAffineResult(subspaces=subspaces, assignment=assignment,
                         n_iter=n_iter, converged=converged)


def k_affine_cost(X: np.ndarray, result: KAffineResult) -> float:
    """Sum over columns of the distance to the assigned subspace."""
    X = np.asarray(X, dtype=np.float64)
    total = 0.0
    for k, S in enumerate(result.subspaces):
        members = np.flatnonzero(result.assignment == k + 1)
        if members.size:
            total += float(distances(X[:, members], S).sum())
    return total
