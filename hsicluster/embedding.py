"""
Spectral embedding from the symmetric normalized graph Laplacian.
"""

import logging
from typing import Optional, Tuple

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import ArpackNoConvergence, eigsh

from .errors import SolverNonConvergenceError

logger = logging.getLogger(__name__)


def normalized_laplacian(A: sp.spmatrix) -> sp.csr_matrix:
    """``I - D^-1/2 A D^-1/2`` kept sparse; isolated nodes get zero scaling."""
    degrees = np.asarray(A.sum(axis=1)).ravel()
    with np.errstate(divide="ignore"):
        inv_sqrt = np.where(degrees > 0, 1.0 / np.sqrt(degrees), 0.0)
    D_inv_sqrt = sp.diags(inv_sqrt)
    n = A.shape[0]
    return (sp.identity(n, format="csr") - D_inv_sqrt @ A @ D_inv_sqrt).tocsr()


def laplacian_eigenpairs(A: sp.spmatrix, k: int, seed: int = 0, tol: float = 0.0,
                         maxiter: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray]:
    """
    The ``k`` smallest eigenpairs of the normalized Laplacian of ``A``.

    Uses ARPACK's Lanczos iteration with a start vector drawn from
    ``default_rng(seed)`` so repeated calls give identical bases.

    Returns:
        (eigenvalues [k], eigenvectors [N, k]), eigenvalues ascending
    """
    n = A.shape[0]
    if A.shape != (n, n):
        raise ValueError(f"Affinity matrix must be square, got shape {A.shape}")
    if not 1 <= k < n:
        raise ValueError(f"k must lie in [1, {n - 1}] for {n} nodes, got {k}")

    L = normalized_laplacian(A)
    v0 = np.random.default_rng(seed).uniform(-1.0, 1.0, size=n)

    try:
        eigenvalues, eigenvectors = eigsh(L, k=k, which="SA", v0=v0, tol=tol, maxiter=maxiter)
    except ArpackNoConvergence as e:
        raise SolverNonConvergenceError(
            f"Eigensolver converged on {len(e.eigenvalues)}/{k} eigenpairs",
            n_converged=len(e.eigenvalues),
        ) from e

    order = np.argsort(eigenvalues)
    eigenvalues, eigenvectors = eigenvalues[order], eigenvectors[:, order]

    residuals = np.linalg.norm(L @ eigenvectors - eigenvectors * eigenvalues, axis=0)
    logger.info(f"Eigensolver converged: {k} eigenpairs of a {n}x{n} Laplacian")
    logger.info(f"  eigenvalues: {np.array2string(eigenvalues, precision=4)}")
    logger.info(f"  max residual norm: {residuals.max():.3e}")
    return eigenvalues, eigenvectors


def spectral_embedding(A: sp.spmatrix, k: int, seed: int = 0, tol: float = 0.0,
                       maxiter: Optional[int] = None) -> np.ndarray:
    """Rows of the bottom-``k`` Laplacian eigenvectors, each scaled to unit norm."""
    _, eigenvectors = laplacian_eigenpairs(A, k, seed=seed, tol=tol, maxiter=maxiter)
    norms = np.linalg.norm(eigenvectors, axis=1, keepdims=True)
    return eigenvectors / np.where(norms > 0, norms, 1.0)
