"""
Sparse cosine-kernel affinity graphs over pixel spectra.

Every pixel keeps its ``max_nz`` most similar neighbors (by cosine of the
spectral angle); the resulting directed graph is symmetrized by adding its
transpose. Similarities are computed in column chunks so the dense cosine
block never exceeds ``N x chunk_size``.
"""

import logging
import math
from functools import partial
from typing import Callable, Optional

import numpy as np
import scipy.sparse as sp
from tqdm import tqdm

logger = logging.getLogger(__name__)


def cosine_kernel(c: np.ndarray, scale: float = 2.0) -> np.ndarray:
    """``exp(-scale * angle)`` for cosines ``c``; decays with the spectral angle."""
    return np.exp(-scale * np.arccos(np.clip(c, -1.0, 1.0)))


def normalize_columns(X: np.ndarray) -> np.ndarray:
    """Unit L2 columns; all-zero columns are left at zero."""
    norms = np.linalg.norm(X, axis=0)
    return X / np.where(norms > 0, norms, 1.0)


def knn_cosine_graph(X: np.ndarray, max_nz: int = 10,
                     kernel: Optional[Callable[[np.ndarray], np.ndarray]] = None,
                     chunk_size: Optional[int] = None,
                     show_progress: bool = False) -> sp.csr_matrix:
    """
    Directed nearest-neighbor graph of the columns of ``X`` ([D, N]).

    Column ``j`` of the result holds exactly ``max_nz`` entries: the kernel
    values of the ``max_nz`` columns with the largest cosine to column ``j``
    (the column itself excluded).

    Args:
        X: Pixel matrix, one spectrum per column
        max_nz: Neighbors kept per column
        kernel: Maps cosines to weights, defaults to ``cosine_kernel``
        chunk_size: Columns per similarity block, defaults to ``isqrt(N)``
        show_progress: Show a tqdm bar over chunks

    Returns:
        Sparse ``[N, N]`` matrix with entry ``(neighbor, column)``
    """
    if X.ndim != 2:
        raise ValueError(f"Expected a [D, N] matrix, got shape {X.shape}")
    N = X.shape[1]
    if not 1 <= max_nz <= N - 1:
        raise ValueError(f"max_nz must lie in [1, {N - 1}] for {N} points, got {max_nz}")

    kernel = kernel if kernel is not None else cosine_kernel
    chunk_size = chunk_size if chunk_size is not None else max(math.isqrt(N), 1)

    # Normalized spectra, so inner products are cosines
    Xn = normalize_columns(np.asarray(X, dtype=np.float64))

    rows, cols, vals = [], [], []
    starts = range(0, N, chunk_size)
    for start in tqdm(starts, desc="Affinity chunks", disable=not show_progress):
        chunk = np.arange(start, min(start + chunk_size, N))
        C = Xn.T @ Xn[:, chunk]
        C[chunk, np.arange(len(chunk))] = -np.inf

        # Keep the max_nz largest cosines per column
        idx = np.argpartition(-C, max_nz - 1, axis=0)[:max_nz]
        top = np.take_along_axis(C, idx, axis=0)

        rows.append(idx.T.ravel())
        cols.append(np.repeat(chunk, max_nz))
        vals.append(kernel(top).T.ravel())

    rows = np.concatenate(rows)
    cols = np.concatenate(cols)
    vals = np.concatenate(vals)
    logger.debug(f"Selected {len(vals)} neighbor entries for {N} points")
    return sp.csr_matrix((vals, (rows, cols)), shape=(N, N))


def build_affinity(X: np.ndarray, max_nz: int = 10,
                   kernel: Optional[Callable[[np.ndarray], np.ndarray]] = None,
                   chunk_size: Optional[int] = None,
                   show_progress: bool = False) -> sp.csr_matrix:
    """
    Symmetric affinity graph ``W + W.T`` of the directed neighbor graph ``W``.

    Pairs selected in both directions end up with the summed weight.
    """
    W = knn_cosine_graph(X, max_nz=max_nz, kernel=kernel, chunk_size=chunk_size,
                         show_progress=show_progress)
    A = (W + W.T).tocsr()
    logger.info(f"Affinity graph: {A.shape[0]} nodes, {A.nnz} nonzeros (max_nz={max_nz})")
    return A


def angular_kernel(scale: float) -> Callable[[np.ndarray], np.ndarray]:
    """``cosine_kernel`` with a fixed angular scale."""
    return partial(cosine_kernel, scale=scale)
