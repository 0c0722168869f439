"""
Cluster label alignment.

Random restarts produce the same clusters under arbitrary ids. Alignment
relabels a clustering so clusters matching a reference clustering share its
ids, which makes runs comparable and keeps cluster colors stable.
"""

from typing import List, Optional, Sequence

import numpy as np

from .batch import ClusteringRun


def contingency(reference: np.ndarray, other: np.ndarray, n_clusters: int) -> np.ndarray:
    """``counts[a-1, b-1]`` = number of points with reference id ``a`` and other id ``b``."""
    reference = np.asarray(reference)
    other = np.asarray(other)
    if reference.shape != other.shape:
        raise ValueError(f"Assignments differ in shape: {reference.shape} vs {other.shape}")

    counts = np.zeros((n_clusters, n_clusters), dtype=np.int64)
    np.add.at(counts, (reference - 1, other - 1), 1)
    return counts


def alignment_permutation(reference: np.ndarray, other: np.ndarray, n_clusters: int,
                          threshold: float = 0.2) -> np.ndarray:
    """
    New id for every id of ``other``: ``perm[b - 1]`` is the id that ``b`` becomes.

    Each contingency row is de-noised by zeroing entries below
    ``threshold * row_sum``. The reference ids with a nonzero row are ordered
    by their thresholded rows, compared entry by entry in descending order
    (stable), and the i-th of them goes to the i-th id of ``other`` with a
    nonzero column. Ids left over on either side are paired in ascending
    order, so an id unused by both clusterings keeps its value.
    """
    counts = contingency(reference, other, n_clusters).astype(np.float64)
    row_sums = counts.sum(axis=1, keepdims=True)
    counts[counts < threshold * row_sums] = 0

    rows = [tuple(row) for row in counts]
    active_rows = [a for a in range(n_clusters) if counts[a].any()]
    ranked = sorted(active_rows, key=lambda a: rows[a], reverse=True)
    active_cols = np.flatnonzero(counts.any(axis=0)).tolist()

    perm = np.zeros(n_clusters, dtype=np.int64)
    for b, a in zip(active_cols, ranked):
        perm[b] = a + 1

    taken = set((perm[perm > 0] - 1).tolist())
    free_refs = [a for a in range(n_clusters) if a not in taken]
    free_cols = np.flatnonzero(perm == 0).tolist()
    for b, a in zip(free_cols, free_refs):
        perm[b] = a + 1
    return perm


def align_labels(reference: np.ndarray, other: np.ndarray, n_clusters: Optional[int] = None,
                 threshold: float = 0.2) -> np.ndarray:
    """Relabel ``other`` to agree with ``reference`` as far as possible."""
    other = np.asarray(other)
    if n_clusters is None:
        n_clusters = int(max(np.max(reference), np.max(other)))
    perm = alignment_permutation(reference, other, n_clusters, threshold=threshold)
    return perm[other - 1]


def align_runs(runs: Sequence[ClusteringRun], reference: int = 0,
               n_clusters: Optional[int] = None, threshold: float = 0.2) -> List[np.ndarray]:
    """Align the assignment of every run to that of ``runs[reference]``."""
    if not runs:
        return []
    base = runs[reference].assignment
    if n_clusters is None:
        n_clusters = int(max(np.max(run.assignment) for run in runs))
    return [align_labels(base, run.assignment, n_clusters, threshold=threshold) for run in runs]
