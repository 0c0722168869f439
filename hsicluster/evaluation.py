"""
Evaluation of a clustering against the ground-truth label map.
"""

import logging
from typing import Dict, Optional, Sequence

import numpy as np
from sklearn.metrics import adjusted_rand_score, normalized_mutual_info_score

logger = logging.getLogger(__name__)


def _masked_assignment(assignment: np.ndarray, mask: np.ndarray) -> np.ndarray:
    assignment = np.asarray(assignment)
    n_masked = int(mask.sum())
    if assignment.shape != (n_masked,):
        raise ValueError(f"Assignment has shape {assignment.shape}, expected ({n_masked},) "
                         f"for the masked pixels")
    return assignment


def cluster_map(assignment: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """Scatter an assignment over the masked pixels into an [H, W] map (0 elsewhere)."""
    assignment = _masked_assignment(assignment, mask)
    result = np.zeros(mask.shape, dtype=np.int64)
    result[mask] = assignment
    return result


def confusion_matrix(ground_truth: np.ndarray, assignment: np.ndarray, mask: np.ndarray,
                     n_clusters: int, labels: Optional[Sequence[int]] = None) -> np.ndarray:
    """
    Percentage confusion matrix between true classes (rows) and clusters (columns).

    Args:
        ground_truth: [H, W] label map, 0 = unlabeled
        assignment: Cluster ids (1..n_clusters) of the masked pixels, row-major
        mask: [H, W] boolean mask of the clustered pixels
        n_clusters: Number of columns; column p holds cluster p + 1
        labels: Class ids used as rows, defaults to the nonzero ids in ``ground_truth``

    Returns:
        [n_labels, n_clusters] array; each row sums to 100, or is all zero
        when its class has no masked pixels
    """
    ground_truth = np.asarray(ground_truth)
    if ground_truth.shape != mask.shape:
        raise ValueError(f"Ground truth shape {ground_truth.shape} does not match mask shape {mask.shape}")
    assignment = _masked_assignment(assignment, mask)

    if labels is None:
        labels = np.unique(ground_truth)
        labels = labels[labels != 0]

    truth = ground_truth[mask]
    matrix = np.zeros((len(labels), n_clusters), dtype=np.float64)
    for i, label in enumerate(labels):
        predicted = assignment[truth == label]
        if predicted.size == 0:
            logger.warning(f"Class {label} has no pixels inside the mask, leaving its row at zero")
            continue
        counts = np.bincount(predicted.astype(np.int64), minlength=n_clusters + 1)[1:n_clusters + 1]
        matrix[i] = 100.0 * counts / predicted.size
    return matrix


def clustering_scores(ground_truth: np.ndarray, assignment: np.ndarray,
                      mask: np.ndarray) -> Dict[str, float]:
    """
    Agreement between classes and clusters over the masked pixels.

    ``aligned_accuracy`` is the fraction of pixels whose cluster id equals
    their class id, so it is only meaningful after alignment.
    """
    assignment = _masked_assignment(assignment, mask)
    truth = np.asarray(ground_truth)[mask]
    return {
        "adjusted_rand_index": float(adjusted_rand_score(truth, assignment)),
        "normalized_mutual_info": float(normalized_mutual_info_score(truth, assignment)),
        "aligned_accuracy": float(np.mean(truth == assignment)) if truth.size else 0.0,
    }
