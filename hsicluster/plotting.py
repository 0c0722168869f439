"""
Static figure export for clustering results.
"""

from pathlib import Path
from typing import Union

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
from matplotlib.colors import ListedColormap


def _categorical_cmap(n: int) -> ListedColormap:
    base = plt.get_cmap("tab20" if n > 10 else "tab10")
    return ListedColormap([base(i % base.N) for i in range(max(n, 1))])


def save_cluster_comparison(ground_truth: np.ndarray, cluster_map: np.ndarray,
                            path: Union[str, Path], title: str = "Clustering Results") -> Path:
    """Ground truth next to the cluster map; label 0 is drawn transparent in both."""
    path = Path(path)
    n_colors = int(max(ground_truth.max(), cluster_map.max()))
    cmap = _categorical_cmap(n_colors)

    fig, axes = plt.subplots(1, 2, figsize=(12, 6))
    for ax, image, name in zip(axes, (ground_truth, cluster_map), ("Ground Truth", title)):
        masked = np.ma.masked_equal(image, 0)
        im = ax.imshow(masked, cmap=cmap, vmin=0.5, vmax=n_colors + 0.5, interpolation="nearest")
        ax.set_title(name)
        ax.axis("off")
        plt.colorbar(im, ax=ax, shrink=0.8, ticks=range(1, n_colors + 1))

    plt.tight_layout()
    plt.savefig(path, dpi=300)
    plt.close(fig)
    return path


def save_confusion_matrix(matrix: np.ndarray, path: Union[str, Path]) -> Path:
    """Heatmap of a percentage confusion matrix with each cell annotated."""
    path = Path(path)
    n_true, n_pred = matrix.shape

    fig, ax = plt.subplots(figsize=(max(6, 0.7 * n_pred + 2), max(5, 0.6 * n_true + 1)))
    im = ax.imshow(matrix, cmap="viridis", vmin=0, vmax=100)
    for i in range(n_true):
        for j in range(n_pred):
            ax.text(j, i, f"{matrix[i, j]:.1f}", ha="center", va="center", color="white", fontsize=8)

    ax.set_xticks(range(n_pred))
    ax.set_xticklabels(range(1, n_pred + 1))
    ax.set_yticks(range(n_true))
    ax.set_yticklabels(range(1, n_true + 1))
    ax.set_xlabel("Predicted Labels")
    ax.set_ylabel("True Labels")
    plt.colorbar(im, ax=ax)

    plt.tight_layout()
    plt.savefig(path, dpi=300)
    plt.close(fig)
    return path
