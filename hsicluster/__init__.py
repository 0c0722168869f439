"""
Unsupervised clustering of hyperspectral images.

This package provides K-Affine subspace clustering and sparse-graph spectral
clustering of pixel spectra, batched random restarts with optional result
caching, cluster label alignment and confusion-matrix evaluation.
"""

from .errors import HSIClusterError, ShapeMismatchError, SolverNonConvergenceError
from .data import Scene, SCENE_KEYS, load_array, load_scene, background_mask, cube_to_matrix
from .affine import AffineSubspace, fit_affine, distance, distances
from .kaffine import KAffineResult, k_affine, k_affine_cost
from .cache import ResultCache
from .batch import BatchRunner, ClusteringRun, batch_k_affine, batch_kmeans
from .affinity import cosine_kernel, knn_cosine_graph, build_affinity
from .embedding import normalized_laplacian, spectral_embedding
from .alignment import contingency, align_labels, align_runs
from .evaluation import confusion_matrix, cluster_map, clustering_scores

__version__ = "0.1.0"

__all__ = [
    # Errors
    'HSIClusterError', 'ShapeMismatchError', 'SolverNonConvergenceError',

    # Scene loading
    'Scene', 'SCENE_KEYS', 'load_array', 'load_scene', 'background_mask', 'cube_to_matrix',

    # K-Affine
    'AffineSubspace', 'fit_affine', 'distance', 'distances',
    'KAffineResult', 'k_affine', 'k_affine_cost',

    # Batched restarts
    'ResultCache', 'BatchRunner', 'ClusteringRun', 'batch_k_affine', 'batch_kmeans',

    # Spectral clustering
    'cosine_kernel', 'knn_cosine_graph', 'build_affinity',
    'normalized_laplacian', 'spectral_embedding',

    # Alignment and evaluation
    'contingency', 'align_labels', 'align_runs',
    'confusion_matrix', 'cluster_map', 'clustering_scores',
]
