"""
Batched random restarts.

``BatchRunner`` repeats a randomized clustering ``nruns`` times. Run ``idx``
(1-based) always gets ``numpy.random.default_rng(idx)``, so a run can be
reproduced, or fetched from the cache, from its index alone.
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

import numpy as np
from sklearn.cluster import KMeans
from sklearn.exceptions import ConvergenceWarning
from tqdm import tqdm

from .cache import ResultCache
from .kaffine import k_affine, k_affine_cost

logger = logging.getLogger(__name__)


@dataclass(order=True)
class ClusteringRun:
    """Outcome of one randomized attempt; runs compare by cost only."""

    cost: float
    assignment: np.ndarray = field(compare=False, repr=False)
    converged: Optional[bool] = field(default=None, compare=False)
    seed: Optional[int] = field(default=None, compare=False)
    n_iter: Optional[int] = field(default=None, compare=False)
    model: Any = field(default=None, compare=False, repr=False)


class BatchRunner:
    """Runs a clustering ``nruns`` times and ranks the results by cost."""

    def __init__(self, nruns: int, cache: Optional[ResultCache] = None,
                 cache_key_fn: Optional[Callable[[int], Optional[str]]] = None,
                 show_progress: bool = True, desc: str = "Runs"):
        if nruns < 1:
            raise ValueError(f"nruns must be positive, got {nruns}")
        self.nruns = nruns
        self.cache = cache
        self.cache_key_fn = cache_key_fn
        self.show_progress = show_progress
        self.desc = desc

    def _cache_key(self, idx: int) -> Optional[str]:
        if self.cache is None or self.cache_key_fn is None:
            return None
        return self.cache_key_fn(idx)

    def run(self, make_run: Callable[[np.random.Generator, int], ClusteringRun]) -> List[ClusteringRun]:
        """
        Execute all runs.

        Args:
            make_run: Called as ``make_run(rng, idx)``; must draw all randomness from ``rng``

        Returns:
            Runs sorted from lowest to highest cost
        """
        runs = []
        for idx in tqdm(range(1, self.nruns + 1), desc=self.desc, disable=not self.show_progress):
            thunk = lambda idx=idx: make_run(np.random.default_rng(idx), idx)
            key = self._cache_key(idx)
            run = self.cache.get_or_compute(key, thunk) if key is not None else thunk()
            runs.append(run)

        tracked = [run for run in runs if run.converged is not None]
        if tracked:
            nconverged = sum(bool(run.converged) for run in tracked)
            logger.info(f"{nconverged}/{len(tracked)} runs converged")

        runs = sorted(runs)
        logger.info(f"Best cost: {runs[0].cost:.6g} (run {runs[0].seed}), worst: {runs[-1].cost:.6g}")
        return runs


def batch_k_affine(X: np.ndarray, dims: Sequence[int], niters: int = 100, nruns: int = 10,
                   cache: Optional[ResultCache] = None, cache_prefix: str = "kaffine",
                   show_progress: bool = True) -> List[ClusteringRun]:
    """K-Affine with ``nruns`` restarts; cost is the total residual norm."""
    X = np.asarray(X, dtype=np.float64)

    def make_run(rng, idx):
        result = k_affine(X, dims, niters=niters, rng=rng)
        return ClusteringRun(
            cost=k_affine_cost(X, result),
            assignment=result.assignment,
            converged=result.converged,
            seed=idx,
            n_iter=result.n_iter,
            model=result,
        )

    runner = BatchRunner(nruns, cache=cache,
                         cache_key_fn=lambda idx: f"{cache_prefix}/run_{idx}",
                         show_progress=show_progress, desc="K-Affine runs")
    return runner.run(make_run)


def batch_kmeans(V: np.ndarray, n_clusters: int, nruns: int = 100, max_iter: int = 1000,
                 tol: float = 1e-6, cache: Optional[ResultCache] = None,
                 cache_prefix: str = "kmeans", show_progress: bool = True) -> List[ClusteringRun]:
    """
    Lloyd k-means on the rows of ``V`` with ``nruns`` restarts.

    Each run uses a single random initialization seeded from its generator.
    Cost is the inertia (total squared distance to the centers) and a run
    counts as converged when it stopped before ``max_iter``.
    """
    V = np.asarray(V, dtype=np.float64)

    def make_run(rng, idx):
        seed = int(rng.integers(np.iinfo(np.int32).max))
        km = KMeans(n_clusters=n_clusters, init="k-means++", n_init=1, max_iter=max_iter,
                    tol=tol, algorithm="lloyd", random_state=seed)
        # non-convergence is reported through the run, not as a warning
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            labels = km.fit_predict(V)
        return ClusteringRun(
            cost=float(km.inertia_),
            assignment=labels.astype(np.int64) + 1,
            converged=bool(km.n_iter_ < max_iter),
            seed=idx,
            n_iter=int(km.n_iter_),
            model=km.cluster_centers_,
        )

    runner = BatchRunner(nruns, cache=cache,
                         cache_key_fn=lambda idx: f"{cache_prefix}/run_{idx}",
                         show_progress=show_progress, desc="k-means runs")
    return runner.run(make_run)
