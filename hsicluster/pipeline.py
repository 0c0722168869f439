#!/usr/bin/env python3
"""
Hyperspectral Clustering Pipeline

End-to-end unsupervised clustering of a hyperspectral scene with either
K-Affine subspace clustering or spectral clustering, followed by label
alignment and evaluation against the ground truth.

Usage:
    hsicluster --cube "MAT Files/Salinas_corrected.mat" --labels "GT Files/Salinas_gt.mat" \
        --scene Salinas --method spectral --max_nz 150 --nruns 100 \
        --output_dir results/salinas_sc --cache_dir cache_files/Salinas

    hsicluster --cube "MAT Files/Pavia.mat" --labels "GT Files/Pavia.mat" \
        --scene Pavia --method kaffine --subspace_dim 1 --niters 100 \
        --output_dir results/pavia_kaffine
"""

import argparse
import datetime
import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from .affinity import angular_kernel, build_affinity
from .alignment import align_labels, align_runs
from .batch import ClusteringRun, batch_k_affine, batch_kmeans
from .cache import ResultCache
from .data import SCENE_KEYS, Scene, cube_to_matrix, load_scene
from .embedding import spectral_embedding
from .evaluation import cluster_map, clustering_scores, confusion_matrix

METHODS = ("kaffine", "spectral")


@dataclass
class ClusteringConfig:
    """Configuration container for a clustering experiment."""

    # Data parameters
    cube_path: Path
    labels_path: Path
    output_dir: Path
    scene: Optional[str] = None
    cube_key: Optional[str] = None
    labels_key: Optional[str] = None

    # Method parameters
    method: str = "spectral"
    n_clusters: Optional[int] = None
    nruns: int = 100

    # K-Affine parameters
    subspace_dim: int = 1
    niters: int = 100

    # Spectral parameters
    max_nz: int = 150
    chunk_size: Optional[int] = None
    kernel_scale: float = 2.0
    embedding_seed: int = 0
    eigen_tol: float = 0.0
    eigen_maxiter: Optional[int] = None
    kmeans_max_iter: int = 1000
    kmeans_tol: float = 1e-6

    # Evaluation parameters
    align_threshold: float = 0.2

    # Output parameters
    cache_dir: Optional[Path] = None
    save_figures: bool = True
    show_progress: bool = True
    debug: bool = False

    def __post_init__(self):
        """Validate and process configuration after initialization."""
        self.cube_path = Path(self.cube_path)
        self.labels_path = Path(self.labels_path)
        self.output_dir = Path(self.output_dir)
        if self.cache_dir is not None:
            self.cache_dir = Path(self.cache_dir)

        if self.scene is not None:
            if self.scene not in SCENE_KEYS:
                raise ValueError(f"Unknown scene '{self.scene}', choose from {sorted(SCENE_KEYS)}")
            cube_key, labels_key = SCENE_KEYS[self.scene]
            self.cube_key = self.cube_key or cube_key
            self.labels_key = self.labels_key or labels_key

        if self.method not in METHODS:
            raise ValueError(f"Unknown method '{self.method}', choose from {METHODS}")
        for name in ("nruns", "niters", "max_nz", "kmeans_max_iter"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.n_clusters is not None and self.n_clusters < 1:
            raise ValueError(f"n_clusters must be positive, got {self.n_clusters}")
        if self.subspace_dim < 0:
            raise ValueError(f"subspace_dim must be non-negative, got {self.subspace_dim}")
        if not 0.0 <= self.align_threshold <= 1.0:
            raise ValueError(f"align_threshold must lie in [0, 1], got {self.align_threshold}")

    def to_dict(self) -> Dict[str, Any]:
        return {key: str(value) if isinstance(value, Path) else value
                for key, value in asdict(self).items()}

    def save(self, filepath: Path) -> None:
        with open(filepath, "w") as f:
            json.dump(self.to_dict(), f, indent=2)


class DataManager:
    """Loads the scene and prepares pixel matrices."""

    def __init__(self, config: ClusteringConfig):
        self.config = config
        self.logger = logging.getLogger("hsicluster.pipeline.data")

    def load(self) -> Scene:
        self.logger.info(f"Loading scene from: {self.config.cube_path}")
        scene = load_scene(self.config.cube_path, self.config.labels_path,
                           self.config.cube_key, self.config.labels_key)
        self.logger.info(f"Ground truth classes: {scene.n_classes} ({scene.class_ids.tolist()})")
        return scene

    def pixel_matrix(self, scene: Scene) -> np.ndarray:
        """All pixels for K-Affine, labeled pixels only for spectral clustering."""
        if self.config.method == "kaffine":
            return cube_to_matrix(scene.cube)
        return cube_to_matrix(scene.cube, scene.mask)


class ClusteringManager:
    """Runs the configured clustering method with batched restarts."""

    def __init__(self, config: ClusteringConfig):
        self.config = config
        self.logger = logging.getLogger("hsicluster.pipeline.clustering")
        self.cache = ResultCache(config.cache_dir) if config.cache_dir is not None else None

    # Cache keys name every setting that changes the cached value
    def kaffine_cache_prefix(self, n_clusters: int) -> str:
        return f"kaffine_d{self.config.subspace_dim}_k{n_clusters}_it{self.config.niters}"

    def affinity_cache_key(self) -> str:
        return f"affinity_nz{self.config.max_nz}_s{self.config.kernel_scale:g}"

    def kmeans_cache_prefix(self, n_clusters: int) -> str:
        c = self.config
        return (f"kmeans_nz{c.max_nz}_s{c.kernel_scale:g}_k{n_clusters}"
                f"_seed{c.embedding_seed}_etol{c.eigen_tol:g}_eit{c.eigen_maxiter}"
                f"_it{c.kmeans_max_iter}_tol{c.kmeans_tol:g}")

    def run(self, X: np.ndarray, n_clusters: int) -> List[ClusteringRun]:
        if self.config.method == "kaffine":
            return self._run_kaffine(X, n_clusters)
        return self._run_spectral(X, n_clusters)

    def _run_kaffine(self, X: np.ndarray, n_clusters: int) -> List[ClusteringRun]:
        dims = [self.config.subspace_dim] * n_clusters
        self.logger.info(f"K-Affine: {n_clusters} subspaces of dimension {self.config.subspace_dim}, "
                         f"{X.shape[1]} pixels, {self.config.nruns} runs")
        return batch_k_affine(
            X, dims,
            niters=self.config.niters,
            nruns=self.config.nruns,
            cache=self.cache,
            cache_prefix=self.kaffine_cache_prefix(n_clusters),
            show_progress=self.config.show_progress,
        )

    def _run_spectral(self, X: np.ndarray, n_clusters: int) -> List[ClusteringRun]:
        self.logger.info(f"Spectral clustering: {X.shape[1]} pixels, max_nz={self.config.max_nz}")

        def affinity():
            return build_affinity(X, max_nz=self.config.max_nz,
                                  kernel=angular_kernel(self.config.kernel_scale),
                                  chunk_size=self.config.chunk_size,
                                  show_progress=self.config.show_progress)

        if self.cache is not None:
            A = self.cache.get_or_compute(self.affinity_cache_key(), affinity)
        else:
            A = affinity()

        V = spectral_embedding(A, n_clusters, seed=self.config.embedding_seed,
                               tol=self.config.eigen_tol, maxiter=self.config.eigen_maxiter)
        return batch_kmeans(
            V, n_clusters,
            nruns=self.config.nruns,
            max_iter=self.config.kmeans_max_iter,
            tol=self.config.kmeans_tol,
            cache=self.cache,
            cache_prefix=self.kmeans_cache_prefix(n_clusters),
            show_progress=self.config.show_progress,
        )


class EvaluationManager:
    """Aligns runs, evaluates the best one and writes the results."""

    def __init__(self, config: ClusteringConfig):
        self.config = config
        self.logger = logging.getLogger("hsicluster.pipeline.evaluation")

    def evaluate(self, scene: Scene, runs: List[ClusteringRun], n_clusters: int) -> Dict[str, Any]:
        aligned = align_runs(runs, n_clusters=n_clusters, threshold=self.config.align_threshold)

        # K-Affine clusters every pixel; evaluation only looks at labeled ones
        best = aligned[0]
        if best.shape[0] != int(scene.mask.sum()):
            best = best[scene.mask.ravel()]

        matrix = confusion_matrix(scene.labels, best, scene.mask, n_clusters)
        scores = self._scores(scene, best, n_clusters)

        self.logger.info("Confusion matrix (% of each true class per cluster):")
        for label, row in zip(scene.class_ids, matrix):
            self.logger.info(f"  {label:3d}: " + " ".join(f"{v:5.1f}" for v in row))
        for name, value in scores.items():
            self.logger.info(f"  {name}: {value:.4f}")

        return {
            "assignment": best,
            "cluster_map": cluster_map(best, scene.mask),
            "confusion_matrix": matrix,
            "scores": scores,
            "costs": np.array([run.cost for run in runs]),
            "n_converged": sum(bool(run.converged) for run in runs),
        }

    def _scores(self, scene: Scene, assignment: np.ndarray, n_clusters: int) -> Dict[str, float]:
        truth = scene.labels[scene.mask]
        if scene.class_ids.size and scene.class_ids.max() <= n_clusters:
            assignment = align_labels(truth, assignment, n_clusters, threshold=self.config.align_threshold)
        else:
            self.logger.warning("Class ids exceed the number of clusters, aligned accuracy is not meaningful")
        return clustering_scores(scene.labels, assignment, scene.mask)

    def save(self, scene: Scene, results: Dict[str, Any]) -> None:
        output_dir = self.config.output_dir

        results_path = output_dir / f"{self.config.method}_results.npz"
        np.savez_compressed(
            results_path,
            assignment=results["assignment"],
            cluster_map=results["cluster_map"],
            confusion_matrix=results["confusion_matrix"],
            costs=results["costs"],
            class_ids=scene.class_ids,
        )
        self.logger.info(f"Results saved to {results_path}")

        summary = {
            "config": self.config.to_dict(),
            "scores": results["scores"],
            "best_cost": float(results["costs"][0]),
            "n_runs": len(results["costs"]),
            "n_converged": results["n_converged"],
        }
        summary_path = output_dir / f"{self.config.method}_summary.json"
        with open(summary_path, "w") as f:
            json.dump(summary, f, indent=2)
        self.logger.info(f"Summary saved to {summary_path}")

        if self.config.save_figures:
            from .plotting import save_cluster_comparison, save_confusion_matrix

            map_path = save_cluster_comparison(scene.labels, results["cluster_map"],
                                               output_dir / f"{self.config.method}_cluster_map.png")
            cm_path = save_confusion_matrix(results["confusion_matrix"],
                                            output_dir / f"{self.config.method}_confusion_matrix.png")
            self.logger.info(f"Figures saved to {map_path} and {cm_path}")


class ClusteringPipeline:
    """Main clustering pipeline orchestrator."""

    def __init__(self, config: ClusteringConfig):
        self.config = config
        self.start_time = datetime.datetime.now()
        self.logger = self._setup_logging()

        self.data_manager = DataManager(config)
        self.clustering_manager = ClusteringManager(config)
        self.evaluation_manager = EvaluationManager(config)

    def _setup_logging(self) -> logging.Logger:
        """Setup logging configuration."""
        self.config.output_dir.mkdir(parents=True, exist_ok=True)

        timestamp = self.start_time.strftime("%Y%m%d_%H%M%S")
        log_file = self.config.output_dir / f"clustering_log_{timestamp}.txt"

        logger = logging.getLogger("hsicluster")
        logger.setLevel(logging.DEBUG if self.config.debug else logging.INFO)
        logger.handlers.clear()

        # File handler
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

        # Console handler
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter("%(levelname)s - %(message)s"))

        logger.addHandler(file_handler)
        logger.addHandler(console_handler)

        logger.info("=" * 60)
        logger.info("HYPERSPECTRAL CLUSTERING SESSION")
        logger.info("=" * 60)
        logger.info(f"Log file: {log_file}")
        logger.info(f"Started at: {self.start_time.strftime('%Y-%m-%d %H:%M:%S')}")
        logger.info(f"Method: {self.config.method}")
        logger.info("=" * 60)

        return logger

    def run(self) -> Dict[str, Any]:
        """Execute the complete clustering pipeline."""
        try:
            scene = self.data_manager.load()
            n_clusters = self.config.n_clusters or scene.n_classes
            self.logger.info(f"Number of clusters: {n_clusters}")

            X = self.data_manager.pixel_matrix(scene)
            runs = self.clustering_manager.run(X, n_clusters)

            results = self.evaluation_manager.evaluate(scene, runs, n_clusters)
            self.config.save(self.config.output_dir / "config.json")
            self.evaluation_manager.save(scene, results)

            self._finalize()
            return results

        except Exception as e:
            self.logger.error(f"Clustering failed: {e}")
            raise

    def _finalize(self):
        duration = datetime.datetime.now() - self.start_time
        self.logger.info("=" * 60)
        self.logger.info("CLUSTERING COMPLETED SUCCESSFULLY")
        self.logger.info(f"Total duration: {duration}")
        self.logger.info("=" * 60)

        for handler in self.logger.handlers:
            handler.flush()


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure command-line argument parser."""
    parser = argparse.ArgumentParser(
        description="Unsupervised clustering of hyperspectral scenes (K-Affine or spectral)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    # Data parameters
    parser.add_argument("--cube", type=Path, required=True,
                        help="Hyperspectral cube file (.mat, .npy, .npz or .h5)")
    parser.add_argument("--labels", type=Path, required=True,
                        help="Ground-truth label map file (0 = unlabeled)")
    parser.add_argument("--output_dir", type=Path, required=True,
                        help="Output directory for results, figures and logs")
    parser.add_argument("--scene", choices=sorted(SCENE_KEYS),
                        help="Known scene, sets the variable names inside the files")
    parser.add_argument("--cube_key", type=str, help="Variable name of the cube")
    parser.add_argument("--labels_key", type=str, help="Variable name of the label map")

    # Method parameters
    parser.add_argument("--method", choices=METHODS, default="spectral",
                        help="Clustering method")
    parser.add_argument("--n_clusters", type=int,
                        help="Number of clusters (default: number of ground-truth classes)")
    parser.add_argument("--nruns", type=int, default=100,
                        help="Number of random restarts")

    # K-Affine parameters
    parser.add_argument("--subspace_dim", type=int, default=1,
                        help="Dimension of every affine subspace")
    parser.add_argument("--niters", type=int, default=100,
                        help="Maximum K-Affine iterations per run")

    # Spectral parameters
    parser.add_argument("--max_nz", type=int, default=150,
                        help="Neighbors kept per pixel in the affinity graph")
    parser.add_argument("--chunk_size", type=int,
                        help="Pixels per similarity block (default: sqrt of pixel count)")
    parser.add_argument("--kernel_scale", type=float, default=2.0,
                        help="Angular decay of the affinity kernel exp(-scale * angle)")
    parser.add_argument("--embedding_seed", type=int, default=0,
                        help="Seed of the eigensolver start vector")
    parser.add_argument("--eigen_tol", type=float, default=0.0,
                        help="Eigensolver tolerance (0 = machine precision)")
    parser.add_argument("--eigen_maxiter", type=int,
                        help="Eigensolver iteration limit")
    parser.add_argument("--kmeans_max_iter", type=int, default=1000,
                        help="k-means iteration limit per run")
    parser.add_argument("--kmeans_tol", type=float, default=1e-6,
                        help="k-means convergence tolerance")

    # Evaluation parameters
    parser.add_argument("--align_threshold", type=float, default=0.2,
                        help="Fraction of a row sum below which contingency counts are ignored")

    # Output parameters
    parser.add_argument("--cache_dir", type=Path,
                        help="Directory for cached runs and affinity graphs")
    parser.add_argument("--no_figures", action="store_true",
                        help="Skip figure export")
    parser.add_argument("--no_progress", action="store_true",
                        help="Disable progress bars")
    parser.add_argument("--debug", action="store_true",
                        help="Enable debug output")

    return parser


def main():
    """Main entry point."""
    parser = create_argument_parser()
    args = parser.parse_args()

    config = ClusteringConfig(
        cube_path=args.cube,
        labels_path=args.labels,
        output_dir=args.output_dir,
        scene=args.scene,
        cube_key=args.cube_key,
        labels_key=args.labels_key,
        method=args.method,
        n_clusters=args.n_clusters,
        nruns=args.nruns,
        subspace_dim=args.subspace_dim,
        niters=args.niters,
        max_nz=args.max_nz,
        chunk_size=args.chunk_size,
        kernel_scale=args.kernel_scale,
        embedding_seed=args.embedding_seed,
        eigen_tol=args.eigen_tol,
        eigen_maxiter=args.eigen_maxiter,
        kmeans_max_iter=args.kmeans_max_iter,
        kmeans_tol=args.kmeans_tol,
        align_threshold=args.align_threshold,
        cache_dir=args.cache_dir,
        save_figures=not args.no_figures,
        show_progress=not args.no_progress,
        debug=args.debug,
    )

    pipeline = ClusteringPipeline(config)
    pipeline.run()


if __name__ == "__main__":
    main()
