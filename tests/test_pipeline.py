"""Tests for the configuration, pipeline and command-line interface."""

import json
import logging
from pathlib import Path

import pytest
import numpy as np

from hsicluster.pipeline import (ClusteringConfig, ClusteringManager, ClusteringPipeline,
                                 create_argument_parser)


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Detach the handlers the pipeline installs on the package logger."""
    yield
    logger = logging.getLogger("hsicluster")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def make_config(cube_path, labels_path, output_dir, **kwargs):
    defaults = dict(nruns=3, max_nz=5, save_figures=False, show_progress=False)
    defaults.update(kwargs)
    return ClusteringConfig(cube_path=cube_path, labels_path=labels_path,
                            output_dir=output_dir, **defaults)


class TestClusteringConfig:
    """Test configuration defaults and validation."""

    def test_defaults(self, temp_output_dir):
        """Defaults match the documented experiment settings."""
        config = ClusteringConfig(cube_path="c.mat", labels_path="l.mat", output_dir=temp_output_dir)

        assert config.method == "spectral"
        assert config.nruns == 100
        assert config.max_nz == 150
        assert config.kernel_scale == 2.0
        assert config.align_threshold == 0.2
        assert config.subspace_dim == 1
        assert config.niters == 100
        assert isinstance(config.cube_path, Path)

    def test_scene_sets_variable_names(self, temp_output_dir):
        """Known scenes fill in the .mat variable names."""
        config = ClusteringConfig(cube_path="c.mat", labels_path="l.mat",
                                  output_dir=temp_output_dir, scene="Salinas")

        assert config.cube_key == "salinas_corrected"
        assert config.labels_key == "salinas_gt"

    def test_explicit_keys_win(self, temp_output_dir):
        """Explicit variable names are kept over scene presets."""
        config = ClusteringConfig(cube_path="c.mat", labels_path="l.mat", output_dir=temp_output_dir,
                                  scene="PaviaU", cube_key="cube")

        assert config.cube_key == "cube"
        assert config.labels_key == "paviaU_gt"

    @pytest.mark.parametrize("overrides", [
        {"method": "dbscan"},
        {"scene": "Indian"},
        {"nruns": 0},
        {"niters": 0},
        {"max_nz": 0},
        {"n_clusters": 0},
        {"subspace_dim": -1},
        {"align_threshold": 1.5},
    ])
    def test_invalid(self, temp_output_dir, overrides):
        """Invalid settings are rejected at construction."""
        with pytest.raises(ValueError):
            ClusteringConfig(cube_path="c.mat", labels_path="l.mat",
                             output_dir=temp_output_dir, **overrides)

    def test_save(self, temp_output_dir):
        """Configs serialize to JSON with paths as strings."""
        config = ClusteringConfig(cube_path="c.mat", labels_path="l.mat", output_dir=temp_output_dir)
        config.save(temp_output_dir / "config.json")

        with open(temp_output_dir / "config.json") as f:
            saved = json.load(f)
        assert saved["cube_path"] == "c.mat"
        assert saved["method"] == "spectral"


class TestClusteringCache:
    """Test that cached runs are keyed by every setting that shapes them."""

    def test_kernel_scale_change_recomputes_runs(self, two_direction_spectra, temp_output_dir):
        """A new kernel scale against the same cache gives the uncached result."""
        X, _ = two_direction_spectra
        cache_dir = temp_output_dir / "cache"

        def manager(**kwargs):
            return ClusteringManager(make_config("c.npy", "l.npy", temp_output_dir, nruns=2, **kwargs))

        manager(cache_dir=cache_dir, kernel_scale=2.0).run(X, 2)
        cached = manager(cache_dir=cache_dir, kernel_scale=50.0).run(X, 2)
        fresh = manager(kernel_scale=50.0).run(X, 2)

        np.testing.assert_allclose([run.cost for run in cached], [run.cost for run in fresh], atol=1e-12)
        assert len(list(cache_dir.rglob("affinity_*.pkl"))) == 2
        assert len(list(cache_dir.rglob("run_*.pkl"))) == 4

    @pytest.mark.parametrize("overrides", [
        {"kernel_scale": 3.0},
        {"max_nz": 7},
        {"embedding_seed": 1},
        {"eigen_tol": 1e-8},
        {"eigen_maxiter": 500},
        {"kmeans_max_iter": 20},
        {"kmeans_tol": 1e-3},
    ])
    def test_kmeans_prefix_tracks_settings(self, temp_output_dir, overrides):
        """Every k-means and embedding setting changes the run prefix."""
        base = ClusteringManager(make_config("c.npy", "l.npy", temp_output_dir))
        changed = ClusteringManager(make_config("c.npy", "l.npy", temp_output_dir, **overrides))

        assert base.kmeans_cache_prefix(2) != changed.kmeans_cache_prefix(2)

    def test_kaffine_prefix_tracks_settings(self, temp_output_dir):
        """Iteration limit and subspace dimension change the K-Affine prefix."""
        base = ClusteringManager(make_config("c.npy", "l.npy", temp_output_dir, method="kaffine"))
        more_iters = ClusteringManager(make_config("c.npy", "l.npy", temp_output_dir,
                                                   method="kaffine", niters=5))
        larger_dim = ClusteringManager(make_config("c.npy", "l.npy", temp_output_dir,
                                                   method="kaffine", subspace_dim=2))

        prefixes = {m.kaffine_cache_prefix(2) for m in (base, more_iters, larger_dim)}
        assert len(prefixes) == 3


class TestClusteringPipeline:
    """End-to-end runs on a small synthetic scene."""

    @pytest.mark.integration
    def test_spectral(self, small_scene_files, temp_output_dir):
        """Spectral clustering separates the two classes and writes results."""
        output_dir = temp_output_dir / "spectral"
        config = make_config(*small_scene_files, output_dir)

        results = ClusteringPipeline(config).run()

        assert results["confusion_matrix"].shape == (2, 2)
        np.testing.assert_allclose(np.sort(results["confusion_matrix"].max(axis=1)), [100.0, 100.0])
        assert results["scores"]["adjusted_rand_index"] == pytest.approx(1.0)
        assert results["cluster_map"].shape == (6, 10)
        assert np.all(results["cluster_map"][0] == 0)

        assert (output_dir / "spectral_results.npz").exists()
        assert (output_dir / "spectral_summary.json").exists()
        assert (output_dir / "config.json").exists()
        assert list(output_dir.glob("clustering_log_*.txt"))

    @pytest.mark.integration
    def test_kaffine(self, small_scene_files, temp_output_dir):
        """K-Affine clusters every pixel and is evaluated on the labeled ones."""
        output_dir = temp_output_dir / "kaffine"
        config = make_config(*small_scene_files, output_dir, method="kaffine", niters=10)

        results = ClusteringPipeline(config).run()

        assert results["assignment"].shape == (50,)
        assert results["confusion_matrix"].shape == (2, 2)
        np.testing.assert_allclose(results["confusion_matrix"].sum(axis=1), 100.0)
        assert len(results["costs"]) == 3
        assert np.all(np.diff(results["costs"]) >= 0)

        with open(output_dir / "kaffine_summary.json") as f:
            summary = json.load(f)
        assert summary["n_runs"] == 3

    @pytest.mark.integration
    @pytest.mark.slow
    def test_figures_and_cache(self, small_scene_files, temp_output_dir):
        """Figures are exported and a second run is served from the cache."""
        output_dir = temp_output_dir / "out"
        cache_dir = temp_output_dir / "cache"
        config = make_config(*small_scene_files, output_dir, save_figures=True, cache_dir=cache_dir)

        first = ClusteringPipeline(config).run()
        second = ClusteringPipeline(config).run()

        assert (output_dir / "spectral_cluster_map.png").exists()
        assert (output_dir / "spectral_confusion_matrix.png").exists()
        assert list(cache_dir.rglob("affinity_*.pkl"))
        np.testing.assert_array_equal(first["assignment"], second["assignment"])

    def test_failure_is_logged_and_raised(self, temp_output_dir):
        """A missing input file fails the run after logging the error."""
        output_dir = temp_output_dir / "broken"
        config = make_config(temp_output_dir / "missing.npy", temp_output_dir / "missing_gt.npy",
                             output_dir)

        with pytest.raises(FileNotFoundError):
            ClusteringPipeline(config).run()

        log_file = next(output_dir.glob("clustering_log_*.txt"))
        assert "Clustering failed" in log_file.read_text()


class TestArgumentParser:
    """Test the command-line interface."""

    def test_defaults(self):
        """Only the paths are required."""
        args = create_argument_parser().parse_args(
            ["--cube", "c.mat", "--labels", "l.mat", "--output_dir", "out"])

        assert args.method == "spectral"
        assert args.nruns == 100
        assert args.max_nz == 150
        assert not args.no_figures

    def test_kaffine_options(self):
        """K-Affine settings are parsed with their types."""
        args = create_argument_parser().parse_args(
            ["--cube", "c.mat", "--labels", "l.mat", "--output_dir", "out",
             "--method", "kaffine", "--subspace_dim", "2", "--niters", "50", "--scene", "Pavia"])

        assert args.method == "kaffine"
        assert args.subspace_dim == 2
        assert args.niters == 50
        assert args.scene == "Pavia"

    def test_unknown_method(self):
        """Unsupported methods are rejected by argparse."""
        with pytest.raises(SystemExit):
            create_argument_parser().parse_args(
                ["--cube", "c", "--labels", "l", "--output_dir", "o", "--method", "dbscan"])
