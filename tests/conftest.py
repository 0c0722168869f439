"""Pytest configuration and shared fixtures."""

import pytest
import numpy as np
import tempfile
import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture
def temp_output_dir():
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def rng():
    """Seeded generator for reproducible synthetic data."""
    return np.random.default_rng(42)


@pytest.fixture
def crossing_lines():
    """
    Points on the x-axis and on the y-axis, away from the origin.

    Returns the [2, N] matrix and the true 1-based partition.
    """
    t = np.concatenate([np.arange(-10, -1), np.arange(2, 11)]).astype(float)
    horizontal = np.stack([t, np.zeros_like(t)])
    vertical = np.stack([np.zeros_like(t), t])
    X = np.hstack([horizontal, vertical])
    truth = np.repeat([1, 2], len(t))
    return X, truth


@pytest.fixture
def two_direction_spectra(rng):
    """
    Spectra from two well separated directions with a little noise.

    Returns the [D, N] matrix and the true 1-based partition.
    """
    D, n = 6, 30
    a = np.array([1.0, 0.9, 0.1, 0.0, 0.0, 0.1])
    b = np.array([0.0, 0.1, 0.0, 1.0, 0.8, 0.9])
    group_a = a[:, None] * rng.uniform(0.5, 2.0, n) + 0.01 * rng.standard_normal((D, n))
    group_b = b[:, None] * rng.uniform(0.5, 2.0, n) + 0.01 * rng.standard_normal((D, n))
    return np.hstack([group_a, group_b]), np.repeat([1, 2], n)


@pytest.fixture
def small_scene(rng):
    """
    A 6 x 10 scene with 8 bands: class 1 on the left, class 2 on the right,
    and an unlabeled top row.
    """
    H, W, B = 6, 10, 8
    a = np.linspace(1.0, 0.1, B)
    b = np.linspace(0.1, 1.0, B)

    labels = np.ones((H, W), dtype=np.int64)
    labels[:, W // 2:] = 2
    labels[0, :] = 0

    cube = np.empty((H, W, B))
    cube[labels == 1] = a * rng.uniform(0.8, 1.2, (int((labels == 1).sum()), 1))
    cube[labels == 2] = b * rng.uniform(0.8, 1.2, (int((labels == 2).sum()), 1))
    cube[labels == 0] = rng.uniform(0.0, 1.0, (W, B))
    cube += 0.005 * rng.standard_normal(cube.shape)
    return cube, labels


@pytest.fixture
def small_scene_files(small_scene, temp_output_dir):
    """The small scene written as .npy files."""
    cube, labels = small_scene
    cube_path = temp_output_dir / "cube.npy"
    labels_path = temp_output_dir / "labels.npy"
    np.save(cube_path, cube)
    np.save(labels_path, labels)
    return cube_path, labels_path


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
