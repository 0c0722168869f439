"""
Scene loading and pixel-matrix preparation.

A scene is a hyperspectral cube ``[H, W, B]`` together with a ground-truth
label map ``[H, W]`` in which ``0`` marks unlabeled (background) pixels.
The clustering code only ever sees a ``[D, N]`` pixel matrix; the helpers here
do the flattening explicitly, in row-major order over the spatial indices.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import h5py
import numpy as np
import scipy.io

from .errors import ShapeMismatchError

logger = logging.getLogger(__name__)

# (cube variable, label variable) inside the public .mat distributions
SCENE_KEYS: Dict[str, Tuple[str, str]] = {
    "Pavia": ("pavia", "pavia_gt"),
    "PaviaU": ("paviaU", "paviaU_gt"),
    "Salinas": ("salinas_corrected", "salinas_gt"),
}


@dataclass
class Scene:
    """A loaded cube, its label map and the derived background mask."""

    cube: np.ndarray
    labels: np.ndarray
    mask: np.ndarray

    @property
    def shape(self) -> Tuple[int, int]:
        return self.labels.shape

    @property
    def n_bands(self) -> int:
        return self.cube.shape[2]

    @property
    def class_ids(self) -> np.ndarray:
        """Sorted nonzero label values."""
        ids = np.unique(self.labels)
        return ids[ids != 0]

    @property
    def n_classes(self) -> int:
        return len(self.class_ids)


def _pick_key(available, key: Optional[str], path: Path) -> str:
    available = list(available)
    if key is not None:
        if key not in available:
            raise KeyError(f"Variable '{key}' not found in {path} (available: {available})")
        return key
    if len(available) != 1:
        raise KeyError(f"Cannot infer variable in {path}, pass a key (available: {available})")
    return available[0]


def _load_hdf5(path: Path, key: Optional[str], matlab: bool) -> np.ndarray:
    with h5py.File(path, "r") as f:
        datasets = [name for name, item in f.items() if isinstance(item, h5py.Dataset)]
        if matlab:
            datasets = [name for name in datasets if not name.startswith("#")]
        name = _pick_key(datasets, key, path)
        array = f[name][()]
    # MATLAB v7.3 files store arrays column-major
    if matlab:
        array = np.transpose(array)
    return array


def _load_mat(path: Path, key: Optional[str]) -> np.ndarray:
    try:
        variables = scipy.io.loadmat(path)
    except NotImplementedError:
        logger.debug(f"{path} is a MATLAB v7.3 file, reading with h5py")
        return _load_hdf5(path, key, matlab=True)
    names = [name for name in variables if not name.startswith("__")]
    return np.asarray(variables[_pick_key(names, key, path)])


def load_array(path: Union[str, Path], key: Optional[str] = None) -> np.ndarray:
    """
    Load a single array from ``.npy``, ``.npz``, ``.mat`` or ``.h5`` files.

    Args:
        path: File to read
        key: Variable / dataset name; may be omitted when the file holds one

    Returns:
        The stored array
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if suffix == ".npy":
        return np.load(path, allow_pickle=False)
    elif suffix == ".npz":
        with np.load(path, allow_pickle=False) as data:
            return data[_pick_key(data.files, key, path)]
    elif suffix == ".mat":
        return _load_mat(path, key)
    elif suffix in (".h5", ".hdf5"):
        return _load_hdf5(path, key, matlab=False)
    else:
        raise ValueError(f"Unsupported scene format: {path.suffix}")


def background_mask(labels: np.ndarray) -> np.ndarray:
    """True for labeled pixels, False for background (label 0)."""
    return np.asarray(labels) != 0


def check_scene_shapes(cube: np.ndarray, labels: np.ndarray) -> None:
    if cube.ndim != 3:
        raise ShapeMismatchError(f"Expected a 3-D cube [H, W, B], got shape {cube.shape}")
    if labels.ndim != 2:
        raise ShapeMismatchError(f"Expected a 2-D label map [H, W], got shape {labels.shape}")
    if cube.shape[:2] != labels.shape:
        raise ShapeMismatchError(
            f"Cube spatial shape {cube.shape[:2]} does not match label map shape {labels.shape}"
        )


def load_scene(cube_path: Union[str, Path], labels_path: Union[str, Path],
               cube_key: Optional[str] = None, labels_key: Optional[str] = None) -> Scene:
    """Load a cube and its ground truth, validate them and derive the mask."""
    cube = np.asarray(load_array(cube_path, cube_key), dtype=np.float64)
    labels = np.asarray(load_array(labels_path, labels_key)).astype(np.int64)
    check_scene_shapes(cube, labels)

    mask = background_mask(labels)
    logger.info(f"Loaded cube {cube.shape} from {cube_path}")
    logger.info(f"Labeled pixels: {int(mask.sum())}/{mask.size}")
    return Scene(cube=cube, labels=labels, mask=mask)


def cube_to_matrix(cube: np.ndarray, mask: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Flatten a cube into a ``[B, N]`` pixel matrix (one spectrum per column).

    Pixels are taken in row-major order; with a mask only the selected pixels
    are kept, in that same order.
    """
    if cube.ndim != 3:
        raise ShapeMismatchError(f"Expected a 3-D cube [H, W, B], got shape {cube.shape}")
    if mask is None:
        return cube.reshape(-1, cube.shape[2]).T
    if mask.shape != cube.shape[:2]:
        raise ShapeMismatchError(f"Mask shape {mask.shape} does not match cube shape {cube.shape[:2]}")
    return cube[mask].T
