"""
Persistent result cache keyed by string.

Each entry is a pickle file storing ``(computed_at, runtime_seconds, value)``.
A value is only written after its thunk returns, so a failing computation
propagates its exception and leaves no entry behind.
"""

import datetime
import logging
import os
import pickle
import tempfile
import time
from pathlib import Path, PurePosixPath
from typing import Callable, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResultCache:
    """Directory-backed memoization of expensive computations."""

    def __init__(self, cache_dir: Union[str, Path]):
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        """File backing ``key``; keys may contain ``/`` but never ``..``."""
        parts = PurePosixPath(key).parts
        if not parts or key.startswith("/") or ".." in parts:
            raise ValueError(f"Invalid cache key: {key!r}")
        path = self.cache_dir.joinpath(*parts)
        return path if path.suffix == ".pkl" else path.with_name(path.name + ".pkl")

    def __contains__(self, key: str) -> bool:
        return self.path_for(key).exists()

    def get_or_compute(self, key: str, thunk: Callable[[], T]) -> T:
        """Return the stored value for ``key``, computing and storing it on a miss."""
        path = self.path_for(key)

        if path.exists():
            with open(path, "rb") as f:
                computed_at, runtime, value = pickle.load(f)
            logger.info(f"Loaded '{key}' from cache (computed {computed_at:%Y-%m-%d %H:%M:%S}, "
                        f"runtime = {runtime:.2f} seconds)")
            return value

        computed_at = datetime.datetime.now()
        start = time.perf_counter()
        value = thunk()
        runtime = time.perf_counter() - start

        self._write(path, (computed_at, runtime, value))
        logger.info(f"Computed '{key}' (runtime = {runtime:.2f} seconds)")
        return value

    def _write(self, path: Path, entry) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                pickle.dump(entry, f, protocol=pickle.HIGHEST_PROTOCOL)
            os.replace(tmp_name, path)
        except BaseException:
            os.unlink(tmp_name)
            raise

    def clear(self) -> int:
        """Delete every entry; returns the number removed."""
        removed = 0
        for path in self.cache_dir.rglob("*.pkl"):
            path.unlink()
            removed += 1
        return removed
