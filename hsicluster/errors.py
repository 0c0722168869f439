"""
Error types raised by the clustering core.

Empty clusters and degenerate evaluation rows are not errors; they are
absorbed where they are detected and only logged.
"""


class HSIClusterError(Exception):
    """Base class for hsicluster errors."""
    pass


class ShapeMismatchError(HSIClusterError, ValueError):
    """Array shapes disagree (cube vs labels, subspace dim vs bands, ...)."""
    pass


class SolverNonConvergenceError(HSIClusterError, RuntimeError):
    """An iterative solver failed to produce a usable result."""

    def __init__(self, message: str, n_converged: int = 0):
        super().__init__(message)
        self.n_converged = n_converged
