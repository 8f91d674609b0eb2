"""
Exception types raised by the mesh tracking core.
"""


class MeshTrackingError(Exception):
    """Base class for all tracking errors."""


class EmptyFragmentError(MeshTrackingError, ValueError):
    """A fragment was built from an empty or malformed point set."""


class InvalidCostMatrixError(MeshTrackingError, ValueError):
    """The assignment solver received a matrix it cannot solve."""
