"""
Mesh Fragment Model
===================

A fragment is a group of feature points that is tracked as one unit from
frame to frame. It carries no stored graph structure: proximity connectivity
(used by split) and the Delaunay mesh (used for drawing) are recomputed from
the point sequence whenever they are needed.
"""

import logging
from collections import deque
from typing import List, Optional, Tuple

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import connected_components
from scipy.spatial import Delaunay, QhullError
from scipy.spatial.distance import pdist, squareform

from core.errors import EmptyFragmentError

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 32


def _as_points(points) -> np.ndarray:
    """Coerce any point-like input (lists, (N,2) or cv2's (N,1,2)) to a frozen (N,2) array."""
    try:
        arr = np.array(points, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise EmptyFragmentError(f"Cannot read fragment points: {e}") from e

    if arr.size == 0:
        raise EmptyFragmentError("A fragment needs at least one point")
    if arr.ndim == 0 or arr.shape[-1] != 2:
        raise EmptyFragmentError(f"Expected 2D points, got array of shape {arr.shape}")

    arr = arr.reshape(-1, 2)
    if not np.all(np.isfinite(arr)):
        raise EmptyFragmentError("Fragment points must be finite")

    arr.setflags(write=False)
    return arr


def proximity_components(points: np.ndarray, threshold: float) -> List[np.ndarray]:
    """
    Partition points into connected components of the proximity graph.

    Two points are adjacent when their distance is strictly below `threshold`.
    Components are returned as sorted index arrays, ordered by their first index.
    """
    n = len(points)
    if n == 0:
        return []
    if n == 1:
        return [np.array([0])]

    dist = squareform(pdist(points))
    adjacency = csr_matrix(dist < threshold)
    n_comp, labels = connected_components(adjacency, directed=False)

    groups = [np.flatnonzero(labels == c) for c in range(n_comp)]
    groups.sort(key=lambda g: g[0])
    return groups


def _partition(points: np.ndarray, indices: np.ndarray,
               max_edge_length: float, threshold: float) -> List[np.ndarray]:
    parts = []
    for comp in proximity_components(points[indices], threshold):
        members = indices[comp]
        sub = points[members]
        extent = sub.max(axis=0) - sub.min(axis=0)

        if len(members) == 1 or extent.max() <= max_edge_length:
            parts.append(members)
            continue

        # Too wide: bisect at the median of the longest axis, then re-check each half
        axis = int(np.argmax(extent))
        order = np.argsort(sub[:, axis], kind="stable")
        half = len(members) // 2
        lower = np.sort(members[order[:half]])
        upper = np.sort(members[order[half:]])
        parts.extend(_partition(points, lower, max_edge_length, threshold))
        parts.extend(_partition(points, upper, max_edge_length, threshold))

    parts.sort(key=lambda m: m[0])
    return parts


class MeshFragment:
    """
    A bounded cluster of tracked feature points.

    Attributes:
        absence_count: Consecutive frames without a matching observation
        fragment_id: Identity assigned by the tracker (None until adopted)
        history: Recent centroids, oldest first
    """

    def __init__(self, points, history_size: int = DEFAULT_HISTORY_SIZE):
        self._points = _as_points(points)
        self._centroid: Optional[np.ndarray] = None
        self.absence_count = 0
        self.fragment_id: Optional[int] = None
        self.history = deque(maxlen=history_size)
        self.history.append(self.centroid())

    @property
    def points(self) -> np.ndarray:
        """Read-only (N, 2) view of the member points."""
        return self._points

    def __len__(self):
        return len(self._points)

    def __repr__(self):
        cx, cy = self.centroid()
        return (f"MeshFragment(id={self.fragment_id}, n={len(self)}, "
                f"centroid=({cx:.1f}, {cy:.1f}), absent={self.absence_count})")

    def centroid(self) -> np.ndarray:
        if self._centroid is None:
            c = self._points.mean(axis=0)
            c.setflags(write=False)
            self._centroid = c
        return self._centroid

    def split(self, max_edge_length: float,
              proximity_threshold: Optional[float] = None) -> List["MeshFragment"]:
        """
        Break this fragment into sub-fragments no wider than max_edge_length.

        Points closer than `proximity_threshold` (defaults to max_edge_length)
        are connected. Each connected component whose bounding box exceeds
        max_edge_length on either axis is bisected along its longest axis until
        it fits. Points with no near neighbour end up as singletons.

        The source fragment is left untouched.
        """
        if max_edge_length < 0:
            raise ValueError(f"max_edge_length must be non-negative, got {max_edge_length}")
        threshold = max_edge_length if proximity_threshold is None else proximity_threshold

        indices = np.arange(len(self._points))
        parts = _partition(self._points, indices, max_edge_length, threshold)

        history_size = self.history.maxlen
        return [MeshFragment(self._points[p], history_size=history_size) for p in parts]

    def update(self, other: "MeshFragment"):
        """Fold a newly observed fragment into this tracked one, keeping identity and history."""
        self._points = other._points
        self._centroid = other._centroid
        self.absence_count = 0
        self.history.append(self.centroid())

    def mark_absent(self):
        self.absence_count += 1

    def edges(self, max_edge_length: Optional[float] = None) -> List[Tuple[int, int]]:
        """
        Mesh edges as sorted (i, j) index pairs.

        Uses the Delaunay triangulation of the points; degenerate layouts
        (fewer than 3 points, or all collinear) fall back to a chain through
        the points ordered by x then y. Edges longer than max_edge_length are
        dropped.
        """
        pts = self._points
        n = len(pts)
        if n < 2:
            return []

        pairs = set()
        if n >= 3:
            try:
                tri = Delaunay(pts)
                for simplex in tri.simplices:
                    for a, b in ((0, 1), (1, 2), (0, 2)):
                        i, j = sorted((int(simplex[a]), int(simplex[b])))
                        pairs.add((i, j))
            except QhullError:
                logger.debug(f"Degenerate triangulation for {n} points, using chain")
                pairs.clear()

        if not pairs:
            order = np.lexsort((pts[:, 1], pts[:, 0]))
            for i, j in zip(order[:-1], order[1:]):
                pairs.add(tuple(sorted((int(i), int(j)))))

        result = sorted(pairs)
        if max_edge_length is not None:
            result = [(i, j) for i, j in result
                      if np.linalg.norm(pts[i] - pts[j]) <= max_edge_length]
        return result

    def copy(self) -> "MeshFragment":
        clone = MeshFragment(self._points, history_size=self.history.maxlen)
        clone.absence_count = self.absence_count
        clone.fragment_id = self.fragment_id
        clone.history = deque(self.history, maxlen=self.history.maxlen)
        return clone


def build_mesh(points, history_size: int = DEFAULT_HISTORY_SIZE) -> Optional[MeshFragment]:
    """Build a single fragment over all detected points, or None when nothing was detected."""
    if points is None or np.size(points) == 0:
        return None
    return MeshFragment(points, history_size=history_size)
