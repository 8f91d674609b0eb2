# motion_tracker.py
# Tracking State Manager: frame-to-frame correspondence of mesh fragments
#
# Each frame the persisted fragments (rows) are matched against the newly
# split fragments (columns) by centroid distance. The square cost matrix is
# padded with PADDING_COST so a padding row means "fresh fragment" and a
# padding column means "fragment absent this frame".

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
from scipy.spatial.distance import cdist

from core.hungarian_matcher import HungarianSolver, PADDING_COST
from core.mesh_fragment import DEFAULT_HISTORY_SIZE, MeshFragment

logger = logging.getLogger(__name__)


def _optional_env(name: str, cast, default):
    raw = os.environ.get(name)
    if raw is None:
        return default
    if raw.strip().lower() in ('', 'none', 'off'):
        return None
    return cast(raw)


@dataclass
class TrackerConfig:
    """Configuration for fragment reconciliation."""
    # Fragments absent for more than this many consecutive frames are dropped.
    # None keeps them forever.
    max_absence: Optional[int] = 30

    # Real pairs farther apart than this are treated as absent + fresh.
    # None accepts every pairing the solver picks.
    max_displacement: Optional[float] = None

    history_size: int = DEFAULT_HISTORY_SIZE

    def __post_init__(self):
        if self.max_absence is not None and self.max_absence < 0:
            raise ValueError(f"max_absence must be >= 0 or None, got {self.max_absence}")
        if self.max_displacement is not None and self.max_displacement < 0:
            raise ValueError(f"max_displacement must be >= 0 or None, got {self.max_displacement}")

    @classmethod
    def from_env(cls) -> "TrackerConfig":
        return cls(
            max_absence=_optional_env('MMT_MAX_ABSENCE', int, 30),
            max_displacement=_optional_env('MMT_MAX_DISPLACEMENT', float, None),
            history_size=int(os.environ.get('MMT_HISTORY_SIZE', DEFAULT_HISTORY_SIZE)),
        )


@dataclass
class ReconcileResult:
    """
    Outcome of one reconciliation.

    `updated` and `absent` index the persisted list as it was before the
    call; `fresh` indexes the new fragment list.
    """
    updated: List[Tuple[int, int]] = field(default_factory=list)
    absent: List[int] = field(default_factory=list)
    fresh: List[int] = field(default_factory=list)
    pruned: List[int] = field(default_factory=list)
    gated: List[Tuple[int, int]] = field(default_factory=list)
    cost_matrix: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    bootstrap: bool = False

    def summary(self) -> Dict[str, int]:
        return {
            'updated': len(self.updated),
            'absent': len(self.absent),
            'fresh': len(self.fresh),
            'pruned': len(self.pruned),
            'gated': len(self.gated),
        }


class MotionTracker:
    """
    Owns the persisted fragment list and reconciles it once per frame.

    Usage:
        tracker = MotionTracker(TrackerConfig(max_absence=10))
        result = tracker.align_meshes(fragments)
        for frag in tracker.fragments:
            ...
    """

    def __init__(self, config: Optional[TrackerConfig] = None,
                 solver: Optional[HungarianSolver] = None):
        self.config = config or TrackerConfig()
        self.solver = solver or HungarianSolver()

        self._meshes: List[MeshFragment] = []
        self._next_id = 0
        self._lock = threading.RLock()

        self.stats = {
            'frames': 0,
            'updated': 0,
            'absent': 0,
            'fresh': 0,
            'pruned': 0,
            'gated': 0,
        }

    @property
    def fragments(self) -> Tuple[MeshFragment, ...]:
        """Snapshot of the persisted fragments; safe to hand to a renderer."""
        with self._lock:
            return tuple(self._meshes)

    def __len__(self):
        with self._lock:
            return len(self._meshes)

    def reset(self):
        with self._lock:
            self._meshes = []
            self._next_id = 0

    def build_cost_matrix(self, new_fragments: List[MeshFragment]) -> np.ndarray:
        """N x N centroid distances, N = max(old, new); padding cells hold PADDING_COST."""
        with self._lock:
            n0, n1 = len(self._meshes), len(new_fragments)
            n = max(n0, n1)
            m = np.full((n, n), PADDING_COST, dtype=np.float64)
            if n0 and n1:
                c0 = np.array([f.centroid() for f in self._meshes])
                c1 = np.array([f.centroid() for f in new_fragments])
                m[:n0, :n1] = cdist(c0, c1)
            return m

    def classify(self, new_fragments: Iterable[MeshFragment]) -> ReconcileResult:
        """
        Match new fragments against the persisted set without changing it.

        Returns the classification align_meshes would apply.
        """
        new_fragments = list(new_fragments)
        with self._lock:
            n0, n1 = len(self._meshes), len(new_fragments)

            if n0 == 0:
                return ReconcileResult(fresh=list(range(n1)), bootstrap=True)

            cost = self.build_cost_matrix(new_fragments)
            pairs = self.solver.solve(cost)
            logger.debug(f"[M] {cost.shape[0]} x {cost.shape[1]}")

            result = ReconcileResult(cost_matrix=cost)
            max_disp = self.config.max_displacement
            for i0, i1 in pairs:
                if i0 >= n0 and i1 >= n1:
                    continue
                elif i0 >= n0:
                    result.fresh.append(i1)
                elif i1 >= n1:
                    result.absent.append(i0)
                elif max_disp is not None and cost[i0, i1] > max_disp:
                    result.gated.append((i0, i1))
                    result.absent.append(i0)
                    result.fresh.append(i1)
                else:
                    result.updated.append((i0, i1))
            return result

    def align_meshes(self, new_fragments: Iterable[MeshFragment]) -> ReconcileResult:
        """
        Reconcile the persisted fragments with this frame's fragments.

        Matched fragments take the new geometry, unmatched persisted ones age
        by one frame, unmatched new ones are appended, and fragments absent
        for longer than max_absence are dropped.
        """
        new_fragments = list(new_fragments)
        with self._lock:
            logger.debug(f"...Aligning mesh: {len(self._meshes)} --> {len(new_fragments)}")
            result = self.classify(new_fragments)

            for i0, i1 in result.updated:
                self._meshes[i0].update(new_fragments[i1])
            for i0 in result.absent:
                self._meshes[i0].mark_absent()
            for i1 in result.fresh:
                self._adopt(new_fragments[i1])

            result.pruned = self._prune()

            self.stats['frames'] += 1
            for key, value in result.summary().items():
                self.stats[key] += value

            logger.debug(f"... {len(result.updated)} mesh(es) updated")
            logger.debug(f"... {len(result.absent)} mesh(es) absent")
            logger.debug(f"... {len(result.fresh)} new mesh(es)")
            if result.pruned:
                logger.debug(f"... {len(result.pruned)} mesh(es) pruned")
            return result

    def _adopt(self, fragment: MeshFragment):
        tracked = fragment.copy()
        tracked.absence_count = 0
        tracked.fragment_id = self._next_id
        self._next_id += 1
        self._meshes.append(tracked)

    def _prune(self) -> List[int]:
        limit = self.config.max_absence
        if limit is None:
            return []

        kept, pruned = [], []
        for frag in self._meshes:
            if frag.absence_count > limit:
                pruned.append(frag.fragment_id)
            else:
                kept.append(frag)
        self._meshes = kept
        return pruned

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            stats = self.stats.copy()
            stats['tracked'] = len(self._meshes)
            return stats
