"""
Hungarian Assignment Module for Mesh Fragment Tracking
======================================================

Solves the square minimum-cost bipartite matching between persisted
fragments (rows) and newly observed fragments (columns).

- Polynomial time via scipy's linear_sum_assignment (O(N^3))
- Deterministic for identical input
- Padding (PADDING_COST) and infinite cells are swapped for finite
  stand-ins on a private copy so real distances are not swamped by
  floating point rounding
"""

import numpy as np
import logging
from scipy.optimize import linear_sum_assignment
from typing import List, Tuple
from dataclasses import dataclass

from core.errors import InvalidCostMatrixError

logger = logging.getLogger(__name__)

# Largest representable distance in the single-precision cost matrices
PADDING_COST = float(np.finfo(np.float32).max)


@dataclass
class MatchResult:
    pairs: List[Tuple[int, int]]
    cost_matrix: np.ndarray
    total_cost: float = 0.0
    saturated_pairs: int = 0


class HungarianSolver:
    def __init__(self, saturation_cost: float = PADDING_COST):
        self.saturation_cost = saturation_cost

    def _validate(self, cost_matrix) -> np.ndarray:
        m = np.array(cost_matrix, dtype=np.float64, copy=True)
        if m.ndim == 1 and m.size == 0:
            m = m.reshape(0, 0)
        if m.ndim != 2 or m.shape[0] != m.shape[1]:
            raise InvalidCostMatrixError(f"Cost matrix must be square, got shape {m.shape}")
        if np.isnan(m).any():
            raise InvalidCostMatrixError("Cost matrix contains NaN")
        if (m < 0).any():
            raise InvalidCostMatrixError("Cost matrix must be non-negative")
        return m

    def _condition(self, m: np.ndarray) -> np.ndarray:
        """
        Replace padding and infinite cells in place with finite stand-ins.

        Padding is only replaced while every other finite cell is small
        enough that n * largest < saturation_cost; then any stand-in above
        the largest real total gives the same ordering of bijections.
        Infinite cells always get a stand-in above every finite total.
        """
        n = m.shape[0]
        inf = np.isinf(m)
        pad = m == self.saturation_cost

        rest = m[~inf & ~pad]
        ceiling = float(rest.max()) if rest.size else 0.0
        if pad.any() and n * ceiling < self.saturation_cost:
            m[pad] = (ceiling + 1.0) * n + 1.0

        if inf.any():
            finite = m[~inf]
            ceiling = float(finite.max()) if finite.size else 0.0
            m[inf] = (ceiling + 1.0) * n + 1.0
        return m

    def solve(self, cost_matrix) -> List[Tuple[int, int]]:
        """
        Return a minimum-cost bijection as (row, col) pairs sorted by row.

        The caller's matrix is never modified.
        """
        m = self._validate(cost_matrix)
        n = m.shape[0]
        if n == 0:
            return []

        self._condition(m)
        row_ind, col_ind = linear_sum_assignment(m)
        pairs = sorted(zip(row_ind.tolist(), col_ind.tolist()))
        return pairs

    def match(self, cost_matrix) -> MatchResult:
        """Solve and summarise: real cost of the chosen pairs and how many were saturated."""
        pairs = self.solve(cost_matrix)
        m = np.asarray(cost_matrix, dtype=np.float64)

        total = 0.0
        n_saturated = 0
        for r, c in pairs:
            v = m[r, c]
            if np.isinf(v) or v == self.saturation_cost:
                n_saturated += 1
            else:
                total += float(v)

        return MatchResult(pairs, m, total, n_saturated)


def pairing_cost(cost_matrix, pairs) -> float:
    """Sum of the selected cells."""
    m = np.asarray(cost_matrix, dtype=np.float64)
    return float(sum(m[r, c] for r, c in pairs))
