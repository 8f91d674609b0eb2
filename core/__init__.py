"""
Core tracking algorithms for the mesh motion tracker.

This module contains the mesh fragment model, the Hungarian assignment
solver and the tracking state manager that reconciles fragments per frame.
"""

from core.errors import EmptyFragmentError, InvalidCostMatrixError, MeshTrackingError
from core.hungarian_matcher import HungarianSolver, MatchResult, PADDING_COST
from core.mesh_fragment import MeshFragment, build_mesh
from core.motion_tracker import MotionTracker, ReconcileResult, TrackerConfig

__all__ = [
    'EmptyFragmentError',
    'InvalidCostMatrixError',
    'MeshTrackingError',
    'HungarianSolver',
    'MatchResult',
    'PADDING_COST',
    'MeshFragment',
    'build_mesh',
    'MotionTracker',
    'ReconcileResult',
    'TrackerConfig',
]
