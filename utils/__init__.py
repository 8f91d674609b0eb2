"""
Image-processing adapters for the mesh motion tracker.

This module contains corner extraction, mesh overlay rendering and the
standalone histogram backprojection helper.
"""

from utils.backprojection import calc_hist_back_projection
from utils.feature_extraction import DetectorConfig, detect_feature_points, extract_frame_points
from utils.rendering import draw_labels, draw_mesh, draw_meshes, draw_trails

__all__ = [
    'calc_hist_back_projection',
    'DetectorConfig',
    'detect_feature_points',
    'extract_frame_points',
    'draw_labels',
    'draw_mesh',
    'draw_meshes',
    'draw_trails',
]
