"""
Feature Point Extraction
========================

Per-frame corner detection feeding the mesh tracker.

Two detector passes run on every frame:
1. Hue channel (min-max normalised, median blurred) with a wider
   separation and a stricter quality level
2. Value channel with the base separation and a permissive quality level

The results are concatenated, hue corners first.

Usage:
    from utils.feature_extraction import DetectorConfig, extract_frame_points

    points = extract_frame_points(frame, DetectorConfig())
"""

import logging
import os
from dataclasses import dataclass

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class DetectorConfig:
    """Corner detector tuning. Defaults follow the reference tracker."""
    window_size: int = 5
    max_corners: int = 16
    min_distance: float = 5.0

    # Hue pass
    hue_distance_scale: float = 3.0
    hue_quality: float = 0.2

    # Value pass
    value_quality: float = 0.05

    # Noise reduction
    blur_ksize: int = 3
    blur_sigma: float = 2.5
    median_ksize: int = 9

    @classmethod
    def from_env(cls) -> "DetectorConfig":
        return cls(
            window_size=int(os.environ.get('MMT_WINDOW_SIZE', 5)),
            max_corners=int(os.environ.get('MMT_MAX_CORNERS', 16)),
            min_distance=float(os.environ.get('MMT_MIN_DISTANCE', 5.0)),
            hue_distance_scale=float(os.environ.get('MMT_HUE_DISTANCE_SCALE', 3.0)),
            hue_quality=float(os.environ.get('MMT_HUE_QUALITY', 0.2)),
            value_quality=float(os.environ.get('MMT_VALUE_QUALITY', 0.05)),
        )


def detect_feature_points(image, window_size, max_corners, min_distance, quality_level) -> np.ndarray:
    """
    Corner-like features of a single-channel image as an (N, 2) float array.

    Returns an empty (0, 2) array when nothing passes the quality level.
    """
    corners = cv2.goodFeaturesToTrack(
        image,
        maxCorners=int(max_corners),
        qualityLevel=float(quality_level),
        minDistance=float(min_distance),
        blockSize=int(window_size),
    )
    if corners is None:
        return np.empty((0, 2), dtype=np.float64)
    return corners.reshape(-1, 2).astype(np.float64)


def preprocess_channels(frame, config: DetectorConfig):
    """BGR frame -> (hue, value) channels ready for detection."""
    if frame is None or frame.ndim != 3 or frame.shape[2] != 3:
        shape = None if frame is None else frame.shape
        raise ValueError(f"Expected a 3-channel BGR frame, got shape {shape}")

    hsv = cv2.cvtColor(frame, cv2.COLOR_BGR2HSV)
    k = config.blur_ksize
    blurred = cv2.GaussianBlur(hsv, (k, k), config.blur_sigma,
                               sigmaY=config.blur_sigma,
                               borderType=cv2.BORDER_REFLECT_101)
    h, _, v = cv2.split(blurred)

    h = cv2.normalize(h, None, 0, 255, cv2.NORM_MINMAX)
    h = cv2.medianBlur(h, config.median_ksize)
    return h, v


def extract_frame_points(frame, config: DetectorConfig = None) -> np.ndarray:
    config = config or DetectorConfig()
    h, v = preprocess_channels(frame, config)

    corners_h = detect_feature_points(
        h, config.window_size, config.max_corners,
        config.min_distance * config.hue_distance_scale, config.hue_quality
    )
    corners_v = detect_feature_points(
        v, config.window_size, config.max_corners,
        config.min_distance, config.value_quality
    )

    points = np.vstack([corners_h, corners_v])
    logger.debug(f"... {len(points)} vertices captured "
                 f"(hue={len(corners_h)}, value={len(corners_v)})")
    return points
