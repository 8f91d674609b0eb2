"""
Image Adapter Tests
===================

Corner extraction, histogram backprojection and mesh drawing against
synthetic images.

Usage:
    python -m pytest tests/test_image_utils.py -v
"""

import os
import sys
import unittest
from unittest.mock import patch

import cv2
import numpy as np

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.mesh_fragment import MeshFragment
from utils.backprojection import calc_hist_back_projection
from utils.feature_extraction import (
    DetectorConfig, detect_feature_points, extract_frame_points, preprocess_channels
)
from utils.rendering import draw_labels, draw_meshes, draw_trails


def synthetic_frame():
    frame = np.zeros((120, 160, 3), dtype=np.uint8)
    cv2.rectangle(frame, (20, 20), (60, 60), (255, 255, 255), -1)
    cv2.rectangle(frame, (90, 40), (140, 100), (255, 255, 255), -1)
    return frame


class TestFeatureExtraction(unittest.TestCase):

    def test_detects_rectangle_corners(self):
        config = DetectorConfig()
        points = extract_frame_points(synthetic_frame(), config)

        self.assertEqual(points.ndim, 2)
        self.assertEqual(points.shape[1], 2)
        self.assertGreaterEqual(len(points), 4)
        self.assertLessEqual(len(points), 2 * config.max_corners)
        self.assertTrue(np.all(points[:, 0] >= 0) and np.all(points[:, 0] < 160))
        self.assertTrue(np.all(points[:, 1] >= 0) and np.all(points[:, 1] < 120))

    def test_blank_frame_has_no_points(self):
        points = extract_frame_points(np.zeros((64, 64, 3), dtype=np.uint8))
        self.assertEqual(points.shape, (0, 2))

    def test_grayscale_frame_rejected(self):
        with self.assertRaises(ValueError):
            extract_frame_points(np.zeros((64, 64), dtype=np.uint8))

    def test_detector_respects_max_corners(self):
        gray = cv2.cvtColor(synthetic_frame(), cv2.COLOR_BGR2GRAY)
        points = detect_feature_points(gray, 5, 3, 5.0, 0.01)
        self.assertLessEqual(len(points), 3)
        self.assertEqual(points.dtype, np.float64)

    def test_hue_pass_uses_scaled_distance(self):
        config = DetectorConfig(min_distance=4.0, hue_distance_scale=3.0)
        calls = []

        def fake_detect(image, window_size, max_corners, min_distance, quality_level):
            calls.append((min_distance, quality_level))
            return np.array([[1.0, 1.0]]) if len(calls) == 1 else np.array([[2.0, 2.0]])

        with patch('utils.feature_extraction.detect_feature_points', side_effect=fake_detect):
            points = extract_frame_points(synthetic_frame(), config)

        self.assertEqual(calls, [(12.0, 0.2), (4.0, 0.05)])
        np.testing.assert_allclose(points, [[1.0, 1.0], [2.0, 2.0]])

    def test_preprocess_shapes(self):
        h, v = preprocess_channels(synthetic_frame(), DetectorConfig())
        self.assertEqual(h.shape, (120, 160))
        self.assertEqual(v.shape, (120, 160))
        self.assertEqual(h.dtype, np.uint8)

    def test_config_from_env(self):
        with patch.dict(os.environ, {'MMT_MAX_CORNERS': '32', 'MMT_HUE_QUALITY': '0.1'}):
            config = DetectorConfig.from_env()
        self.assertEqual(config.max_corners, 32)
        self.assertEqual(config.hue_quality, 0.1)
        self.assertEqual(config.value_quality, 0.05)


class TestBackProjection(unittest.TestCase):

    def test_two_populations_project_equally(self):
        image = np.zeros((40, 40), dtype=np.uint8)
        image[:, :20] = 10
        image[:, 20:] = 100

        bproj = calc_hist_back_projection(image)

        self.assertEqual(bproj.shape, image.shape)
        self.assertEqual(bproj.dtype, np.uint8)
        self.assertGreater(int(bproj[0, 0]), 0)
        self.assertEqual(int(bproj[0, 0]), int(bproj[0, 39]))

    def test_unpopulated_values_project_lower(self):
        image = np.full((20, 20), 10, dtype=np.uint8)
        image[0, 0] = 170

        bproj = calc_hist_back_projection(image)
        self.assertGreater(int(bproj[5, 5]), int(bproj[0, 0]))


class TestRendering(unittest.TestCase):

    def test_draws_edges_and_vertices(self):
        canvas = np.zeros((100, 100, 3), dtype=np.uint8)
        frag = MeshFragment([[10, 10], [60, 10], [10, 60]])

        out = draw_meshes(canvas, [frag], max_edge_length=100.0)

        self.assertIs(out, canvas)
        self.assertGreater(int(canvas.sum()), 0)
        # a pixel on the (10,10)-(60,10) edge
        self.assertGreater(int(canvas[10, 35].sum()), 0)

    def test_long_edges_not_drawn(self):
        canvas = np.zeros((100, 100, 3), dtype=np.uint8)
        frag = MeshFragment([[10, 10], [90, 10]])
        draw_meshes(canvas, [frag], max_edge_length=20.0)
        self.assertEqual(int(canvas[10, 50].sum()), 0)

    def test_trails(self):
        canvas = np.zeros((50, 50, 3), dtype=np.uint8)
        frag = MeshFragment([[5, 5]])
        frag.update(MeshFragment([[40, 5]]))
        draw_trails(canvas, [frag])
        self.assertGreater(int(canvas[5, 20].sum()), 0)

    def test_labels_skip_untracked(self):
        canvas = np.zeros((60, 60, 3), dtype=np.uint8)
        draw_labels(canvas, [MeshFragment([[20, 30]])])
        self.assertEqual(int(canvas.sum()), 0)

        tracked = MeshFragment([[20, 30]])
        tracked.fragment_id = 7
        draw_labels(canvas, [tracked])
        self.assertGreater(int(canvas[18:30, 22:40].sum()), 0)


if __name__ == "__main__":
    unittest.main(verbosity=2)
