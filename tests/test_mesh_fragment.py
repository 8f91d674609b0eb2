"""
Mesh Fragment Model Tests
=========================

Usage:
    python -m pytest tests/test_mesh_fragment.py -v
    python tests/test_mesh_fragment.py
"""

import os
import sys
import unittest

import numpy as np

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.errors import EmptyFragmentError, MeshTrackingError
from core.mesh_fragment import MeshFragment, build_mesh, proximity_components


class TestConstruction(unittest.TestCase):

    def test_empty_points_rejected(self):
        with self.assertRaises(EmptyFragmentError):
            MeshFragment([])
        with self.assertRaises(EmptyFragmentError):
            MeshFragment(np.empty((0, 2)))

    def test_error_is_value_error(self):
        """Callers catching ValueError also catch degenerate fragments."""
        with self.assertRaises(ValueError):
            MeshFragment([])
        with self.assertRaises(MeshTrackingError):
            MeshFragment([])

    def test_malformed_points_rejected(self):
        with self.assertRaises(EmptyFragmentError):
            MeshFragment([[1.0, 2.0, 3.0]])
        with self.assertRaises(EmptyFragmentError):
            MeshFragment([[np.nan, 1.0]])

    def test_accepts_opencv_corner_layout(self):
        corners = np.array([[[1.0, 2.0]], [[3.0, 4.0]]], dtype=np.float32)
        frag = MeshFragment(corners)
        self.assertEqual(frag.points.shape, (2, 2))
        self.assertEqual(len(frag), 2)

    def test_points_are_read_only(self):
        frag = MeshFragment([[0.0, 0.0], [1.0, 1.0]])
        with self.assertRaises(ValueError):
            frag.points[0, 0] = 5.0

    def test_initial_state(self):
        frag = MeshFragment([[0.0, 0.0]])
        self.assertEqual(frag.absence_count, 0)
        self.assertIsNone(frag.fragment_id)
        self.assertEqual(len(frag.history), 1)


class TestCentroid(unittest.TestCase):

    def test_centroid_is_mean(self):
        frag = MeshFragment([[0, 0], [2, 0], [2, 2], [0, 2]])
        np.testing.assert_allclose(frag.centroid(), [1.0, 1.0])

    def test_centroid_is_pure(self):
        frag = MeshFragment([[0, 0], [4, 2]])
        first = frag.centroid().copy()
        frag.centroid()
        np.testing.assert_allclose(frag.centroid(), first)
        self.assertEqual(frag.absence_count, 0)


class TestSplit(unittest.TestCase):

    def test_two_clusters(self):
        frag = MeshFragment([[0, 0], [1, 0], [100, 100], [0, 1], [101, 100]])
        parts = frag.split(10.0)

        self.assertEqual(len(parts), 2)
        np.testing.assert_allclose(parts[0].points, [[0, 0], [1, 0], [0, 1]])
        np.testing.assert_allclose(parts[1].points, [[100, 100], [101, 100]])

    def test_isolated_point_becomes_singleton(self):
        frag = MeshFragment([[0, 0], [1, 0], [50, 50], [0, 1]])
        parts = frag.split(10.0)

        self.assertEqual([len(p) for p in parts], [3, 1])
        np.testing.assert_allclose(parts[1].points, [[50, 50]])

    def test_extent_bounded_by_max_edge_length(self):
        # A densely connected line much longer than the limit
        line = [[float(x), 0.0] for x in range(21)]
        frag = MeshFragment(line)
        parts = frag.split(5.0, proximity_threshold=10.0)

        self.assertGreater(len(parts), 1)
        for p in parts:
            extent = p.points.max(axis=0) - p.points.min(axis=0)
            self.assertLessEqual(extent.max(), 5.0)
        self.assertEqual(sum(len(p) for p in parts), 21)

        covered = np.vstack([p.points for p in parts])
        self.assertEqual(sorted(covered[:, 0].tolist()), [float(x) for x in range(21)])

    def test_proximity_is_strict(self):
        # Exactly at the threshold is not connected
        frag = MeshFragment([[0, 0], [5, 0]])
        self.assertEqual(len(frag.split(5.0)), 2)
        self.assertEqual(len(frag.split(5.0, proximity_threshold=5.01)), 1)

    def test_split_does_not_mutate_source(self):
        frag = MeshFragment([[0, 0], [100, 0], [200, 0]])
        before = frag.points.copy()
        frag.split(10.0)
        np.testing.assert_array_equal(frag.points, before)

    def test_split_single_point(self):
        parts = MeshFragment([[3, 4]]).split(10.0)
        self.assertEqual(len(parts), 1)
        np.testing.assert_allclose(parts[0].centroid(), [3, 4])

    def test_negative_edge_length_rejected(self):
        with self.assertRaises(ValueError):
            MeshFragment([[0, 0]]).split(-1.0)

    def test_proximity_components_ordering(self):
        pts = np.array([[50.0, 50.0], [0.0, 0.0], [51.0, 50.0], [1.0, 0.0]])
        groups = proximity_components(pts, 5.0)
        self.assertEqual([g.tolist() for g in groups], [[0, 2], [1, 3]])


class TestUpdate(unittest.TestCase):

    def test_update_takes_geometry_and_resets_absence(self):
        tracked = MeshFragment([[0, 0], [2, 2]])
        tracked.fragment_id = 7
        tracked.mark_absent()
        tracked.mark_absent()
        self.assertEqual(tracked.absence_count, 2)

        observed = MeshFragment([[10, 10], [12, 12], [14, 14]])
        tracked.update(observed)

        self.assertEqual(tracked.absence_count, 0)
        self.assertEqual(tracked.fragment_id, 7)
        self.assertEqual(len(tracked), 3)
        np.testing.assert_allclose(tracked.centroid(), [12, 12])

    def test_update_records_history(self):
        tracked = MeshFragment([[0, 0]])
        tracked.update(MeshFragment([[1, 1]]))
        tracked.update(MeshFragment([[2, 2]]))

        self.assertEqual(len(tracked.history), 3)
        np.testing.assert_allclose(tracked.history[0], [0, 0])
        np.testing.assert_allclose(tracked.history[-1], [2, 2])

    def test_history_is_bounded(self):
        tracked = MeshFragment([[0, 0]], history_size=3)
        for i in range(10):
            tracked.update(MeshFragment([[i, i]]))
        self.assertEqual(len(tracked.history), 3)

    def test_mark_absent_increments_once(self):
        frag = MeshFragment([[0, 0]])
        frag.mark_absent()
        self.assertEqual(frag.absence_count, 1)


class TestEdges(unittest.TestCase):

    def test_triangle_edges(self):
        frag = MeshFragment([[0, 0], [1, 0], [0, 1]])
        self.assertEqual(frag.edges(), [(0, 1), (0, 2), (1, 2)])

    def test_long_edges_dropped(self):
        frag = MeshFragment([[0, 0], [1, 0], [0, 1]])
        self.assertEqual(frag.edges(1.2), [(0, 1), (0, 2)])

    def test_collinear_points_fall_back_to_chain(self):
        frag = MeshFragment([[2, 0], [0, 0], [1, 0]])
        self.assertEqual(frag.edges(), [(0, 2), (1, 2)])

    def test_single_point_has_no_edges(self):
        self.assertEqual(MeshFragment([[0, 0]]).edges(), [])


class TestBuildMesh(unittest.TestCase):

    def test_empty_input_gives_none(self):
        self.assertIsNone(build_mesh([]))
        self.assertIsNone(build_mesh(np.empty((0, 2))))
        self.assertIsNone(build_mesh(None))

    def test_all_points_in_one_fragment(self):
        mesh = build_mesh([[0, 0], [500, 500], [10, 10]])
        self.assertEqual(len(mesh), 3)

    def test_copy_is_detached(self):
        frag = MeshFragment([[0, 0]])
        frag.fragment_id = 3
        clone = frag.copy()
        clone.mark_absent()
        clone.update(MeshFragment([[5, 5]]))

        self.assertEqual(clone.fragment_id, 3)
        self.assertEqual(len(frag.history), 1)
        np.testing.assert_allclose(frag.centroid(), [0, 0])


if __name__ == "__main__":
    unittest.main(verbosity=2)
