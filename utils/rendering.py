"""
Mesh overlay drawing. Purely observational: reads fragments, writes pixels.
"""

import cv2
import numpy as np

COLOR_VERTEX = (100, 100, 200)
COLOR_EDGE = (0, 0, 240)
COLOR_TEXT = (255, 255, 255)


def _pt(p):
    return int(round(float(p[0]))), int(round(float(p[1])))


def draw_mesh(canvas, fragment, vertex_color=COLOR_VERTEX, edge_color=COLOR_EDGE,
              max_edge_length=None, radius=2, thickness=1):
    pts = fragment.points
    for i, j in fragment.edges(max_edge_length):
        cv2.line(canvas, _pt(pts[i]), _pt(pts[j]), edge_color, thickness, cv2.LINE_AA)
    for p in pts:
        cv2.circle(canvas, _pt(p), radius, vertex_color, -1)
    return canvas


def draw_meshes(canvas, fragments, vertex_color=COLOR_VERTEX, edge_color=COLOR_EDGE,
                max_edge_length=None):
    """Draw every fragment onto canvas in place and return it."""
    for frag in fragments:
        draw_mesh(canvas, frag, vertex_color, edge_color, max_edge_length)
    return canvas


def draw_labels(canvas, fragments, color=COLOR_TEXT):
    """Write each tracked fragment's id next to its centroid."""
    for frag in fragments:
        if frag.fragment_id is None:
            continue
        cx, cy = _pt(frag.centroid())
        cv2.putText(canvas, str(frag.fragment_id), (cx + 4, cy - 4), 0, 0.4, color, 1)
    return canvas


def draw_trails(canvas, fragments, color=(0, 255, 255), thickness=1):
    """Polyline through each fragment's centroid history."""
    for frag in fragments:
        if len(frag.history) < 2:
            continue
        trail = np.round(np.array(frag.history)).astype(np.int32).reshape(-1, 1, 2)
        cv2.polylines(canvas, [trail], False, color, thickness, cv2.LINE_AA)
    return canvas
