"""Drawing 2D scans onto RGB images."""

from __future__ import annotations

import math

import numpy as np

from planar_slam.geometry import SE2, Scan2d

_EDGE_MARGIN = 30 * math.pi / 180.0


def _draw_ring(image: np.ndarray, cx: float, cy: float, radius: float, thickness: int, color) -> None:
    rows, cols = image.shape[:2]
    yy, xx = np.mgrid[0:rows, 0:cols]
    dist = np.hypot(xx - cx, yy - cy)
    mask = np.abs(dist - radius) <= thickness / 2.0
    image[mask] = color


def visualize_2d_scan(
    scan: Scan2d,
    pose: SE2,
    image: np.ndarray | None = None,
    color=(0, 0, 0),
    image_size: int = 800,
    resolution: float = 20.0,
    pose_submap: SE2 | None = None,
) -> np.ndarray:
    """Draw ``scan`` seen from ``pose`` onto ``image`` and return the image.

    A white ``image_size`` square image is created when ``image`` is None.
    """
    if image is None:
        image = np.full((image_size, image_size, 3), 255, dtype=np.uint8)
    pose_submap = pose_submap or SE2()
    color = np.asarray(color, dtype=np.uint8)
    rows, cols = image.shape[:2]
    to_submap = pose_submap.inverse()
    half = image_size // 2

    for _, r, angle in scan.valid_points():
        if angle < scan.angle_min + _EDGE_MARGIN or angle > scan.angle_max - _EDGE_MARGIN:
            continue
        p = to_submap * (pose * np.array([r * math.cos(angle), r * math.sin(angle)]))
        ix = int(p[0] * resolution + half)
        iy = int(p[1] * resolution + half)
        if 0 <= ix < cols and 0 <= iy < rows:
            image[iy, ix] = color

    center = (to_submap * pose.translation) * float(resolution) + half
    _draw_ring(image, center[0], center[1], 5, 2, color)
    return image