"""Coarse-to-fine scan matching against a pyramid of likelihood fields."""

from __future__ import annotations

import logging

import numpy as np

from planar_slam.geometry import SE2, Scan2d
from planar_slam.graph import EdgeSE2LikelihoodField, HuberKernel, Optimizer, VertexSE2
from planar_slam.likelihood_field import (
    FIELD_MAX,
    _matching_beams,
    _stamp_model,
    build_field_model,
    field_to_image,
)

log = logging.getLogger(__name__)

_FIELD_SIZES = (125, 250, 500, 1000)
_RK_DELTA = (0.2, 0.3, 0.6, 0.8)
_RANGE_TH = 15.0
_OCCU_BORDER = 25
_MIN_INLIERS = 100
_INLIER_RATIO_TH = 0.4


class MRLikelihoodField:
    """A four-level likelihood field pyramid built from an occupancy grid."""

    levels = 4
    resolutions = (2.5, 5.0, 10.0, 20.0)  # pixels per metre
    ratios = (0.125, 0.25, 0.5, 1.0)  # scale relative to the occupancy grid

    def __init__(self):
        self.model = build_field_model()
        self.fields = [np.full((size, size), FIELD_MAX, dtype=np.float32) for size in _FIELD_SIZES]
        self.pose = SE2()
        self.source: Scan2d | None = None
        self.num_inliers: list[int] = []
        self.inlier_ratios: list[float] = []

    def set_pose(self, pose: SE2) -> None:
        self.pose = pose

    def set_source_scan(self, scan: Scan2d) -> None:
        self.source = scan

    def resolution(self, level: int = 0) -> float:
        return self.resolutions[level]

    def set_field_image_from_occu_map(self, occu_map) -> None:
        """Lower every level of the pyramid around the occupied (< 127) cells."""
        grid = np.asarray(occu_map)
        rows, cols = grid.shape[:2]
        b = _OCCU_BORDER
        if rows <= 2 * b or cols <= 2 * b:
            return
        ys, xs = np.nonzero(grid[b:rows - b, b:cols - b] < 127)
        xs = xs + b
        ys = ys + b
        for field, ratio in zip(self.fields, self.ratios):
            _stamp_model(field, xs * ratio, ys * ratio, self.model)

    def align_in_level(self, level: int, init_pose: SE2) -> SE2 | None:
        """Align the source in one pyramid level; the pose, or None when rejected."""
        optimizer = Optimizer()
        vertex = VertexSE2(id=0, estimate=init_pose)
        optimizer.add_vertex(vertex)
        delta = _RK_DELTA[level]

        edges = []
        r, a = _matching_beams(self.source, _RANGE_TH)
        for ri, ai in zip(r, a):
            edge = EdgeSE2LikelihoodField(self.fields[level], ri, ai, self.resolutions[level], vertex=vertex)
            if edge.is_outside():
                continue
            edge.robust_kernel = HuberKernel(delta)
            optimizer.add_edge(edge)
            edges.append(edge)

        if not edges:
            return None

        optimizer.optimize(10)

        inliers = sum(1 for e in edges if e.level == 0 and e.chi2() < delta)
        ratio = inliers / len(edges)
        self.num_inliers.append(inliers)
        self.inlier_ratios.append(ratio)

        if inliers > _MIN_INLIERS and ratio > _INLIER_RATIO_TH:
            return vertex.estimate
        return None

    def align_g2o(self, init_pose: SE2 | None = None) -> SE2 | None:
        """Align level by level from coarse to fine; None if any level fails."""
        self.num_inliers = []
        self.inlier_ratios = []
        pose = init_pose or SE2()
        for level in range(self.levels):
            pose = self.align_in_level(level, pose)
            if pose is None:
                return None
        for level, (count, ratio) in enumerate(zip(self.num_inliers, self.inlier_ratios)):
            log.info("level %d inliers: %d, ratio: %g", level, count, ratio)
        return pose

    def get_field_image(self) -> list[np.ndarray]:
        return [field_to_image(field) for field in self.fields]