"""Likelihood-field scan matching against a single-resolution distance field."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from planar_slam.geometry import SE2, Scan2d
from planar_slam.graph import EdgeSE2LikelihoodField, HuberKernel, Optimizer, VertexSE2

log = logging.getLogger(__name__)

FIELD_SIZE = 1000
FIELD_MAX = 30.0
MODEL_RADIUS = 20

_EDGE_MARGIN = 30 * math.pi / 180.0
_ITERATIONS = 10
_MIN_EFFECTIVE_POINTS = 20
_IMAGE_BORDER = 20
_OCCU_BORDER = 25
_G2O_RANGE_TH = 15.0
_G2O_RK_DELTA = 0.8


@dataclass(frozen=True)
class ModelPoint:
    """One cell of the distance template: pixel offset and its distance."""

    dx: int
    dy: int
    residual: float


def build_field_model(radius: int = MODEL_RADIUS) -> list[ModelPoint]:
    """Square template of pixel offsets within ``radius`` and their distances."""
    return [
        ModelPoint(x, y, math.sqrt(x * x + y * y))
        for x in range(-radius, radius + 1)
        for y in range(-radius, radius + 1)
    ]


def _empty_field(size: int = FIELD_SIZE) -> np.ndarray:
    return np.full((size, size), FIELD_MAX, dtype=np.float32)


def _stamp_model(field: np.ndarray, xs, ys, model) -> None:
    """Lower ``field`` to the template distance around every (xs, ys) pixel."""
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)
    if xs.size == 0:
        return
    rows, cols = field.shape[:2]
    for mp in model:
        xx = np.trunc(xs + mp.dx).astype(np.int64)
        yy = np.trunc(ys + mp.dy).astype(np.int64)
        ok = (xx >= 0) & (xx < cols) & (yy >= 0) & (yy < rows)
        if not ok.any():
            continue
        xx, yy = xx[ok], yy[ok]
        field[yy, xx] = np.minimum(field[yy, xx], np.float32(mp.residual))


def _matching_beams(scan: Scan2d, max_range: float | None = None):
    """Valid beams away from the scan's angular edges, as (ranges, angles)."""
    beams = [
        (r, a)
        for _, r, a in scan.valid_points()
        if (max_range is None or r <= max_range)
        and scan.angle_min + _EDGE_MARGIN <= a <= scan.angle_max - _EDGE_MARGIN
    ]
    r = np.array([b[0] for b in beams], dtype=float)
    a = np.array([b[1] for b in beams], dtype=float)
    return r, a


def field_to_image(field: np.ndarray) -> np.ndarray:
    """Grey RGB rendering of a distance field (0 black, FIELD_MAX white)."""
    grey = (field.astype(float) * 255.0 / FIELD_MAX).astype(np.uint8)
    return np.repeat(grey[:, :, None], 3, axis=2)


class LikelihoodField:
    """Distance field built from a target scan or an occupancy map, used to align scans."""

    resolution = 20.0  # pixels per metre

    def __init__(self):
        self.model = build_field_model()
        self.field = _empty_field()
        self.pose = SE2()
        self.target: Scan2d | None = None
        self.source: Scan2d | None = None
        self._has_outside = False

    def set_target_scan(self, scan: Scan2d) -> None:
        self.target = scan
        self.field = _empty_field()
        half = FIELD_SIZE // 2
        pts = [(r * math.cos(a), r * math.sin(a)) for _, r, a in scan.valid_points()]
        arr = np.array(pts, dtype=float).reshape(-1, 2) * self.resolution + half
        _stamp_model(self.field, arr[:, 0], arr[:, 1], self.model)

    def set_source_scan(self, scan: Scan2d) -> None:
        self.source = scan

    def set_pose(self, pose: SE2) -> None:
        self.pose = pose

    def has_outside_points(self) -> bool:
        return self._has_outside

    def set_field_image_from_occu_map(self, occu_map: np.ndarray) -> None:
        """Rebuild the field from the occupied (< 127) cells of an occupancy grid."""
        self.field = _empty_field()
        grid = np.asarray(occu_map)
        rows, cols = grid.shape[:2]
        b = _OCCU_BORDER
        if rows <= 2 * b or cols <= 2 * b:
            return
        ys, xs = np.nonzero(grid[b:rows - b, b:cols - b] < 127)
        _stamp_model(self.field, xs + b, ys + b, self.model)

    def align_gauss_newton(self, init_pose: SE2 | None = None) -> SE2 | None:
        """Gauss-Newton alignment of the source; the pose, or None when too few points."""
        pose = init_pose or SE2()
        last_cost = 0.0
        self._has_outside = False
        r, a = _matching_beams(self.source)
        local = np.column_stack([r * np.cos(a), r * np.sin(a)])
        res = self.resolution
        rows, cols = self.field.shape
        b_ = _IMAGE_BORDER
        for it in range(_ITERATIONS):
            theta = pose.theta
            if len(local) == 0:
                return None
            world = pose.transform(local)
            pf = np.trunc(world * res + FIELD_SIZE // 2).astype(np.int64)
            inside = (pf[:, 0] >= b_) & (pf[:, 0] < cols - b_) & (pf[:, 1] >= b_) & (pf[:, 1] < rows - b_)
            if not inside.all():
                self._has_outside = True
            count = int(inside.sum())
            if count < _MIN_EFFECTIVE_POINTS:
                return None
            px, py = pf[inside, 0], pf[inside, 1]
            ri, ai = r[inside], a[inside]
            fld = self.field.astype(float)
            gx = 0.5 * (fld[py, px + 1] - fld[py, px - 1])
            gy = 0.5 * (fld[py + 1, px] - fld[py - 1, px])
            jac = np.column_stack([
                res * gx,
                res * gy,
                -res * gx * ri * np.sin(ai + theta) + res * gy * ri * np.cos(ai + theta),
            ])
            e = fld[py, px]
            h = jac.T @ jac
            b = -jac.T @ e
            cost = float(e @ e)
            try:
                dx = np.linalg.solve(h, b)
            except np.linalg.LinAlgError:
                break
            if math.isnan(dx[0]):
                break
            cost /= count
            if it > 0 and cost >= last_cost:
                break
            log.info("iter %d cost = %g, effect num: %d", it, cost, count)
            pose = SE2(pose.x + dx[0], pose.y + dx[1], pose.theta + dx[2])
            last_cost = cost
        return pose

    def align_g2o(self, init_pose: SE2 | None = None) -> SE2:
        """Robust graph-based alignment of the source; returns the optimized pose."""
        optimizer = Optimizer()
        vertex = VertexSE2(id=0, estimate=init_pose or SE2())
        optimizer.add_vertex(vertex)
        self._has_outside = False
        r, a = _matching_beams(self.source, _G2O_RANGE_TH)
        for ri, ai in zip(r, a):
            edge = EdgeSE2LikelihoodField(self.field, ri, ai, self.resolution, vertex=vertex)
            if edge.is_outside():
                self._has_outside = True
                continue
            edge.robust_kernel = HuberKernel(_G2O_RK_DELTA)
            optimizer.add_edge(edge)
        optimizer.optimize(10)
        return vertex.estimate

    def get_field_image(self) -> np.ndarray:
        return field_to_image(self.field)