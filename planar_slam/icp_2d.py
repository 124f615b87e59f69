"""Point-to-point and point-to-line 2D ICP by Gauss-Newton."""

from __future__ import annotations

import logging
import math

import numpy as np
from scipy.spatial import cKDTree

from planar_slam.geometry import SE2, Scan2d, fit_line_2d

log = logging.getLogger(__name__)

_ITERATIONS = 10
_MIN_EFFECTIVE_POINTS = 20


class Icp2d:
    """Align a source scan to a target scan. Set the target first, then the source."""

    def __init__(self):
        self._target: Scan2d | None = None
        self._source: Scan2d | None = None
        self._cloud = np.zeros((0, 2))
        self._tree: cKDTree | None = None

    def set_target(self, target: Scan2d) -> None:
        self._target = target
        pts = [(r * math.cos(a), r * math.sin(a)) for _, r, a in target.valid_points()]
        self._cloud = np.array(pts, dtype=float).reshape(-1, 2)
        self._tree = cKDTree(self._cloud) if len(self._cloud) else None

    def set_source(self, source: Scan2d) -> None:
        self._source = source

    def _source_points(self):
        beams = list(self._source.valid_points()) if self._source else []
        r = np.array([b[1] for b in beams], dtype=float)
        a = np.array([b[2] for b in beams], dtype=float)
        return r, a

    def _run(self, init_pose: SE2, accumulate) -> SE2 | None:
        pose = init_pose
        last_cost = 0.0
        r, a = self._source_points()
        if self._tree is None or len(r) == 0:
            return None
        local = np.column_stack([r * np.cos(a), r * np.sin(a)])
        for it in range(_ITERATIONS):
            theta = pose.theta
            world = pose.transform(local)
            h, b, cost, count = accumulate(world, r, a, theta)
            if count < _MIN_EFFECTIVE_POINTS:
                return None
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
        log.info("estimated pose: %g %g, theta: %g", pose.x, pose.y, pose.theta)
        return pose

    def align_gauss_newton(self, init_pose: SE2 | None = None) -> SE2 | None:
        """Point-to-point ICP; the aligned pose, or None when too few matches."""
        max_dis2 = 0.01

        def accumulate(world, r, a, theta):
            h = np.zeros((3, 3))
            b = np.zeros(3)
            cost = 0.0
            count = 0
            dist, idx = self._tree.query(world, k=1)
            for p, d, j, ri, ai in zip(world, dist, idx, r, a):
                if not np.isfinite(d) or d * d >= max_dis2:
                    continue
                count += 1
                jac = np.array([[1.0, 0.0], [0.0, 1.0],
                                [-ri * math.sin(ai + theta), ri * math.cos(ai + theta)]])
                e = p - self._cloud[j]
                h += jac @ jac.T
                b += -jac @ e
                cost += float(e @ e)
            return h, b, cost, count

        return self._run(init_pose or SE2(), accumulate)

    def align_gauss_newton_point2plane(self, init_pose: SE2 | None = None) -> SE2 | None:
        """Point-to-line ICP; the aligned pose, or None when too few matches."""
        max_dis = 0.3

        def accumulate(world, r, a, theta):
            h = np.zeros((3, 3))
            b = np.zeros(3)
            cost = 0.0
            count = 0
            k = min(5, len(self._cloud))
            dist, idx = self._tree.query(world, k=k)
            dist = np.asarray(dist).reshape(len(world), -1)
            idx = np.asarray(idx).reshape(len(world), -1)
            for p, ds, js, ri, ai in zip(world, dist, idx, r, a):
                near = [self._cloud[j] for d, j in zip(ds, js) if np.isfinite(d) and d * d < max_dis]
                if len(near) < 3:
                    continue
                coeffs = fit_line_2d(near)
                if coeffs is None:
                    continue
                la, lb, lc = coeffs
                count += 1
                jac = np.array([la, lb,
                                -la * ri * math.sin(ai + theta) + lb * ri * math.cos(ai + theta)])
                e = la * p[0] + lb * p[1] + lc
                h += np.outer(jac, jac)
                b += -jac * e
                cost += e * e
            return h, b, cost, count

        return self._run(init_pose or SE2(), accumulate)