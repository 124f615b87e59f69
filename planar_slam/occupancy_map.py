"""Occupancy grid built by stamping laser frames into an 8-bit image."""

from __future__ import annotations

from enum import Enum, auto
from functools import lru_cache

import numpy as np

from planar_slam.geometry import SE2, Scan2d

UNKNOWN = 127
_OCCUPIED_LIMIT = 117
_FREE_LIMIT = 137


class GridMethod(Enum):
    """How free space between the sensor and the endpoints is filled."""

    MODEL_POINTS = auto()
    BRESENHAM = auto()


@lru_cache(maxsize=None)
def _grid_model(size: int, inv_resolution: float):
    """Pixel offsets in a square template with their metric range and bearing."""
    offsets = np.arange(-size, size + 1)
    dx, dy = np.meshgrid(offsets, offsets, indexing="ij")
    dx = dx.ravel()
    dy = dy.ravel()
    rng = (np.sqrt(dx * dx + dy * dy) * inv_resolution).astype(np.float32)
    ang = np.arctan2(dy, dx)
    for arr in (dx, dy, rng, ang):
        arr.flags.writeable = False
    return dx, dy, rng, ang


def _point_keys(xs, ys) -> np.ndarray:
    return np.asarray(xs, dtype=np.int64) * (1 << 32) + np.asarray(ys, dtype=np.int64)


class OccupancyMap:
    """An 8-bit occupancy grid centred on the map pose (127 unknown, lower occupied)."""

    CLOSEST_TH = 0.2
    ENDPOINT_CLOSE_TH = 0.1
    RESOLUTION = 20.0
    INV_RESOLUTION = float(np.float32(0.05))
    IMAGE_SIZE = 1000
    MODEL_SIZE = 400

    def __init__(self):
        self.pose = SE2()
        self.occupancy_grid = np.full((self.IMAGE_SIZE, self.IMAGE_SIZE), UNKNOWN, dtype=np.uint8)
        self._center = np.array([self.IMAGE_SIZE // 2, self.IMAGE_SIZE // 2], dtype=float)
        self._has_outside = False

    @property
    def resolution(self) -> float:
        return self.RESOLUTION

    def set_pose(self, pose: SE2) -> None:
        self.pose = pose

    def has_outside_points(self) -> bool:
        return self._has_outside

    def world_to_image(self, pt) -> np.ndarray:
        """Integer image coordinates of world point(s)."""
        p = self.pose.inverse().transform(np.asarray(pt, dtype=float))
        return np.trunc(p * self.RESOLUTION + self._center).astype(np.int64)

    @staticmethod
    def _find_ranges(angles, scan: Scan2d) -> np.ndarray:
        angles = np.asarray(angles, dtype=float)
        ranges = np.asarray(scan.ranges, dtype=float)
        n = len(ranges)
        out = np.zeros_like(angles)
        if n == 0:
            return out
        ang = np.arctan2(np.sin(angles), np.cos(angles))
        in_span = (ang >= scan.angle_min) & (ang <= scan.angle_max)
        f = np.where(in_span, (ang - scan.angle_min) / scan.angle_increment, -1.0)
        idx = np.trunc(f)
        ok = in_span & (idx >= 0) & (idx < n)
        if not ok.any():
            return out
        i = idx[ok].astype(np.int64)
        s = f[ok] - i
        ip = i + 1
        last = ip >= n
        r1 = ranges[i]
        r2 = ranges[np.minimum(ip, n - 1)]
        valid1 = (r1 >= scan.range_min) & (r1 <= scan.range_max)
        valid2 = (r2 >= scan.range_min) & (r2 <= scan.range_max)
        nearest = np.where(s > 0.5, r2, r1)
        interp = r1 * (1 - s) + r2 * s
        out[ok] = np.select(
            [last, ~valid2, ~valid1, np.abs(r1 - r2) > 0.3],
            [r1, r1, r2, nearest],
            interp,
        )
        return out

    def find_range_in_angle(self, angle: float, scan: Scan2d) -> float:
        """Measured range along a bearing in the scan frame; 0 when not covered."""
        return float(self._find_ranges(np.array([angle]), scan)[0])

    def set_point(self, pt, occupy: bool) -> None:
        """Nudge one cell towards occupied or free, within fixed limits."""
        x, y = int(pt[0]), int(pt[1])
        rows, cols = self.occupancy_grid.shape
        if x < 0 or y < 0 or x >= cols or y >= rows:
            if occupy:
                self._has_outside = True
            return
        value = self.occupancy_grid[y, x]
        if occupy:
            if value > _OCCUPIED_LIMIT:
                self.occupancy_grid[y, x] = value - 1
        elif value < _FREE_LIMIT:
            self.occupancy_grid[y, x] = value + 1

    def _free_cells(self, xs: np.ndarray, ys: np.ndarray) -> None:
        rows, cols = self.occupancy_grid.shape
        ok = (xs >= 0) & (ys >= 0) & (xs < cols) & (ys < rows)
        xs, ys = xs[ok], ys[ok]
        values = self.occupancy_grid[ys, xs]
        grow = values < _FREE_LIMIT
        self.occupancy_grid[ys[grow], xs[grow]] = values[grow] + 1

    def bresenham_filling(self, p1, p2) -> None:
        """Mark the cells on the line from p1 towards p2 as free, excluding p2."""
        x, y = int(p1[0]), int(p1[1])
        end = (int(p2[0]), int(p2[1]))
        dx = end[0] - x
        dy = end[1] - y
        ux = 1 if dx > 0 else -1
        uy = 1 if dy > 0 else -1
        dx, dy = abs(dx), abs(dy)
        if dx > dy:
            e = -dx
            for _ in range(dx):
                x += ux
                e += 2 * dy
                if e >= 0:
                    y += uy
                    e -= 2 * dx
                if (x, y) != end:
                    self.set_point((x, y), False)
        else:
            e = -dy
            for _ in range(dy):
                y += uy
                e += 2 * dx
                if e >= 0:
                    x += ux
                    e -= 2 * dy
                if (x, y) != end:
                    self.set_point((x, y), False)

    def _fill_with_model(self, start, theta: float, scan: Scan2d, endpoints) -> None:
        dx, dy, rng, ang = _grid_model(self.MODEL_SIZE, self.INV_RESOLUTION)
        px = start[0] + dx
        py = start[1] + dy
        measured = self._find_ranges(ang - theta, scan)
        measured_valid = (measured >= scan.range_min) & (measured <= scan.range_max)
        if endpoints:
            ends = np.array(endpoints, dtype=np.int64)
            is_endpoint = np.isin(_point_keys(px, py), _point_keys(ends[:, 0], ends[:, 1]))
        else:
            is_endpoint = np.zeros(px.shape, dtype=bool)
        free = (
            (rng < self.CLOSEST_TH)
            | (~measured_valid & (rng < self.ENDPOINT_CLOSE_TH))
            | (measured_valid & (measured > rng) & ~is_endpoint)
        )
        self._free_cells(px[free], py[free])

    def add_lidar_frame(self, frame, method: GridMethod = GridMethod.BRESENHAM) -> None:
        """Stamp a frame's scan into the grid using its world pose."""
        scan = frame.scan
        theta = (self.pose.inverse() * frame.pose).theta
        self._has_outside = False

        local = np.array(
            [(r * np.cos(a), r * np.sin(a)) for _, r, a in scan.valid_points()], dtype=float
        ).reshape(-1, 2)
        if len(local):
            ends = self.world_to_image(frame.pose.transform(local))
            endpoints = sorted(set(map(tuple, ends.tolist())))
        else:
            endpoints = []

        start = self.world_to_image(frame.pose.translation)
        if method is GridMethod.MODEL_POINTS:
            self._fill_with_model(start, theta, scan, endpoints)
        else:
            for pt in endpoints:
                self.bresenham_filling(start, pt)

        for pt in endpoints:
            self.set_point(pt, True)

    def get_occupancy_grid_black_white(self) -> np.ndarray:
        """RGB image: unknown grey, occupied black, free white."""
        g = self.occupancy_grid
        grey = np.where(g == UNKNOWN, 127, np.where(g < UNKNOWN, 0, 255)).astype(np.uint8)
        return np.repeat(grey[:, :, None], 3, axis=2)