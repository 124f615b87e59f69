"""Planar rigid transforms, 2D laser scans and small numeric helpers."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterator, Sequence

import numpy as np


def normalize_angle(angle: float) -> float:
    """Wrap an angle into the interval (-pi, pi]."""
    wrapped = math.atan2(math.sin(angle), math.cos(angle))
    if wrapped == -math.pi:
        wrapped = math.pi
    return wrapped


@dataclass(frozen=True)
class SE2:
    """A rigid transform in the plane: rotation by ``theta`` then translation."""

    x: float = 0.0
    y: float = 0.0
    theta: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "x", float(self.x))
        object.__setattr__(self, "y", float(self.y))
        object.__setattr__(self, "theta", normalize_angle(float(self.theta)))

    @property
    def translation(self) -> np.ndarray:
        return np.array([self.x, self.y])

    @property
    def rotation(self) -> np.ndarray:
        c, s = math.cos(self.theta), math.sin(self.theta)
        return np.array([[c, -s], [s, c]])

    def inverse(self) -> "SE2":
        c, s = math.cos(self.theta), math.sin(self.theta)
        return SE2(-(c * self.x + s * self.y), s * self.x - c * self.y, -self.theta)

    def transform(self, point) -> np.ndarray:
        """Apply the transform to a 2D point (or an N x 2 array of points)."""
        p = np.asarray(point, dtype=float)
        return p @ self.rotation.T + self.translation

    def log(self) -> np.ndarray:
        """Tangent vector (upsilon_x, upsilon_y, theta) of this transform."""
        theta = self.theta
        half = 0.5 * theta
        if abs(theta) < 1e-10:
            half_by_tan = 1.0 - theta * theta / 12.0
        else:
            half_by_tan = -(half * math.sin(theta)) / (math.cos(theta) - 1.0)
        v_inv = np.array([[half_by_tan, half], [-half, half_by_tan]])
        upsilon = v_inv @ self.translation
        return np.array([upsilon[0], upsilon[1], theta])

    def __mul__(self, other):
        if isinstance(other, SE2):
            t = self.transform(other.translation)
            return SE2(t[0], t[1], self.theta + other.theta)
        return self.transform(other)


@dataclass
class Scan2d:
    """A single planar laser scan."""

    angle_min: float = 0.0
    angle_max: float = 0.0
    angle_increment: float = 0.0
    range_min: float = 0.0
    range_max: float = 0.0
    ranges: list = field(default_factory=list)

    def angle_at(self, index: int) -> float:
        return self.angle_min + index * self.angle_increment

    def is_valid(self, r: float) -> bool:
        return self.range_min <= r <= self.range_max

    def valid_points(self) -> Iterator[tuple[int, float, float]]:
        """Yield (index, range, angle) for every beam inside the valid range."""
        for index, r in enumerate(self.ranges):
            if self.is_valid(r):
                yield index, float(r), self.angle_at(index)


def bilinear_value(image: np.ndarray, x: float, y: float) -> float:
    """Bilinearly interpolated value of ``image`` at column ``x``, row ``y``."""
    rows, cols = image.shape[:2]
    x0 = math.floor(x)
    y0 = math.floor(y)
    xx = x - x0
    yy = y - y0

    def clamp(v: int, hi: int) -> int:
        return min(max(v, 0), hi - 1)

    xa, xb = clamp(x0, cols), clamp(x0 + 1, cols)
    ya, yb = clamp(y0, rows), clamp(y0 + 1, rows)
    return float(
        (1 - xx) * (1 - yy) * image[ya, xa]
        + xx * (1 - yy) * image[ya, xb]
        + (1 - xx) * yy * image[yb, xa]
        + xx * yy * image[yb, xb]
    )


def fit_line_2d(points: Sequence) -> tuple[float, float, float] | None:
    """Fit a line a*x + b*y + c = 0 to the points; None if fewer than two."""
    pts = np.asarray(points, dtype=float).reshape(-1, 2)
    if len(pts) < 2:
        return None
    a = np.hstack([pts, np.ones((len(pts), 1))])
    _, _, vt = np.linalg.svd(a)
    coeffs = vt[-1]
    return float(coeffs[0]), float(coeffs[1]), float(coeffs[2])