"""A small SE2 graph optimizer with Levenberg-Marquardt and robust kernels."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from planar_slam.geometry import SE2, bilinear_value


@dataclass(eq=False)
class VertexSE2:
    """An SE2 pose being estimated."""

    id: int = 0
    estimate: SE2 = field(default_factory=SE2)
    fixed: bool = False

    def oplus(self, update) -> None:
        u = np.asarray(update, dtype=float)
        e = self.estimate
        self.estimate = SE2(e.x + u[0], e.y + u[1], e.theta + u[2])


@dataclass
class HuberKernel:
    delta: float = 1.0

    def robustify(self, chi2: float) -> tuple[float, float, float]:
        dsqr = self.delta * self.delta
        if chi2 <= dsqr:
            return chi2, 1.0, 0.0
        sqrte = math.sqrt(chi2)
        rho1 = self.delta / sqrte
        return 2 * sqrte * self.delta - dsqr, rho1, -0.5 * rho1 / chi2


@dataclass
class CauchyKernel:
    delta: float = 1.0

    def robustify(self, chi2: float) -> tuple[float, float, float]:
        dsqr = self.delta * self.delta
        dsqr_reci = 1.0 / dsqr
        aux = dsqr_reci * chi2 + 1.0
        rho1 = 1.0 / aux
        return dsqr * math.log(aux), rho1, -dsqr_reci * rho1 * rho1


class _Edge:
    dimension = 1

    def __init__(self, vertices, information):
        self.vertices = list(vertices)
        self.information = np.asarray(information, dtype=float).reshape(self.dimension, self.dimension)
        self.error = np.zeros(self.dimension)
        self.robust_kernel = None
        self.level = 0

    def _weighted_chi2(self) -> float:
        return float(self.error @ self.information @ self.error)


class EdgeSE2LikelihoodField(_Edge):
    """Unary edge scoring a laser endpoint against a likelihood field image."""

    IMAGE_BORDER = 10

    def __init__(self, field_image, range_, angle, resolution=10.0, vertex=None):
        super().__init__([vertex], np.eye(1))
        self.field_image = field_image
        self.range = float(range_)
        self.angle = float(angle)
        self.resolution = float(resolution)

    def _world_point(self) -> np.ndarray:
        pose = self.vertices[0].estimate
        return pose * np.array([self.range * math.cos(self.angle), self.range * math.sin(self.angle)])

    def _offset(self) -> np.ndarray:
        rows, cols = self.field_image.shape[:2]
        return np.array([rows // 2, cols // 2], dtype=float)

    def _inside(self, pf) -> bool:
        rows, cols = self.field_image.shape[:2]
        b = self.IMAGE_BORDER
        return b <= pf[0] < cols - b and b <= pf[1] < rows - b

    def is_outside(self) -> bool:
        pf = (self._world_point() * self.resolution + self._offset()).astype(int)
        return not self._inside(pf)

    def compute_error(self) -> np.ndarray:
        pf = self._world_point() * self.resolution + self._offset() - 0.5
        if self._inside(pf):
            self.error = np.array([bilinear_value(self.field_image, pf[0], pf[1])])
        else:
            self.error = np.zeros(1)
            self.level = 1
        return self.error

    def linearize(self) -> list[np.ndarray]:
        theta = self.vertices[0].estimate.theta
        pf = self._world_point() * self.resolution + self._offset() - 0.5
        if self._inside(pf):
            img = self.field_image
            dx = 0.5 * (bilinear_value(img, pf[0] + 1, pf[1]) - bilinear_value(img, pf[0] - 1, pf[1]))
            dy = 0.5 * (bilinear_value(img, pf[0], pf[1] + 1) - bilinear_value(img, pf[0], pf[1] - 1))
            res, r, a = self.resolution, self.range, self.angle
            jac = np.array([[
                res * dx,
                res * dy,
                -res * dx * r * math.sin(a + theta) + res * dy * r * math.cos(a + theta),
            ]])
        else:
            jac = np.zeros((1, 3))
            self.level = 1
        self.jacobian = jac
        return [jac]

    def chi2(self) -> float:
        """Squared error weighted by the information."""
        return self._weighted_chi2()


class EdgeSE2(_Edge):
    """Relative pose constraint: error = log(v1^-1 * v2 * measurement^-1)."""

    dimension = 3
    _EPS = 1e-6

    def __init__(self, vertex1, vertex2, measurement=None, information=None):
        super().__init__([vertex1, vertex2], np.eye(3) if information is None else information)
        self.measurement = measurement if measurement is not None else SE2()

    def compute_error(self) -> np.ndarray:
        v1, v2 = self.vertices
        self.error = (v1.estimate.inverse() * v2.estimate * self.measurement.inverse()).log()
        return self.error

    def linearize(self) -> list[np.ndarray]:
        jacobians = []
        for vertex in self.vertices:
            saved = vertex.estimate
            jac = np.zeros((3, 3))
            for k in range(3):
                step = np.zeros(3)
                step[k] = self._EPS
                vertex.oplus(step)
                plus = self.compute_error().copy()
                vertex.estimate = saved
                vertex.oplus(-step)
                minus = self.compute_error().copy()
                vertex.estimate = saved
                diff = plus - minus
                diff[2] = math.atan2(math.sin(diff[2]), math.cos(diff[2]))
                jac[:, k] = diff / (2 * self._EPS)
            jacobians.append(jac)
        self.compute_error()
        return jacobians

    def chi2(self) -> float:
        """Squared error weighted by the information."""
        return self._weighted_chi2()


class Optimizer:
    """Sparse-free Levenberg-Marquardt over SE2 vertices."""

    def __init__(self):
        self._vertices: dict[int, VertexSE2] = {}
        self.edges: list = []

    def add_vertex(self, vertex: VertexSE2) -> None:
        self._vertices[vertex.id] = vertex

    def add_edge(self, edge) -> None:
        self.edges.append(edge)

    def vertex(self, vertex_id: int) -> VertexSE2:
        return self._vertices[vertex_id]

    @staticmethod
    def _robust_chi2(edge) -> float:
        chi2 = edge.chi2()
        return edge.robust_kernel.robustify(chi2)[0] if edge.robust_kernel else chi2

    def _total(self, edges) -> float:
        total = 0.0
        for e in edges:
            e.compute_error()
            total += self._robust_chi2(e)
        return total

    def _build(self, edges, index, n):
        h = np.zeros((n, n))
        b = np.zeros(n)
        for e in edges:
            e.compute_error()
            jacs = e.linearize()
            weight = e.robust_kernel.robustify(e.chi2())[1] if e.robust_kernel else 1.0
            omega = weight * e.information
            for vi, ji in zip(e.vertices, jacs):
                i = index.get(id(vi))
                if i is None:
                    continue
                b[3 * i:3 * i + 3] -= ji.T @ omega @ e.error
                for vj, jj in zip(e.vertices, jacs):
                    j = index.get(id(vj))
                    if j is not None:
                        h[3 * i:3 * i + 3, 3 * j:3 * j + 3] += ji.T @ omega @ jj
        return h, b

    def optimize(self, iterations: int) -> float:
        """Run up to ``iterations`` LM steps over edges at level 0; return final chi2."""
        active = [e for e in self.edges if e.level == 0]
        free = [v for v in self._vertices.values() if not v.fixed]
        if not active or not free:
            return self._total(active)
        index = {id(v): i for i, v in enumerate(free)}
        n = 3 * len(free)
        chi = self._total(active)
        lam = None
        ni = 2.0
        for _ in range(iterations):
            h, b = self._build(active, index, n)
            if lam is None:
                lam = 1e-5 * max(float(np.max(np.diag(h))), 1e-12)
            accepted = False
            for _ in range(10):
                backup = [v.estimate for v in free]
                try:
                    dx = np.linalg.solve(h + lam * np.eye(n), b)
                except np.linalg.LinAlgError:
                    dx = None
                if dx is None or not np.all(np.isfinite(dx)):
                    lam *= ni
                    ni *= 2
                    continue
                for i, v in enumerate(free):
                    v.oplus(dx[3 * i:3 * i + 3])
                new = self._total(active)
                denom = float(dx @ (lam * dx + b))
                rho = (chi - new) / denom if denom > 0 else -1.0
                if rho > 0 and math.isfinite(new):
                    lam *= max(1.0 / 3.0, 1 - (2 * rho - 1) ** 3)
                    ni = 2.0
                    chi = new
                    accepted = True
                    break
                for v, saved in zip(free, backup):
                    v.estimate = saved
                lam *= ni
                ni *= 2
            if not accepted:
                break
        return self._total(active)