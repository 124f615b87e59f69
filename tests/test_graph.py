import math

import numpy as np
import pytest

from planar_slam.geometry import SE2
from planar_slam.graph import (
    CauchyKernel,
    EdgeSE2,
    EdgeSE2LikelihoodField,
    HuberKernel,
    Optimizer,
    VertexSE2,
)


def test_oplus_wraps_angle():
    v = VertexSE2(0, SE2(1.0, 2.0, 3.0))
    v.oplus([0.5, -1.0, 0.5])
    assert v.estimate.x == pytest.approx(1.5)
    assert v.estimate.y == pytest.approx(1.0)
    assert -math.pi < v.estimate.theta <= math.pi


def test_huber_kernel():
    k = HuberKernel(1.0)
    assert k.robustify(0.25) == (0.25, 1.0, 0.0)
    rho0, rho1, _ = k.robustify(4.0)
    assert rho0 == pytest.approx(3.0)
    assert rho1 == pytest.approx(0.5)


def test_cauchy_kernel_is_concave():
    k = CauchyKernel(1.0)
    assert k.robustify(0.0)[:2] == (0.0, 1.0)
    assert k.robustify(10.0)[0] < 10.0


def linear_field():
    rows, cols = np.mgrid[0:200, 0:200]
    return (0.01 * cols + 0.02 * rows).astype(float)


def test_likelihood_edge_error_and_outside():
    img = linear_field()
    v = VertexSE2(0, SE2())
    e = EdgeSE2LikelihoodField(img, 1.0, 0.0, 10.0, v)
    assert not e.is_outside()
    err = e.compute_error()[0]
    assert err == pytest.approx(0.01 * 109.5 + 0.02 * 99.5)
    far = EdgeSE2LikelihoodField(img, 100.0, 0.0, 10.0, v)
    assert far.is_outside()
    far.compute_error()
    assert far.level == 1


def test_likelihood_edge_jacobian_matches_finite_difference():
    img = linear_field()
    v = VertexSE2(0, SE2(0.2, -0.1, 0.3))
    e = EdgeSE2LikelihoodField(img, 2.0, 0.4, 10.0, v)
    jac = e.linearize()[0]
    base = v.estimate
    for k in range(3):
        step = np.zeros(3)
        step[k] = 1e-5
        v.oplus(step)
        plus = e.compute_error()[0]
        v.estimate = base
        v.oplus(-step)
        minus = e.compute_error()[0]
        v.estimate = base
        assert jac[0, k] == pytest.approx((plus - minus) / 2e-5, rel=1e-3, abs=1e-6)


def test_pose_graph_satisfies_measurement():
    opt = Optimizer()
    a = VertexSE2(0, SE2(), fixed=True)
    b = VertexSE2(1, SE2(0.5, 0.5, 0.2))
    opt.add_vertex(a)
    opt.add_vertex(b)
    meas = SE2(1.0, 0.0, 0.5)
    edge = EdgeSE2(a, b, meas, np.eye(3))
    opt.add_edge(edge)
    chi = opt.optimize(20)
    assert chi < 1e-8
    assert opt.vertex(1).estimate.x == pytest.approx(1.0, abs=1e-4)
    assert opt.vertex(1).estimate.theta == pytest.approx(0.5, abs=1e-4)
    assert edge.chi2() < 1e-8