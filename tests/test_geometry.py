import math

import numpy as np
import pytest

from planar_slam.geometry import SE2, Scan2d, bilinear_value, fit_line_2d, normalize_angle


def test_normalize_angle_wraps():
    assert normalize_angle(3 * math.pi) == pytest.approx(math.pi)
    assert normalize_angle(-0.5 - 2 * math.pi) == pytest.approx(-0.5)


def test_inverse_composes_to_identity():
    t = SE2(1.5, -2.0, 0.7)
    ident = t * t.inverse()
    assert ident.x == pytest.approx(0.0, abs=1e-12)
    assert ident.y == pytest.approx(0.0, abs=1e-12)
    assert ident.theta == pytest.approx(0.0, abs=1e-12)


def test_transform_matches_operator():
    t = SE2(1.0, 2.0, math.pi / 2)
    p = t * np.array([1.0, 0.0])
    assert np.allclose(p, [1.0, 3.0])
    assert np.allclose(t.transform([1.0, 0.0]), p)


def test_log_of_pure_translation():
    assert np.allclose(SE2(0.3, -0.4, 0.0).log(), [0.3, -0.4, 0.0])


def test_log_theta_component():
    assert SE2(1.0, 1.0, 0.25).log()[2] == pytest.approx(0.25)


def test_scan_valid_points():
    scan = Scan2d(0.0, 1.0, 0.5, 0.1, 10.0, [1.0, 0.0, 20.0, 2.0])
    pts = list(scan.valid_points())
    assert [p[0] for p in pts] == [0, 3]
    assert pts[1][2] == pytest.approx(1.5)
    assert scan.angle_at(2) == pytest.approx(1.0)


def test_bilinear_value():
    img = np.array([[0.0, 2.0], [4.0, 6.0]])
    assert bilinear_value(img, 1, 1) == pytest.approx(6.0)
    assert bilinear_value(img, 0.5, 0.5) == pytest.approx(np.mean(img))


def test_fit_line_residual_zero():
    pts = [(x, 2 * x + 1) for x in range(5)]
    a, b, c = fit_line_2d(pts)
    for x, y in pts:
        assert a * x + b * y + c == pytest.approx(0.0, abs=1e-9)


def test_fit_line_too_few_points():
    assert fit_line_2d([(1.0, 2.0)]) is None