import math

import pytest

from planar_slam.geometry import SE2, Scan2d
from planar_slam.icp_2d import Icp2d

HALF_W, HALF_H = 5.0, 4.0


def room_scan(pose: SE2, beams=1080):
    inc = 2 * math.pi / beams
    ranges = []
    for i in range(beams):
        ang = pose.theta + (-math.pi + i * inc)
        dx, dy = math.cos(ang), math.sin(ang)
        hits = []
        if abs(dx) > 1e-12:
            hits += [(w - pose.x) / dx for w in (-HALF_W, HALF_W)]
        if abs(dy) > 1e-12:
            hits += [(w - pose.y) / dy for w in (-HALF_H, HALF_H)]
        ranges.append(min(t for t in hits if t > 0))
    return Scan2d(-math.pi, -math.pi + (beams - 1) * inc, inc, 0.1, 30.0, ranges)


@pytest.mark.parametrize("method", ["align_gauss_newton", "align_gauss_newton_point2plane"])
def test_recovers_relative_pose(method):
    truth = SE2(0.05, 0.03, 0.01)
    icp = Icp2d()
    icp.set_target(room_scan(SE2()))
    icp.set_source(room_scan(truth))
    pose = getattr(icp, method)(SE2())
    assert pose.x == pytest.approx(truth.x, abs=0.02)
    assert pose.y == pytest.approx(truth.y, abs=0.02)
    assert pose.theta == pytest.approx(truth.theta, abs=0.01)


def test_identical_scans_stay_at_identity():
    scan = room_scan(SE2())
    icp = Icp2d()
    icp.set_target(scan)
    icp.set_source(scan)
    pose = icp.align_gauss_newton(SE2())
    assert abs(pose.x) < 1e-6 and abs(pose.theta) < 1e-6


def test_empty_target_fails():
    icp = Icp2d()
    icp.set_target(Scan2d(0.0, 1.0, 0.1, 0.1, 30.0, [0.0] * 10))
    icp.set_source(room_scan(SE2()))
    assert icp.align_gauss_newton(SE2()) is None
    assert icp.align_gauss_newton_point2plane(SE2()) is None