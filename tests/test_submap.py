import math

import numpy as np
import pytest

from planar_slam.frame import Frame
from planar_slam.geometry import SE2, Scan2d
from planar_slam.submap import Submap

HALF_W, HALF_H = 5.0, 4.0


def room_scan(step_deg=1.0):
    inc = math.radians(step_deg)
    n = int(round(360 / step_deg))
    angle_min = -math.pi
    ranges = []
    for i in range(n):
        a = angle_min + i * inc
        c, s = math.cos(a), math.sin(a)
        hits = []
        if abs(c) > 1e-9:
            hits.append(HALF_W / abs(c))
        if abs(s) > 1e-9:
            hits.append(HALF_H / abs(s))
        ranges.append(min(hits))
    return Scan2d(angle_min, angle_min + (n - 1) * inc, inc, 0.1, 30.0, ranges)


def same_pose(a, b, tol=1e-9):
    return np.allclose([a.x, a.y, a.theta], [b.x, b.y, b.theta], atol=tol)


def test_pose_propagates_to_maps():
    pose = SE2(1.0, 2.0, 0.3)
    submap = Submap(pose)
    assert submap.occu_map.pose == pose
    assert submap.field.pose == pose
    other = SE2(-1.0, 0.5, -0.2)
    submap.set_pose(other)
    assert submap.pose == other
    assert submap.occu_map.pose == other
    assert submap.field.pose == other


def test_keyframes_are_counted():
    submap = Submap()
    frames = [Frame(), Frame()]
    for f in frames:
        submap.add_keyframe(f)
    assert submap.num_frames() == len(frames)
    assert submap.frames == frames


def test_update_frame_pose_world():
    submap = Submap()
    frame = Frame(pose_submap=SE2(1.0, 0.0, 0.2))
    submap.add_keyframe(frame)
    submap.set_pose(SE2(3.0, 4.0, 0.5))
    submap.update_frame_pose_world()
    assert frame.pose.x == pytest.approx(3.8775825619)
    assert frame.pose.y == pytest.approx(4.4794255386)
    assert frame.pose.theta == pytest.approx(0.7)


def test_add_scan_updates_grid_and_field():
    submap = Submap()
    submap.add_scan_in_occupancy_map(Frame(scan=room_scan()))
    grid = submap.occu_map.occupancy_grid
    assert grid[500, 600] < 127
    assert grid[500, 500] > 127
    assert float(submap.field.field.min()) == 0.0
    assert not submap.has_outside_points()


def test_far_endpoints_are_outside():
    scan = Scan2d(-math.pi, math.pi, math.radians(5.0), 0.1, 40.0, [29.0] * 72)
    submap = Submap()
    submap.add_scan_in_occupancy_map(Frame(scan=scan))
    assert submap.has_outside_points()


def test_occu_from_other_with_few_frames_is_unchanged():
    other = Submap()
    for _ in range(5):
        other.add_keyframe(Frame(scan=room_scan(5.0)))
    submap = Submap()
    submap.set_occu_from_other_submap(other)
    assert int(submap.occu_map.occupancy_grid.min()) == 127
    assert int(submap.occu_map.occupancy_grid.max()) == 127


def test_occu_from_other_with_enough_frames():
    other = Submap()
    for _ in range(10):
        other.add_keyframe(Frame(scan=room_scan(5.0)))
    submap = Submap()
    submap.set_occu_from_other_submap(other)
    assert int(submap.occu_map.occupancy_grid.min()) < 127
    assert float(submap.field.field.min()) == 0.0


def test_match_scan_sets_world_pose():
    submap = Submap(SE2(1.0, 2.0, 0.3))
    submap.add_scan_in_occupancy_map(Frame(scan=room_scan(), pose=submap.pose))
    frame = Frame(scan=room_scan(), pose_submap=SE2(0.1, -0.1, 0.02))
    assert submap.match_scan(frame) is True
    assert same_pose(frame.pose, submap.pose * frame.pose_submap)
    assert abs(frame.pose_submap.x) < 0.05
    assert abs(frame.pose_submap.y) < 0.05
    assert abs(frame.pose_submap.theta) < 0.02