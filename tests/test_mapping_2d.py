import math

import numpy as np
import pytest

from planar_slam.frame import Frame
from planar_slam.geometry import SE2, Scan2d
from planar_slam.mapping_2d import Mapping2D

HALF_ROOM = 3.0
BEAMS = 180


def room_scan() -> Scan2d:
    """Scan taken at the centre of a square room."""
    inc = 2 * math.pi / BEAMS
    angle_min = -math.pi
    ranges = []
    for i in range(BEAMS):
        a = angle_min + i * inc
        c, s = abs(math.cos(a)), abs(math.sin(a))
        tx = HALF_ROOM / c if c > 1e-9 else math.inf
        ty = HALF_ROOM / s if s > 1e-9 else math.inf
        ranges.append(min(tx, ty))
    return Scan2d(angle_min, angle_min + (BEAMS - 1) * inc, inc, 0.1, 20.0, ranges)


def test_init_creates_first_submap_with_loop_closing():
    mapping = Mapping2D()
    assert mapping.init(True) is True
    assert len(mapping.all_submaps) == 1
    assert mapping.current_submap.id == 0
    assert mapping.current_submap.pose == SE2()
    assert list(mapping.loop_closing.submaps) == [0]


def test_init_without_loop_closing():
    mapping = Mapping2D()
    assert mapping.init(False) is True
    assert mapping.loop_closing is None
    assert len(mapping.all_submaps) == 1


def test_process_scan_requires_init():
    with pytest.raises(RuntimeError):
        Mapping2D().process_scan(room_scan())


def test_first_scan_is_keyframe_and_fills_grid():
    mapping = Mapping2D()
    mapping.init(False)
    assert mapping.process_scan(room_scan()) is True
    frame = mapping.current_frame
    assert frame.id == 0
    assert frame.keyframe_id == 0
    assert mapping.current_submap.num_frames() == 1
    grid = mapping.current_submap.occu_map.occupancy_grid
    assert (grid < 127).sum() > 0
    assert grid[500, 500] > 127


def test_repeated_scan_is_not_a_new_keyframe():
    mapping = Mapping2D()
    mapping.init(False)
    scan = room_scan()
    mapping.process_scan(scan)
    mapping.process_scan(scan)
    assert mapping.current_frame.id == 1
    assert mapping.current_submap.num_frames() == 1
    assert float(np.linalg.norm(mapping.current_frame.pose.translation)) < 0.3
    expected = mapping.all_submaps[0].frames[0].pose.inverse() * mapping.current_frame.pose
    assert mapping.motion_guess.x == pytest.approx(expected.x)
    assert mapping.motion_guess.theta == pytest.approx(expected.theta)


@pytest.mark.parametrize(
    "pose, expected",
    [
        (SE2(0.5, 0.0, 0.0), True),
        (SE2(0.1, 0.0, 0.1), False),
        (SE2(0.0, 0.0, 0.3), True),
        (SE2(0.0, 0.0, 0.0), False),
    ],
)
def test_is_keyframe_thresholds(pose, expected):
    mapping = Mapping2D()
    mapping.last_keyframe = Frame(pose=SE2())
    mapping.current_frame = Frame(pose=pose)
    assert mapping.is_keyframe() is expected


def test_is_keyframe_without_previous_keyframe():
    mapping = Mapping2D()
    mapping.current_frame = Frame(pose=SE2())
    assert mapping.is_keyframe() is True


def test_expand_submap_starts_new_submap(tmp_path):
    mapping = Mapping2D(output_dir=tmp_path)
    mapping.init(True)
    mapping.process_scan(room_scan())
    mapping.current_frame.pose_submap = SE2(0.2, 0.1, 0.0)
    mapping.expand_submap()

    assert len(mapping.all_submaps) == 2
    new = mapping.current_submap
    assert new.id == 1
    assert new.pose == mapping.current_frame.pose
    assert new.frames == [mapping.current_frame]
    assert mapping.current_frame.pose_submap == SE2()
    assert (tmp_path / "submap_0.png").exists()
    assert sorted(mapping.loop_closing.submaps) == [0, 1]
    assert mapping.loop_closing.last_submap_id == 1


def test_show_global_map_empty_without_submaps():
    image = Mapping2D().show_global_map()
    assert image.shape == (0, 0, 3)


def test_show_global_map_renders_single_submap():
    mapping = Mapping2D()
    mapping.init(False)
    mapping.process_scan(room_scan())
    image = mapping.show_global_map(500)
    assert image.shape == (500, 500, 3)
    assert tuple(image[0, 0]) == (127, 127, 127)
    free = np.all(image == (230, 250, 235), axis=2).sum()
    occupied = np.all(image == (30, 20, 230), axis=2).sum()
    assert free > 0
    assert occupied > 0
    assert tuple(image[265, 235]) == (230, 250, 235)


def test_viewer_receives_views_on_keyframe():
    seen = {}

    def viewer(name, image):
        seen[name] = image.copy()

    mapping = Mapping2D(viewer=viewer)
    mapping.init(False)
    assert mapping.process_scan(room_scan()) is True
    assert sorted(seen) == ["global map", "likelihood", "occupancy map"]
    assert seen["occupancy map"].shape == (1000, 1000, 3)
    assert seen["likelihood"].shape == (1000, 1000, 3)
    assert seen["global map"].shape == (500, 500, 3)
    assert tuple(seen["global map"][0, 0]) == (127, 127, 127)