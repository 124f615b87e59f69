"""Submaps: a set of keyframes with their own occupancy grid and likelihood field."""

from __future__ import annotations

from planar_slam.frame import Frame
from planar_slam.geometry import SE2
from planar_slam.likelihood_field import LikelihoodField
from planar_slam.occupancy_map import GridMethod, OccupancyMap

_FRAMES_FROM_OTHER = 10


class Submap:
    """A local map posed in the world (T_w_s); frame world poses are pose * pose_submap."""

    def __init__(self, pose: SE2 | None = None):
        self.id = 0
        self.frames: list[Frame] = []
        self.field = LikelihoodField()
        self.occu_map = OccupancyMap()
        self._pose = SE2()
        self.set_pose(pose or SE2())

    @property
    def pose(self) -> SE2:
        return self._pose

    def set_pose(self, pose: SE2) -> None:
        self._pose = pose
        self.occu_map.set_pose(pose)
        self.field.set_pose(pose)

    def set_occu_from_other_submap(self, other: "Submap") -> None:
        """Seed the occupancy grid with the latest frames of another submap."""
        start = len(other.frames) - _FRAMES_FROM_OTHER
        if start >= 0:
            for frame in other.frames[max(start, 1):]:
                self.occu_map.add_lidar_frame(frame)
        self.field.set_field_image_from_occu_map(self.occu_map.occupancy_grid)

    def match_scan(self, frame: Frame) -> bool:
        """Align the frame to this submap, updating its submap and world poses."""
        self.field.set_source_scan(frame.scan)
        frame.pose_submap = self.field.align_g2o(frame.pose_submap)
        frame.pose = self._pose * frame.pose_submap
        return True

    def has_outside_points(self) -> bool:
        return self.occu_map.has_outside_points()

    def add_scan_in_occupancy_map(self, frame: Frame) -> None:
        self.occu_map.add_lidar_frame(frame, GridMethod.MODEL_POINTS)
        self.field.set_field_image_from_occu_map(self.occu_map.occupancy_grid)

    def add_keyframe(self, frame: Frame) -> None:
        self.frames.append(frame)

    def update_frame_pose_world(self) -> None:
        for frame in self.frames:
            frame.pose = self._pose * frame.pose_submap

    def num_frames(self) -> int:
        return len(self.frames)