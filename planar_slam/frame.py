"""A single 2D lidar frame with its poses."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from planar_slam.geometry import SE2, Scan2d


@dataclass(eq=False)
class Frame:
    """One laser scan together with its world and submap poses."""

    scan: Scan2d | None = None
    id: int = 0
    keyframe_id: int = 0
    timestamp: float = 0.0
    pose: SE2 = field(default_factory=SE2)
    pose_submap: SE2 = field(default_factory=SE2)

    def dump(self, filename) -> None:
        """Write the frame to a text file for offline use."""
        scan = self.scan
        lines = [
            f"{self.id} {self.keyframe_id} {self.timestamp!r}",
            f"{self.pose.x!r} {self.pose.y!r} {self.pose.theta!r}",
            f"{scan.angle_min!r} {scan.angle_max!r} {scan.angle_increment!r} "
            f"{scan.range_min!r} {scan.range_max!r} {len(scan.ranges)}",
            "".join(f"{float(r)!r} " for r in scan.ranges),
        ]
        Path(filename).write_text("\n".join(lines))

    @classmethod
    def load(cls, filename) -> "Frame":
        """Read a frame written by :meth:`dump`."""
        tokens = iter(Path(filename).read_text().split())
        frame_id = int(next(tokens))
        keyframe_id = int(next(tokens))
        timestamp = float(next(tokens))
        x, y, theta = (float(next(tokens)) for _ in range(3))
        angle_min, angle_max, angle_inc, range_min, range_max = (float(next(tokens)) for _ in range(5))
        count = int(next(tokens))
        ranges = [float(next(tokens)) for _ in range(count)]
        scan = Scan2d(angle_min, angle_max, angle_inc, range_min, range_max, ranges)
        return cls(scan=scan, id=frame_id, keyframe_id=keyframe_id, timestamp=timestamp, pose=SE2(x, y, theta))