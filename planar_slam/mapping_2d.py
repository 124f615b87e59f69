"""2D lidar mapping with submaps, scan matching and optional loop closure."""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Callable

import numpy as np
from PIL import Image, ImageDraw

from planar_slam.frame import Frame
from planar_slam.geometry import SE2, Scan2d
from planar_slam.loop_closing import LoopClosing
from planar_slam.submap import Submap
from planar_slam.visualize import visualize_2d_scan

log = logging.getLogger(__name__)

_SUBMAP_RESOLUTION = 20.0  # pixels per metre in a submap grid
_SUBMAP_SIZE = 50.0  # metres covered by one submap
_SUBMAP_PIXELS = 1000
_MAX_KEYFRAMES_PER_SUBMAP = 50

_GREY = (127, 127, 127)
_FREE_CURRENT = (230, 250, 235)
_FREE_OTHER = (255, 255, 255)
_OCCUPIED_CURRENT = (30, 20, 230)
_OCCUPIED_OTHER = (0, 0, 0)
_RED = (255, 0, 0)
_GREEN = (0, 255, 0)
_BLUE = (0, 0, 255)

Viewer = Callable[[str, np.ndarray], None]


def _put_text(image: np.ndarray, text: str, origin, color) -> np.ndarray:
    canvas = Image.fromarray(image)
    ImageDraw.Draw(canvas).text(origin, text, fill=tuple(color))
    return np.asarray(canvas).copy()


class Mapping2D:
    """Builds a set of submaps from successive 2D scans.

    ``viewer`` (optional) receives ``(window_name, rgb_image)`` for every
    rendered view; ``output_dir`` (optional) receives finished submap images
    and the loop-closure debug log.
    """

    KEYFRAME_POS_TH = 0.3
    KEYFRAME_ANG_TH = 15 * math.pi / 180

    def __init__(self, output_dir=None, viewer: Viewer | None = None):
        self.output_dir = Path(output_dir) if output_dir is not None else None
        self.viewer = viewer
        self.frame_id = 0
        self.keyframe_id = 0
        self.submap_id = 0
        self.first_scan = True
        self.current_frame: Frame | None = None
        self.last_frame: Frame | None = None
        self.motion_guess = SE2()
        self.last_keyframe: Frame | None = None
        self.current_submap: Submap | None = None
        self.all_submaps: list[Submap] = []
        self.loop_closing: LoopClosing | None = None

    def init(self, with_loop_closing: bool = True) -> bool:
        """Create the first submap at the origin and, optionally, loop closing."""
        self.keyframe_id = 0
        self.current_submap = Submap(SE2())
        self.all_submaps.append(self.current_submap)
        if with_loop_closing:
            debug = self.output_dir / "loops.txt" if self.output_dir is not None else None
            self.loop_closing = LoopClosing(debug_path=debug)
            self.loop_closing.add_new_submap(self.current_submap)
        return True

    def process_scan(self, scan: Scan2d) -> bool:
        """Match a scan against the current submap and update the map."""
        if self.current_submap is None:
            raise RuntimeError("mapping is not initialized; call init() first")

        frame = Frame(scan=scan)
        frame.id = self.frame_id
        self.frame_id += 1
        self.current_frame = frame

        if self.last_frame is not None:
            frame.pose = self.last_frame.pose * self.motion_guess
            frame.pose_submap = self.last_frame.pose_submap

        if not self.first_scan:
            self.current_submap.match_scan(frame)

        self.first_scan = False
        is_kf = self.is_keyframe()

        if is_kf:
            self.add_keyframe()
            self.current_submap.add_scan_in_occupancy_map(frame)
            if self.loop_closing is not None:
                self.loop_closing.add_new_frame(frame)
            if (self.current_submap.has_outside_points()
                    or self.current_submap.num_frames() > _MAX_KEYFRAMES_PER_SUBMAP):
                self.expand_submap()

        if self.viewer is not None:
            self._show_views(is_kf)

        if self.last_frame is not None:
            self.motion_guess = self.last_frame.pose.inverse() * frame.pose
        self.last_frame = frame
        return True

    def _show_views(self, is_kf: bool) -> None:
        frame = self.current_frame
        submap = self.current_submap
        occu = submap.occu_map.get_occupancy_grid_black_white()
        occu = visualize_2d_scan(frame.scan, frame.pose, occu, _RED, 1000, 20.0, submap.pose)
        occu = _put_text(occu, f"submap {submap.id}", (20, 8), _GREEN)
        occu = _put_text(occu, f"keyframes {submap.num_frames()}", (20, 38), _GREEN)
        self.viewer("occupancy map", occu)

        field = submap.field.get_field_image()
        field = visualize_2d_scan(frame.scan, frame.pose, field, _RED, 1000, 20.0, submap.pose)
        self.viewer("likelihood", field)

        if is_kf:
            self.viewer("global map", self.show_global_map())

    def is_keyframe(self) -> bool:
        """Whether the current frame moved far enough from the last keyframe."""
        if self.last_keyframe is None:
            return True
        delta = self.last_keyframe.pose.inverse() * self.current_frame.pose
        return (float(np.linalg.norm(delta.translation)) > self.KEYFRAME_POS_TH
                or abs(delta.theta) > self.KEYFRAME_ANG_TH)

    def add_keyframe(self) -> None:
        log.info("add keyframe %d", self.keyframe_id)
        self.current_frame.keyframe_id = self.keyframe_id
        self.keyframe_id += 1
        self.current_submap.add_keyframe(self.current_frame)
        self.last_keyframe = self.current_frame

    def expand_submap(self) -> None:
        """Finish the current submap and start a new one at the current frame."""
        if self.loop_closing is not None:
            self.loop_closing.add_finished_submap(self.current_submap)

        last_submap = self.current_submap
        if self.output_dir is not None:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            image = last_submap.occu_map.get_occupancy_grid_black_white()
            Image.fromarray(image).save(self.output_dir / f"submap_{last_submap.id}.png")

        frame = self.current_frame
        submap = Submap(frame.pose)
        frame.pose_submap = SE2()

        self.submap_id += 1
        submap.id = self.submap_id
        submap.add_keyframe(frame)
        submap.set_occu_from_other_submap(last_submap)
        submap.add_scan_in_occupancy_map(frame)
        self.current_submap = submap
        self.all_submaps.append(submap)

        if self.loop_closing is not None:
            self.loop_closing.add_new_submap(submap)

        log.info("create submap %d with pose: %g %g, %g",
                 submap.id, submap.pose.x, submap.pose.y, submap.pose.theta)

    def show_global_map(self, max_size: int = 500) -> np.ndarray:
        """Render all submaps into one RGB image whose longer side is ``max_size``."""
        if not self.all_submaps:
            return np.zeros((0, 0, 3), dtype=np.uint8)

        centers = np.array([m.pose.translation for m in self.all_submaps])
        top_left = centers.min(axis=0) - _SUBMAP_SIZE / 2
        bottom_right = centers.max(axis=0) + _SUBMAP_SIZE / 2

        phy_width = bottom_right[0] - top_left[0]
        phy_height = bottom_right[1] - top_left[1]
        res = max_size / phy_width if phy_width > phy_height else max_size / phy_height

        c = (top_left + bottom_right) / 2.0
        global_center = np.array([int(c[0] * res) / res, int(c[1] * res) / res])

        width = int(phy_width * res + 0.5)
        height = int(phy_height * res + 0.5)
        center_image = np.array([width // 2, height // 2], dtype=float)

        ys, xs = np.mgrid[0:height, 0:width]
        pixels = np.column_stack([xs.ravel(), ys.ravel()]).astype(float)
        world = (pixels - center_image) / res + c

        out = np.empty((width * height, 3), dtype=np.uint8)
        out[:] = _GREY
        done = np.zeros(width * height, dtype=bool)

        for m in self.all_submaps:
            local = m.pose.inverse().transform(world)
            pt = np.trunc(local * _SUBMAP_RESOLUTION + _SUBMAP_PIXELS / 2).astype(np.int64)
            inside = np.all((pt >= 0) & (pt < _SUBMAP_PIXELS), axis=1)
            sel = np.flatnonzero(~done & inside)
            if sel.size == 0:
                continue
            values = m.occu_map.occupancy_grid[pt[sel, 1], pt[sel, 0]]
            free = sel[values > 127]
            occupied = sel[values < 127]
            is_current = m is self.current_submap
            out[free] = _FREE_CURRENT if is_current else _FREE_OTHER
            out[occupied] = _OCCUPIED_CURRENT if is_current else _OCCUPIED_OTHER
            done[free] = True
            done[occupied] = True

        canvas = Image.fromarray(out.reshape(height, width, 3))
        draw = ImageDraw.Draw(canvas)

        def project(p) -> tuple[float, float]:
            q = (np.asarray(p, dtype=float) - global_center) * res + center_image
            return float(q[0]), float(q[1])

        for m in self.all_submaps:
            center_map = project(m.pose.translation)
            x_map = project(m.pose * np.array([1.0, 0.0]))
            y_map = project(m.pose * np.array([0.0, 1.0]))
            draw.line([center_map, x_map], fill=_RED, width=2)
            draw.line([center_map, y_map], fill=_GREEN, width=2)
            draw.text((center_map[0] + 10, center_map[1] - 20), str(m.id), fill=_BLUE)
            for frame in m.frames:
                px, py = project(frame.pose.translation)
                draw.ellipse([px - 1, py - 1, px + 1, py + 1], outline=_RED)

        if self.loop_closing is not None:
            for first_id, second_id in self.loop_closing.loops:
                c1 = project(self.all_submaps[first_id].pose.translation)
                c2 = project(self.all_submaps[second_id].pose.translation)
                draw.line([c1, c2], fill=_BLUE, width=2)

        return np.asarray(canvas).copy()