"""Single-threaded loop closure between frames and finished submaps."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from planar_slam.frame import Frame
from planar_slam.geometry import SE2
from planar_slam.graph import CauchyKernel, EdgeSE2, Optimizer, VertexSE2
from planar_slam.multi_resolution import MRLikelihoodField
from planar_slam.submap import Submap

log = logging.getLogger(__name__)


@dataclass
class LoopConstraint:
    """Relative pose T12 between two submaps found by loop detection."""

    id_submap1: int
    id_submap2: int
    t12: SE2
    valid: bool = True


class LoopClosing:
    """Detect loops from odometry poses, match them and optimize the submap pose graph."""

    CANDIDATE_DISTANCE_TH = 15.0
    SUBMAP_GAP = 1
    LOOP_RK_DELTA = 1.0

    def __init__(self, debug_path=None):
        self.current_frame: Frame | None = None
        self.last_submap_id = 0
        self.submaps: dict[int, Submap] = {}
        self.fields: dict[Submap, MRLikelihoodField] = {}
        self.current_candidates: list[int] = []
        self.loop_constraints: dict[tuple[int, int], LoopConstraint] = {}
        self.has_new_loops = False
        self.debug_path = Path(debug_path) if debug_path is not None else None
        if self.debug_path is not None:
            self.debug_path.parent.mkdir(parents=True, exist_ok=True)
            self.debug_path.write_text("")

    @property
    def loops(self) -> dict[tuple[int, int], LoopConstraint]:
        return dict(self.loop_constraints)

    def add_new_submap(self, submap: Submap) -> None:
        self.submaps[submap.id] = submap
        self.last_submap_id = submap.id

    def add_finished_submap(self, submap: Submap) -> None:
        field = MRLikelihoodField()
        field.set_pose(submap.pose)
        field.set_field_image_from_occu_map(submap.occu_map.occupancy_grid)
        self.fields[submap] = field

    def add_new_frame(self, frame: Frame) -> None:
        self.current_frame = frame
        if not self.detect_loop_candidates():
            return
        self.match_in_history_submaps()
        if self.has_new_loops:
            self.optimize()

    def detect_loop_candidates(self) -> bool:
        """Collect older submaps whose centres lie near the current frame."""
        self.has_new_loops = False
        if self.last_submap_id < self.SUBMAP_GAP:
            return False

        self.current_candidates = []
        frame_pos = self.current_frame.pose.translation
        for sid in sorted(self.submaps):
            if self.last_submap_id - sid <= self.SUBMAP_GAP:
                continue
            existing = self.loop_constraints.get((sid, self.last_submap_id))
            if existing is not None and existing.valid:
                continue
            center = self.submaps[sid].pose.translation
            if float(np.linalg.norm(center - frame_pos)) < self.CANDIDATE_DISTANCE_TH:
                log.info("taking %d with %d, last submap id: %d",
                         self.current_frame.keyframe_id, sid, self.last_submap_id)
                self.current_candidates.append(sid)
        return bool(self.current_candidates)

    def _write_debug(self, frame: Frame, submap_id: int, pose: SE2) -> None:
        if self.debug_path is None:
            return
        with self.debug_path.open("a") as fout:
            fout.write(f"{frame.id} {submap_id} {pose.x!r} {pose.y!r} {pose.theta!r}\n")

    def match_in_history_submaps(self) -> None:
        """Align the current frame against every candidate submap."""
        frame = self.current_frame
        for can in self.current_candidates:
            submap = self.submaps[can]
            field = self.fields[submap]
            field.set_source_scan(frame.scan)

            pose_in_target = submap.pose.inverse() * frame.pose
            aligned = field.align_g2o(pose_in_target)
            if aligned is not None:
                t_this_cur = aligned * frame.pose.inverse() * self.submaps[self.last_submap_id].pose
                key = (can, self.last_submap_id)
                self.loop_constraints.setdefault(key, LoopConstraint(can, self.last_submap_id, t_this_cur))
                log.info("adding loop from submap %d to %d", can, self.last_submap_id)
                self.has_new_loops = True

            self._write_debug(frame, can, submap.pose)

        self.current_candidates = []

    def optimize(self) -> None:
        """Pose graph optimization over submaps; drops loops the graph rejects."""
        optimizer = Optimizer()
        for sid, submap in self.submaps.items():
            optimizer.add_vertex(VertexSE2(id=sid, estimate=submap.pose))

        for i in range(self.last_submap_id):
            first, nxt = self.submaps[i], self.submaps[i + 1]
            optimizer.add_edge(EdgeSE2(
                optimizer.vertex(i),
                optimizer.vertex(i + 1),
                measurement=first.pose.inverse() * nxt.pose,
                information=np.eye(3) * 1e4,
            ))

        loop_edges: dict[tuple[int, int], EdgeSE2] = {}
        for key, constraint in sorted(self.loop_constraints.items()):
            if not constraint.valid:
                continue
            edge = EdgeSE2(
                optimizer.vertex(self.submaps[key[0]].id),
                optimizer.vertex(self.submaps[key[1]].id),
                measurement=constraint.t12,
                information=np.eye(3),
            )
            edge.robust_kernel = CauchyKernel(self.LOOP_RK_DELTA)
            optimizer.add_edge(edge)
            loop_edges[key] = edge

        optimizer.optimize(10)

        inliers = 0
        for key, edge in loop_edges.items():
            chi2 = edge.chi2()
            if chi2 < self.LOOP_RK_DELTA:
                log.info("loop from %d to %d is correct, chi2: %g", key[0], key[1], chi2)
                edge.robust_kernel = None
                self.loop_constraints[key].valid = True
                inliers += 1
            else:
                edge.level = 1
                log.info("loop from %d to %d is invalid, chi2: %g", key[0], key[1], chi2)
                self.loop_constraints[key].valid = False

        optimizer.optimize(5)

        for sid, submap in self.submaps.items():
            submap.set_pose(optimizer.vertex(sid).estimate)
            submap.update_frame_pose_world()

        log.info("loop inliers: %d/%d", inliers, len(self.loop_constraints))

        self.loop_constraints = {k: c for k, c in self.loop_constraints.items() if c.valid}