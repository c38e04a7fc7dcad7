"""Rerun-based visualization of the object-aware map."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import rerun as rr
import rerun.blueprint as rrb
from scipy.spatial.transform import Rotation

if TYPE_CHECKING:
    from ..backend import LocalBAResult
    from ..map import Map


class MapVisualizer:
    """Logs keyframes, map points and object cuboids to Rerun.

    Entity hierarchy:
        world/
            keyframes       - Keyframe camera centers (yellow)
            trajectory      - Line strip through keyframes in id order
            points          - Map points (colored by height)
            landmarks       - Object cuboids (one box per landmark)
            outliers        - Links severed by the last local BA (red)
    """

    def __init__(self, app_name: str = "objslam", spawn: bool = True) -> None:
        """Initialize Rerun visualization.

        Args:
            app_name: Name for the Rerun application window
            spawn: If True, automatically spawn the Rerun viewer
        """
        rr.init(app_name, spawn=spawn)
        # Camera convention: X-right, Y-down, Z-forward
        rr.log("world", rr.ViewCoordinates.RDF, static=True)
        rr.send_blueprint(
            rrb.Blueprint(rrb.Spatial3DView(name="Map", origin="world"))
        )

    def log_map(self, scene_map: Map, step: int | None = None) -> None:
        """Log the whole map.

        Args:
            scene_map: Scene graph to draw
            step: Optional sequence index for the timeline
        """
        if step is not None:
            rr.set_time("step", sequence=step)

        self.log_keyframes(scene_map)
        self.log_map_points(scene_map.get_all_positions())
        self.log_landmarks(scene_map)

    def log_keyframes(self, scene_map: Map) -> None:
        """Log keyframe centers and the trajectory through them."""
        keyframes = [kf for kf in scene_map.get_all_keyframes() if not kf.is_bad]
        if len(keyframes) == 0:
            return

        positions = np.array([kf.camera_center for kf in keyframes])
        rr.log(
            "world/keyframes",
            rr.Points3D(
                positions,
                colors=[[255, 255, 0]],  # Yellow
                radii=0.05,
                labels=[str(kf.id) for kf in keyframes],
            ),
        )
        if len(positions) >= 2:
            rr.log(
                "world/trajectory",
                rr.LineStrips3D([positions], colors=[[255, 255, 0]], radii=0.01),
            )

    def log_map_points(self, positions: np.ndarray) -> None:
        """Log map points colored by height."""
        if len(positions) == 0:
            return

        valid_positions = positions[np.isfinite(positions).all(axis=1)]
        if len(valid_positions) == 0:
            return

        heights = valid_positions[:, 1]
        h_min, h_max = np.percentile(heights, [5, 95])
        h_range = max(h_max - h_min, 0.1)
        normalized = np.clip((heights - h_min) / h_range, 0, 1)

        # Purple to white gradient
        colors = np.zeros((len(valid_positions), 3), dtype=np.uint8)
        colors[:, 0] = (128 + normalized * 127).astype(np.uint8)
        colors[:, 1] = (normalized * 255).astype(np.uint8)
        colors[:, 2] = (255 - normalized * 127).astype(np.uint8)

        rr.log("world/points", rr.Points3D(valid_positions, colors=colors, radii=0.03))

    def log_landmarks(self, scene_map: Map) -> None:
        """Log every landmark cuboid as an oriented box."""
        landmarks = scene_map.get_all_landmarks()
        if len(landmarks) == 0:
            return

        centers = np.array([lm.cuboid.center for lm in landmarks])
        half_sizes = np.array([lm.cuboid.scale for lm in landmarks])
        quaternions = np.array(
            [Rotation.from_matrix(lm.cuboid.pose.rotation).as_quat() for lm in landmarks]
        )  # xyzw

        rr.log(
            "world/landmarks",
            rr.Boxes3D(
                centers=centers,
                half_sizes=half_sizes,
                quaternions=quaternions,
                labels=[f"{lm.id} ({lm.quality:.2f})" for lm in landmarks],
            ),
        )

    def log_outliers(self, scene_map: Map, result: LocalBAResult) -> None:
        """Draw the observation links rejected by a local BA run."""
        segments = []
        for kf_id, mp_id in result.outliers:
            keyframe = scene_map.get_keyframe(kf_id)
            point = scene_map.get_point(mp_id)
            if keyframe is None or point is None:
                continue
            segments.append([keyframe.camera_center, point.position_world])

        if len(segments) == 0:
            return

        rr.log(
            "world/outliers",
            rr.LineStrips3D(segments, colors=[[255, 0, 0]], radii=0.005),
        )
