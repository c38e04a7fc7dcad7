"""Keyframe data structure.

A keyframe is a retained camera frame used as an anchor for mapping and
optimization. It carries its pose, the calibration needed to project into
it, the undistorted keypoints it observed, and the id-keyed links to the
map points and object landmarks it sees.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from ..geometry import SE3

if TYPE_CHECKING:
    from ..camera import CameraCalibration
    from ..geometry import Cuboid


@dataclass(eq=False)
class KeyFrame:
    """A keyframe in the scene graph.

    Keyframes never hold references to other entities; map points and
    landmarks are addressed by id and resolved through the Map.
    """

    id: int  # Unique, monotonically increasing, never reused
    timestamp_ns: int
    pose: SE3  # Camera pose T_world_camera
    calibration: CameraCalibration
    # Feature data
    keypoints: np.ndarray  # (N, 2) undistorted keypoint pixel coordinates
    octaves: np.ndarray  # (N,) pyramid level of each keypoint
    u_right: np.ndarray  # (N,) right-image x coordinate, < 0 for monocular
    # Map point associations: keypoint_idx -> mappoint_id
    keypoint_to_mappoint: dict[int, int] = field(default_factory=dict)
    # Associated object landmarks and their camera-frame cuboid measurements
    landmark_ids: set[int] = field(default_factory=set)
    landmark_measurements: dict[int, Cuboid] = field(default_factory=dict)
    is_bad: bool = False
    # Stamps written by local BA (id of the triggering keyframe). Informational:
    # window membership is deduplicated with per-call sets, not these stamps
    ba_local_for_kf: int = -1
    ba_fixed_for_kf: int = -1

    def __post_init__(self) -> None:
        self.keypoints = np.asarray(self.keypoints, dtype=np.float64).reshape(-1, 2)
        n = len(self.keypoints)
        self.octaves = np.asarray(self.octaves, dtype=np.int64).reshape(-1)
        self.u_right = np.asarray(self.u_right, dtype=np.float64).reshape(-1)
        if len(self.octaves) != n or len(self.u_right) != n:
            raise ValueError(
                f"Keyframe {self.id}: keypoints, octaves and u_right must have "
                f"the same length ({n}, {len(self.octaves)}, {len(self.u_right)})"
            )

    @classmethod
    def monocular(
        cls,
        kf_id: int,
        pose: SE3,
        calibration: CameraCalibration,
        keypoints: np.ndarray,
        octaves: np.ndarray | None = None,
        timestamp_ns: int = 0,
    ) -> KeyFrame:
        """Create a keyframe whose keypoints have no stereo match.

        Args:
            kf_id: Keyframe id
            pose: Camera pose T_world_camera
            calibration: Camera calibration
            keypoints: (N, 2) undistorted keypoints
            octaves: (N,) pyramid levels, all zero if omitted
            timestamp_ns: Capture time

        Returns:
            New KeyFrame instance
        """
        keypoints = np.asarray(keypoints, dtype=np.float64).reshape(-1, 2)
        n = len(keypoints)
        return cls(
            id=kf_id,
            timestamp_ns=timestamp_ns,
            pose=pose,
            calibration=calibration,
            keypoints=keypoints,
            octaves=np.zeros(n, dtype=np.int64) if octaves is None else octaves,
            u_right=-np.ones(n),
        )

    @property
    def pose_cw(self) -> SE3:
        """Return the world-to-camera transform T_camera_world."""
        return self.pose.inverse()

    @property
    def camera_center(self) -> np.ndarray:
        """Return the camera origin in world coordinates."""
        return self.pose.position

    def set_pose(self, pose: SE3) -> None:
        """Replace the camera pose (T_world_camera)."""
        self.pose = pose.copy()

    def is_monocular(self, kp_idx: int) -> bool:
        """Return True if the keypoint has no right-image correspondence."""
        return bool(self.u_right[kp_idx] < 0)

    def inv_sigma2(self, kp_idx: int) -> float:
        """Return the inverse level variance for a keypoint's octave."""
        return float(self.calibration.inv_level_sigma2[self.octaves[kp_idx]])

    def add_map_point_match(self, kp_idx: int, mappoint_id: int) -> None:
        """Associate a keypoint with a map point."""
        self.keypoint_to_mappoint[kp_idx] = mappoint_id

    def erase_map_point_match(self, mappoint_id: int) -> bool:
        """Remove every keypoint association to a map point.

        Args:
            mappoint_id: ID of the map point

        Returns:
            True if at least one association was removed
        """
        indices = [
            kp_idx
            for kp_idx, mp_id in self.keypoint_to_mappoint.items()
            if mp_id == mappoint_id
        ]
        for kp_idx in indices:
            del self.keypoint_to_mappoint[kp_idx]
        return len(indices) > 0

    def get_observed_mappoint_ids(self) -> list[int]:
        """Return list of map point IDs observed by this keyframe."""
        return list(self.keypoint_to_mappoint.values())

    @property
    def num_observations(self) -> int:
        """Return number of map point observations."""
        return len(self.keypoint_to_mappoint)

    def __repr__(self) -> str:
        return f"KeyFrame(id={self.id}, {self.pose!r}, bad={self.is_bad})"
