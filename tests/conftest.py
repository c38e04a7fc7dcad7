"""Shared fixtures: small synthetic scenes with exact observations."""

from __future__ import annotations

import numpy as np
import pytest

from objslam.camera import CameraCalibration
from objslam.geometry import SE3, Cuboid
from objslam.map import KeyFrame, Landmark, Map, MapPoint

# Points in front of every camera used below (cameras look along +Z)
SCENE_POINTS = np.array(
    [
        [0.0, 0.0, 5.0],
        [1.0, 0.5, 6.0],
        [-1.0, -0.5, 4.0],
    ]
)

DENSE_POINTS = np.array(
    [
        [0.0, 0.0, 5.0],
        [1.0, 0.5, 6.0],
        [-1.0, -0.5, 4.0],
        [0.5, -1.0, 5.5],
        [-0.8, 0.9, 6.5],
        [1.2, -0.3, 4.5],
        [-0.4, 0.2, 7.0],
        [0.3, 1.1, 5.0],
    ]
)


def translation(x: float, y: float = 0.0, z: float = 0.0) -> SE3:
    """Return a pure translation T_world_camera."""
    return SE3(rotation=np.eye(3), translation=np.array([x, y, z]))


def make_keyframe(
    kf_id: int,
    true_pose: SE3,
    positions: np.ndarray,
    calibration: CameraCalibration,
    initial_pose: SE3 | None = None,
    stereo: bool = False,
) -> KeyFrame:
    """Create a keyframe whose keypoints are exact projections of ``positions``.

    Args:
        kf_id: Keyframe id
        true_pose: Pose (T_world_camera) used to generate the keypoints
        positions: (N, 3) world points, keypoint i observes point i
        calibration: Camera calibration
        initial_pose: Pose stored in the keyframe (defaults to ``true_pose``)
        stereo: If True, keypoints get a right-image coordinate

    Returns:
        KeyFrame with no map point associations yet
    """
    pose_cw = true_pose.inverse()
    keypoints = []
    u_right = []
    for position in positions:
        p_cam = pose_cw.transform_point(position)
        if stereo:
            u, v, ur = calibration.project_stereo(p_cam)
            keypoints.append([u, v])
            u_right.append(ur)
        else:
            keypoints.append(calibration.project(p_cam))
            u_right.append(-1.0)

    pose = true_pose if initial_pose is None else initial_pose
    return KeyFrame(
        id=kf_id,
        timestamp_ns=kf_id * 50_000_000,
        pose=pose.copy(),
        calibration=calibration,
        keypoints=np.array(keypoints),
        octaves=np.zeros(len(positions), dtype=np.int64),
        u_right=np.array(u_right),
    )


def build_map(
    keyframes: list[KeyFrame],
    positions: np.ndarray,
    point_ids: list[int] | None = None,
    min_covisibility: int = 15,
) -> Map:
    """Create a map where every keyframe observes every point.

    Keypoint ``i`` of each keyframe is linked to point ``point_ids[i]``.
    """
    if point_ids is None:
        point_ids = list(range(len(positions)))

    scene_map = Map(min_covisibility=min_covisibility)
    for mp_id, position in zip(point_ids, positions):
        scene_map.add_map_point(MapPoint(id=mp_id, position_world=position))

    for keyframe in keyframes:
        scene_map.add_keyframe(keyframe)
        for kp_idx, mp_id in enumerate(point_ids):
            scene_map.add_observation(keyframe.id, mp_id, kp_idx)

    for keyframe in keyframes:
        scene_map.update_connections(keyframe)
    for point in scene_map.get_all_points():
        scene_map.update_normal_and_depth(point)

    return scene_map


def make_landmark(lm_id: int = 0, quality: float = 0.9) -> Landmark:
    """Create a box landmark centered among the scene points."""
    cuboid = Cuboid(pose=translation(0.3, 0.0, 5.0), scale=np.array([0.5, 0.4, 0.3]))
    return Landmark(id=lm_id, cuboid=cuboid, quality=quality)


@pytest.fixture
def calibration() -> CameraCalibration:
    """Monocular 640x480 pinhole camera."""
    return CameraCalibration(fx=500.0, fy=500.0, cx=320.0, cy=240.0)


@pytest.fixture
def stereo_calibration() -> CameraCalibration:
    """Stereo camera with bf = 50 (0.1 m baseline)."""
    return CameraCalibration(fx=500.0, fy=500.0, cx=320.0, cy=240.0, bf=50.0)


@pytest.fixture
def two_view_map(calibration: CameraCalibration) -> Map:
    """Keyframe 5 (perturbed, free) and keyframe 2 (fixed) sharing three points.

    Keyframe 5 is associated with landmark 0 (quality 0.9). The keyframes
    share fewer points than the covisibility threshold, so keyframe 2 only
    enters local BA as a fixed camera.

    Returns:
        Map with keyframes 2 and 5, points 0..2 and landmark 0
    """
    kf2 = make_keyframe(2, SE3.identity(), SCENE_POINTS, calibration)
    kf5 = make_keyframe(
        5,
        translation(0.5),
        SCENE_POINTS,
        calibration,
        initial_pose=SE3.from_rvec_tvec(
            np.array([0.0, 0.01, 0.0]), np.array([0.45, 0.03, 0.0])
        ),
    )
    scene_map = build_map([kf2, kf5], SCENE_POINTS)
    scene_map.add_landmark(make_landmark())
    scene_map.associate_landmark(5, 0)
    return scene_map


@pytest.fixture
def dense_map(calibration: CameraCalibration) -> Map:
    """Keyframe 5 (free) and fixed keyframes 1 and 2 sharing eight points.

    All keyframes start at their true poses.

    Returns:
        Map with keyframes 1, 2, 5 and points 0..7
    """
    keyframes = [
        make_keyframe(1, translation(-0.5), DENSE_POINTS, calibration),
        make_keyframe(2, SE3.identity(), DENSE_POINTS, calibration),
        make_keyframe(5, translation(0.5), DENSE_POINTS, calibration),
    ]
    return build_map(keyframes, DENSE_POINTS)
