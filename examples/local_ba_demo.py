#!/usr/bin/env python3
"""Demo of object-aware local bundle adjustment on a synthetic scene.

A row of keyframes observes random points around a box-shaped object.
The newest keyframe starts from a noisy pose and a few of its
observations are corrupted; local mapping then refines the window and
severs the corrupted links.

Usage:
    uv run python examples/local_ba_demo.py
"""

import numpy as np

from objslam import (
    SE3,
    CameraCalibration,
    Cuboid,
    KeyFrame,
    Landmark,
    LocalBAConfig,
    LocalMapping,
    Map,
    MapPoint,
    MapVisualizer,
)


def make_keyframe(kf_id, true_pose, initial_pose, points, calibration, rng):
    """Project points into a camera and add 0.5 px pixel noise."""
    pose_cw = true_pose.inverse()
    keypoints = []
    for point in points:
        uv = calibration.project(pose_cw.transform_point(point))
        keypoints.append(uv + rng.normal(0.0, 0.5, size=2))
    return KeyFrame.monocular(
        kf_id,
        initial_pose,
        calibration,
        np.array(keypoints),
        timestamp_ns=kf_id * 50_000_000,
    )


def main() -> None:
    """Run the local BA demo."""
    # Configuration
    n_keyframes = 4
    n_points = 60
    n_corrupted = 3
    visualize = False

    rng = np.random.default_rng(0)
    calibration = CameraCalibration(fx=458.0, fy=457.0, cx=367.0, cy=248.0)
    points = np.column_stack(
        [
            rng.uniform(-2.0, 2.0, n_points),
            rng.uniform(-1.0, 1.0, n_points),
            rng.uniform(4.0, 8.0, n_points),
        ]
    )

    scene_map = Map()
    for mp_id, position in enumerate(points):
        scene_map.add_map_point(MapPoint(id=mp_id, position_world=position))
    scene_map.add_landmark(
        Landmark(
            id=0,
            cuboid=Cuboid(
                pose=SE3(rotation=np.eye(3), translation=np.array([0.0, 0.3, 5.5])),
                scale=np.array([0.6, 0.4, 0.4]),
            ),
            quality=0.8,
            class_idx=56,  # chair
        )
    )

    print("Building map...")
    for kf_id in range(n_keyframes - 1):
        pose = SE3(rotation=np.eye(3), translation=np.array([0.3 * kf_id, 0.0, 0.0]))
        keyframe = make_keyframe(kf_id, pose, pose, points, calibration, rng)
        scene_map.add_keyframe(keyframe)
        for kp_idx in range(n_points):
            scene_map.add_observation(kf_id, kp_idx, kp_idx)
        scene_map.associate_landmark(kf_id, 0)
        scene_map.update_connections(keyframe)

    # Newest keyframe: noisy initial pose and a few corrupted observations
    kf_id = n_keyframes - 1
    true_pose = SE3(rotation=np.eye(3), translation=np.array([0.3 * kf_id, 0.0, 0.0]))
    initial_pose = SE3.from_rvec_tvec(
        np.array([0.0, 0.01, 0.005]), true_pose.translation + [0.04, -0.02, 0.03]
    )
    new_keyframe = make_keyframe(kf_id, true_pose, initial_pose, points, calibration, rng)
    corrupted = rng.choice(n_points, size=n_corrupted, replace=False)
    new_keyframe.keypoints[corrupted] += rng.uniform(20.0, 40.0, size=(n_corrupted, 2))
    for kp_idx in range(n_points):
        new_keyframe.add_map_point_match(kp_idx, kp_idx)
        scene_map.get_point(kp_idx).add_observation(kf_id, kp_idx)
    new_keyframe.landmark_ids.add(0)

    print(f"Keyframes: {scene_map.num_keyframes + 1}, points: {scene_map.num_points}")
    print(f"Corrupted observations: {sorted(int(i) for i in corrupted)}")
    print()

    # Run local mapping on the new keyframe
    mapping = LocalMapping(scene_map, LocalBAConfig(verbose=True))
    result = mapping.process_keyframe(new_keyframe)

    error_before = np.linalg.norm(initial_pose.translation - true_pose.translation)
    error_after = np.linalg.norm(new_keyframe.pose.translation - true_pose.translation)

    print()
    print("=" * 60)
    print(f"Status:          {result.message}")
    print(f"Local keyframes: {result.num_keyframes} (+{result.num_fixed_keyframes} fixed)")
    print(f"Edges:           {result.num_edges} reprojection, {result.num_cuboid_edges} cuboid")
    print(f"Cost:            {result.initial_cost:.2f} -> {result.final_cost:.2f}")
    print(f"Position error:  {error_before * 100:.2f} cm -> {error_after * 100:.2f} cm")
    print(f"Outliers:        {sorted(mp_id for _, mp_id in result.outliers)}")
    print(f"Landmark:        {scene_map.get_landmark(0).cuboid!r}")
    print("=" * 60)

    if visualize:
        visualizer = MapVisualizer("objslam-local-ba")
        visualizer.log_map(scene_map, step=0)
        visualizer.log_outliers(scene_map, result)


if __name__ == "__main__":
    main()
