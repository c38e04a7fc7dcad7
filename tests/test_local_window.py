"""Tests for local window selection."""

import numpy as np
import pytest

from conftest import DENSE_POINTS, build_map, make_keyframe, translation
from objslam.backend import select_local_window
from objslam.camera import CameraCalibration
from objslam.geometry import SE3
from objslam.map import KeyFrame, Map


@pytest.fixture
def covisible_map(calibration: CameraCalibration) -> Map:
    """Three keyframes sharing eight points, all covisible (threshold 5)."""
    keyframes = [
        make_keyframe(1, translation(-0.5), DENSE_POINTS, calibration),
        make_keyframe(2, SE3.identity(), DENSE_POINTS, calibration),
        make_keyframe(5, translation(0.5), DENSE_POINTS, calibration),
    ]
    return build_map(keyframes, DENSE_POINTS, min_covisibility=5)


class TestSelectLocalWindow:
    """Test suite for select_local_window."""

    def test_fixed_cameras(self, two_view_map: Map):
        """Test that a non-covisible observer becomes a fixed camera."""
        kf5 = two_view_map.get_keyframe(5)

        window = select_local_window(kf5, two_view_map)

        assert [kf.id for kf in window.local_keyframes] == [5]
        assert [kf.id for kf in window.fixed_keyframes] == [2]
        assert [p.id for p in window.map_points] == [0, 1, 2]
        assert [lm.id for lm in window.landmarks] == [0]
        assert window.max_keyframe_id == 5
        assert window.max_landmark_id == 0
        assert not window.is_degenerate

    def test_stamps(self, two_view_map: Map):
        """Test that entities are stamped with the trigger id."""
        kf5 = two_view_map.get_keyframe(5)

        select_local_window(kf5, two_view_map)

        assert kf5.ba_local_for_kf == 5
        assert two_view_map.get_keyframe(2).ba_fixed_for_kf == 5
        assert two_view_map.get_keyframe(2).ba_local_for_kf == -1
        assert all(p.ba_local_for_kf == 5 for p in two_view_map.get_all_points())
        assert two_view_map.get_landmark(0).ba_local_for_kf == 5

    def test_landmark_measurements(self, two_view_map: Map):
        """Test that measurements are the landmark seen from the keyframe."""
        kf5 = two_view_map.get_keyframe(5)
        landmark = two_view_map.get_landmark(0)

        window = select_local_window(kf5, two_view_map)

        measurement = window.landmark_measurements[(5, 0)]
        expected = landmark.cuboid.transform_to(kf5.pose)
        assert measurement.pose.is_close(expected.pose, atol=1e-12)
        np.testing.assert_allclose(measurement.scale, landmark.cuboid.scale)
        # Selection never writes the keyframe cache
        assert kf5.landmark_measurements == {}

    def test_covisible_keyframes_are_local(self, covisible_map: Map):
        """Test that covisible keyframes are optimized, strongest first."""
        kf5 = covisible_map.get_keyframe(5)

        window = select_local_window(kf5, covisible_map)

        assert [kf.id for kf in window.local_keyframes] == [5, 1, 2]
        assert window.fixed_keyframes == []
        assert len(window.map_points) == len(DENSE_POINTS)

    def test_bad_entities_excluded(self, covisible_map: Map):
        """Test that bad keyframes and points are neither local nor fixed."""
        covisible_map.get_keyframe(1).is_bad = True
        covisible_map.get_point(3).is_bad = True
        kf5 = covisible_map.get_keyframe(5)

        window = select_local_window(kf5, covisible_map)

        assert [kf.id for kf in window.local_keyframes] == [5, 2]
        assert window.fixed_keyframes == []
        assert 3 not in [p.id for p in window.map_points]

    def test_repeated_selection(self, two_view_map: Map):
        """Test that selecting twice for the same trigger gives the same window."""
        kf5 = two_view_map.get_keyframe(5)

        first = select_local_window(kf5, two_view_map)
        second = select_local_window(kf5, two_view_map)

        assert [kf.id for kf in second.local_keyframes] == [
            kf.id for kf in first.local_keyframes
        ]
        assert [kf.id for kf in second.fixed_keyframes] == [
            kf.id for kf in first.fixed_keyframes
        ]
        assert [p.id for p in second.map_points] == [p.id for p in first.map_points]

    def test_degenerate_keyframe(self, calibration: CameraCalibration):
        """Test that a keyframe without points gives a degenerate window."""
        scene_map = Map()
        kf = KeyFrame.monocular(0, SE3.identity(), calibration, np.zeros((0, 2)))
        scene_map.add_keyframe(kf)

        window = select_local_window(kf, scene_map)

        assert window.is_degenerate
        assert window.max_keyframe_id == 0
