"""Tests for factors and the least-squares factor graph."""

import numpy as np
import pytest

from objslam.backend.graph_builder import CHI2_MONO, CHI2_STEREO, ReprojectionEdge
from objslam.backend.optimizer import (
    CameraCuboidFactor,
    FactorGraph,
    HuberKernel,
    MonoReprojectionFactor,
    StereoReprojectionFactor,
    quality_information,
)
from objslam.geometry import SE3, Cuboid
from objslam.map import MapPoint

FX, FY, CX, CY = 500.0, 500.0, 320.0, 240.0


def mono_factor(graph, point, measurement, information, pose=None):
    """Add a point and a pose variable joined by a mono factor."""
    point_var = graph.add_point(100, point)
    pose_var = graph.add_pose(0, SE3.identity() if pose is None else pose)
    factor = MonoReprojectionFactor(
        point_var, pose_var, np.asarray(measurement, dtype=float), information,
        FX, FY, CX, CY,
    )
    graph.add_factor(factor)
    return factor


def edge_for(factor, threshold):
    return ReprojectionEdge(
        factor=factor,
        keyframe=None,
        point=MapPoint(id=0, position_world=np.zeros(3)),
        chi2_threshold=threshold,
    )


class TestHuberKernel:
    """Test suite for HuberKernel."""

    def test_quadratic_region(self):
        """Test that small errors are not changed."""
        assert HuberKernel(2.0).rho(4.0) == 4.0

    def test_linear_region(self):
        """Test that large errors grow linearly."""
        assert HuberKernel(2.0).rho(9.0) == pytest.approx(2.0 * 2.0 * 3.0 - 4.0)

    def test_invalid_delta(self):
        """Test that delta must be positive."""
        with pytest.raises(ValueError, match="positive"):
            HuberKernel(0.0)


class TestReprojectionFactors:
    """Test suite for reprojection factors and outlier classification."""

    def test_mono_error(self):
        """Test that error is measurement minus projection."""
        graph = FactorGraph()
        factor = mono_factor(graph, [0.0, 0.0, 1.0], [321.0, 240.0], np.eye(2))

        np.testing.assert_allclose(factor.error(), [1.0, 0.0])
        assert factor.chi2() == 1.0
        assert factor.is_depth_positive()

    def test_mono_threshold_boundary_is_inlier(self):
        """Test that chi2 exactly at 5.991 is an inlier."""
        graph = FactorGraph()
        factor = mono_factor(graph, [0.0, 0.0, 1.0], [321.0, 240.0], np.eye(2) * 5.991)

        assert factor.chi2() == 5.991
        assert not edge_for(factor, CHI2_MONO).is_outlier()

    def test_mono_just_above_threshold_is_outlier(self):
        """Test that chi2 of 5.9911 is an outlier."""
        graph = FactorGraph()
        factor = mono_factor(graph, [0.0, 0.0, 1.0], [321.0, 240.0], np.eye(2) * 5.9911)

        assert edge_for(factor, CHI2_MONO).is_outlier()

    @pytest.mark.parametrize(
        "scale, outlier",
        [(7.815, False), (7.8151, True)],
    )
    def test_stereo_threshold_boundary(self, scale: float, outlier: bool):
        """Test the stereo boundary at 7.815."""
        graph = FactorGraph()
        point_var = graph.add_point(100, [0.0, 0.0, 1.0])
        pose_var = graph.add_pose(0, SE3.identity())
        factor = StereoReprojectionFactor(
            point_var, pose_var, np.array([321.0, 240.0, 270.0]), np.eye(3) * scale,
            FX, FY, CX, CY, bf=50.0,
        )
        graph.add_factor(factor)

        np.testing.assert_allclose(factor.error(), [1.0, 0.0, 0.0])
        assert edge_for(factor, CHI2_STEREO).is_outlier() == outlier

    def test_point_behind_camera_is_outlier(self):
        """Test that negative depth fails even with zero error."""
        graph = FactorGraph()
        factor = mono_factor(graph, [0.0, 0.0, -1.0], [320.0, 240.0], np.eye(2))

        assert factor.chi2() == 0.0
        assert not factor.is_depth_positive()
        assert edge_for(factor, CHI2_MONO).is_outlier()

    def test_weighted_residual_applies_kernel(self):
        """Test that the residual norm equals rho(chi2)."""
        graph = FactorGraph()
        factor = mono_factor(graph, [0.0, 0.0, 1.0], [330.0, 240.0], np.eye(2))
        factor.robust_kernel = HuberKernel(np.sqrt(CHI2_MONO))

        r = factor.weighted_residual(*(v.estimate for v in factor.variables))

        assert float(r @ r) == pytest.approx(factor.robust_kernel.rho(100.0))
        # chi2 ignores the kernel
        assert factor.chi2() == pytest.approx(100.0)

    def test_information_shape_checked(self):
        """Test that information must match the error dimension."""
        graph = FactorGraph()
        with pytest.raises(ValueError, match="information must be 2x2"):
            mono_factor(graph, [0.0, 0.0, 1.0], [320.0, 240.0], np.eye(3))


class TestCameraCuboidFactor:
    """Test suite for CameraCuboidFactor."""

    def test_zero_error_for_consistent_measurement(self):
        """Test that a measurement taken from the current pose has no error."""
        camera = SE3.from_rvec_tvec(np.array([0.0, 0.1, 0.0]), np.array([0.5, 0.0, 0.0]))
        cuboid = Cuboid(
            pose=SE3(rotation=np.eye(3), translation=np.array([0.3, 0.0, 5.0])),
            scale=np.array([0.5, 0.4, 0.3]),
        )
        graph = FactorGraph()
        pose_var = graph.add_pose(0, camera.inverse())
        cuboid_var = graph.add_cuboid(1, cuboid)
        factor = CameraCuboidFactor(
            pose_var, cuboid_var, cuboid.transform_to(camera), quality_information(0.9)
        )

        np.testing.assert_allclose(factor.error(), np.zeros(9), atol=1e-12)

    def test_quality_information(self):
        """Test that information is (2 * quality)^2 on the diagonal."""
        info = quality_information(0.9)

        assert info.shape == (9, 9)
        np.testing.assert_allclose(np.diag(info), np.full(9, 3.24))
        assert np.count_nonzero(info - np.diag(np.diag(info))) == 0


class TestFactorGraph:
    """Test suite for FactorGraph."""

    def test_duplicate_variable_id(self):
        """Test that variable ids are unique."""
        graph = FactorGraph()
        graph.add_pose(3, SE3.identity())

        with pytest.raises(ValueError, match="already used"):
            graph.add_point(3, np.zeros(3))

    def test_foreign_variable(self):
        """Test that factors may only use variables of the graph."""
        other = FactorGraph()
        point_var = other.add_point(0, [0.0, 0.0, 1.0])
        pose_var = other.add_pose(1, SE3.identity())
        factor = MonoReprojectionFactor(
            point_var, pose_var, np.array([320.0, 240.0]), np.eye(2), FX, FY, CX, CY
        )

        with pytest.raises(ValueError, match="not in the graph"):
            FactorGraph().add_factor(factor)

    def test_typed_accessors(self):
        """Test that estimates are recovered by kind."""
        graph = FactorGraph()
        graph.add_pose(0, SE3.identity())
        graph.add_point(1, [1.0, 2.0, 3.0])
        graph.add_cuboid(2, Cuboid())

        assert graph.pose_estimate(0).is_close(SE3.identity())
        np.testing.assert_allclose(graph.point_estimate(1), [1.0, 2.0, 3.0])
        assert isinstance(graph.cuboid_estimate(2), Cuboid)

        with pytest.raises(TypeError, match="is a point, not a pose"):
            graph.pose_estimate(1)
        with pytest.raises(TypeError, match="is a pose, not a cuboid"):
            graph.cuboid_estimate(0)

    def test_optimize_without_factors(self):
        """Test that an empty problem is not solved."""
        graph = FactorGraph()
        graph.add_pose(0, SE3.identity())

        summary = graph.optimize(5)

        assert not summary.ran
        assert summary.message == "No active factors"

    def test_optimize_without_free_variables(self):
        """Test that a fully fixed problem is not solved."""
        graph = FactorGraph()
        point_var = graph.add_point(1, [0.0, 0.0, 1.0], fixed=True)
        pose_var = graph.add_pose(0, SE3.identity(), fixed=True)
        graph.add_factor(
            MonoReprojectionFactor(
                point_var, pose_var, np.array([321.0, 240.0]), np.eye(2), FX, FY, CX, CY
            )
        )

        summary = graph.optimize(5)

        assert not summary.ran
        assert summary.num_active_factors == 1

    def test_invalid_step_trials(self):
        """Test that every iteration needs at least one evaluation."""
        with pytest.raises(ValueError, match="step_trials"):
            FactorGraph(step_trials=0)

    def test_evaluation_budget(self):
        """Test that evaluations stay within iterations * step_trials + 1."""
        graph = FactorGraph(step_trials=3)
        mono_factor(graph, [0.3, 0.2, 2.0], [321.0, 240.0], np.eye(2))

        summary = graph.optimize(2)

        assert summary.ran
        assert 1 <= summary.evaluations <= 7

    def test_triangulates_point(self):
        """Test that a point seen by two fixed cameras converges to the truth."""
        truth = np.array([0.2, -0.1, 4.0])
        graph = FactorGraph()
        point_var = graph.add_point(10, truth + [0.1, 0.1, -0.3], marginalized=True)
        poses = [
            SE3.identity(),
            SE3(rotation=np.eye(3), translation=np.array([0.5, 0.0, 0.0])),
            SE3(rotation=np.eye(3), translation=np.array([0.0, 0.5, 0.0])),
        ]
        for var_id, pose_wc in enumerate(poses):
            pose_cw = pose_wc.inverse()
            pose_var = graph.add_pose(var_id, pose_cw, fixed=True)
            p_cam = pose_cw.transform_point(truth)
            uv = np.array([FX * p_cam[0] / p_cam[2] + CX, FY * p_cam[1] / p_cam[2] + CY])
            graph.add_factor(
                MonoReprojectionFactor(point_var, pose_var, uv, np.eye(2), FX, FY, CX, CY)
            )

        summary = graph.optimize(20)

        assert summary.ran
        assert summary.final_cost < summary.initial_cost
        np.testing.assert_allclose(graph.point_estimate(10), truth, atol=1e-4)
        # Fixed variables are untouched
        assert graph.pose_estimate(1).is_close(poses[1].inverse(), atol=0.0)

    def test_levels(self):
        """Test that only factors of the requested level are optimized."""
        truth = np.array([0.0, 0.0, 4.0])
        graph = FactorGraph()
        point_var = graph.add_point(10, truth + [0.05, -0.05, 0.2])
        factors = []
        for var_id, x in enumerate([0.0, 0.5, -0.5]):
            pose_cw = SE3(rotation=np.eye(3), translation=np.array([-x, 0.0, 0.0]))
            pose_var = graph.add_pose(var_id, pose_cw, fixed=True)
            p_cam = pose_cw.transform_point(truth)
            uv = np.array([FX * p_cam[0] / p_cam[2] + CX, FY * p_cam[1] / p_cam[2] + CY])
            factors.append(
                graph.add_factor(
                    MonoReprojectionFactor(point_var, pose_var, uv, np.eye(2), FX, FY, CX, CY)
                )
            )
        # Corrupt one measurement and exclude it
        factors[2].measurement = factors[2].measurement + [0.0, 40.0]
        factors[2].level = 1

        assert not graph.optimize(10, level=2).ran

        graph.optimize(20, level=0)

        np.testing.assert_allclose(graph.point_estimate(10), truth, atol=1e-4)
        assert graph.total_chi2(level=0) < 1e-6
        assert graph.total_chi2(level=1) == pytest.approx(1600.0, rel=1e-3)

    def test_marginalized_variables_ordered_last(self):
        """Test the parameter ordering of free variables."""
        graph = FactorGraph()
        point_var = graph.add_point(0, [0.0, 0.0, 1.0], marginalized=True)
        pose_var = graph.add_pose(1, SE3.identity())
        factor = graph.add_factor(
            MonoReprojectionFactor(
                point_var, pose_var, np.array([320.0, 240.0]), np.eye(2), FX, FY, CX, CY
            )
        )

        free = graph._collect_free_variables([factor])

        assert [v.id for v in free] == [1, 0]
