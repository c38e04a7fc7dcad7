"""Factor graph construction for local bundle adjustment.

Variable ids share one integer space, partitioned so that the three kinds
can never collide:

    pose     = keyframe id                                  in [0, K]
    cuboid   = K + 1 + landmark id                          in [K+1, K+1+L]
    point    = map point id + K + L + 2                     >= K+L+2

where K is the largest keyframe id in the window and L the largest
landmark id. The same formulas are used to create variables and to read
the results back.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from .optimizer import (
    CameraCuboidFactor,
    FactorGraph,
    HuberKernel,
    MonoReprojectionFactor,
    StereoReprojectionFactor,
    quality_information,
)

if TYPE_CHECKING:
    from ..map import KeyFrame, Map, MapPoint
    from .local_window import LocalWindow

# 95% chi-square quantiles for 2 and 3 degrees of freedom
CHI2_MONO = 5.991
CHI2_STEREO = 7.815


@dataclass(frozen=True)
class VariableIds:
    """Maps keyframe, landmark and map point ids to graph variable ids."""

    max_kf_id: int
    max_landmark_id: int

    def pose(self, kf_id: int) -> int:
        return kf_id

    def landmark(self, landmark_id: int) -> int:
        return self.max_kf_id + 1 + landmark_id

    def point(self, mappoint_id: int) -> int:
        return mappoint_id + self.max_kf_id + self.max_landmark_id + 2


@dataclass
class ReprojectionEdge:
    """A reprojection factor together with the observation it encodes."""

    factor: MonoReprojectionFactor
    keyframe: KeyFrame
    point: MapPoint
    chi2_threshold: float

    @property
    def is_stereo(self) -> bool:
        return isinstance(self.factor, StereoReprojectionFactor)

    def is_outlier(self) -> bool:
        """Return True if chi2 exceeds the threshold or depth is not positive.

        A chi2 exactly equal to the threshold counts as an inlier.
        """
        return self.factor.chi2() > self.chi2_threshold or not self.factor.is_depth_positive()


@dataclass
class LocalProblem:
    """Factor graph of one local BA run plus the bookkeeping to read it back."""

    graph: FactorGraph
    ids: VariableIds
    edges: list[ReprojectionEdge] = field(default_factory=list)
    cuboid_factors: list[CameraCuboidFactor] = field(default_factory=list)

    @property
    def num_edges(self) -> int:
        return len(self.edges)


def build_local_problem(
    window: LocalWindow,
    scene_map: Map,
    chi2_mono: float = CHI2_MONO,
    chi2_stereo: float = CHI2_STEREO,
    cuboid_weight_scale: float = 2.0,
) -> LocalProblem:
    """Create variables and factors for a local window.

    Args:
        window: Output of select_local_window
        scene_map: Scene graph used to resolve observations
        chi2_mono: Outlier threshold for 2D reprojection errors
        chi2_stereo: Outlier threshold for stereo reprojection errors
        cuboid_weight_scale: Camera-cuboid information is
                             diag((cuboid_weight_scale * quality)^2)

    Returns:
        LocalProblem ready for optimization
    """
    ids = VariableIds(
        max_kf_id=window.max_keyframe_id,
        max_landmark_id=window.max_landmark_id,
    )
    graph = FactorGraph()
    problem = LocalProblem(graph=graph, ids=ids)

    # Pose variables; keyframe 0 anchors the gauge
    pose_vars = {}
    for kf in window.local_keyframes:
        pose_vars[kf.id] = graph.add_pose(ids.pose(kf.id), kf.pose_cw, fixed=kf.id == 0)
    for kf in window.fixed_keyframes:
        pose_vars[kf.id] = graph.add_pose(ids.pose(kf.id), kf.pose_cw, fixed=True)

    cuboid_vars = {}
    for landmark in window.landmarks:
        cuboid_vars[landmark.id] = graph.add_cuboid(
            ids.landmark(landmark.id), landmark.get_cuboid()
        )

    huber_mono = math.sqrt(chi2_mono)
    huber_stereo = math.sqrt(chi2_stereo)

    for point in window.map_points:
        point_var = graph.add_point(
            ids.point(point.id), point.position_world, marginalized=True
        )

        for observer, kp_idx in scene_map.point_observers(point):
            # Observers added after window selection have no pose variable
            if observer.is_bad or observer.id not in pose_vars:
                continue

            pose_var = pose_vars[observer.id]
            calib = observer.calibration
            u, v = observer.keypoints[kp_idx]
            inv_sigma2 = observer.inv_sigma2(kp_idx)

            if observer.is_monocular(kp_idx):
                factor = MonoReprojectionFactor(
                    point_var,
                    pose_var,
                    measurement=np.array([u, v]),
                    information=np.eye(2) * inv_sigma2,
                    fx=calib.fx,
                    fy=calib.fy,
                    cx=calib.cx,
                    cy=calib.cy,
                    robust_kernel=HuberKernel(huber_mono),
                )
                graph.add_factor(factor)
                problem.edges.append(
                    ReprojectionEdge(factor, observer, point, chi2_mono)
                )

                # Camera-object constraints of the observing keyframe
                for landmark in scene_map.keyframe_landmarks(observer):
                    measurement = window.landmark_measurements.get(
                        (observer.id, landmark.id)
                    )
                    if measurement is None or landmark.id not in cuboid_vars:
                        continue
                    cuboid_factor = CameraCuboidFactor(
                        pose_var,
                        cuboid_vars[landmark.id],
                        measurement=measurement,
                        information=quality_information(
                            landmark.quality, cuboid_weight_scale
                        ),
                    )
                    graph.add_factor(cuboid_factor)
                    problem.cuboid_factors.append(cuboid_factor)
            else:
                factor = StereoReprojectionFactor(
                    point_var,
                    pose_var,
                    measurement=np.array([u, v, observer.u_right[kp_idx]]),
                    information=np.eye(3) * inv_sigma2,
                    fx=calib.fx,
                    fy=calib.fy,
                    cx=calib.cx,
                    cy=calib.cy,
                    bf=calib.bf,
                    robust_kernel=HuberKernel(huber_stereo),
                )
                graph.add_factor(factor)
                problem.edges.append(
                    ReprojectionEdge(factor, observer, point, chi2_stereo)
                )

    return problem
