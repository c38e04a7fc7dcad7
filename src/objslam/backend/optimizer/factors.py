"""Measurement factors for local bundle adjustment.

Errors follow the ``measurement - prediction`` convention. ``chi2()`` is
always the plain Mahalanobis norm e^T * Omega * e, independent of any
robust kernel, which is what outlier classification compares against the
chi-square thresholds.
"""

from __future__ import annotations

import math
from typing import ClassVar

import numpy as np

from ...geometry import SE3, Cuboid
from .variables import CuboidVariable, PointVariable, PoseVariable, Variable

# Smallest depth magnitude used when projecting, avoids division by zero
_MIN_DEPTH = 1e-6


class HuberKernel:
    """Huber robust kernel applied to the squared error.

    rho(e2) = e2                          if e2 <= delta^2
            = 2 * delta * sqrt(e2) - delta^2  otherwise
    """

    def __init__(self, delta: float) -> None:
        if delta <= 0:
            raise ValueError(f"Huber delta must be positive, got {delta}")
        self.delta = float(delta)

    def rho(self, e2: float) -> float:
        """Return the robustified squared error."""
        delta_sq = self.delta * self.delta
        if e2 <= delta_sq:
            return e2
        return 2.0 * self.delta * math.sqrt(e2) - delta_sq

    def __repr__(self) -> str:
        return f"HuberKernel(delta={self.delta:.4f})"


class Factor:
    """Base class for factors connecting an ordered list of variables."""

    dimension: ClassVar[int]

    def __init__(
        self,
        variables: tuple[Variable, ...],
        measurement,
        information: np.ndarray,
        robust_kernel: HuberKernel | None = None,
    ) -> None:
        self.variables = tuple(variables)
        self.measurement = measurement
        self.robust_kernel = robust_kernel
        self.level = 0
        self.information = information

    @property
    def information(self) -> np.ndarray:
        return self._information

    @information.setter
    def information(self, information: np.ndarray) -> None:
        information = np.asarray(information, dtype=np.float64)
        if information.shape != (self.dimension, self.dimension):
            raise ValueError(
                f"{type(self).__name__}: information must be "
                f"{self.dimension}x{self.dimension}, got {information.shape}"
            )
        self._information = information
        # Omega = L @ L.T, so ||L.T @ e||^2 == e.T @ Omega @ e
        self._sqrt_information = np.linalg.cholesky(information).T

    def compute_error(self, *estimates) -> np.ndarray:
        raise NotImplementedError

    def error(self) -> np.ndarray:
        """Return the error at the variables' current estimates."""
        return self.compute_error(*(v.estimate for v in self.variables))

    def chi2(self) -> float:
        """Return e^T * Omega * e at the current estimates."""
        e = self.error()
        return float(e @ self._information @ e)

    def weighted_residual(self, *estimates) -> np.ndarray:
        """Return the whitened, robustified residual for the solver.

        Its squared norm equals rho(e^T * Omega * e) when a kernel is set.
        """
        r = self._sqrt_information @ self.compute_error(*estimates)
        if self.robust_kernel is None:
            return r
        e2 = float(r @ r)
        if e2 <= 0.0:
            return r
        return r * math.sqrt(self.robust_kernel.rho(e2) / e2)


class MonoReprojectionFactor(Factor):
    """Pixel reprojection of a world point into a monocular keypoint.

    Variables are ordered (point, pose); the pose is T_camera_world.
    """

    dimension = 2

    def __init__(
        self,
        point: PointVariable,
        pose: PoseVariable,
        measurement: np.ndarray,
        information: np.ndarray,
        fx: float,
        fy: float,
        cx: float,
        cy: float,
        robust_kernel: HuberKernel | None = None,
    ) -> None:
        self.fx, self.fy, self.cx, self.cy = fx, fy, cx, cy
        super().__init__(
            (point, pose),
            np.asarray(measurement, dtype=np.float64).flatten(),
            information,
            robust_kernel,
        )

    def _camera_point(self, point: np.ndarray, pose: SE3) -> np.ndarray:
        return pose.transform_point(point)

    def _project(self, p_cam: np.ndarray) -> np.ndarray:
        z = p_cam[2] if abs(p_cam[2]) > _MIN_DEPTH else math.copysign(_MIN_DEPTH, p_cam[2])
        return np.array(
            [self.fx * p_cam[0] / z + self.cx, self.fy * p_cam[1] / z + self.cy]
        )

    def compute_error(self, point: np.ndarray, pose: SE3) -> np.ndarray:
        return self.measurement - self._project(self._camera_point(point, pose))

    def is_depth_positive(self) -> bool:
        """Return True if the point lies in front of the camera."""
        point, pose = (v.estimate for v in self.variables)
        return bool(self._camera_point(point, pose)[2] > 0.0)


class StereoReprojectionFactor(MonoReprojectionFactor):
    """Reprojection into a stereo keypoint (u_left, v, u_right)."""

    dimension = 3

    def __init__(
        self,
        point: PointVariable,
        pose: PoseVariable,
        measurement: np.ndarray,
        information: np.ndarray,
        fx: float,
        fy: float,
        cx: float,
        cy: float,
        bf: float,
        robust_kernel: HuberKernel | None = None,
    ) -> None:
        self.bf = bf
        super().__init__(
            point, pose, measurement, information, fx, fy, cx, cy, robust_kernel
        )

    def _project(self, p_cam: np.ndarray) -> np.ndarray:
        z = p_cam[2] if abs(p_cam[2]) > _MIN_DEPTH else math.copysign(_MIN_DEPTH, p_cam[2])
        u = self.fx * p_cam[0] / z + self.cx
        v = self.fy * p_cam[1] / z + self.cy
        return np.array([u, v, u - self.bf / z])


class CameraCuboidFactor(Factor):
    """Camera-object constraint between a keyframe pose and a cuboid.

    The measurement is the cuboid as seen from the camera. The error maps
    it into the world with the current camera pose and compares it against
    the cuboid estimate. Variables are ordered (pose, cuboid).
    """

    dimension = 9

    def __init__(
        self,
        pose: PoseVariable,
        cuboid: CuboidVariable,
        measurement: Cuboid,
        information: np.ndarray,
        robust_kernel: HuberKernel | None = None,
    ) -> None:
        super().__init__((pose, cuboid), measurement.copy(), information, robust_kernel)

    def compute_error(self, pose: SE3, cuboid: Cuboid) -> np.ndarray:
        predicted = self.measurement.transform_from(pose.inverse())
        return cuboid.log_error(predicted)


def quality_information(quality: float, weight_scale: float = 2.0) -> np.ndarray:
    """Return the 9x9 camera-cuboid information for a landmark quality.

    Every diagonal entry is (weight_scale * quality)^2.
    """
    inv_sigma = np.full(9, weight_scale * quality)
    return np.diag(inv_sigma * inv_sigma)
