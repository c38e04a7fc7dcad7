"""SE(3) pose representation for rigid body transformations."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np


def log_so3(R: np.ndarray) -> np.ndarray:
    """Logarithm map from SO(3) to so(3) (axis-angle vector).

    Stays accurate for rotations of a few microradians, where
    cv2.Rodrigues rounds to zero.

    Args:
        R: 3x3 rotation matrix

    Returns:
        Rotation vector (3,), axis * angle with angle in [0, pi]
    """
    w = np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]])
    sin_theta = 0.5 * np.linalg.norm(w)
    cos_theta = 0.5 * (np.trace(R) - 1.0)
    theta = np.arctan2(sin_theta, cos_theta)

    if sin_theta < 1e-9:
        if cos_theta > 0:
            # First-order approximation for small angles: [omega]x ≈ (R - R^T) / 2
            return 0.5 * w
        # Angle close to pi: axis from the symmetric part R = 2aa^T - I
        B = 0.5 * (R + np.eye(3))
        i = int(np.argmax(np.diag(B)))
        axis = B[:, i] / np.sqrt(B[i, i])
        return np.pi * axis

    return theta / (2.0 * sin_theta) * w


@dataclass
class SE3:
    """Rigid body transformation (rotation + translation) in SE(3).

    An SE3 named ``T_a_b`` maps points expressed in frame ``b`` into frame
    ``a``:

        p_a = R @ p_b + t

    Keyframes store ``T_world_camera``; the optimizer works on the inverse
    ``T_camera_world`` because that is what projects world points.

    Attributes:
        rotation: 3x3 orthonormal rotation matrix (det = +1)
        translation: 3D translation vector
    """

    rotation: np.ndarray  # 3x3 rotation matrix
    translation: np.ndarray  # (3,) translation vector

    def __post_init__(self) -> None:
        """Validate and normalize inputs."""
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).flatten()

        if self.rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(
                f"Translation must be (3,), got {self.translation.shape}"
            )

    @classmethod
    def identity(cls) -> SE3:
        """Create identity transformation (no rotation, no translation)."""
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> SE3:
        """Create SE3 from 4x4 homogeneous transformation matrix.

        Args:
            T: 4x4 transformation matrix [[R, t], [0, 1]]

        Returns:
            SE3 transformation
        """
        T = np.asarray(T)
        if T.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4, got {T.shape}")
        return cls(rotation=T[:3, :3], translation=T[:3, 3])

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> SE3:
        """Create SE3 from an OpenCV Rodrigues vector and a translation.

        Args:
            rvec: 3D Rodrigues rotation vector (axis * angle)
            tvec: 3D translation vector

        Returns:
            SE3 transformation
        """
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
        return cls(rotation=R, translation=np.asarray(tvec).flatten())

    @classmethod
    def exp(cls, vec: np.ndarray) -> SE3:
        """Build a transform from a 6-vector ``[rvec, t]``.

        This is the inverse of :meth:`log` and the parameterization the
        optimizer uses for pose variables.
        """
        vec = np.asarray(vec, dtype=np.float64).flatten()
        if vec.shape != (6,):
            raise ValueError(f"Pose vector must be (6,), got {vec.shape}")
        return cls.from_rvec_tvec(vec[:3], vec[3:])

    def log(self) -> np.ndarray:
        """Return the 6-vector ``[rvec, t]`` of this transform.

        Rotation is the Rodrigues (axis-angle) vector, translation is taken
        as-is. Used both for packing optimizer parameters and as the pose
        part of cuboid errors.
        """
        return np.concatenate([log_so3(self.rotation), self.translation])

    def to_matrix(self) -> np.ndarray:
        """Convert to 4x4 homogeneous transformation matrix."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def to_rvec_tvec(self) -> tuple[np.ndarray, np.ndarray]:
        """Convert to OpenCV Rodrigues vector and translation."""
        return log_so3(self.rotation), self.translation.copy()

    def inverse(self) -> SE3:
        """Compute the inverse transformation [R^T, -R^T @ t]."""
        R_inv = self.rotation.T
        t_inv = -R_inv @ self.translation
        return SE3(rotation=R_inv, translation=t_inv)

    def compose(self, other: SE3) -> SE3:
        """Compose with another transformation: self @ other.

        Example:
            T_world_camera.compose(T_camera_object) gives T_world_object

        Args:
            other: SE3 transformation applied first

        Returns:
            Composed SE3 transformation (self @ other)
        """
        R = self.rotation @ other.rotation
        t = self.rotation @ other.translation + self.translation
        return SE3(rotation=R, translation=t)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Transform an Nx3 array of points from frame b into frame a."""
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            points = points.reshape(1, 3)
        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")
        return (self.rotation @ points.T).T + self.translation

    def transform_point(self, point: np.ndarray) -> np.ndarray:
        """Transform a single 3D point from frame b into frame a."""
        point = np.asarray(point, dtype=np.float64).flatten()
        return self.rotation @ point + self.translation

    def copy(self) -> SE3:
        """Return a deep copy."""
        return SE3(rotation=self.rotation.copy(), translation=self.translation.copy())

    def is_close(self, other: SE3, atol: float = 1e-9) -> bool:
        """Return True if both transforms agree element-wise within ``atol``."""
        return bool(
            np.allclose(self.rotation, other.rotation, atol=atol)
            and np.allclose(self.translation, other.translation, atol=atol)
        )

    @property
    def position(self) -> np.ndarray:
        """Return the translation component (origin of frame b in frame a)."""
        return self.translation.copy()

    def __repr__(self) -> str:
        """Return string representation."""
        pos = self.position
        return f"SE3(position=[{pos[0]:.3f}, {pos[1]:.3f}, {pos[2]:.3f}])"

    def __matmul__(self, other: SE3) -> SE3:
        """Matrix multiplication operator for composition (T1 @ T2)."""
        return self.compose(other)
