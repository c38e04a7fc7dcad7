"""Cuboid object representation (9 degrees of freedom).

A cuboid describes a rigid box by its pose (3 translation + 3 rotation)
and its half-dimensions along the box axes (3 scale parameters). Object
landmarks store their cuboid in the world frame; keyframes cache the same
cuboid expressed in their camera frame, which is the camera-object
measurement used during local bundle adjustment.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from .pose import SE3

# Unit box corners, ordered bottom face then top face
_UNIT_CORNERS = np.array(
    [
        [1, 1, -1],
        [1, -1, -1],
        [-1, -1, -1],
        [-1, 1, -1],
        [1, 1, 1],
        [1, -1, 1],
        [-1, -1, 1],
        [-1, 1, 1],
    ],
    dtype=np.float64,
)


@dataclass
class Cuboid:
    """Rigid 3D box with pose and half-extent.

    Attributes:
        pose: Transform from the box frame to the frame the cuboid is
              expressed in (world for landmarks, camera for measurements)
        scale: (3,) half-dimensions along the box x, y, z axes
    """

    pose: SE3 = field(default_factory=SE3.identity)
    scale: np.ndarray = field(default_factory=lambda: np.ones(3))

    def __post_init__(self) -> None:
        self.scale = np.asarray(self.scale, dtype=np.float64).flatten()
        if self.scale.shape != (3,):
            raise ValueError(f"Scale must be (3,), got {self.scale.shape}")

    @classmethod
    def from_vector(cls, vec: np.ndarray) -> Cuboid:
        """Create a cuboid from ``[translation, rvec, half-dims]``.

        Args:
            vec: (9,) parameter vector

        Returns:
            Cuboid instance
        """
        vec = np.asarray(vec, dtype=np.float64).flatten()
        if vec.shape != (9,):
            raise ValueError(f"Cuboid vector must be (9,), got {vec.shape}")
        pose = SE3.from_rvec_tvec(vec[3:6], vec[0:3])
        return cls(pose=pose, scale=vec[6:9])

    def to_vector(self) -> np.ndarray:
        """Return the (9,) parameter vector ``[translation, rvec, half-dims]``."""
        rvec, tvec = self.pose.to_rvec_tvec()
        return np.concatenate([tvec, rvec, self.scale])

    def transform_to(self, T_world_camera: SE3) -> Cuboid:
        """Express a world-frame cuboid in a camera frame.

        Args:
            T_world_camera: Camera pose in world frame

        Returns:
            The same box with its pose relative to the camera
        """
        local_pose = T_world_camera.inverse().compose(self.pose)
        return Cuboid(pose=local_pose, scale=self.scale.copy())

    def transform_from(self, T_world_camera: SE3) -> Cuboid:
        """Express a camera-frame cuboid in the world frame.

        Args:
            T_world_camera: Camera pose in world frame

        Returns:
            The same box with its pose relative to the world
        """
        global_pose = T_world_camera.compose(self.pose)
        return Cuboid(pose=global_pose, scale=self.scale.copy())

    def log_error(self, other: Cuboid) -> np.ndarray:
        """Return the 9D difference between two cuboids.

        The first six entries are the pose log of ``self^-1 @ other``, the
        last three are ``self.scale - other.scale``. Zero when both boxes
        coincide.
        """
        relative = self.pose.inverse().compose(other.pose)
        return np.concatenate([relative.log(), self.scale - other.scale])

    def corners(self) -> np.ndarray:
        """Return the 8x3 box corners in the cuboid's reference frame."""
        return self.pose.transform_points(_UNIT_CORNERS * self.scale)

    @property
    def center(self) -> np.ndarray:
        """Return the box center."""
        return self.pose.translation.copy()

    def copy(self) -> Cuboid:
        """Return a deep copy."""
        return Cuboid(pose=self.pose.copy(), scale=self.scale.copy())

    def __repr__(self) -> str:
        c = self.pose.translation
        s = self.scale
        return (
            f"Cuboid(center=[{c[0]:.3f}, {c[1]:.3f}, {c[2]:.3f}], "
            f"half_dims=[{s[0]:.3f}, {s[1]:.3f}, {s[2]:.3f}])"
        )
