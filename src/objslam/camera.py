"""Pinhole / rectified-stereo camera calibration."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import yaml


@dataclass
class CameraCalibration:
    """Camera intrinsics plus the ORB scale pyramid.

    The stereo term ``bf`` (baseline times focal length) is only needed for
    stereo/RGB-D observations; keep it at 0 for a monocular camera.
    """

    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)
    bf: float = 0.0  # Stereo baseline * fx (pixels * meters)
    scale_factor: float = 1.2  # Scale between pyramid levels
    n_levels: int = 8  # Number of pyramid levels

    def __post_init__(self) -> None:
        if self.n_levels < 1:
            raise ValueError(f"n_levels must be >= 1, got {self.n_levels}")
        if self.scale_factor < 1.0:
            raise ValueError(f"scale_factor must be >= 1, got {self.scale_factor}")

        self.scale_factors = self.scale_factor ** np.arange(self.n_levels)
        self.level_sigma2 = self.scale_factors**2
        self.inv_level_sigma2 = 1.0 / self.level_sigma2

    @classmethod
    def from_dict(cls, data: dict) -> CameraCalibration:
        """Create calibration from a parsed settings dictionary.

        Args:
            data: Mapping with ``intrinsics: [fx, fy, cx, cy]`` and optional
                  ``bf``, ``scale_factor``, ``n_levels`` entries

        Returns:
            CameraCalibration instance

        Raises:
            ValueError: If the intrinsics entry is missing or malformed
        """
        intrinsics = data.get("intrinsics")
        if intrinsics is None or len(intrinsics) != 4:
            raise ValueError("Invalid intrinsics: expected [fx, fy, cx, cy]")

        return cls(
            fx=float(intrinsics[0]),
            fy=float(intrinsics[1]),
            cx=float(intrinsics[2]),
            cy=float(intrinsics[3]),
            bf=float(data.get("bf", 0.0)),
            scale_factor=float(data.get("scale_factor", 1.2)),
            n_levels=int(data.get("n_levels", 8)),
        )

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> CameraCalibration:
        """Load calibration from a YAML settings file.

        Args:
            yaml_path: Path to the camera settings file

        Returns:
            CameraCalibration instance

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file content is invalid
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Calibration file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Invalid calibration file: {yaml_path}")

        return cls.from_dict(data)

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def project(self, p_cam: np.ndarray) -> np.ndarray:
        """Project a camera-frame point to pixel coordinates (u, v)."""
        inv_z = 1.0 / p_cam[2]
        return np.array(
            [
                self.fx * p_cam[0] * inv_z + self.cx,
                self.fy * p_cam[1] * inv_z + self.cy,
            ]
        )

    def project_stereo(self, p_cam: np.ndarray) -> np.ndarray:
        """Project a camera-frame point to (u_left, v, u_right)."""
        uv = self.project(p_cam)
        return np.array([uv[0], uv[1], uv[0] - self.bf / p_cam[2]])

    @property
    def is_stereo(self) -> bool:
        """Return True if a stereo baseline is configured."""
        return self.bf > 0.0
