"""Object landmark: a persistent, cuboid-shaped object instance."""

from __future__ import annotations

from dataclasses import dataclass

from ..geometry import Cuboid


@dataclass(eq=False)
class Landmark:
    """An object instance shared by every keyframe that observes it.

    Attributes:
        id: Unique landmark id
        cuboid: Global pose and extent of the object
        quality: Detection/estimation confidence in (0, 1]; scales the
                 weight of camera-object constraints
        class_idx: Detector class index (-1 if unknown)
    """

    id: int
    cuboid: Cuboid
    quality: float = 1.0
    class_idx: int = -1
    # Stamp written by local BA (id of the triggering keyframe). Informational:
    # window membership is deduplicated with per-call sets, not this stamp
    ba_local_for_kf: int = -1

    def __post_init__(self) -> None:
        if not 0.0 < self.quality <= 1.0:
            raise ValueError(
                f"Landmark {self.id}: quality must be in (0, 1], got {self.quality}"
            )

    def get_cuboid(self) -> Cuboid:
        """Return a copy of the global cuboid."""
        return self.cuboid.copy()

    def set_pose_and_dimension(self, cuboid: Cuboid) -> None:
        """Replace the global pose and half-dimensions."""
        self.cuboid = cuboid.copy()

    def __repr__(self) -> str:
        return f"Landmark(id={self.id}, quality={self.quality:.2f}, {self.cuboid!r})"
