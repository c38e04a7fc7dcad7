"""Map point data structure."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


@dataclass(eq=False)
class MapPoint:
    """A triangulated 3D point in the map with its observations.

    Observations are stored as ``keyframe_id -> keypoint_idx`` so that the
    point never owns the keyframes observing it. Deletion is lazy: a culled
    point is flagged ``is_bad`` and every reader is expected to skip it.

    Attributes:
        id: Unique identifier for this map point
        position_world: 3D position in world frame
        observations: Keyframe id -> keypoint index in that keyframe
        reference_kf_id: Keyframe used for the scale-invariance distances
        normal: Mean unit viewing direction (world frame)
        min_distance: Minimum distance at which the point is expected to be seen
        max_distance: Maximum distance at which the point is expected to be seen
        is_bad: True once the point has been culled or merged
    """

    id: int
    position_world: np.ndarray  # (3,) float64
    observations: dict[int, int] = field(default_factory=dict)
    reference_kf_id: int | None = None
    normal: np.ndarray = field(default_factory=lambda: np.zeros(3))
    min_distance: float = 0.0
    max_distance: float = 0.0
    is_bad: bool = False
    # Stamp written by local BA (id of the triggering keyframe). Informational:
    # window membership is deduplicated with per-call sets, not this stamp
    ba_local_for_kf: int = -1

    def __post_init__(self) -> None:
        self.position_world = np.asarray(self.position_world, dtype=np.float64).flatten()
        if self.position_world.shape != (3,):
            raise ValueError(
                f"Map point {self.id}: position must be (3,), "
                f"got {self.position_world.shape}"
            )

    @property
    def num_observations(self) -> int:
        """Return number of keyframes observing this point."""
        return len(self.observations)

    def add_observation(self, kf_id: int, kp_idx: int) -> None:
        """Record that a keyframe observes this point.

        The first observer becomes the reference keyframe.
        """
        self.observations[kf_id] = kp_idx
        if self.reference_kf_id is None:
            self.reference_kf_id = kf_id

    def erase_observation(self, kf_id: int) -> bool:
        """Remove the observation from a keyframe.

        Missing observations are ignored. When the reference keyframe is
        removed, the first remaining observer takes its place.

        Returns:
            True if an observation was removed
        """
        if kf_id not in self.observations:
            return False

        del self.observations[kf_id]
        if self.reference_kf_id == kf_id:
            self.reference_kf_id = next(iter(self.observations), None)
        return True

    def is_observed_in_keyframe(self, kf_id: int) -> bool:
        """Check if this point was observed in a keyframe."""
        return kf_id in self.observations

    def set_world_pos(self, position: np.ndarray) -> None:
        """Update the 3D position of this map point (after optimization)."""
        self.position_world = np.asarray(position, dtype=np.float64).flatten().copy()

    def __repr__(self) -> str:
        p = self.position_world
        return (
            f"MapPoint(id={self.id}, position=[{p[0]:.3f}, {p[1]:.3f}, {p[2]:.3f}], "
            f"obs={self.num_observations}, bad={self.is_bad})"
        )
