"""Selection of the local optimization window around a keyframe.

Given the keyframe that triggered local bundle adjustment, the window
contains:

- local keyframes: the trigger and its covisible neighbors (optimized)
- local map points: every good point seen by a local keyframe (optimized)
- fixed keyframes: other keyframes seeing local points (held constant)
- local landmarks: object landmarks associated with local keyframes

Entities are stamped with the trigger keyframe id as they enter the
window. Deduplication itself uses per-call id sets, so a concurrent run
overwriting a stamp, or the same keyframe triggering twice, cannot make
an entity enter the window twice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..geometry import Cuboid
    from ..map import KeyFrame, Landmark, Map, MapPoint


@dataclass
class LocalWindow:
    """Keyframes, points and landmarks entering one local BA run."""

    trigger_id: int
    local_keyframes: list[KeyFrame] = field(default_factory=list)
    fixed_keyframes: list[KeyFrame] = field(default_factory=list)
    map_points: list[MapPoint] = field(default_factory=list)
    landmarks: list[Landmark] = field(default_factory=list)
    # (keyframe id, landmark id) -> landmark cuboid seen from the keyframe
    landmark_measurements: dict[tuple[int, int], Cuboid] = field(
        default_factory=dict
    )

    @property
    def is_degenerate(self) -> bool:
        """Return True if there is nothing to optimize."""
        return len(self.local_keyframes) == 0 or len(self.map_points) == 0

    @property
    def max_keyframe_id(self) -> int:
        """Return the largest local or fixed keyframe id (0 if none)."""
        ids = [kf.id for kf in self.local_keyframes + self.fixed_keyframes]
        return max(ids, default=0)

    @property
    def max_landmark_id(self) -> int:
        """Return the largest local landmark id (0 if none)."""
        return max((lm.id for lm in self.landmarks), default=0)


def select_local_window(keyframe: KeyFrame, scene_map: Map) -> LocalWindow:
    """Collect the local window for a keyframe.

    Reads the map without locking; concurrent writers may be observed
    mid-update, which only affects which entities enter the window.

    Args:
        keyframe: Keyframe that triggered local bundle adjustment
        scene_map: Shared scene graph

    Returns:
        LocalWindow with the landmark measurements of every
        (local keyframe, local landmark) pair
    """
    trigger_id = keyframe.id
    window = LocalWindow(trigger_id=trigger_id)

    # Local keyframes: trigger plus covisible neighbors. Bad ones are still
    # claimed as local so they are not picked up as fixed cameras later.
    local_ids: set[int] = set()
    for candidate in [keyframe] + scene_map.covisible_keyframes(keyframe):
        if candidate.id in local_ids:
            continue
        local_ids.add(candidate.id)
        candidate.ba_local_for_kf = trigger_id
        if not candidate.is_bad:
            window.local_keyframes.append(candidate)

    # Local map points seen in local keyframes
    point_ids: set[int] = set()
    for local_kf in window.local_keyframes:
        for point in scene_map.keyframe_map_points(local_kf):
            if point.is_bad or point.id in point_ids:
                continue
            point_ids.add(point.id)
            point.ba_local_for_kf = trigger_id
            window.map_points.append(point)

    # Fixed keyframes: see local map points but are not local themselves
    fixed_ids: set[int] = set()
    for point in window.map_points:
        for observer, _ in scene_map.point_observers(point):
            if observer.id in local_ids or observer.id in fixed_ids:
                continue
            fixed_ids.add(observer.id)
            observer.ba_fixed_for_kf = trigger_id
            if not observer.is_bad:
                window.fixed_keyframes.append(observer)

    # Local landmarks and their camera-frame measurements
    landmark_ids: set[int] = set()
    for local_kf in window.local_keyframes:
        for landmark in scene_map.keyframe_landmarks(local_kf):
            if landmark.id not in landmark_ids:
                landmark_ids.add(landmark.id)
                landmark.ba_local_for_kf = trigger_id
                window.landmarks.append(landmark)
            window.landmark_measurements[(local_kf.id, landmark.id)] = (
                landmark.get_cuboid().transform_to(local_kf.pose)
            )

    return window
