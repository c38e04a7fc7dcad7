"""Scene graph holding keyframes, map points and object landmarks.

Entities live in id-keyed arenas and refer to each other only by id, so
the keyframe <-> map point <-> landmark relations never form reference
cycles. All lookups go through the Map, which silently drops ids that no
longer resolve.

Concurrency: the Map itself does not lock. Any thread mutating persistent
state (poses, positions, cuboids, observation links) while other threads
may be running must hold ``update_lock`` for the whole batch of writes.
Reads are unsynchronized and best-effort.
"""

from __future__ import annotations

import threading
from collections import defaultdict

import numpy as np

from .covisibility import CovisibilityGraph
from .keyframe import KeyFrame
from .landmark import Landmark
from .map_point import MapPoint


class Map:
    """Shared scene graph with a single exclusive update lock."""

    def __init__(self, min_covisibility: int = 15) -> None:
        """Initialize an empty map.

        Args:
            min_covisibility: Minimum shared map points for two keyframes
                              to be considered covisible
        """
        self._keyframes: dict[int, KeyFrame] = {}
        self._points: dict[int, MapPoint] = {}
        self._landmarks: dict[int, Landmark] = {}
        # landmark_id -> ids of keyframes associated with it
        self._landmark_observers: dict[int, set[int]] = defaultdict(set)
        self._covisibility = CovisibilityGraph(min_shared_points=min_covisibility)

        self.update_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Insertion
    # ------------------------------------------------------------------

    def add_keyframe(self, keyframe: KeyFrame) -> None:
        """Insert a keyframe.

        Raises:
            ValueError: If a keyframe with the same id already exists
        """
        if keyframe.id in self._keyframes:
            raise ValueError(f"Keyframe id {keyframe.id} already in map")
        self._keyframes[keyframe.id] = keyframe
        for lm_id in keyframe.landmark_ids:
            self._landmark_observers[lm_id].add(keyframe.id)
        self._covisibility.update_keyframe(keyframe)

    def add_map_point(self, point: MapPoint) -> None:
        """Insert a map point.

        Raises:
            ValueError: If a map point with the same id already exists
        """
        if point.id in self._points:
            raise ValueError(f"Map point id {point.id} already in map")
        self._points[point.id] = point

    def add_landmark(self, landmark: Landmark) -> None:
        """Insert an object landmark.

        Raises:
            ValueError: If a landmark with the same id already exists
        """
        if landmark.id in self._landmarks:
            raise ValueError(f"Landmark id {landmark.id} already in map")
        self._landmarks[landmark.id] = landmark

    def add_observation(self, kf_id: int, mp_id: int, kp_idx: int) -> None:
        """Link a keypoint of a keyframe to a map point (both directions).

        Call :meth:`update_connections` once a keyframe's observations are
        complete to refresh covisibility.

        Raises:
            KeyError: If the keyframe or map point is unknown
            ValueError: If the keypoint index is out of range
        """
        keyframe = self._keyframes[kf_id]
        point = self._points[mp_id]
        if not 0 <= kp_idx < len(keyframe.keypoints):
            raise ValueError(
                f"Keypoint index {kp_idx} out of range for keyframe {kf_id}"
            )
        keyframe.add_map_point_match(kp_idx, mp_id)
        point.add_observation(kf_id, kp_idx)

    def associate_landmark(self, kf_id: int, lm_id: int) -> None:
        """Record that a keyframe observes an object landmark.

        Raises:
            KeyError: If the keyframe or landmark is unknown
        """
        keyframe = self._keyframes[kf_id]
        if lm_id not in self._landmarks:
            raise KeyError(lm_id)
        keyframe.landmark_ids.add(lm_id)
        self._landmark_observers[lm_id].add(kf_id)

    def update_connections(self, keyframe: KeyFrame) -> None:
        """Refresh covisibility edges of a keyframe from its observations."""
        self._covisibility.update_keyframe(keyframe)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_keyframe(self, kf_id: int) -> KeyFrame | None:
        """Return a keyframe by id, or None."""
        return self._keyframes.get(kf_id)

    def get_point(self, mp_id: int) -> MapPoint | None:
        """Return a map point by id (bad points included), or None."""
        return self._points.get(mp_id)

    def get_landmark(self, lm_id: int) -> Landmark | None:
        """Return a landmark by id, or None."""
        return self._landmarks.get(lm_id)

    def covisible_keyframes(self, keyframe: KeyFrame) -> list[KeyFrame]:
        """Return keyframes covisible with ``keyframe``, strongest first."""
        neighbors = []
        for other_id, _ in self._covisibility.get_connected_keyframes(keyframe.id):
            other = self._keyframes.get(other_id)
            if other is not None:
                neighbors.append(other)
        return neighbors

    def keyframe_map_points(self, keyframe: KeyFrame) -> list[MapPoint]:
        """Return the map points matched in a keyframe, in keypoint order.

        Bad points are included; callers decide whether to skip them.
        """
        points = []
        for kp_idx in sorted(keyframe.keypoint_to_mappoint):
            point = self._points.get(keyframe.keypoint_to_mappoint[kp_idx])
            if point is not None:
                points.append(point)
        return points

    def point_observers(self, point: MapPoint) -> list[tuple[KeyFrame, int]]:
        """Return (keyframe, keypoint index) pairs observing a map point."""
        observers = []
        for kf_id, kp_idx in list(point.observations.items()):
            keyframe = self._keyframes.get(kf_id)
            if keyframe is not None:
                observers.append((keyframe, kp_idx))
        return observers

    def keyframe_landmarks(self, keyframe: KeyFrame) -> list[Landmark]:
        """Return the object landmarks associated with a keyframe, by id."""
        landmarks = []
        for lm_id in sorted(keyframe.landmark_ids):
            landmark = self._landmarks.get(lm_id)
            if landmark is not None:
                landmarks.append(landmark)
        return landmarks

    def landmark_observers(self, landmark: Landmark) -> list[KeyFrame]:
        """Return the keyframes associated with a landmark, by id."""
        return [
            self._keyframes[kf_id]
            for kf_id in sorted(self._landmark_observers.get(landmark.id, set()))
            if kf_id in self._keyframes
        ]

    # ------------------------------------------------------------------
    # Mutation (hold update_lock when other threads may be running)
    # ------------------------------------------------------------------

    def erase_observation(self, keyframe: KeyFrame, point: MapPoint) -> bool:
        """Sever the link between a keyframe and a map point.

        Removes the point from the keyframe's match table and the keyframe
        from the point's observations. Links that are already gone are
        ignored.

        Returns:
            True if anything was removed
        """
        removed_match = keyframe.erase_map_point_match(point.id)
        removed_obs = point.erase_observation(keyframe.id)
        return removed_match or removed_obs

    def update_normal_and_depth(self, point: MapPoint) -> None:
        """Recompute a point's mean viewing direction and distance range.

        The distance range is derived from the scale pyramid level at which
        the reference keyframe observed the point.
        """
        if point.is_bad:
            return

        observers = self.point_observers(point)
        reference = self._keyframes.get(point.reference_kf_id)
        if not observers or reference is None:
            return

        normal = np.zeros(3)
        for keyframe, _ in observers:
            direction = point.position_world - keyframe.camera_center
            norm = np.linalg.norm(direction)
            if norm > 0:
                normal += direction / norm
        point.normal = normal / len(observers)

        kp_idx = point.observations.get(reference.id)
        if kp_idx is None:
            return

        calibration = reference.calibration
        distance = float(np.linalg.norm(point.position_world - reference.camera_center))
        level_scale = calibration.scale_factors[reference.octaves[kp_idx]]
        point.max_distance = distance * level_scale
        point.min_distance = point.max_distance / calibration.scale_factors[-1]

    # ------------------------------------------------------------------
    # Bulk access
    # ------------------------------------------------------------------

    def get_all_keyframes(self) -> list[KeyFrame]:
        """Return all keyframes ordered by id."""
        return [self._keyframes[kf_id] for kf_id in sorted(self._keyframes)]

    def get_all_points(self) -> list[MapPoint]:
        """Return all map points that are not bad, ordered by id."""
        return [
            self._points[mp_id]
            for mp_id in sorted(self._points)
            if not self._points[mp_id].is_bad
        ]

    def get_all_landmarks(self) -> list[Landmark]:
        """Return all landmarks ordered by id."""
        return [self._landmarks[lm_id] for lm_id in sorted(self._landmarks)]

    def get_all_positions(self) -> np.ndarray:
        """Return an Nx3 array of the positions of all good map points."""
        points = self.get_all_points()
        if len(points) == 0:
            return np.empty((0, 3), dtype=np.float64)
        return np.array([p.position_world for p in points], dtype=np.float64)

    @property
    def covisibility(self) -> CovisibilityGraph:
        """Return the covisibility graph."""
        return self._covisibility

    @property
    def num_keyframes(self) -> int:
        """Return number of keyframes."""
        return len(self._keyframes)

    @property
    def num_points(self) -> int:
        """Return number of map points that are not bad."""
        return sum(1 for p in self._points.values() if not p.is_bad)

    @property
    def num_landmarks(self) -> int:
        """Return number of landmarks."""
        return len(self._landmarks)
