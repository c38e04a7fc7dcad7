"""Covisibility graph for tracking shared observations between keyframes.

The covisibility graph is a weighted undirected graph where:
- Nodes are keyframes
- Edges connect keyframes that observe at least ``min_shared_points``
  common map points
- Edge weights are the number of shared map points

Local bundle adjustment uses it to find the keyframes that are optimized
together with a new keyframe.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .keyframe import KeyFrame


class CovisibilityGraph:
    """Graph tracking which keyframes share map point observations."""

    def __init__(self, min_shared_points: int = 15) -> None:
        """Initialize covisibility graph.

        Args:
            min_shared_points: Minimum shared points to create an edge
        """
        self._min_shared = min_shared_points

        # Adjacency list: kf_id -> {other_kf_id: weight}
        self._adjacency: dict[int, dict[int, int]] = defaultdict(dict)

        # Inverted index: mappoint_id -> set of kf_ids observing it
        self._mappoint_to_keyframes: dict[int, set[int]] = defaultdict(set)

        # Keyframe data: kf_id -> set of observed mappoint_ids
        self._keyframe_observations: dict[int, set[int]] = {}

    def update_keyframe(self, keyframe: KeyFrame) -> None:
        """Insert a keyframe or refresh it after its observations changed.

        Handles both added and removed map point associations, then
        recomputes the keyframe's edges.

        Args:
            keyframe: Keyframe with its current observations
        """
        kf_id = keyframe.id
        old_observations = self._keyframe_observations.get(kf_id, set())
        new_observations = set(keyframe.keypoint_to_mappoint.values())

        for mp_id in new_observations - old_observations:
            self._mappoint_to_keyframes[mp_id].add(kf_id)
        for mp_id in old_observations - new_observations:
            self._mappoint_to_keyframes[mp_id].discard(kf_id)

        self._keyframe_observations[kf_id] = new_observations
        self._recompute_edges_for_keyframe(kf_id)

    def _recompute_edges_for_keyframe(self, kf_id: int) -> None:
        """Recompute all edges for a specific keyframe."""
        for other_kf_id in list(self._adjacency.get(kf_id, {}).keys()):
            self._adjacency[other_kf_id].pop(kf_id, None)
        self._adjacency[kf_id] = {}

        shared_counts: dict[int, int] = defaultdict(int)
        for mp_id in self._keyframe_observations.get(kf_id, set()):
            for other_kf_id in self._mappoint_to_keyframes[mp_id]:
                if other_kf_id != kf_id:
                    shared_counts[other_kf_id] += 1

        for other_kf_id, count in shared_counts.items():
            if count >= self._min_shared:
                self._adjacency[kf_id][other_kf_id] = count
                self._adjacency[other_kf_id][kf_id] = count

    def get_connected_keyframes(
        self,
        kf_id: int,
        min_shared: int | None = None,
    ) -> list[tuple[int, int]]:
        """Get keyframes connected to a given keyframe.

        Args:
            kf_id: Keyframe ID
            min_shared: Minimum shared points (uses default if None)

        Returns:
            List of (kf_id, weight) tuples, sorted by weight descending
            (ties broken by ascending id so the order is deterministic)
        """
        min_shared = min_shared if min_shared is not None else self._min_shared

        connections = [
            (other_id, weight)
            for other_id, weight in self._adjacency.get(kf_id, {}).items()
            if weight >= min_shared
        ]
        return sorted(connections, key=lambda x: (-x[1], x[0]))

    def get_keyframes_observing(self, mappoint_id: int) -> set[int]:
        """Get all keyframes observing a map point."""
        return self._mappoint_to_keyframes.get(mappoint_id, set()).copy()

    def remove_keyframe(self, kf_id: int) -> None:
        """Remove a keyframe and all its edges from the graph."""
        for other_kf_id in self._adjacency.pop(kf_id, {}):
            if other_kf_id in self._adjacency:
                self._adjacency[other_kf_id].pop(kf_id, None)

        for mp_id in self._keyframe_observations.pop(kf_id, set()):
            self._mappoint_to_keyframes[mp_id].discard(kf_id)

    def get_covisibility_weight(self, kf1_id: int, kf2_id: int) -> int:
        """Return the number of shared map points (0 if not connected)."""
        return self._adjacency.get(kf1_id, {}).get(kf2_id, 0)

    @property
    def num_keyframes(self) -> int:
        """Return number of keyframes in the graph."""
        return len(self._keyframe_observations)

    @property
    def num_edges(self) -> int:
        """Return number of edges in the graph."""
        # Each edge is counted twice in adjacency list
        return sum(len(adj) for adj in self._adjacency.values()) // 2
