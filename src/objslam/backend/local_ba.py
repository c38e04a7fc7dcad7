"""Local bundle adjustment with object landmarks.

Jointly refines, around a newly inserted keyframe:
- the poses of the keyframe and its covisible neighbors,
- the 3D map points they observe,
- the cuboids of the object landmarks they are associated with,

while keyframes that only share points with the window are held fixed.

The run follows a two-pass schedule:

    build -> optimize(5) -> mark outliers -> optimize(10) -> classify -> commit

Outlier observations (chi2 above the 95% chi-square quantile or a point
behind the camera) are excluded from the second pass and their
keyframe/map point links are severed on commit. A cooperative stop flag
is checked before the first optimization (abort, no commit) and after it
(skip the second pass, still commit).
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import yaml

from .graph_builder import CHI2_MONO, CHI2_STEREO, LocalProblem, build_local_problem
from .local_window import LocalWindow, select_local_window

if TYPE_CHECKING:
    from ..map import KeyFrame, Map, MapPoint


@dataclass
class LocalBAConfig:
    """Configuration for local bundle adjustment."""

    initial_iterations: int = 5  # First pass, all observations
    refine_iterations: int = 10  # Second pass, inliers only
    chi2_mono: float = CHI2_MONO  # 95% quantile, 2 DoF
    chi2_stereo: float = CHI2_STEREO  # 95% quantile, 3 DoF
    cuboid_weight_scale: float = 2.0  # Camera-object info = (scale * quality)^2
    verbose: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> LocalBAConfig:
        """Create a config from a dictionary, ignoring unknown keys.

        Raises:
            ValueError: If an iteration budget or threshold is not positive
        """
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        config = cls(**known)
        if config.initial_iterations <= 0 or config.refine_iterations <= 0:
            raise ValueError("Iteration budgets must be positive")
        if config.chi2_mono <= 0 or config.chi2_stereo <= 0:
            raise ValueError("Chi-square thresholds must be positive")
        return config

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> LocalBAConfig:
        """Load the ``local_ba`` section (or the whole file) of a YAML file.

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data.get("local_ba", data))


@dataclass
class LocalBAResult:
    """Result of a local bundle adjustment run."""

    success: bool
    aborted: bool = False
    committed: bool = False
    num_keyframes: int = 0
    num_fixed_keyframes: int = 0
    num_points: int = 0
    num_landmarks: int = 0
    num_edges: int = 0
    num_cuboid_edges: int = 0
    # (keyframe id, map point id) links severed as outliers
    outliers: list[tuple[int, int]] = field(default_factory=list)
    # (keyframe id, map point id) -> final chi2 of the observation
    edge_chi2: dict[tuple[int, int], float] = field(default_factory=dict)
    initial_cost: float = 0.0
    final_cost: float = 0.0
    message: str = ""


class LocalBundleAdjustment:
    """Runs local bundle adjustment against a shared map."""

    def __init__(self, scene_map: Map, config: LocalBAConfig | None = None) -> None:
        """Initialize local bundle adjustment.

        Args:
            scene_map: Shared scene graph
            config: Configuration (defaults if None)
        """
        self._map = scene_map
        self._config = config or LocalBAConfig()

    @property
    def config(self) -> LocalBAConfig:
        return self._config

    def run(
        self,
        keyframe: KeyFrame,
        stop_flag: threading.Event | None = None,
    ) -> LocalBAResult:
        """Optimize the local window around ``keyframe``.

        Args:
            keyframe: Keyframe that triggered the optimization
            stop_flag: Cooperative cancellation signal

        Returns:
            LocalBAResult; ``committed`` tells whether the map was written
        """
        if _is_set(stop_flag):
            return LocalBAResult(success=False, aborted=True, message="Stopped before start")

        window = select_local_window(keyframe, self._map)
        problem = build_local_problem(
            window,
            self._map,
            chi2_mono=self._config.chi2_mono,
            chi2_stereo=self._config.chi2_stereo,
            cuboid_weight_scale=self._config.cuboid_weight_scale,
        )
        result = LocalBAResult(
            success=True,
            num_keyframes=len(window.local_keyframes),
            num_fixed_keyframes=len(window.fixed_keyframes),
            num_points=len(window.map_points),
            num_landmarks=len(window.landmarks),
            num_edges=problem.num_edges,
            num_cuboid_edges=len(problem.cuboid_factors),
        )

        if problem.num_edges == 0:
            result.message = "No observations to optimize"
            self._log(f"KF {keyframe.id}: {result.message}")
            return result

        if _is_set(stop_flag):
            result.success = False
            result.aborted = True
            result.message = "Stopped before optimization"
            return result

        summary = problem.graph.optimize(self._config.initial_iterations)
        result.initial_cost = summary.initial_cost
        result.final_cost = summary.final_cost

        if not _is_set(stop_flag):
            num_marked = self._mark_outliers(problem)
            summary = problem.graph.optimize(self._config.refine_iterations, level=0)
            if summary.ran:
                result.final_cost = summary.final_cost
            self._log(
                f"KF {keyframe.id}: {num_marked}/{problem.num_edges} edges excluded "
                f"from second pass"
            )
        else:
            result.aborted = True
            result.message = "Stopped after first pass"

        to_erase = self._classify_outliers(problem, result)
        self._commit(window, problem, to_erase)
        result.committed = True
        result.outliers = [(kf.id, mp.id) for kf, mp in to_erase]
        if not result.message:
            result.message = f"Optimized {result.num_keyframes} keyframes"

        self._log(
            f"KF {keyframe.id}: {result.num_keyframes} local, "
            f"{result.num_fixed_keyframes} fixed, {result.num_points} points, "
            f"{result.num_landmarks} landmarks, {len(to_erase)} outliers, "
            f"cost {result.initial_cost:.2f} -> {result.final_cost:.2f}"
        )
        return result

    def _mark_outliers(self, problem: LocalProblem) -> int:
        """Move failing edges to level 1 and drop robust kernels."""
        num_marked = 0
        for edge in problem.edges:
            if edge.point.is_bad:
                continue
            if edge.is_outlier():
                edge.factor.level = 1
                num_marked += 1
            edge.factor.robust_kernel = None
        return num_marked

    def _classify_outliers(
        self,
        problem: LocalProblem,
        result: LocalBAResult,
    ) -> list[tuple[KeyFrame, MapPoint]]:
        """Return the (keyframe, map point) links failing the final check."""
        to_erase = []
        for edge in problem.edges:
            if edge.point.is_bad:
                continue
            result.edge_chi2[(edge.keyframe.id, edge.point.id)] = edge.factor.chi2()
            if edge.is_outlier():
                to_erase.append((edge.keyframe, edge.point))
        return to_erase

    def _commit(
        self,
        window: LocalWindow,
        problem: LocalProblem,
        to_erase: list[tuple[KeyFrame, MapPoint]],
    ) -> None:
        """Write the optimized state back under the map update lock."""
        graph = problem.graph
        ids = problem.ids

        with self._map.update_lock:
            for (kf_id, lm_id), measurement in window.landmark_measurements.items():
                keyframe = self._map.get_keyframe(kf_id)
                if keyframe is not None:
                    keyframe.landmark_measurements[lm_id] = measurement

            touched = {}
            for keyframe, point in to_erase:
                if point.is_bad:
                    continue
                if self._map.erase_observation(keyframe, point):
                    touched[keyframe.id] = keyframe

            for keyframe in window.local_keyframes:
                if graph.variable(ids.pose(keyframe.id)).fixed:
                    continue
                keyframe.set_pose(graph.pose_estimate(ids.pose(keyframe.id)).inverse())

            for landmark in window.landmarks:
                landmark.set_pose_and_dimension(
                    graph.cuboid_estimate(ids.landmark(landmark.id))
                )

            for point in window.map_points:
                point.set_world_pos(graph.point_estimate(ids.point(point.id)))
                self._map.update_normal_and_depth(point)

            for keyframe in touched.values():
                self._map.update_connections(keyframe)

    def _log(self, message: str) -> None:
        if self._config.verbose:
            print(f"[LocalBA] {message}")


def _is_set(stop_flag: threading.Event | None) -> bool:
    return stop_flag is not None and stop_flag.is_set()
