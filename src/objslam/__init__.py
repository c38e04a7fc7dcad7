"""objslam - Object-aware local bundle adjustment for visual SLAM."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .camera import CameraCalibration
from .geometry import SE3, Cuboid
from .map import CovisibilityGraph, KeyFrame, Landmark, Map, MapPoint
from .backend import (
    FactorGraph,
    LocalBAConfig,
    LocalBAResult,
    LocalBundleAdjustment,
    LocalMapping,
    LocalWindow,
    build_local_problem,
    select_local_window,
)
from .detection import Detection, ObjectDetector
from .visualization import MapVisualizer

__all__ = [
    "__version__",
    # Geometry
    "SE3",
    "Cuboid",
    "CameraCalibration",
    # Map
    "Map",
    "KeyFrame",
    "MapPoint",
    "Landmark",
    "CovisibilityGraph",
    # Local Bundle Adjustment
    "LocalWindow",
    "select_local_window",
    "build_local_problem",
    "LocalBundleAdjustment",
    "LocalBAConfig",
    "LocalBAResult",
    "LocalMapping",
    "FactorGraph",
    # Detection
    "Detection",
    "ObjectDetector",
    # Visualization
    "MapVisualizer",
]
