"""Scene graph: keyframes, map points, object landmarks and covisibility."""

from .covisibility import CovisibilityGraph
from .keyframe import KeyFrame
from .landmark import Landmark
from .map_point import MapPoint
from .scene_map import Map

__all__ = [
    "Map",
    "KeyFrame",
    "MapPoint",
    "Landmark",
    "CovisibilityGraph",
]
