"""Object detection boundary."""

from .object_detector import Detection, ObjectDetector, postprocess_detections

__all__ = [
    "Detection",
    "ObjectDetector",
    "postprocess_detections",
]
