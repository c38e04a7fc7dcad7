"""2D object detection with an OpenCV DNN (Darknet YOLO) network.

Detections feed the object landmarks of the map; local bundle adjustment
only consumes those landmarks and never calls the detector.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np

INPUT_WIDTH = 416  # Width of the network input
INPUT_HEIGHT = 416  # Height of the network input


@dataclass
class Detection:
    """A detected object in image coordinates.

    Attributes:
        bbox: (x, y, width, height) of the box in pixels
        confidence: Class confidence score in [0, 1]
        class_idx: Index of the detected class
    """

    bbox: tuple[int, int, int, int]
    confidence: float
    class_idx: int


def postprocess_detections(
    image_shape: tuple[int, ...],
    outputs: list[np.ndarray],
    conf_threshold: float = 0.5,
    nms_threshold: float = 0.45,
) -> list[Detection]:
    """Decode YOLO output rows and apply non-maximum suppression.

    Each output row is ``[cx, cy, w, h, objectness, class scores...]`` with
    box coordinates normalized to the image size.

    Args:
        image_shape: Shape of the original image (height, width, ...)
        outputs: Output blobs of the network's unconnected layers
        conf_threshold: Minimum class confidence to keep a box
        nms_threshold: IoU threshold for non-maximum suppression

    Returns:
        Detections surviving NMS, highest confidence first
    """
    height, width = image_shape[:2]
    boxes: list[list[int]] = []
    confidences: list[float] = []
    class_ids: list[int] = []

    for output in outputs:
        output = np.asarray(output, dtype=np.float32)
        for row in output.reshape(-1, output.shape[-1]):
            scores = row[5:]
            if len(scores) == 0:
                continue
            class_idx = int(np.argmax(scores))
            confidence = float(scores[class_idx])
            if confidence <= conf_threshold:
                continue

            center_x = int(row[0] * width)
            center_y = int(row[1] * height)
            box_w = int(row[2] * width)
            box_h = int(row[3] * height)
            boxes.append([center_x - box_w // 2, center_y - box_h // 2, box_w, box_h])
            confidences.append(confidence)
            class_ids.append(class_idx)

    if len(boxes) == 0:
        return []

    indices = cv2.dnn.NMSBoxes(boxes, confidences, conf_threshold, nms_threshold)
    keep = np.asarray(indices, dtype=np.int64).flatten()

    detections = [
        Detection(
            bbox=tuple(boxes[i]),
            confidence=confidences[i],
            class_idx=class_ids[i],
        )
        for i in keep
    ]
    return sorted(detections, key=lambda d: d.confidence, reverse=True)


class ObjectDetector:
    """YOLO detector backed by ``cv2.dnn``."""

    def __init__(
        self,
        cfg_path: str | Path,
        weights_path: str | Path,
        nms_threshold: float = 0.45,
        conf_threshold: float = 0.5,
    ) -> None:
        """Load a Darknet network.

        Args:
            cfg_path: Darknet network configuration file
            weights_path: Darknet weights file
            nms_threshold: IoU threshold for non-maximum suppression
            conf_threshold: Minimum class confidence

        Raises:
            FileNotFoundError: If a model file doesn't exist
        """
        for path in (cfg_path, weights_path):
            if not Path(path).exists():
                raise FileNotFoundError(f"Model file not found: {path}")

        self._net = cv2.dnn.readNetFromDarknet(str(cfg_path), str(weights_path))
        self._output_names = self._net.getUnconnectedOutLayersNames()
        self._nms_threshold = nms_threshold
        self._conf_threshold = conf_threshold

    def detect(self, image: np.ndarray) -> list[Detection]:
        """Detect objects in a BGR image."""
        blob = cv2.dnn.blobFromImage(
            image,
            1.0 / 255.0,
            (INPUT_WIDTH, INPUT_HEIGHT),
            (0, 0, 0),
            swapRB=True,
            crop=False,
        )
        self._net.setInput(blob)
        outputs = self._net.forward(self._output_names)
        return postprocess_detections(
            image.shape, list(outputs), self._conf_threshold, self._nms_threshold
        )
