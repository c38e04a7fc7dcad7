"""Tests for YOLO output decoding."""

from pathlib import Path

import numpy as np
import pytest

from objslam.detection import ObjectDetector, postprocess_detections

IMAGE_SHAPE = (480, 640, 3)


def yolo_row(cx, cy, w, h, scores):
    """Build one output row: normalized box, objectness, class scores."""
    return [cx, cy, w, h, 1.0, *scores]


class TestPostprocessDetections:
    """Test suite for postprocess_detections."""

    def test_nms_and_threshold(self):
        """Test that overlapping and low-confidence boxes are removed."""
        output = np.array(
            [
                yolo_row(0.5, 0.5, 0.2, 0.4, [0.9, 0.1]),
                yolo_row(0.51, 0.5, 0.2, 0.4, [0.8, 0.1]),  # Overlaps the first
                yolo_row(0.2, 0.2, 0.1, 0.1, [0.1, 0.7]),
                yolo_row(0.8, 0.8, 0.1, 0.1, [0.3, 0.2]),  # Below threshold
            ],
            dtype=np.float32,
        )

        detections = postprocess_detections(IMAGE_SHAPE, [output])

        assert len(detections) == 2
        assert detections[0].class_idx == 0
        assert detections[0].confidence == pytest.approx(0.9)
        assert detections[0].bbox == (256, 144, 128, 192)
        assert detections[1].class_idx == 1
        assert detections[1].confidence == pytest.approx(0.7)

    def test_multiple_outputs(self):
        """Test that rows of every output layer are considered."""
        first = np.array([yolo_row(0.2, 0.2, 0.1, 0.1, [0.6, 0.0])], dtype=np.float32)
        second = np.array([yolo_row(0.8, 0.8, 0.1, 0.1, [0.0, 0.95])], dtype=np.float32)

        detections = postprocess_detections(IMAGE_SHAPE, [first, second])

        assert [d.class_idx for d in detections] == [1, 0]

    def test_no_detections(self):
        """Test that nothing above threshold gives an empty list."""
        output = np.array([yolo_row(0.5, 0.5, 0.2, 0.2, [0.2, 0.1])], dtype=np.float32)

        assert postprocess_detections(IMAGE_SHAPE, [output]) == []
        assert postprocess_detections(IMAGE_SHAPE, []) == []


class TestObjectDetector:
    """Test suite for ObjectDetector."""

    def test_missing_model_files(self, tmp_path: Path):
        """Test that missing model files raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Model file not found"):
            ObjectDetector(tmp_path / "yolo.cfg", tmp_path / "yolo.weights")
