"""
Tests for face detection helpers and primary-face selection.
"""

import pytest

from facestack.services.face_detector import (
    FaceDetectionResult,
    FaceDetector,
    FrameFaceDetections,
    calculate_iou,
)
from facestack.services.face_geometry import FaceBox


@pytest.fixture
def detector(mocker):
    """FaceDetector with backend loading skipped."""
    mocker.patch.object(FaceDetector, "_load_detectors")
    detector = FaceDetector(confidence_threshold=0.5)
    detector._ready = True
    return detector


class TestCalculateIoU:
    """Tests for IoU calculation."""

    def test_identical_boxes(self):
        assert calculate_iou((10, 10, 50, 50), (10, 10, 50, 50)) == 1.0

    def test_disjoint_boxes(self):
        assert calculate_iou((0, 0, 10, 10), (20, 20, 10, 10)) == 0.0

    def test_touching_boxes(self):
        assert calculate_iou((0, 0, 10, 10), (10, 0, 10, 10)) == 0.0

    def test_partial_overlap(self):
        # 5x10 overlap, union 150
        assert calculate_iou((0, 0, 10, 10), (5, 0, 10, 10)) == pytest.approx(50 / 150)


class TestFaceDetectionResult:
    """Tests for FaceDetectionResult."""

    def test_box_and_area(self):
        result = FaceDetectionResult(bbox=(100, 50, 80, 60), confidence=0.9)
        assert result.box == FaceBox(x=100.0, y=50.0, width=80.0, height=60.0)
        assert result.area == 4800


class TestDetectPrimary:
    """Tests for primary face selection."""

    def _patch_detections(self, mocker, detector, detections):
        mocker.patch.object(
            detector,
            "detect_faces",
            return_value=FrameFaceDetections(width=640, height=480, detections=detections),
        )

    def test_highest_confidence_wins(self, detector, mocker, sample_frame):
        self._patch_detections(mocker, detector, [
            FaceDetectionResult(bbox=(0, 0, 200, 200), confidence=0.6),
            FaceDetectionResult(bbox=(300, 100, 50, 50), confidence=0.95),
        ])
        assert detector.detect_primary(sample_frame).bbox == (300, 100, 50, 50)

    def test_tie_goes_to_larger_face(self, detector, mocker, sample_frame):
        self._patch_detections(mocker, detector, [
            FaceDetectionResult(bbox=(0, 0, 40, 40), confidence=0.8),
            FaceDetectionResult(bbox=(300, 100, 90, 90), confidence=0.8),
        ])
        assert detector.detect_primary(sample_frame).bbox == (300, 100, 90, 90)

    def test_no_faces(self, detector, mocker, sample_frame):
        self._patch_detections(mocker, detector, [])
        assert detector.detect_primary(sample_frame) is None

    def test_detect_all(self, detector, mocker, sample_frame):
        faces = [
            FaceDetectionResult(bbox=(0, 0, 40, 40), confidence=0.8),
            FaceDetectionResult(bbox=(300, 100, 90, 90), confidence=0.7),
        ]
        self._patch_detections(mocker, detector, faces)
        assert detector.detect_all(sample_frame) == faces


class TestDetectFaces:
    """Tests for the backend cascade."""

    def test_not_ready(self, detector, sample_frame):
        detector._ready = False
        with pytest.raises(RuntimeError):
            detector.detect_faces(sample_frame)

    def test_full_range_skipped_when_short_range_finds_face(self, detector, mocker, sample_frame):
        detector._mediapipe_available = True
        face = FaceDetectionResult(bbox=(100, 100, 100, 100), confidence=0.9, detection_method="mediapipe")
        mediapipe = mocker.patch.object(detector, "_detect_with_mediapipe", return_value=[face])

        result = detector.detect_faces(sample_frame)

        assert result.detections == [face]
        mediapipe.assert_called_once()

    def test_haar_fallback(self, detector, mocker, sample_frame):
        detector._mediapipe_available = True
        detector._haar_cascade = object()
        mocker.patch.object(detector, "_detect_with_mediapipe", return_value=[])
        face = FaceDetectionResult(bbox=(100, 100, 100, 100), confidence=0.5, detection_method="haar_cascade")
        mocker.patch.object(detector, "_detect_with_haar", return_value=[face])

        result = detector.detect_faces(sample_frame)

        assert result.detections == [face]
        assert detector._detect_with_mediapipe.call_count == 2

    def test_backend_names(self, detector):
        detector._mediapipe_available = True
        detector._haar_cascade = object()
        assert detector.backend_names == ["mediapipe", "haar_cascade"]


class TestFilteringAndMerging:
    """Tests for size filtering and short/full-range merging."""

    def test_filter_by_size(self, detector):
        frame_area = 640 * 480
        tiny = FaceDetectionResult(bbox=(0, 0, 5, 5), confidence=0.9)
        normal = FaceDetectionResult(bbox=(0, 0, 100, 100), confidence=0.9)
        whole = FaceDetectionResult(bbox=(0, 0, 640, 480), confidence=0.9)

        assert detector._filter_by_size([tiny, normal, whole], frame_area) == [normal]

    def test_merge_drops_duplicates(self, detector):
        short = [FaceDetectionResult(bbox=(100, 100, 100, 100), confidence=0.9)]
        duplicate = FaceDetectionResult(bbox=(105, 105, 100, 100), confidence=0.7)
        distant = FaceDetectionResult(bbox=(400, 300, 50, 50), confidence=0.6)

        merged = detector._merge_detections(short, [duplicate, distant])

        assert merged == short + [distant]
