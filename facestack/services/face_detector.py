"""
Face detection service with multi-tier detection fallback.

Detection Priority:
1. MediaPipe FaceDetection short-range (close-up faces, the common case here)
2. MediaPipe FaceDetection full-range (small/distant faces)
3. Haar Cascade (final fallback)

Exposes the two operations the compositor needs: the single primary face used
to frame a crop, and every face in a frame for the playback overlay.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import cv2
import numpy as np

from facestack.services.face_geometry import FaceBox

logger = logging.getLogger(__name__)


@dataclass
class FaceDetectionResult:
    """Result of face detection on a single frame."""

    bbox: Tuple[int, int, int, int]  # x, y, width, height
    confidence: float
    detection_method: str = "unknown"  # Which detector found this face

    @property
    def box(self) -> FaceBox:
        x, y, w, h = self.bbox
        return FaceBox(x=float(x), y=float(y), width=float(w), height=float(h))

    @property
    def area(self) -> int:
        return self.bbox[2] * self.bbox[3]


@dataclass
class FrameFaceDetections:
    """Face detections for a single frame."""

    width: int
    height: int
    detections: List[FaceDetectionResult] = field(default_factory=list)


class FaceDetector:
    """
    Multi-tier face detection service with intelligent fallback.

    MediaPipe graphs are created per call so concurrent crop-plan computations
    never share one; the Haar cascade is shared behind a lock.
    """

    # Face size bounds as fraction of frame area
    MIN_FACE_AREA_RATIO = 0.0003  # ~25x25 face in 1080p
    MAX_FACE_AREA_RATIO = 0.90    # Close-up selfie clips can be mostly face

    # Full-range duplicates of short-range faces are dropped above this IoU
    DUPLICATE_IOU = 0.3

    def __init__(self, confidence_threshold: float = 0.5):
        """
        Initialize face detector with multi-tier fallback.

        Args:
            confidence_threshold: Minimum confidence for detections
        """
        self.confidence_threshold = confidence_threshold

        self._mediapipe_available = False
        self._haar_cascade = None
        self._haar_lock = threading.Lock()

        self._ready = False
        self._load_detectors()

    def _load_detectors(self) -> None:
        """Load all available detection backends."""
        detectors_loaded = []

        try:
            import mediapipe as mp

            probe = mp.solutions.face_detection.FaceDetection(
                model_selection=0,
                min_detection_confidence=self.confidence_threshold,
            )
            probe.close()
            self._mediapipe_available = True
            detectors_loaded.append("MediaPipe FaceDetection (short/full-range)")
            logger.info("MediaPipe FaceDetection loaded (primary detector)")
        except ImportError:
            logger.warning("MediaPipe not available, will use Haar cascade only")
        except Exception as e:
            logger.warning(f"MediaPipe FaceDetection failed to initialize: {e}")

        try:
            cascade_path = cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
            cascade = cv2.CascadeClassifier(cascade_path)
            if cascade.empty():
                logger.warning("Haar cascade failed to load")
            else:
                self._haar_cascade = cascade
                detectors_loaded.append("Haar Cascade")
                logger.info("Haar Cascade face detector loaded (final fallback)")
        except Exception as e:
            logger.warning(f"Haar cascade failed to load: {e}")

        self._ready = len(detectors_loaded) > 0
        logger.info(f"Face detector ready with {len(detectors_loaded)} backends: {detectors_loaded}")

    def is_ready(self) -> bool:
        """Check if at least one detector is ready."""
        return self._ready

    @property
    def backend_names(self) -> List[str]:
        names = []
        if self._mediapipe_available:
            names.append("mediapipe")
        if self._haar_cascade is not None:
            names.append("haar_cascade")
        return names

    def detect_faces(self, image: np.ndarray) -> FrameFaceDetections:
        """
        Detect faces using multi-tier detection with fallback.

        Args:
            image: Image as numpy array (BGR format from OpenCV)

        Returns:
            FrameFaceDetections with all detected faces
        """
        if not self.is_ready():
            raise RuntimeError("No face detection backends available")

        height, width = image.shape[:2]
        short_range: List[FaceDetectionResult] = []
        full_range: List[FaceDetectionResult] = []

        if self._mediapipe_available:
            short_range = self._detect_with_mediapipe(image, width, height, use_fullrange=False)
            # Full-range only runs when short-range found nothing
            if not short_range:
                full_range = self._detect_with_mediapipe(image, width, height, use_fullrange=True)

        detections = self._merge_detections(short_range, full_range)

        if self._haar_cascade is not None and not detections:
            try:
                detections = self._detect_with_haar(image, width, height)
            except cv2.error as e:
                logger.warning(f"Haar Cascade detection failed: {e}")

        pre_filter_count = len(detections)
        detections = self._filter_by_size(detections, width * height)

        if not detections:
            if pre_filter_count > 0:
                logger.info(f"{pre_filter_count} faces detected but ALL filtered by size bounds")
            else:
                logger.debug(f"No faces detected by any backend (frame size: {width}x{height})")

        return FrameFaceDetections(width=width, height=height, detections=detections)

    def detect_primary(self, image: np.ndarray) -> Optional[FaceDetectionResult]:
        """
        Detect the most prominent face in a frame.

        Highest confidence wins; ties go to the larger face.

        Returns:
            The primary face, or None when no face is found
        """
        detections = self.detect_faces(image).detections
        if not detections:
            return None
        return max(detections, key=lambda d: (d.confidence, d.area))

    def detect_all(self, image: np.ndarray) -> List[FaceDetectionResult]:
        """Detect every face in a frame."""
        return self.detect_faces(image).detections

    def _detect_with_mediapipe(
        self,
        image: np.ndarray,
        width: int,
        height: int,
        use_fullrange: bool = False,
    ) -> List[FaceDetectionResult]:
        """Detect faces using a fresh MediaPipe FaceDetection graph."""
        detections = []
        method = "mediapipe_fullrange" if use_fullrange else "mediapipe"

        try:
            import mediapipe as mp

            if use_fullrange:
                detector = mp.solutions.face_detection.FaceDetection(
                    model_selection=1,  # Full-range model for small/distant faces
                    min_detection_confidence=max(0.3, self.confidence_threshold - 0.2),
                )
            else:
                detector = mp.solutions.face_detection.FaceDetection(
                    model_selection=0,  # Short-range model for close faces
                    min_detection_confidence=self.confidence_threshold,
                )

            try:
                # MediaPipe expects RGB format
                results = detector.process(cv2.cvtColor(image, cv2.COLOR_BGR2RGB))
            finally:
                detector.close()

            for detection in results.detections or []:
                bbox = detection.location_data.relative_bounding_box
                x = max(0, int(bbox.xmin * width))
                y = max(0, int(bbox.ymin * height))
                w = min(int(bbox.width * width), width - x)
                h = min(int(bbox.height * height), height - y)

                if w > 20 and h > 20:
                    detections.append(FaceDetectionResult(
                        bbox=(x, y, w, h),
                        confidence=float(detection.score[0]),
                        detection_method=method,
                    ))
        except Exception as e:
            logger.warning(f"MediaPipe {method} detection failed: {e}")

        return detections

    def _detect_with_haar(
        self,
        image: np.ndarray,
        width: int,
        height: int,
    ) -> List[FaceDetectionResult]:
        """Detect faces using Haar Cascade (final fallback)."""
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

        with self._haar_lock:
            faces = self._haar_cascade.detectMultiScale(
                gray,
                scaleFactor=1.05,
                minNeighbors=3,
                minSize=(40, 40),
            )

        detections = []
        for (x, y, w, h) in faces:
            # Haar has no score; estimate one from relative size
            relative_size = (w * h) / (width * height)
            confidence = min(0.9, 0.3 + relative_size * 2)
            detections.append(FaceDetectionResult(
                bbox=(int(x), int(y), int(w), int(h)),
                confidence=confidence,
                detection_method="haar_cascade",
            ))

        return detections

    def _filter_by_size(
        self,
        detections: List[FaceDetectionResult],
        frame_area: int,
    ) -> List[FaceDetectionResult]:
        """Filter detections by face size bounds."""
        filtered = []

        for det in detections:
            ratio = det.area / frame_area
            if self.MIN_FACE_AREA_RATIO <= ratio <= self.MAX_FACE_AREA_RATIO:
                filtered.append(det)
            else:
                reason = "too small" if ratio < self.MIN_FACE_AREA_RATIO else "too large"
                logger.debug(f"Filtered face ({reason}): {det.bbox}, area_ratio={ratio:.5f}")

        return filtered

    def _merge_detections(
        self,
        short_range: List[FaceDetectionResult],
        full_range: List[FaceDetectionResult],
    ) -> List[FaceDetectionResult]:
        """Merge short- and full-range results, dropping overlapping duplicates."""
        if not full_range:
            return short_range
        if not short_range:
            return full_range

        merged = list(short_range)
        for fr_det in full_range:
            if all(
                calculate_iou(fr_det.bbox, sr_det.bbox) <= self.DUPLICATE_IOU
                for sr_det in short_range
            ):
                merged.append(fr_det)
        return merged


def calculate_iou(
    box1: Tuple[int, int, int, int],
    box2: Tuple[int, int, int, int],
) -> float:
    """
    Calculate Intersection over Union between two (x, y, width, height) boxes.

    Returns:
        IoU value between 0 and 1
    """
    x1, y1, w1, h1 = box1
    x2, y2, w2, h2 = box2

    xi1 = max(x1, x2)
    yi1 = max(y1, y2)
    xi2 = min(x1 + w1, x2 + w2)
    yi2 = min(y1 + h1, y2 + h2)

    if xi2 <= xi1 or yi2 <= yi1:
        return 0.0

    intersection = (xi2 - xi1) * (yi2 - yi1)
    union = w1 * h1 + w2 * h2 - intersection

    if union <= 0:
        return 0.0

    return intersection / union
