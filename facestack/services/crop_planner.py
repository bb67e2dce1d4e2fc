"""
Crop planning: locate the primary face in one input and derive its crop.
"""

import asyncio
import logging
from dataclasses import dataclass

from facestack.services.errors import FaceNotDetected
from facestack.services.face_detector import FaceDetector
from facestack.services.face_geometry import (
    DEFAULT_ZOOM_FACTOR,
    FaceBox,
    FrameDimensions,
    Rectangle,
    compute_crop_rectangle,
)
from facestack.services.frame_sampler import FrameSampler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CropPlan:
    """Crop rectangle and output size for one composition input."""

    source_id: str
    rect: Rectangle
    target_width: int
    target_height: int
    face_box: FaceBox
    frame: FrameDimensions

    def to_filter(self) -> str:
        """FFmpeg filter chain that crops and scales this input."""
        return f"{self.rect.to_crop_filter()},scale={self.target_width}:{self.target_height}"


class CropPlanComputer:
    """
    Computes a CropPlan by sampling a frame, detecting the primary face and
    running the crop geometry on it.

    Holds no per-call state, so one instance serves concurrent plans.
    """

    def __init__(
        self,
        frame_sampler: FrameSampler,
        face_detector: FaceDetector,
        zoom_factor: float = DEFAULT_ZOOM_FACTOR,
    ):
        self.frame_sampler = frame_sampler
        self.face_detector = face_detector
        self.zoom_factor = zoom_factor

    async def compute_crop_plan(
        self,
        source_id: str,
        video_path: str,
        sample_timestamp_seconds: float,
        target_width: int,
        target_height: int,
    ) -> CropPlan:
        """
        Compute the crop plan for one input.

        Args:
            source_id: Identifier of the input within its job (e.g. "a", "b")
            video_path: Path to the input video
            sample_timestamp_seconds: Timestamp of the frame used for detection
            target_width: Width the cropped region is scaled to
            target_height: Height the cropped region is scaled to

        Raises:
            DecodeError: If the frame cannot be sampled
            FaceNotDetected: If the sampled frame has no detectable face
        """
        frame = await self.frame_sampler.sample(video_path, sample_timestamp_seconds)

        loop = asyncio.get_event_loop()
        detection = await loop.run_in_executor(
            None, self.face_detector.detect_primary, frame.pixels
        )

        if detection is None:
            raise FaceNotDetected(
                f"No face detected in input '{source_id}' at {sample_timestamp_seconds:.3f}s",
                source_id=source_id,
            )

        rect = compute_crop_rectangle(detection.box, frame.dimensions, self.zoom_factor)
        logger.info(
            f"Input '{source_id}': face {detection.bbox} ({detection.detection_method}, "
            f"conf={detection.confidence:.2f}) in {frame.width}x{frame.height} -> "
            f"crop {rect.width}x{rect.height}+{rect.x}+{rect.y}"
        )

        return CropPlan(
            source_id=source_id,
            rect=rect,
            target_width=target_width,
            target_height=target_height,
            face_box=detection.box,
            frame=frame.dimensions,
        )
