"""
Composition pipeline that orchestrates the face-guided stack.

1. Validate both inputs
2. Compute both crop plans concurrently (sample frame, detect face, geometry)
3. Issue one FFmpeg job: crop + scale each input, vstack, amerge, encode
4. Hand the encoded bytes to the caller
"""

import asyncio
import logging
import os
import shutil
import tempfile
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from facestack.config import get_settings
from facestack.services.crop_planner import CropPlan, CropPlanComputer
from facestack.services.errors import CompositionError, InvalidInput
from facestack.services.frame_sampler import FrameSampler, VideoMetadata
from facestack.services.stack_encoder import CompositionJob, StackEncoder

logger = logging.getLogger(__name__)

SOURCE_IDS = ("a", "b")


class CompositionStatus(str, Enum):
    """Status of a composition job."""

    PENDING = "pending"
    VALIDATING = "validating"
    PLANNING = "planning"
    ENCODING = "encoding"
    COMPLETED = "completed"
    FAILED = "failed"


ProgressCallback = Callable[[str, CompositionStatus, str], None]


@dataclass
class CompositionRequest:
    """Request to stack two videos."""

    video_a_path: str
    video_b_path: str
    job_id: Optional[str] = None
    sample_timestamp_seconds: Optional[float] = None
    target_width: Optional[int] = None
    target_height: Optional[int] = None  # Height of each half

    def __post_init__(self):
        if self.job_id is None:
            self.job_id = str(uuid.uuid4())


@dataclass
class CompositionResult:
    """Encoded output of a successful composition."""

    job_id: str
    data: bytes
    plans: tuple[CropPlan, CropPlan]
    processing_time_seconds: float
    content_type: str = "video/mp4"

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class CompositionPipeline:
    """
    Orchestrates a full composition run.

    Services are injected and must report ready before any job runs. The
    pipeline keeps no per-job state, so concurrent runs are independent.
    """

    def __init__(
        self,
        crop_planner: CropPlanComputer,
        encoder: StackEncoder,
        frame_sampler: Optional[FrameSampler] = None,
        temp_directory: Optional[str] = None,
    ):
        self.crop_planner = crop_planner
        self.encoder = encoder
        self.frame_sampler = frame_sampler or crop_planner.frame_sampler

        settings = get_settings()
        self.settings = settings
        self.temp_directory = temp_directory or settings.temp_directory

    def is_ready(self) -> bool:
        return self.crop_planner.face_detector.is_ready() and self.encoder.is_ready()

    async def request_composition(
        self,
        video_a_path: str,
        video_b_path: str,
        progress_callback: Optional[ProgressCallback] = None,
        **options,
    ) -> CompositionResult:
        """Compose two videos; keyword options map onto CompositionRequest."""
        request = CompositionRequest(video_a_path=video_a_path, video_b_path=video_b_path, **options)
        return await self.compose(request, progress_callback)

    async def compose(
        self,
        request: CompositionRequest,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> CompositionResult:
        """
        Run one composition.

        Either returns one encoded artifact or raises; no partial output is
        ever produced.

        Args:
            request: The two inputs and output options
            progress_callback: Called as (job_id, status, step) at each stage

        Raises:
            InvalidInput: Missing or non-video input
            DecodeError: A sample frame could not be decoded
            FaceNotDetected: An input has no detectable face
            EncodeError: The FFmpeg stage failed
        """
        if not self.is_ready():
            raise RuntimeError("Composition services not initialized")

        start_time = time.time()
        job_id = request.job_id
        inputs = (request.video_a_path, request.video_b_path)

        def report(status: CompositionStatus, step: str) -> None:
            if progress_callback is not None:
                progress_callback(job_id, status, step)

        sample_timestamp = (
            request.sample_timestamp_seconds
            if request.sample_timestamp_seconds is not None
            else self.settings.sample_timestamp_seconds
        )
        target_width = request.target_width or self.settings.target_output_width
        target_height = request.target_height or self.settings.target_output_height

        # Step 1: Validate inputs
        report(CompositionStatus.VALIDATING, "Probing inputs")
        metadata = await self._validate_inputs(job_id, inputs)

        # Step 2: Crop plans for both inputs, concurrently
        report(CompositionStatus.PLANNING, "Detecting faces")
        logger.info(f"[{job_id}] Computing crop plans at {sample_timestamp:.3f}s")
        tasks = [
            asyncio.ensure_future(self.crop_planner.compute_crop_plan(
                source_id=source_id,
                video_path=path,
                sample_timestamp_seconds=sample_timestamp,
                target_width=target_width,
                target_height=target_height,
            ))
            for source_id, path in zip(SOURCE_IDS, inputs)
        ]
        try:
            plans = await asyncio.gather(*tasks)
        except BaseException as e:
            for task in tasks:
                task.cancel()
            kind = e.kind if isinstance(e, CompositionError) else type(e).__name__
            logger.warning(f"[{job_id}] Crop planning failed ({kind}): {e}")
            raise

        # Step 3: One encode job for crop, scale, stack and audio merge
        report(CompositionStatus.ENCODING, "Encoding stacked video")
        work_dir = tempfile.mkdtemp(dir=self._ensure_temp_directory(), prefix=f"job_{job_id}_")
        try:
            job = CompositionJob(
                job_id=job_id,
                inputs=inputs,
                plans=(plans[0], plans[1]),
                output_path=os.path.join(work_dir, "output.mp4"),
                audio_inputs=[i for i, meta in enumerate(metadata) if meta.has_audio],
            )
            data = await self.encoder.encode(job)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        processing_time = time.time() - start_time
        logger.info(f"[{job_id}] Composition complete: {len(data)} bytes in {processing_time:.1f}s")

        return CompositionResult(
            job_id=job_id,
            data=data,
            plans=job.plans,
            processing_time_seconds=processing_time,
        )

    async def _validate_inputs(
        self,
        job_id: str,
        inputs: tuple[str, str],
    ) -> list[VideoMetadata]:
        for source_id, path in zip(SOURCE_IDS, inputs):
            if not path:
                raise InvalidInput(f"Input '{source_id}' is missing", source_id=source_id)
            if not os.path.isfile(path):
                raise InvalidInput(f"Input '{source_id}' not found: {path}", source_id=source_id)

        if os.path.realpath(inputs[0]) == os.path.realpath(inputs[1]):
            logger.info(f"[{job_id}] Both inputs point at the same file")

        metadata = []
        for source_id, path in zip(SOURCE_IDS, inputs):
            try:
                meta = await self.frame_sampler.probe(path)
            except InvalidInput as e:
                e.source_id = source_id
                raise
            logger.info(
                f"[{job_id}] Input '{source_id}': {meta.width}x{meta.height}, "
                f"{meta.duration_ms}ms, {meta.fps:.2f}fps, audio={meta.has_audio}"
            )
            metadata.append(meta)
        return metadata

    def _ensure_temp_directory(self) -> str:
        os.makedirs(self.temp_directory, exist_ok=True)
        return self.temp_directory
