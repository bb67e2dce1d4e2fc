"""
Composition API Router - submit stacking jobs and fetch their output.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Response, status

from facestack.auth import verify_api_key
from facestack.config import get_settings
from facestack.schemas.requests import CompositionSubmitRequest
from facestack.schemas.responses import (
    BoundingBox,
    CompositionStatusResponse,
    CompositionSubmitResponse,
    CropPlanResponse,
)
from facestack.services.composition_pipeline import (
    CompositionPipeline,
    CompositionRequest,
    CompositionResult,
    CompositionStatus,
)
from facestack.services.crop_planner import CropPlan
from facestack.services.errors import CompositionError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/compositions", tags=["Compositions"])


@dataclass
class CompositionRecord:
    """In-memory record of one composition job and its artifact."""

    job_id: str
    status: CompositionStatus = CompositionStatus.PENDING
    current_step: str = "Queued for processing"
    created_at: float = field(default_factory=time.time)
    result: Optional[CompositionResult] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    failed_input: Optional[str] = None
    callback_url: Optional[str] = None


# ============================================================================
# In-Memory Job Storage (artifacts live here until released)
# ============================================================================

_job_store: dict[str, CompositionRecord] = {}

_job_semaphore: Optional[asyncio.Semaphore] = None

# Pending result-expiry timers, referenced until they finish
_expiry_tasks: set[asyncio.Task] = set()


def get_job_semaphore() -> asyncio.Semaphore:
    """Get or create job semaphore."""
    global _job_semaphore
    if _job_semaphore is None:
        _job_semaphore = asyncio.Semaphore(get_settings().max_concurrent_jobs)
    return _job_semaphore


def get_job_record(job_id: str) -> CompositionRecord:
    record = _job_store.get(job_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job not found: {job_id}",
        )
    return record


# ============================================================================
# Dependencies
# ============================================================================


async def get_composition_pipeline(request: Request) -> CompositionPipeline:
    """Get the composition pipeline from app state (initialized at startup)."""
    pipeline = getattr(request.app.state, "composition_pipeline", None)
    if pipeline is None or not pipeline.is_ready():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Composition pipeline not initialized",
        )
    return pipeline


def progress_callback(job_id: str, job_status: CompositionStatus, step: str) -> None:
    """Callback to store job progress."""
    record = _job_store.get(job_id)
    if record is not None:
        record.status = job_status
        record.current_step = step
    logger.debug(f"Job {job_id}: {job_status.value} - {step}")


# ============================================================================
# Response helpers
# ============================================================================


def _plan_response(plan: CropPlan) -> CropPlanResponse:
    face_x, face_y, face_w, face_h = plan.face_box.as_tuple()
    return CropPlanResponse(
        source_id=plan.source_id,
        source_width=plan.frame.width,
        source_height=plan.frame.height,
        face=BoundingBox(x=face_x, y=face_y, width=face_w, height=face_h),
        crop=BoundingBox(
            x=plan.rect.x,
            y=plan.rect.y,
            width=plan.rect.width,
            height=plan.rect.height,
        ),
        target_width=plan.target_width,
        target_height=plan.target_height,
    )


def _status_response(record: CompositionRecord) -> CompositionStatusResponse:
    result = record.result
    return CompositionStatusResponse(
        job_id=record.job_id,
        status=record.status.value,
        current_step=record.current_step,
        error=record.error,
        error_kind=record.error_kind,
        failed_input=record.failed_input,
        plans=[_plan_response(p) for p in result.plans] if result else [],
        output_size_bytes=result.size_bytes if result else None,
        output_url=f"/compositions/{record.job_id}/output" if result else None,
        processing_time_seconds=result.processing_time_seconds if result else None,
    )


def release_job_overlays(app_state, job_id: str) -> None:
    """Stop overlay sessions playing a job's output and close their playback."""
    tracker = getattr(app_state, "overlay_tracker", None)
    entries = getattr(app_state, "overlay_entries", {})
    for session_id, entry in list(entries.items()):
        if entry.job_id != job_id:
            continue
        if tracker is not None:
            tracker.forget(entry.session)
        entry.playback.close()
        del entries[session_id]


# ============================================================================
# Endpoints
# ============================================================================


@router.post("", response_model=CompositionSubmitResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_composition(
    request: CompositionSubmitRequest,
    http_request: Request,
    background_tasks: BackgroundTasks,
    pipeline: CompositionPipeline = Depends(get_composition_pipeline),
    _: None = Depends(verify_api_key),
) -> CompositionSubmitResponse:
    """
    Submit a new composition job.

    Both inputs are cropped around their primary face, stacked (A on top) and
    encoded with merged audio. Use GET /compositions/{job_id} to check status.
    """
    # Reject missing inputs before any pipeline work
    for label, path in (("video_a_path", request.video_a_path), ("video_b_path", request.video_b_path)):
        if not os.path.isfile(path):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"{label} not found: {path}",
            )

    if request.job_id and request.job_id in _job_store:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job already exists: {request.job_id}",
        )

    composition_request = CompositionRequest(
        video_a_path=request.video_a_path,
        video_b_path=request.video_b_path,
        job_id=request.job_id,
        sample_timestamp_seconds=request.sample_timestamp_seconds,
        target_width=request.target_width,
        target_height=request.target_height,
    )

    _job_store[composition_request.job_id] = CompositionRecord(
        job_id=composition_request.job_id,
        callback_url=request.callback_url,
    )

    background_tasks.add_task(
        _process_job_background, composition_request, pipeline, http_request.app.state
    )

    logger.info(f"Job {composition_request.job_id} submitted: {request.video_a_path} + {request.video_b_path}")

    return CompositionSubmitResponse(
        job_id=composition_request.job_id,
        status="accepted",
        message="Job queued for processing",
    )


@router.get("", response_model=list[CompositionStatusResponse])
async def list_compositions(limit: int = 50) -> list[CompositionStatusResponse]:
    """List known jobs, newest first."""
    records = sorted(_job_store.values(), key=lambda r: r.created_at, reverse=True)
    return [_status_response(r) for r in records[:limit]]


@router.get("/{job_id}", response_model=CompositionStatusResponse)
async def get_composition_status(job_id: str) -> CompositionStatusResponse:
    """Get the status of a composition job."""
    return _status_response(get_job_record(job_id))


@router.get("/{job_id}/output")
async def get_composition_output(job_id: str) -> Response:
    """Download the stacked video."""
    record = get_job_record(job_id)
    if record.result is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job {job_id} has no output (status: {record.status.value})",
        )
    return Response(
        content=record.result.data,
        media_type=record.result.content_type,
        headers={"Content-Disposition": f'attachment; filename="merged_{job_id}.mp4"'},
    )


@router.delete("/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def release_composition(
    job_id: str,
    http_request: Request,
    _: None = Depends(verify_api_key),
) -> None:
    """
    Release a job and its in-memory artifact.

    Overlay sessions playing the output are stopped as well.
    """
    get_job_record(job_id)
    release_job_overlays(http_request.app.state, job_id)
    _job_store.pop(job_id, None)
    logger.info(f"Job {job_id} released")


# ============================================================================
# Background processing
# ============================================================================


async def send_callback(callback_url: str, response: CompositionStatusResponse) -> None:
    """Send the final job status to the callback URL."""
    settings = get_settings()
    try:
        async with httpx.AsyncClient() as client:
            await client.post(
                callback_url,
                json=response.model_dump(),
                timeout=settings.callback_timeout_seconds,
            )
        logger.info(f"Callback sent to {callback_url}")
    except httpx.HTTPError as e:
        logger.error(f"Failed to send callback to {callback_url}: {e}")


async def _expire_result(record: CompositionRecord, app_state, ttl_seconds: float) -> None:
    """Drop a completed job after its TTL, releasing it like DELETE does."""
    await asyncio.sleep(ttl_seconds)
    job_id = record.job_id
    # The job may have been released and its ID reused since
    if _job_store.get(job_id) is not record:
        return
    logger.info(f"Job {job_id} result expired after {ttl_seconds}s")
    release_job_overlays(app_state, job_id)
    _job_store.pop(job_id, None)


def _schedule_expiry(record: CompositionRecord, app_state) -> None:
    task = asyncio.create_task(
        _expire_result(record, app_state, get_settings().result_ttl_seconds)
    )
    _expiry_tasks.add(task)
    task.add_done_callback(_expiry_tasks.discard)


async def _process_job_background(
    request: CompositionRequest,
    pipeline: CompositionPipeline,
    app_state,
) -> None:
    """Run a composition with concurrency control and record the outcome."""
    job_id = request.job_id
    record = _job_store.get(job_id)
    if record is None:
        return

    semaphore = get_job_semaphore()
    async with semaphore:
        logger.info(f"[{job_id}] Job started processing")
        try:
            result = await pipeline.compose(request, progress_callback=progress_callback)
        except CompositionError as e:
            record.status = CompositionStatus.FAILED
            record.current_step = "Failed"
            record.error = str(e)
            record.error_kind = e.kind
            record.failed_input = e.source_id
            logger.warning(f"[{job_id}] Job failed ({e.kind}): {e}")
        except Exception as e:
            record.status = CompositionStatus.FAILED
            record.current_step = "Failed"
            record.error = str(e)
            record.error_kind = "internal_error"
            logger.exception(f"[{job_id}] Unexpected error: {e}")
        else:
            record.result = result
            record.status = CompositionStatus.COMPLETED
            record.current_step = "Completed"
            _schedule_expiry(record, app_state)

    if record.callback_url:
        await send_callback(record.callback_url, _status_response(record))
