"""
Overlay API Router - live face tracking on composed output playback.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from facestack.config import get_settings
from facestack.routers.compositions import get_job_record
from facestack.schemas.requests import OverlayStartRequest
from facestack.schemas.responses import BoundingBox, OverlayStatusResponse
from facestack.services.errors import DecodeError
from facestack.services.overlay_tracker import OverlaySession, OverlayTracker
from facestack.services.playback import VideoPlayback

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Overlay"])


@dataclass
class OverlayEntry:
    """A playback surface and the overlay session drawing on it."""

    job_id: str
    playback: VideoPlayback
    session: OverlaySession


def get_overlay_tracker(request: Request) -> OverlayTracker:
    """Get the overlay tracker from app state."""
    tracker = getattr(request.app.state, "overlay_tracker", None)
    if tracker is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Overlay tracker not initialized",
        )
    return tracker


def _entries(request: Request) -> dict[str, OverlayEntry]:
    if not hasattr(request.app.state, "overlay_entries"):
        request.app.state.overlay_entries = {}
    return request.app.state.overlay_entries


def _get_entry(request: Request, session_id: str) -> OverlayEntry:
    entry = _entries(request).get(session_id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Overlay session not found: {session_id}",
        )
    return entry


def _status_response(entry: OverlayEntry) -> OverlayStatusResponse:
    session = entry.session
    boxes = []
    for box in session.last_boxes:
        x, y, w, h = box.as_tuple()
        boxes.append(BoundingBox(x=x, y=y, width=w, height=h))

    return OverlayStatusResponse(
        session_id=session.session_id,
        job_id=entry.job_id,
        state=session.state.value,
        end_reason=session.end_reason,
        position_seconds=entry.playback.position,
        duration_seconds=entry.playback.duration_seconds,
        ticks=session.ticks,
        frames_drawn=session.frames_drawn,
        frames_skipped=session.frames_skipped,
        stale_discarded=session.stale_discarded,
        boxes=boxes,
    )


def _start_session(
    request: Request,
    tracker: OverlayTracker,
    job_id: str,
    playback: VideoPlayback,
) -> OverlayEntry:
    playback.play()
    try:
        session = tracker.start_overlay(playback)
    except ValueError as e:
        playback.pause()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    entry = OverlayEntry(job_id=job_id, playback=playback, session=session)
    _entries(request)[session.session_id] = entry
    return entry


@router.post(
    "/compositions/{job_id}/overlay",
    response_model=OverlayStatusResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_overlay(
    job_id: str,
    http_request: Request,
    body: Optional[OverlayStartRequest] = None,
    tracker: OverlayTracker = Depends(get_overlay_tracker),
) -> OverlayStatusResponse:
    """Start playing a composed output with live face boxes."""
    record = get_job_record(job_id)
    if record.result is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job {job_id} has no output (status: {record.status.value})",
        )

    body = body or OverlayStartRequest()
    settings = get_settings()
    loop = asyncio.get_event_loop()
    try:
        playback = await loop.run_in_executor(
            None,
            lambda: VideoPlayback.from_bytes(
                record.result.data,
                temp_directory=settings.temp_directory,
                display_width=body.display_width,
                display_height=body.display_height,
            ),
        )
    except DecodeError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    try:
        entry = _start_session(http_request, tracker, job_id, playback)
    except HTTPException:
        playback.close()
        raise

    return _status_response(entry)


@router.get("/overlay/{session_id}", response_model=OverlayStatusResponse)
async def get_overlay_status(session_id: str, http_request: Request) -> OverlayStatusResponse:
    """Get the state and current boxes of an overlay session."""
    return _status_response(_get_entry(http_request, session_id))


@router.get("/overlay/{session_id}/snapshot")
async def get_overlay_snapshot(session_id: str, http_request: Request) -> Response:
    """JPEG of the displayed frame with the current face boxes."""
    entry = _get_entry(http_request, session_id)
    loop = asyncio.get_event_loop()
    try:
        data = await loop.run_in_executor(None, entry.playback.render_snapshot)
    except DecodeError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return Response(content=data, media_type="image/jpeg")


@router.post("/overlay/{session_id}/pause", response_model=OverlayStatusResponse)
async def pause_overlay(
    session_id: str,
    http_request: Request,
    tracker: OverlayTracker = Depends(get_overlay_tracker),
) -> OverlayStatusResponse:
    """Pause playback, which ends the tracking session."""
    entry = _get_entry(http_request, session_id)
    entry.playback.pause()
    tracker.stop_overlay(entry.session, reason="paused")
    return _status_response(entry)


@router.post("/overlay/{session_id}/play", response_model=OverlayStatusResponse)
async def resume_overlay(
    session_id: str,
    http_request: Request,
    tracker: OverlayTracker = Depends(get_overlay_tracker),
) -> OverlayStatusResponse:
    """Resume playback with a fresh tracking session (new session ID)."""
    entry = _get_entry(http_request, session_id)
    new_entry = _start_session(http_request, tracker, entry.job_id, entry.playback)
    _entries(http_request).pop(session_id, None)
    tracker.forget(entry.session)
    return _status_response(new_entry)


@router.delete("/overlay/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def stop_overlay(
    session_id: str,
    http_request: Request,
    tracker: OverlayTracker = Depends(get_overlay_tracker),
) -> None:
    """Stop an overlay session and release its playback."""
    entry = _get_entry(http_request, session_id)
    tracker.forget(entry.session)
    entry.playback.close()
    _entries(http_request).pop(session_id, None)
    logger.info(f"[overlay {session_id}] Released")
