"""
Live face-tracking overlay for composed output playback.

While a surface is playing, a cooperative task repeatedly captures the
displayed frame, detects every face, rescales the boxes to display
coordinates and redraws them. The session ends on the first tick that sees
playback paused or ended, or when it is stopped or superseded.

A surface is any object exposing:
- ``paused`` / ``ended``: playback state
- ``frame_size`` / ``display_size``: FrameDimensions of decoded frames and of
  the display
- ``capture_frame()``: the currently displayed frame (BGR ndarray)
- ``clear()`` / ``draw_boxes(boxes)``: overlay rendering
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from facestack.services.face_detector import FaceDetectionResult, FaceDetector
from facestack.services.face_geometry import (
    FaceBox,
    FrameDimensions,
    aspect_ratios_match,
    rescale_box,
)

logger = logging.getLogger(__name__)


class OverlayState(str, Enum):
    """Lifecycle state of an overlay session."""

    IDLE = "idle"
    TRACKING = "tracking"


@dataclass
class OverlaySession:
    """One overlay tracking session bound to a playback surface."""

    session_id: str
    surface: Any
    state: OverlayState = OverlayState.TRACKING
    started_at: float = field(default_factory=time.time)
    ticks: int = 0
    frames_drawn: int = 0
    frames_skipped: int = 0
    stale_discarded: int = 0
    end_reason: Optional[str] = None
    last_boxes: List[FaceBox] = field(default_factory=list)
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def is_active(self) -> bool:
        return self.state == OverlayState.TRACKING

    async def wait(self) -> None:
        """Wait until the session's tracking task has finished."""
        if self.task is not None:
            await asyncio.wait({self.task})


class OverlayTracker:
    """
    Runs overlay sessions.

    At most one session draws to a surface; starting a new one on the same
    surface stops the previous one first.
    """

    def __init__(
        self,
        face_detector: FaceDetector,
        interval_ms: int = 100,
        aspect_ratio_tolerance: float = 0.02,
    ):
        self.face_detector = face_detector
        self.interval_seconds = interval_ms / 1000
        self.aspect_ratio_tolerance = aspect_ratio_tolerance

        self._sessions: Dict[str, OverlaySession] = {}
        self._by_surface: Dict[int, OverlaySession] = {}

    def start_overlay(self, surface: Any) -> OverlaySession:
        """
        Start tracking faces on a playing surface.

        Must be called from a running event loop.

        Raises:
            ValueError: If decoded frames and the display differ in aspect ratio
        """
        if not aspect_ratios_match(surface.frame_size, surface.display_size, self.aspect_ratio_tolerance):
            raise ValueError(
                f"Overlay needs matching aspect ratios: frame "
                f"{surface.frame_size.width}x{surface.frame_size.height}, display "
                f"{surface.display_size.width}x{surface.display_size.height}"
            )

        previous = self._by_surface.get(id(surface))
        if previous is not None:
            logger.info(f"[overlay {previous.session_id}] Superseded by a new session")
            self.stop_overlay(previous, reason="superseded")

        session = OverlaySession(session_id=uuid.uuid4().hex[:12], surface=surface)
        self._sessions[session.session_id] = session
        self._by_surface[id(surface)] = session

        session.task = asyncio.create_task(self._run(session))
        logger.info(f"[overlay {session.session_id}] Tracking started")
        return session

    def stop_overlay(self, session: OverlaySession, reason: str = "stopped") -> None:
        """Stop a session. Detections still in flight are never drawn."""
        self._finish(session, reason)

        task = session.task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def get_session(self, session_id: str) -> Optional[OverlaySession]:
        return self._sessions.get(session_id)

    def forget(self, session: OverlaySession) -> None:
        """Drop a finished session from the registry."""
        self.stop_overlay(session)
        self._sessions.pop(session.session_id, None)

    def stop_all(self) -> None:
        for session in list(self._sessions.values()):
            self.stop_overlay(session, reason="shutdown")

    def _finish(self, session: OverlaySession, reason: str) -> None:
        if session.state == OverlayState.TRACKING:
            session.state = OverlayState.IDLE
            session.end_reason = reason
            logger.info(
                f"[overlay {session.session_id}] Tracking stopped ({reason}) after "
                f"{session.ticks} ticks, {session.frames_drawn} drawn"
            )
        if self._by_surface.get(id(session.surface)) is session:
            del self._by_surface[id(session.surface)]

    async def _run(self, session: OverlaySession) -> None:
        surface = session.surface

        while session.is_active:
            if surface.ended:
                self._finish(session, "ended")
                break
            if surface.paused:
                self._finish(session, "paused")
                break

            await self._tick(session)
            await asyncio.sleep(self.interval_seconds)

    async def _tick(self, session: OverlaySession) -> None:
        surface = session.surface
        session.ticks += 1

        loop = asyncio.get_event_loop()
        try:
            frame, detections = await loop.run_in_executor(None, self._capture_and_detect, surface)
        except Exception as e:
            self._skip_frame(session, e)
            return

        # The session may have ended while detection was running
        if not session.is_active or surface.paused or surface.ended:
            session.stale_discarded += 1
            logger.debug(f"[overlay {session.session_id}] Discarded stale detection")
            return

        height, width = frame.shape[:2]
        source = FrameDimensions(width=width, height=height)
        try:
            boxes = [
                rescale_box(d.box, source, surface.display_size, self.aspect_ratio_tolerance)
                for d in detections
            ]
        except ValueError as e:
            self._skip_frame(session, e)
            return

        surface.clear()
        surface.draw_boxes(boxes)
        session.last_boxes = boxes
        session.frames_drawn += 1
        logger.debug(f"[overlay {session.session_id}] Faces detected: {len(boxes)}")

    def _skip_frame(self, session: OverlaySession, error: Exception) -> None:
        """A failed tick draws nothing; boxes from earlier ticks are removed."""
        session.surface.clear()
        session.last_boxes = []
        session.frames_skipped += 1
        logger.warning(f"[overlay {session.session_id}] Skipping frame: {error}")

    def _capture_and_detect(self, surface: Any) -> Tuple[np.ndarray, List[FaceDetectionResult]]:
        frame = surface.capture_frame()
        return frame, self.face_detector.detect_all(frame)
