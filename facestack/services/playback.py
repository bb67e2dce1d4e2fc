"""
OpenCV-backed playback surface for composed outputs.

Plays an encoded artifact against a monotonic clock and keeps an overlay of
face boxes that can be rendered into a snapshot.
"""

import logging
import os
import tempfile
import threading
import time
from typing import List, Optional

import cv2
import numpy as np

from facestack.services.errors import DecodeError
from facestack.services.face_geometry import FaceBox, FrameDimensions

logger = logging.getLogger(__name__)

BOX_COLOR = (255, 149, 0)  # BGR
BOX_THICKNESS = 2


class VideoPlayback:
    """
    Playback surface for one video file.

    Position advances with wall-clock time while playing. Frames are read
    from the executor thread; a lock serialises access to the capture.
    """

    def __init__(
        self,
        video_path: str,
        display_width: Optional[int] = None,
        display_height: Optional[int] = None,
        owns_file: bool = False,
    ):
        self.video_path = video_path
        self._owns_file = owns_file
        self._lock = threading.Lock()

        self._cap = cv2.VideoCapture(video_path)
        if not self._cap.isOpened():
            self._cleanup_file()
            raise DecodeError(f"Cannot open video for playback: {video_path}")

        width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        fps = self._cap.get(cv2.CAP_PROP_FPS) or 30.0
        frame_count = int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT))

        self.frame_size = FrameDimensions(width=width, height=height)
        self.display_size = FrameDimensions(
            width=display_width or width,
            height=display_height or height,
        )
        self.duration_seconds = frame_count / fps if fps > 0 else 0.0

        self._position = 0.0
        self._started_at: Optional[float] = None
        self.boxes: List[FaceBox] = []

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        temp_directory: Optional[str] = None,
        display_width: Optional[int] = None,
        display_height: Optional[int] = None,
    ) -> "VideoPlayback":
        """Write an in-memory artifact to a temp file the surface owns."""
        if temp_directory:
            os.makedirs(temp_directory, exist_ok=True)
        fd, path = tempfile.mkstemp(suffix=".mp4", prefix="playback_", dir=temp_directory)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        return cls(path, display_width, display_height, owns_file=True)

    @property
    def position(self) -> float:
        if self._started_at is None:
            return self._position
        return min(self.duration_seconds, time.monotonic() - self._started_at)

    @property
    def paused(self) -> bool:
        return self._started_at is None

    @property
    def ended(self) -> bool:
        return self.position >= self.duration_seconds

    def play(self) -> None:
        if self.ended:
            self._position = 0.0
        self._started_at = time.monotonic() - self._position

    def pause(self) -> None:
        self._position = self.position
        self._started_at = None

    def seek(self, seconds: float) -> None:
        seconds = max(0.0, min(seconds, self.duration_seconds))
        if self.paused:
            self._position = seconds
        else:
            self._started_at = time.monotonic() - seconds

    def capture_frame(self) -> np.ndarray:
        """Decode the frame at the current playback position."""
        position_ms = self.position * 1000
        with self._lock:
            self._cap.set(cv2.CAP_PROP_POS_MSEC, position_ms)
            ok, frame = self._cap.read()
        if not ok or frame is None:
            raise DecodeError(f"No frame at {position_ms:.0f}ms")
        return frame

    def clear(self) -> None:
        self.boxes = []

    def draw_boxes(self, boxes: List[FaceBox]) -> None:
        self.boxes = list(boxes)

    def render_snapshot(self) -> bytes:
        """JPEG of the displayed frame with the current boxes drawn on it."""
        frame = self.capture_frame()
        if (frame.shape[1], frame.shape[0]) != (self.display_size.width, self.display_size.height):
            frame = cv2.resize(frame, (self.display_size.width, self.display_size.height))

        for box in self.boxes:
            x, y, w, h = box.as_tuple()
            cv2.rectangle(frame, (x, y), (x + w, y + h), BOX_COLOR, BOX_THICKNESS)

        ok, encoded = cv2.imencode(".jpg", frame)
        if not ok:
            raise DecodeError("Failed to encode snapshot")
        return encoded.tobytes()

    def close(self) -> None:
        with self._lock:
            self._cap.release()
        self._cleanup_file()

    def _cleanup_file(self) -> None:
        if self._owns_file and os.path.exists(self.video_path):
            try:
                os.remove(self.video_path)
            except OSError as e:
                logger.warning(f"Failed to remove playback file {self.video_path}: {e}")
