"""
Frame sampling service using FFprobe and OpenCV.

Probes input videos and decodes single frames at a requested timestamp for
face detection.
"""

import asyncio
import json
import logging
import os
import subprocess
from dataclasses import dataclass

import cv2
import numpy as np

from facestack.services.errors import DecodeError, InvalidInput
from facestack.services.face_geometry import FrameDimensions

logger = logging.getLogger(__name__)


@dataclass
class RasterFrame:
    """One decoded frame with its native dimensions."""

    pixels: np.ndarray  # BGR, as decoded by OpenCV
    width: int
    height: int
    timestamp_ms: int

    @property
    def dimensions(self) -> FrameDimensions:
        return FrameDimensions(width=self.width, height=self.height)


@dataclass
class VideoMetadata:
    """Video file metadata."""

    duration_ms: int
    width: int
    height: int
    fps: float
    codec: str
    has_audio: bool = False


class FrameSampler:
    """
    Service for probing videos and decoding single frames.

    All blocking work runs in the default executor so callers can sample
    several inputs concurrently.
    """

    async def probe(self, video_path: str) -> VideoMetadata:
        """
        Probe a video file without blocking the event loop.

        Raises:
            InvalidInput: If the file is missing or has no video stream
        """
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.get_video_metadata, video_path)

    def get_video_metadata(self, video_path: str) -> VideoMetadata:
        """
        Get metadata for a video file using ffprobe.

        Args:
            video_path: Path to the video file

        Returns:
            VideoMetadata object with video properties
        """
        if not os.path.isfile(video_path):
            raise InvalidInput(f"Video file not found: {video_path}")

        cmd = [
            "ffprobe",
            "-v", "error",
            "-show_entries", "stream=codec_type,codec_name,width,height,r_frame_rate",
            "-show_entries", "format=duration",
            "-of", "json",
            video_path,
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        except FileNotFoundError:
            logger.warning("ffprobe not found, using OpenCV fallback")
            return self._metadata_with_opencv(video_path)
        except subprocess.CalledProcessError as e:
            raise InvalidInput(f"Not a readable video file: {video_path} ({e.stderr.strip()[-200:]})")

        try:
            probe = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            raise InvalidInput(f"Unreadable ffprobe output for {video_path}")

        return self._parse_probe(probe, video_path)

    def _parse_probe(self, probe: dict, video_path: str) -> VideoMetadata:
        streams = probe.get("streams", [])
        video = next((s for s in streams if s.get("codec_type") == "video"), None)
        if video is None:
            raise InvalidInput(f"No video stream in {video_path}")

        fps = 30.0
        rate = video.get("r_frame_rate", "")
        if "/" in rate:
            try:
                num, den = rate.split("/")
                fps = float(num) / float(den)
            except (ValueError, ZeroDivisionError):
                pass

        try:
            duration_s = float(probe.get("format", {}).get("duration", 0))
        except (TypeError, ValueError):
            duration_s = 0.0

        return VideoMetadata(
            duration_ms=int(duration_s * 1000),
            width=int(video.get("width", 0)),
            height=int(video.get("height", 0)),
            fps=fps,
            codec=video.get("codec_name", "unknown"),
            has_audio=any(s.get("codec_type") == "audio" for s in streams),
        )

    def _metadata_with_opencv(self, video_path: str) -> VideoMetadata:
        cap = cv2.VideoCapture(video_path)
        if not cap.isOpened():
            raise InvalidInput(f"Cannot open video file: {video_path}")

        try:
            width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
            height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
            fps = cap.get(cv2.CAP_PROP_FPS) or 30.0
            frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        finally:
            cap.release()

        if width <= 0 or height <= 0:
            raise InvalidInput(f"No video stream in {video_path}")

        # OpenCV cannot see audio streams; assume present and let amerge decide
        return VideoMetadata(
            duration_ms=int((frame_count / fps) * 1000) if fps > 0 else 0,
            width=width,
            height=height,
            fps=fps,
            codec="unknown",
            has_audio=True,
        )

    async def sample(self, video_path: str, timestamp_seconds: float) -> RasterFrame:
        """
        Decode one frame at the requested timestamp.

        Args:
            video_path: Path to the video file
            timestamp_seconds: Position of the frame to decode

        Returns:
            RasterFrame at (or just after) the timestamp

        Raises:
            DecodeError: If the timestamp is unreachable or the file is corrupt
        """
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            None, self.read_frame, video_path, timestamp_seconds
        )

    def read_frame(self, video_path: str, timestamp_seconds: float) -> RasterFrame:
        """Blocking variant of :meth:`sample`."""
        if timestamp_seconds < 0:
            raise DecodeError(f"Negative sample timestamp: {timestamp_seconds}")

        cap = cv2.VideoCapture(video_path)
        if not cap.isOpened():
            raise DecodeError(f"Cannot open video file: {video_path}")

        try:
            timestamp_ms = int(timestamp_seconds * 1000)
            cap.set(cv2.CAP_PROP_POS_MSEC, timestamp_ms)
            ok, frame = cap.read()
        finally:
            cap.release()

        if not ok or frame is None:
            raise DecodeError(
                f"Could not decode a frame at {timestamp_seconds:.3f}s from {video_path}"
            )

        height, width = frame.shape[:2]
        logger.debug(f"Sampled {width}x{height} frame at {timestamp_ms}ms from {video_path}")
        return RasterFrame(pixels=frame, width=width, height=height, timestamp_ms=timestamp_ms)
