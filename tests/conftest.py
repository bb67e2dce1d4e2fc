"""
Pytest configuration and fixtures.
"""

import asyncio
import os
import sys
import threading

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from facestack.services.errors import EncodeError, InvalidInput  # noqa: E402
from facestack.services.face_detector import FaceDetectionResult  # noqa: E402
from facestack.services.face_geometry import FrameDimensions  # noqa: E402
from facestack.services.frame_sampler import RasterFrame, VideoMetadata  # noqa: E402


class FakeFrameSampler:
    """Frame sampler serving blank frames of a fixed size per path."""

    def __init__(self, frames, audio=None):
        self.frames = frames  # path -> (width, height)
        self.audio = audio or {}  # path -> has_audio (default True)
        self.sample_calls = []

    async def probe(self, video_path):
        await asyncio.sleep(0)
        if video_path not in self.frames:
            raise InvalidInput(f"No video stream in {video_path}")
        width, height = self.frames[video_path]
        return VideoMetadata(
            duration_ms=5000,
            width=width,
            height=height,
            fps=30.0,
            codec="h264",
            has_audio=self.audio.get(video_path, True),
        )

    async def sample(self, video_path, timestamp_seconds):
        await asyncio.sleep(0)
        self.sample_calls.append((video_path, timestamp_seconds))
        width, height = self.frames[video_path]
        return RasterFrame(
            pixels=np.zeros((height, width, 3), dtype=np.uint8),
            width=width,
            height=height,
            timestamp_ms=int(timestamp_seconds * 1000),
        )


class FakeFaceDetector:
    """Detector returning preset faces keyed by frame size (width, height)."""

    def __init__(self, faces=None, ready=True):
        self.faces = faces or {}  # (width, height) -> list of (x, y, w, h)
        self.ready = ready
        self.calls = 0

    def is_ready(self):
        return self.ready

    def detect_all(self, image):
        self.calls += 1
        height, width = image.shape[:2]
        return [
            FaceDetectionResult(bbox=bbox, confidence=0.9, detection_method="fake")
            for bbox in self.faces.get((width, height), [])
        ]

    def detect_primary(self, image):
        detections = self.detect_all(image)
        return detections[0] if detections else None


class BlockingFaceDetector(FakeFaceDetector):
    """Detector whose detect_all blocks until released."""

    def __init__(self, faces=None):
        super().__init__(faces)
        self.called = threading.Event()
        self.release = threading.Event()

    def detect_all(self, image):
        self.called.set()
        self.release.wait(timeout=5)
        return super().detect_all(image)


class FakeEncoder:
    """Encoder that records jobs and returns bytes naming the inputs."""

    def __init__(self, fail=False, ready=True):
        self.fail = fail
        self.ready = ready
        self.jobs = []

    def is_ready(self):
        return self.ready

    async def encode(self, job):
        self.jobs.append(job)
        await asyncio.sleep(0)
        if self.fail:
            raise EncodeError("FFmpeg failed: simulated")
        return f"{job.inputs[0]}|{job.inputs[1]}".encode()


class FakeSurface:
    """Playback surface with controllable state that records drawing."""

    def __init__(self, frame_size=(640, 480), display_size=(320, 240)):
        self.frame_size = FrameDimensions(*frame_size)
        self.display_size = FrameDimensions(*display_size)
        self.paused = False
        self.ended = False
        self.boxes = []
        self.draw_calls = []
        self.clear_calls = 0
        self.capture_calls = 0
        self.fail_capture = False

    def capture_frame(self):
        self.capture_calls += 1
        if self.fail_capture:
            raise RuntimeError("capture failed")
        return np.zeros((self.frame_size.height, self.frame_size.width, 3), dtype=np.uint8)

    def clear(self):
        self.clear_calls += 1
        self.boxes = []

    def draw_boxes(self, boxes):
        self.boxes = list(boxes)
        self.draw_calls.append(list(boxes))


class FakePlayback(FakeSurface):
    """FakeSurface with the playback controls the overlay API uses."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.paused = True
        self.closed = False
        self.position = 0.0
        self.duration_seconds = 10.0

    def play(self):
        self.paused = False

    def pause(self):
        self.paused = True

    def render_snapshot(self):
        return b"\xff\xd8fake-jpeg"

    def close(self):
        self.closed = True


@pytest.fixture
def sample_frame():
    """Blank 640x480 BGR frame."""
    return np.zeros((480, 640, 3), dtype=np.uint8)


@pytest.fixture
def video_files(tmp_path):
    """Four placeholder input files (contents are never decoded by the fakes)."""
    paths = {}
    for name in ("a", "b", "c", "d"):
        path = tmp_path / f"{name}.mp4"
        path.write_bytes(b"\x00")
        paths[name] = str(path)
    return paths


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return str(path)


@pytest.fixture
def fakes():
    """Access to the fake service classes."""

    class Fakes:
        FrameSampler = FakeFrameSampler
        FaceDetector = FakeFaceDetector
        BlockingFaceDetector = BlockingFaceDetector
        Encoder = FakeEncoder
        Surface = FakeSurface
        Playback = FakePlayback

    return Fakes
