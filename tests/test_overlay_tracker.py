"""
Tests for the live overlay tracker.
"""

import asyncio

import pytest

from facestack.services.face_geometry import FaceBox, FrameDimensions
from facestack.services.overlay_tracker import OverlayState, OverlayTracker


async def wait_for(predicate, timeout=2.0):
    """Poll until predicate() is true or fail after timeout seconds."""
    loop = asyncio.get_event_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def make_tracker():
    def _make(detector, interval_ms=5):
        return OverlayTracker(face_detector=detector, interval_ms=interval_ms)

    return _make


class TestOverlayTracking:
    """Tests for the tracking loop."""

    @pytest.mark.asyncio
    async def test_draws_rescaled_boxes(self, fakes, make_tracker):
        surface = fakes.Surface(frame_size=(640, 480), display_size=(320, 240))
        tracker = make_tracker(fakes.FaceDetector({(640, 480): [(100, 50, 80, 80)]}))

        session = tracker.start_overlay(surface)
        await wait_for(lambda: surface.draw_calls)
        surface.paused = True
        await session.wait()

        assert surface.draw_calls[0] == [FaceBox(x=50, y=25, width=40, height=40)]
        assert surface.clear_calls >= len(surface.draw_calls)
        assert session.last_boxes == [FaceBox(x=50, y=25, width=40, height=40)]
        assert session.frames_drawn == len(surface.draw_calls)

    @pytest.mark.asyncio
    async def test_multiple_faces_drawn(self, fakes, make_tracker):
        surface = fakes.Surface(frame_size=(640, 480), display_size=(640, 480))
        faces = [(10, 10, 50, 50), (300, 200, 60, 60)]
        tracker = make_tracker(fakes.FaceDetector({(640, 480): faces}))

        session = tracker.start_overlay(surface)
        await wait_for(lambda: surface.draw_calls)
        tracker.stop_overlay(session)
        await session.wait()

        assert len(surface.draw_calls[0]) == 2

    @pytest.mark.asyncio
    async def test_no_faces_clears_overlay(self, fakes, make_tracker):
        surface = fakes.Surface()
        surface.boxes = [FaceBox(x=0, y=0, width=1, height=1)]
        tracker = make_tracker(fakes.FaceDetector())

        session = tracker.start_overlay(surface)
        await wait_for(lambda: surface.draw_calls)
        tracker.stop_overlay(session)
        await session.wait()

        assert surface.boxes == []
        assert surface.draw_calls[0] == []

    @pytest.mark.asyncio
    async def test_pause_ends_session(self, fakes, make_tracker):
        """After pause the loop exits and no further detection runs."""
        surface = fakes.Surface()
        detector = fakes.FaceDetector({(640, 480): [(100, 50, 80, 80)]})
        tracker = make_tracker(detector)

        session = tracker.start_overlay(surface)
        await wait_for(lambda: detector.calls >= 2)
        surface.paused = True
        await session.wait()
        calls = detector.calls
        await asyncio.sleep(0.05)

        assert session.state == OverlayState.IDLE
        assert session.end_reason == "paused"
        assert detector.calls == calls

    @pytest.mark.asyncio
    async def test_playback_end_ends_session(self, fakes, make_tracker):
        surface = fakes.Surface()
        tracker = make_tracker(fakes.FaceDetector())

        session = tracker.start_overlay(surface)
        await wait_for(lambda: session.ticks >= 1)
        surface.ended = True
        await session.wait()

        assert session.state == OverlayState.IDLE
        assert session.end_reason == "ended"

    @pytest.mark.asyncio
    async def test_paused_surface_never_ticks(self, fakes, make_tracker):
        surface = fakes.Surface()
        surface.paused = True
        detector = fakes.FaceDetector()
        tracker = make_tracker(detector)

        session = tracker.start_overlay(surface)
        await session.wait()

        assert session.ticks == 0
        assert detector.calls == 0
        assert session.end_reason == "paused"


class TestStaleDetections:
    """In-flight detections must not draw once tracking has stopped."""

    @pytest.mark.asyncio
    async def test_stop_during_detection_discards_result(self, fakes, make_tracker):
        surface = fakes.Surface(display_size=(640, 480))
        detector = fakes.BlockingFaceDetector({(640, 480): [(100, 50, 80, 80)]})
        tracker = make_tracker(detector)

        session = tracker.start_overlay(surface)
        await wait_for(detector.called.is_set)
        surface.paused = True
        tracker.stop_overlay(session, reason="paused")
        detector.release.set()
        await session.wait()
        await asyncio.sleep(0.05)

        assert surface.draw_calls == []
        assert session.state == OverlayState.IDLE

    @pytest.mark.asyncio
    async def test_pause_during_detection_discards_result(self, fakes, make_tracker):
        surface = fakes.Surface(display_size=(640, 480))
        detector = fakes.BlockingFaceDetector({(640, 480): [(100, 50, 80, 80)]})
        tracker = make_tracker(detector)

        session = tracker.start_overlay(surface)
        await wait_for(detector.called.is_set)
        surface.paused = True
        detector.release.set()
        await session.wait()

        assert surface.draw_calls == []
        assert session.stale_discarded == 1
        assert session.end_reason == "paused"


class TestSessionManagement:
    """Tests for starting, superseding and stopping sessions."""

    @pytest.mark.asyncio
    async def test_new_session_supersedes_previous(self, fakes, make_tracker):
        surface = fakes.Surface()
        tracker = make_tracker(fakes.FaceDetector())

        first = tracker.start_overlay(surface)
        second = tracker.start_overlay(surface)
        await first.wait()

        assert first.state == OverlayState.IDLE
        assert first.end_reason == "superseded"
        assert second.is_active
        assert first.session_id != second.session_id

        tracker.stop_all()
        await second.wait()
        assert second.end_reason == "shutdown"

    @pytest.mark.asyncio
    async def test_separate_surfaces_track_independently(self, fakes, make_tracker):
        left, right = fakes.Surface(), fakes.Surface()
        tracker = make_tracker(fakes.FaceDetector())

        first = tracker.start_overlay(left)
        second = tracker.start_overlay(right)

        assert first.is_active and second.is_active
        tracker.stop_all()
        await asyncio.gather(first.wait(), second.wait())

    @pytest.mark.asyncio
    async def test_aspect_mismatch_rejected(self, fakes, make_tracker):
        surface = fakes.Surface(frame_size=(640, 480), display_size=(1280, 720))
        tracker = make_tracker(fakes.FaceDetector())

        with pytest.raises(ValueError, match="aspect ratio"):
            tracker.start_overlay(surface)

    @pytest.mark.asyncio
    async def test_forget_removes_session(self, fakes, make_tracker):
        surface = fakes.Surface()
        tracker = make_tracker(fakes.FaceDetector())

        session = tracker.start_overlay(surface)
        assert tracker.get_session(session.session_id) is session
        tracker.forget(session)
        await session.wait()

        assert tracker.get_session(session.session_id) is None
        assert session.end_reason == "stopped"

    @pytest.mark.asyncio
    async def test_capture_failure_skips_frame(self, fakes, make_tracker):
        """A failing tick is skipped and tracking carries on."""
        surface = fakes.Surface()
        surface.fail_capture = True
        tracker = make_tracker(fakes.FaceDetector({(640, 480): [(100, 50, 80, 80)]}))

        session = tracker.start_overlay(surface)
        await wait_for(lambda: session.frames_skipped >= 2)
        surface.fail_capture = False
        await wait_for(lambda: surface.draw_calls)

        assert session.is_active
        tracker.stop_overlay(session)
        await session.wait()

    @pytest.mark.asyncio
    async def test_failed_tick_clears_previous_boxes(self, fakes, make_tracker):
        """Boxes from the last good tick do not linger while ticks fail."""
        surface = fakes.Surface()
        tracker = make_tracker(fakes.FaceDetector({(640, 480): [(100, 50, 80, 80)]}))

        session = tracker.start_overlay(surface)
        await wait_for(lambda: surface.draw_calls)
        assert surface.boxes

        surface.fail_capture = True
        skipped = session.frames_skipped
        await wait_for(lambda: session.frames_skipped >= skipped + 3)

        assert surface.boxes == []
        assert session.last_boxes == []
        tracker.stop_overlay(session)
        await session.wait()

    @pytest.mark.asyncio
    async def test_unscalable_frame_clears_previous_boxes(self, fakes, make_tracker):
        surface = fakes.Surface(frame_size=(640, 480), display_size=(320, 240))
        detector = fakes.FaceDetector({
            (640, 480): [(100, 50, 80, 80)],
            (1280, 720): [(100, 50, 80, 80)],
        })
        tracker = make_tracker(detector)

        session = tracker.start_overlay(surface)
        await wait_for(lambda: surface.draw_calls)

        # Decoded frames switch to 16:9 while the display stays 4:3
        surface.frame_size = FrameDimensions(1280, 720)
        skipped = session.frames_skipped
        await wait_for(lambda: session.frames_skipped > skipped)

        assert surface.boxes == []
        assert session.last_boxes == []
        tracker.stop_overlay(session)
        await session.wait()
