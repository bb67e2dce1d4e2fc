"""
Services for the stacking worker.

Includes:
- Detection services (MediaPipe, Haar Cascade)
- Composition services (frame sampling, crop planning, FFmpeg stacking)
- Live overlay tracking
"""

from facestack.services.composition_pipeline import CompositionPipeline
from facestack.services.crop_planner import CropPlanComputer
from facestack.services.face_detector import FaceDetector
from facestack.services.frame_sampler import FrameSampler
from facestack.services.overlay_tracker import OverlayTracker
from facestack.services.playback import VideoPlayback
from facestack.services.stack_encoder import StackEncoder

__all__ = [
    # Detection
    "FaceDetector",
    "FrameSampler",
    # Composition
    "CropPlanComputer",
    "StackEncoder",
    "CompositionPipeline",
    # Overlay
    "OverlayTracker",
    "VideoPlayback",
]
