"""
FastAPI application entry point for FaceStack.

FaceStack crops two clips around their principal faces, stacks them
vertically with merged audio, and tracks faces live on the composed output.
"""

import logging
import os
import shutil
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from facestack.config import get_settings
from facestack.routers import compositions, health, overlay
from facestack.services.composition_pipeline import CompositionPipeline
from facestack.services.crop_planner import CropPlanComputer
from facestack.services.face_detector import FaceDetector
from facestack.services.frame_sampler import FrameSampler
from facestack.services.overlay_tracker import OverlayTracker
from facestack.services.stack_encoder import StackEncoder

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.
    Creates the detector and encoder once and injects them into the services.
    """
    logger.info("Starting FaceStack...")

    os.makedirs(settings.temp_directory, exist_ok=True)
    logger.info(f"Temp directory: {settings.temp_directory}")

    logger.info("Loading face detection backends...")
    face_detector = FaceDetector(confidence_threshold=settings.face_confidence_threshold)

    frame_sampler = FrameSampler()
    stack_encoder = StackEncoder()
    crop_planner = CropPlanComputer(
        frame_sampler=frame_sampler,
        face_detector=face_detector,
        zoom_factor=settings.crop_zoom_factor,
    )
    composition_pipeline = CompositionPipeline(
        crop_planner=crop_planner,
        encoder=stack_encoder,
        frame_sampler=frame_sampler,
    )
    overlay_tracker = OverlayTracker(
        face_detector=face_detector,
        interval_ms=settings.overlay_interval_ms,
        aspect_ratio_tolerance=settings.aspect_ratio_tolerance,
    )

    # Store in app state for dependency injection
    app.state.face_detector = face_detector
    app.state.frame_sampler = frame_sampler
    app.state.stack_encoder = stack_encoder
    app.state.composition_pipeline = composition_pipeline
    app.state.overlay_tracker = overlay_tracker
    app.state.overlay_entries = {}

    _verify_external_tools()

    if composition_pipeline.is_ready():
        logger.info("FaceStack ready to accept requests.")
    else:
        logger.warning("FaceStack started but is NOT ready (see warnings above)")

    yield

    logger.info("Shutting down FaceStack...")
    overlay_tracker.stop_all()
    for entry in app.state.overlay_entries.values():
        entry.playback.close()
    app.state.overlay_entries = {}

    if os.path.isdir(settings.temp_directory):
        try:
            shutil.rmtree(settings.temp_directory)
        except OSError as e:
            logger.warning(f"Failed to clean up temp directory: {e}")

    logger.info("Shutdown complete")


def _verify_external_tools():
    """Verify that required external tools are available."""
    tools = {
        "ffmpeg": "FFmpeg for stacking and encoding",
        "ffprobe": "FFprobe for input validation",
    }

    for tool, description in tools.items():
        if shutil.which(tool):
            logger.info(f"✓ {description} available")
        else:
            logger.warning(f"✗ {description} NOT FOUND - some features may not work")


app = FastAPI(
    title="FaceStack",
    description="""
FaceStack - face-guided video stacking.

## Features

### Compositions (`/compositions`)
- Primary face detection on a sampled frame of each input
- Face-centred crop (2.5x the face box), scaled to a shared size
- Vertical stack with merged audio, encoded to H.264/AAC

### Overlay (`/overlay`)
- Live face boxes while the composed output plays

## Usage

1. Submit a job: `POST /compositions`
2. Poll status: `GET /compositions/{job_id}`
3. Download: `GET /compositions/{job_id}/output`
4. Release: `DELETE /compositions/{job_id}`
    """,
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["Health"])
app.include_router(compositions.router)
app.include_router(overlay.router)


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    return {
        "service": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }
