"""
Health check endpoints for the stacking service.
"""

from fastapi import APIRouter, Request

from facestack.schemas.responses import HealthResponse, ReadinessResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    return HealthResponse(status="healthy", version="1.0.0")


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request):
    """
    Readiness check endpoint.

    Reports whether the face detector and the FFmpeg encoder are initialized.
    """
    face_detector = getattr(request.app.state, "face_detector", None)
    encoder = getattr(request.app.state, "stack_encoder", None)

    face_ready = face_detector is not None and face_detector.is_ready()
    encoder_ready = encoder is not None and encoder.is_ready()

    return ReadinessResponse(
        ready=face_ready and encoder_ready,
        face_detector="ready" if face_ready else "not_loaded",
        encoder="ready" if encoder_ready else "not_available",
    )


@router.get("/health/models")
async def model_status(request: Request):
    """
    Detailed model status endpoint.

    Returns information about loaded detection backends.
    """
    face_detector = getattr(request.app.state, "face_detector", None)

    return {
        "models": {
            "face_detector": {
                "loaded": face_detector is not None,
                "ready": face_detector.is_ready() if face_detector else False,
                "backends": face_detector.backend_names if face_detector else [],
            },
        }
    }
