"""
Response schemas for the composition API.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class BoundingBox(BaseModel):
    """Bounding box coordinates in pixels."""

    x: int = Field(..., description="X coordinate of top-left corner")
    y: int = Field(..., description="Y coordinate of top-left corner")
    width: int = Field(..., description="Width of bounding box")
    height: int = Field(..., description="Height of bounding box")


class CropPlanResponse(BaseModel):
    """Crop computed for one input."""

    source_id: str = Field(..., description="Input identifier ('a' is on top)")
    source_width: int
    source_height: int
    face: BoundingBox = Field(..., description="Primary face box in source pixels")
    crop: BoundingBox = Field(..., description="Crop rectangle in source pixels")
    target_width: int
    target_height: int


class CompositionSubmitResponse(BaseModel):
    """Response after submitting a composition job."""

    job_id: str
    status: str
    message: str


class CompositionStatusResponse(BaseModel):
    """Response for job status query."""

    job_id: str
    status: str
    current_step: str
    error: Optional[str] = None
    error_kind: Optional[str] = Field(
        default=None,
        description="face_not_detected, decode_error, encode_error or invalid_input",
    )
    failed_input: Optional[str] = None
    plans: List[CropPlanResponse] = Field(default_factory=list)
    output_size_bytes: Optional[int] = None
    output_url: Optional[str] = None
    processing_time_seconds: Optional[float] = None


class OverlayStatusResponse(BaseModel):
    """State of an overlay tracking session."""

    session_id: str
    job_id: str
    state: str
    end_reason: Optional[str] = None
    position_seconds: float
    duration_seconds: float
    ticks: int
    frames_drawn: int
    frames_skipped: int
    stale_discarded: int
    boxes: List[BoundingBox] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str
    version: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    face_detector: str
    encoder: str
