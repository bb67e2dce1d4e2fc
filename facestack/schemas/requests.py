"""
Request schemas for the composition API.
"""

from typing import Optional

from pydantic import BaseModel, Field, model_validator


class CompositionSubmitRequest(BaseModel):
    """Request body for POST /compositions."""

    video_a_path: str = Field(..., min_length=1, description="Local path of the top input video")
    video_b_path: str = Field(..., min_length=1, description="Local path of the bottom input video")
    job_id: Optional[str] = Field(
        default=None, description="Optional caller-supplied job ID (generated when omitted)"
    )
    sample_timestamp_seconds: Optional[float] = Field(
        default=None,
        ge=0.0,
        description="Timestamp of the frame used to locate each face (default: 1.0s)",
    )
    target_width: Optional[int] = Field(
        default=None,
        ge=16,
        le=3840,
        multiple_of=2,
        description="Width of each stacked half in pixels (default: 720)",
    )
    target_height: Optional[int] = Field(
        default=None,
        ge=16,
        le=2160,
        multiple_of=2,
        description="Height of each stacked half in pixels (default: 640)",
    )
    callback_url: Optional[str] = Field(
        default=None,
        description="Optional URL to POST the final job status to",
    )

    @model_validator(mode="after")
    def validate_size_pair(self) -> "CompositionSubmitRequest":
        """Output size is given as a pair or not at all."""
        if (self.target_width is None) != (self.target_height is None):
            raise ValueError("target_width and target_height must be provided together")
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "video_a_path": "/data/uploads/left.mp4",
                "video_b_path": "/data/uploads/right.mp4",
                "sample_timestamp_seconds": 1.0,
                "callback_url": None,
            }
        }


class OverlayStartRequest(BaseModel):
    """Request body for starting an overlay session on a composed output."""

    display_width: Optional[int] = Field(
        default=None, ge=16, description="Display surface width (default: video width)"
    )
    display_height: Optional[int] = Field(
        default=None, ge=16, description="Display surface height (default: video height)"
    )
