"""
Pydantic schemas for request/response models.
"""

from facestack.schemas.requests import CompositionSubmitRequest, OverlayStartRequest
from facestack.schemas.responses import (
    BoundingBox,
    CompositionStatusResponse,
    CompositionSubmitResponse,
    CropPlanResponse,
    OverlayStatusResponse,
)

__all__ = [
    "CompositionSubmitRequest",
    "OverlayStartRequest",
    "CompositionSubmitResponse",
    "CompositionStatusResponse",
    "CropPlanResponse",
    "OverlayStatusResponse",
    "BoundingBox",
]
