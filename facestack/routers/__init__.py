"""
FastAPI routers for the stacking service.
"""

from facestack.routers import compositions, health, overlay

__all__ = ["health", "compositions", "overlay"]
