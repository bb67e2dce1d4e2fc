"""
API key check for the mutating composition endpoints (submit and release).

Read-only endpoints stay open. With no FACESTACK_API_KEY configured the check
is disabled, which is the local development setup.
"""

import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, status

from facestack.config import get_settings

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-FaceStack-API-Key"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": API_KEY_HEADER},
    )


async def verify_api_key(
    api_key: Optional[str] = Header(None, alias=API_KEY_HEADER),
) -> None:
    """
    Require the configured API key on the request.

    Raises:
        HTTPException: 401 if the key is missing or does not match
    """
    expected_key = get_settings().facestack_api_key
    if not expected_key:
        return

    if not api_key:
        logger.warning(f"Rejected request without {API_KEY_HEADER}")
        raise _unauthorized("Missing API key")

    # Constant-time comparison
    if not hmac.compare_digest(api_key.encode(), expected_key.encode()):
        logger.warning("Rejected request with invalid API key")
        raise _unauthorized("Invalid API key")
