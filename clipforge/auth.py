"""
API key check for the mutating ClipForge routes.

When CLIPFORGE_API_KEY is unset every request is let through, which is the
local development setup.
"""

import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from clipforge.config import get_settings

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-ClipForge-API-Key"


def key_matches(provided: str, expected: str) -> bool:
    """Compare keys in constant time."""
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


async def verify_api_key(
    provided_key: Optional[str] = Header(None, alias=API_KEY_HEADER),
) -> None:
    """
    Dependency attached to routes that create, change or export clips.

    Raises:
        HTTPException: 401 when a key is configured and the header is
            missing or does not match
    """
    expected_key = get_settings().clipforge_api_key
    if not expected_key:
        return

    if not provided_key:
        logger.warning(f"Rejected request without {API_KEY_HEADER}")
        raise _unauthorized("Missing API key")

    if not key_matches(provided_key, expected_key):
        logger.warning(f"Rejected request with a wrong {API_KEY_HEADER}")
        raise _unauthorized("Invalid API key")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": API_KEY_HEADER},
    )
