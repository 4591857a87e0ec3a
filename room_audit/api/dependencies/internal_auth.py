# room_audit/api/dependencies/internal_auth.py
import logging
from typing import Optional

from fastapi import Header, HTTPException, status

from room_audit.core.config import get_settings

logger = logging.getLogger(__name__)

OPEN_ENVIRONMENTS = ("local", "test")


def _reject() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing internal API key.",
    )


async def verify_internal_api_key(
    internal_api_key: Optional[str] = Header(
        default=None,
        alias="X-Internal-Api-Key",
        description="Internal API key required for /internal audit endpoints.",
    ),
) -> None:
    """
    Dependency protecting the /internal audit endpoints.

    Rules
    -----
    - APP_ENV local/test: no key configured -> open; key configured -> header must match.
    - Any other APP_ENV: the key must be configured (500 otherwise) and the
      header must match (401 otherwise).
    """
    settings = get_settings()
    env = (settings.APP_ENV or "local").lower()
    expected = getattr(settings, "INTERNAL_API_KEY", None)

    if not expected:
        if env in OPEN_ENVIRONMENTS:
            return
        logger.error("INTERNAL_API_KEY missing in environment %s", env)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="INTERNAL_API_KEY not configured for this environment.",
        )

    if internal_api_key != expected:
        logger.warning("Rejected /internal request with missing or invalid API key")
        raise _reject()
