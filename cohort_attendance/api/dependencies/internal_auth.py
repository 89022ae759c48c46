# cohort_attendance/api/dependencies/internal_auth.py
from typing import Optional

from fastapi import Header, HTTPException, status

from cohort_attendance.core.config import get_settings

OPEN_ENVIRONMENTS = ("local", "test")


def _reject_unless_matching(provided: Optional[str], expected: str) -> None:
    if not provided or provided != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing internal API key.",
        )


async def verify_internal_api_key(
    internal_api_key: Optional[str] = Header(
        default=None,
        alias="X-Internal-Api-Key",
        description="Admin API key; required outside local/test environments.",
    ),
) -> None:
    """
    Guards the /attendance admin routes.

    In local/test the key is checked only once INTERNAL_API_KEY is set.
    Elsewhere a missing INTERNAL_API_KEY is a server misconfiguration (500)
    and a missing or wrong header is 401.
    """
    settings = get_settings()
    env = (settings.APP_ENV or "local").lower()
    expected = settings.INTERNAL_API_KEY

    if env in OPEN_ENVIRONMENTS:
        if expected:
            _reject_unless_matching(internal_api_key, expected)
        return

    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="INTERNAL_API_KEY not configured for this environment.",
        )
    _reject_unless_matching(internal_api_key, expected)
