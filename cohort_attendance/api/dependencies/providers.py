# cohort_attendance/api/dependencies/providers.py
from collections.abc import AsyncGenerator

from fastapi import HTTPException, Request, status

from cohort_attendance.services.contracts import ParticipantProvider
from cohort_attendance.services.session_locks import SessionLockRegistry
from cohort_attendance.services.zoom_client import ZoomClientError, build_zoom_client


async def get_participant_provider() -> AsyncGenerator[ParticipantProvider, None]:
    """
    Zoom client with a credential fetched for this request only.
    """
    try:
        client = await build_zoom_client()
    except ZoomClientError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Zoom is not available: {exc}",
        ) from exc
    yield client


def get_session_locks(request: Request) -> SessionLockRegistry:
    return request.app.state.session_locks
