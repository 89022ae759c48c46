# cohort_attendance/api/routes/cliffs.py
from http import HTTPStatus

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_attendance.api.dependencies.internal_auth import verify_internal_api_key
from cohort_attendance.api.dependencies.providers import (
    get_participant_provider,
    get_session_locks,
)
from cohort_attendance.core.config import get_settings
from cohort_attendance.core.exceptions import (
    DurationUnresolvedError,
    NoParticipantsError,
    ProviderFetchError,
    SessionNotFoundError,
)
from cohort_attendance.db.session import get_db
from cohort_attendance.schemas.cliff import (
    ApplyCliffRequest,
    BulkCliffReport,
    CliffActionResult,
    CliffDetectionResult,
    DetectCliffRequest,
    DismissCliffRequest,
)
from cohort_attendance.services.cliff_service import (
    apply_cliff,
    detect_cliffs_bulk,
    detect_session_cliff,
    dismiss_cliff,
)
from cohort_attendance.services.contracts import ParticipantProvider
from cohort_attendance.services.session_locks import SessionBusyError, SessionLockRegistry

router = APIRouter(
    prefix="/attendance/cliffs",
    tags=["Cliff detection"],
    dependencies=[Depends(verify_internal_api_key)],
)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, (SessionNotFoundError, NoParticipantsError)):
        return HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=str(exc))
    if isinstance(exc, SessionBusyError):
        return HTTPException(status_code=HTTPStatus.CONFLICT, detail=str(exc))
    if isinstance(exc, DurationUnresolvedError):
        return HTTPException(status_code=HTTPStatus.UNPROCESSABLE_ENTITY, detail=str(exc))
    return HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=str(exc))


@router.post(
    "/sessions/{session_id}/detect",
    response_model=CliffDetectionResult,
    response_model_exclude_none=True,
    summary="Detect the formal end of a session from its departure pattern",
    description=(
        "Looks for the mass departure that follows an instructor ending the "
        "session. The result is stored on the session for review; attendance "
        "is unchanged until the cliff is applied."
    ),
    responses={
        404: {"description": "Unknown session, or Zoom reported no participants."},
        502: {"description": "Zoom could not be reached or returned an error."},
    },
)
async def detect_cliff(
    payload: DetectCliffRequest,
    session_id: str = Path(..., description="Session to analyze."),
    db: AsyncSession = Depends(get_db),
    provider: ParticipantProvider = Depends(get_participant_provider),
) -> CliffDetectionResult:
    try:
        return await detect_session_cliff(db, provider, session_id, payload.meeting_uuid)
    except (SessionNotFoundError, NoParticipantsError, ProviderFetchError) as exc:
        raise _http_error(exc) from exc


@router.post(
    "/detect-bulk",
    response_model=BulkCliffReport,
    summary="Detect cliffs for every session linked to a Zoom meeting",
)
async def detect_cliffs(
    db: AsyncSession = Depends(get_db),
    provider: ParticipantProvider = Depends(get_participant_provider),
) -> BulkCliffReport:
    return await detect_cliffs_bulk(
        db, provider, delay_seconds=get_settings().CLIFF_BULK_DELAY_SECONDS
    )


@router.post(
    "/sessions/{session_id}/apply",
    response_model=CliffActionResult,
    summary="Use a formal end as the session length and recalculate attendance",
    responses={
        404: {"description": "Unknown session."},
        409: {"description": "A calculation for this session is already running."},
        502: {"description": "Zoom could not be reached or returned an error."},
    },
)
async def apply_session_cliff(
    payload: ApplyCliffRequest,
    session_id: str = Path(..., description="Session to update."),
    db: AsyncSession = Depends(get_db),
    provider: ParticipantProvider = Depends(get_participant_provider),
    locks: SessionLockRegistry = Depends(get_session_locks),
) -> CliffActionResult:
    try:
        async with locks.hold(session_id):
            return await apply_cliff(
                db,
                provider,
                session_id,
                payload.meeting_uuid,
                payload.formal_end_minutes,
            )
    except (
        SessionNotFoundError,
        SessionBusyError,
        DurationUnresolvedError,
        ProviderFetchError,
    ) as exc:
        raise _http_error(exc) from exc


@router.post(
    "/sessions/{session_id}/dismiss",
    response_model=CliffActionResult,
    summary="Dismiss a session's cliff and clear its formal end",
    responses={
        404: {"description": "Unknown session."},
        409: {"description": "A calculation for this session is already running."},
    },
)
async def dismiss_session_cliff(
    payload: DismissCliffRequest,
    session_id: str = Path(..., description="Session to update."),
    db: AsyncSession = Depends(get_db),
    provider: ParticipantProvider = Depends(get_participant_provider),
    locks: SessionLockRegistry = Depends(get_session_locks),
) -> CliffActionResult:
    try:
        async with locks.hold(session_id):
            return await dismiss_cliff(db, provider, session_id, payload.meeting_uuid)
    except (
        SessionNotFoundError,
        SessionBusyError,
        DurationUnresolvedError,
        ProviderFetchError,
    ) as exc:
        raise _http_error(exc) from exc
