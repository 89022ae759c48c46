# cohort_attendance/api/routes/attendance.py
from http import HTTPStatus

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_attendance.api.dependencies.internal_auth import verify_internal_api_key
from cohort_attendance.api.dependencies.providers import (
    get_participant_provider,
    get_session_locks,
)
from cohort_attendance.core.exceptions import DurationUnresolvedError, ProviderFetchError
from cohort_attendance.db.session import get_db
from cohort_attendance.schemas.attendance import (
    AttendancePreview,
    AttendanceRead,
    ImportRequest,
    ImportResult,
    ReconcileRequest,
    ReconciliationSummary,
)
from cohort_attendance.services.attendance_preview import (
    build_attendance_preview,
    list_session_attendance,
)
from cohort_attendance.services.attendance_store import SqlAttendanceStore
from cohort_attendance.services.contracts import ParticipantProvider
from cohort_attendance.services.identity_resolver import SqlUserDirectory
from cohort_attendance.services.import_service import import_from_zoom
from cohort_attendance.services.reconciliation import AttendanceReconciler
from cohort_attendance.services.session_locks import SessionBusyError, SessionLockRegistry

router = APIRouter(
    prefix="/attendance",
    tags=["Attendance"],
    dependencies=[Depends(verify_internal_api_key)],
)


@router.post(
    "/sessions/{session_id}/reconcile",
    response_model=ReconciliationSummary,
    status_code=HTTPStatus.OK,
    summary="Calculate (or recalculate) attendance of a session from Zoom",
    description=(
        "Fetches the completed meeting's participant log from Zoom, resolves "
        "participants to registered users (including email aliases), merges "
        "overlapping connections and stores one attendance record per person.\n\n"
        "Any previous computation for the session is replaced, so the call is "
        "safe to repeat."
    ),
    responses={
        200: {
            "description": "Attendance computed and stored.",
            "content": {
                "application/json": {
                    "example": {
                        "session_id": "0b6f2c1e-8a51-4c2e-9d7a-3f1c2b0e9a11",
                        "imported": 18,
                        "unmatched": 2,
                        "skipped": 0,
                        "duration_used": 60,
                        "duration_source": "provider",
                    }
                }
            },
        },
        409: {"description": "A calculation for this session is already running."},
        422: {"description": "No meeting duration could be determined."},
        502: {"description": "Zoom could not be reached or returned an error."},
    },
)
async def reconcile_session(
    payload: ReconcileRequest,
    session_id: str = Path(..., description="Session to compute attendance for."),
    db: AsyncSession = Depends(get_db),
    provider: ParticipantProvider = Depends(get_participant_provider),
    locks: SessionLockRegistry = Depends(get_session_locks),
) -> ReconciliationSummary:
    reconciler = AttendanceReconciler(
        provider=provider,
        directory=SqlUserDirectory(db),
        store=SqlAttendanceStore(db),
    )
    try:
        async with locks.hold(session_id):
            return await reconciler.reconcile_session_attendance(
                session_id,
                payload.meeting_uuid,
                payload.duration_minutes,
            )
    except SessionBusyError as exc:
        raise HTTPException(status_code=HTTPStatus.CONFLICT, detail=str(exc)) from exc
    except DurationUnresolvedError as exc:
        raise HTTPException(status_code=HTTPStatus.UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except ProviderFetchError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=str(exc)) from exc


@router.post(
    "/import",
    response_model=ImportResult,
    status_code=HTTPStatus.OK,
    summary="Import attendance from a past Zoom meeting",
    description=(
        "Same computation as `/sessions/{session_id}/reconcile`, additionally "
        "recorded in the Zoom import log. Failures are returned as "
        "`success: false` with an error message."
    ),
)
async def import_attendance(
    payload: ImportRequest,
    db: AsyncSession = Depends(get_db),
    provider: ParticipantProvider = Depends(get_participant_provider),
    locks: SessionLockRegistry = Depends(get_session_locks),
) -> ImportResult:
    try:
        async with locks.hold(payload.session_id):
            return await import_from_zoom(
                db,
                provider,
                session_id=payload.session_id,
                meeting_uuid=payload.meeting_uuid,
                imported_by=payload.imported_by,
                caller_duration_minutes=payload.duration_minutes,
            )
    except SessionBusyError as exc:
        raise HTTPException(status_code=HTTPStatus.CONFLICT, detail=str(exc)) from exc


@router.get(
    "/sessions/{session_id}",
    response_model=list[AttendanceRead],
    summary="List computed attendance records of a session",
)
async def get_session_attendance(
    session_id: str = Path(..., description="Session identifier."),
    db: AsyncSession = Depends(get_db),
) -> list[AttendanceRead]:
    records = await list_session_attendance(db, session_id)
    return [AttendanceRead.model_validate(r) for r in records]


@router.get(
    "/sessions/{session_id}/preview",
    response_model=AttendancePreview,
    summary="Preview matched and unmatched participants of a session",
)
async def preview_session_attendance(
    session_id: str = Path(..., description="Session identifier."),
    db: AsyncSession = Depends(get_db),
) -> AttendancePreview:
    return await build_attendance_preview(db, session_id)
