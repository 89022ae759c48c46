# cohort_attendance/services/import_service.py
from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_attendance.core.exceptions import DurationUnresolvedError, ProviderFetchError
from cohort_attendance.models.zoom_import_log import ZoomImportLog
from cohort_attendance.schemas.attendance import ImportResult
from cohort_attendance.services.attendance_store import SqlAttendanceStore
from cohort_attendance.services.contracts import ParticipantProvider
from cohort_attendance.services.identity_resolver import SqlUserDirectory
from cohort_attendance.services.reconciliation import AttendanceReconciler

logger = structlog.get_logger(__name__)


def meeting_id_from_uuid(meeting_uuid: str) -> str:
    return meeting_uuid.split("/")[0]


async def _record_failure(
    db: AsyncSession,
    session_id: str,
    meeting_uuid: str,
    imported_by: Optional[str],
    error: str,
) -> ImportResult:
    await db.rollback()
    db.add(
        ZoomImportLog(
            zoom_meeting_id=meeting_id_from_uuid(meeting_uuid),
            zoom_meeting_uuid=meeting_uuid,
            session_id=session_id,
            status="failed",
            error_message=error,
            imported_by=imported_by,
        )
    )
    await db.commit()
    return ImportResult(success=False, error=error)


async def import_from_zoom(
    db: AsyncSession,
    provider: ParticipantProvider,
    session_id: str,
    meeting_uuid: str,
    imported_by: Optional[str] = None,
    caller_duration_minutes: Optional[int] = None,
) -> ImportResult:
    """
    Import attendance for a session from a completed Zoom meeting.

    Runs a full reconciliation and records the outcome in `zoom_import_logs`.
    Fatal reconciliation errors and database failures outside the
    per-identity savepoints are logged and reported in the result instead
    of being raised, so the admin UI always gets a summary.
    """
    reconciler = AttendanceReconciler(
        provider=provider,
        directory=SqlUserDirectory(db),
        store=SqlAttendanceStore(db),
    )

    try:
        summary = await reconciler.reconcile_session_attendance(
            session_id, meeting_uuid, caller_duration_minutes
        )
    except (DurationUnresolvedError, ProviderFetchError) as exc:
        logger.error(
            "zoom_import_failed",
            session_id=session_id,
            meeting_uuid=meeting_uuid,
            error=str(exc),
        )
        return await _record_failure(db, session_id, meeting_uuid, imported_by, str(exc))
    except SQLAlchemyError as exc:
        logger.exception(
            "zoom_import_database_error",
            session_id=session_id,
            meeting_uuid=meeting_uuid,
        )
        return await _record_failure(
            db, session_id, meeting_uuid, imported_by, f"Database error: {exc}"
        )

    db.add(
        ZoomImportLog(
            zoom_meeting_id=meeting_id_from_uuid(meeting_uuid),
            zoom_meeting_uuid=meeting_uuid,
            session_id=session_id,
            status="completed",
            participants_imported=summary.imported,
            participants_unmatched=summary.unmatched,
            imported_by=imported_by,
        )
    )
    await db.commit()

    return ImportResult(
        success=True,
        participants_imported=summary.imported,
        participants_skipped=summary.unmatched,
    )
