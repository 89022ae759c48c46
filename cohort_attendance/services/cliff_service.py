# cohort_attendance/services/cliff_service.py
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_attendance.core.exceptions import (
    NoParticipantsError,
    ProviderFetchError,
    SessionNotFoundError,
)
from cohort_attendance.models.cohort_session import CohortSession
from cohort_attendance.models.zoom_import_log import ZoomImportLog
from cohort_attendance.schemas.attendance import ReconciliationSummary
from cohort_attendance.schemas.cliff import (
    BulkCliffEntry,
    BulkCliffReport,
    BulkCliffStatus,
    BulkCliffSummary,
    CliffActionResult,
    CliffConfidence,
    CliffDetectionResult,
)
from cohort_attendance.schemas.participant import RawParticipantRecord
from cohort_attendance.services.attendance_store import SqlAttendanceStore
from cohort_attendance.services.cliff_detector import detect_formal_end
from cohort_attendance.services.contracts import ParticipantProvider
from cohort_attendance.services.identity_resolver import SqlUserDirectory
from cohort_attendance.services.participant_grouper import group_participants
from cohort_attendance.services.reconciliation import AttendanceReconciler
from cohort_attendance.services.segment_merger import TimeSegment
from cohort_attendance.services.zoom_client import ZoomClientError

logger = structlog.get_logger(__name__)


async def _get_session(db: AsyncSession, session_id: str) -> CohortSession:
    session = await db.get(CohortSession, session_id)
    if session is None:
        raise SessionNotFoundError(f"Session '{session_id}' does not exist.")
    return session


async def _fetch_participants(
    provider: ParticipantProvider, meeting_uuid: str
) -> List[RawParticipantRecord]:
    try:
        return list(await provider.list_participants(meeting_uuid))
    except ZoomClientError as exc:
        raise ProviderFetchError(
            f"Could not fetch participants for meeting {meeting_uuid}: {exc}"
        ) from exc


async def _meeting_bounds(
    provider: ParticipantProvider,
    meeting_uuid: str,
    records: List[RawParticipantRecord],
) -> Tuple[datetime, datetime]:
    """
    Provider-reported start/end, else earliest join and latest leave.
    """
    try:
        times = await provider.get_meeting_actual_times(meeting_uuid)
    except (ZoomClientError, ProviderFetchError) as exc:
        logger.warning("meeting_times_unavailable", meeting_id=meeting_uuid, error=str(exc))
        times = None

    if times is not None:
        return times.start_time, times.end_time

    start = min(r.join_time for r in records)
    end = max(r.leave_time or r.join_time for r in records)
    return start, end


async def analyze_meeting(
    provider: ParticipantProvider, meeting_uuid: str
) -> CliffDetectionResult:
    """
    Run cliff detection over a completed meeting's participant log.

    Connections are grouped per email (guests per connection); an open
    connection counts as lasting until the meeting end, and a leave before
    its join is clamped to the join.
    """
    records = await _fetch_participants(provider, meeting_uuid)
    if not records:
        raise NoParticipantsError(f"No participants found for meeting {meeting_uuid}")

    start, end = await _meeting_bounds(provider, meeting_uuid, records)
    participants = [
        [
            TimeSegment(
                join_time=r.join_time,
                leave_time=max(r.leave_time or end, r.join_time),
            )
            for r in group
        ]
        for group in group_participants(records).values()
    ]
    return detect_formal_end(participants, start, end)


async def detect_session_cliff(
    db: AsyncSession,
    provider: ParticipantProvider,
    session_id: str,
    meeting_uuid: str,
) -> CliffDetectionResult:
    """
    Detect the departure cliff of a session's meeting and store the result on
    the session. Nothing about the session's attendance changes.
    """
    session = await _get_session(db, session_id)
    result = await analyze_meeting(provider, meeting_uuid)

    session.cliff_detection = result.model_dump(mode="json", exclude_none=True)
    await db.commit()

    logger.info(
        "cliff_detected" if result.detected else "no_cliff_detected",
        session_id=session_id,
        meeting_uuid=meeting_uuid,
        reason=result.reason.value if result.reason else None,
        effective_end_minutes=result.effective_end_minutes,
    )
    return result


async def _latest_meeting_uuid(db: AsyncSession, session: CohortSession) -> Optional[str]:
    stmt = (
        select(ZoomImportLog.zoom_meeting_uuid)
        .where(ZoomImportLog.session_id == session.id)
        .order_by(ZoomImportLog.created_at.desc())
        .limit(1)
    )
    imported = (await db.execute(stmt)).scalar_one_or_none()
    return imported or session.zoom_meeting_id


def _summarize(total: int, entries: List[BulkCliffEntry]) -> BulkCliffSummary:
    detected = [e for e in entries if e.status == BulkCliffStatus.DETECTED]
    return BulkCliffSummary(
        total=total,
        detected=len(detected),
        high_confidence=sum(1 for e in detected if e.confidence == CliffConfidence.HIGH),
        medium_confidence=sum(1 for e in detected if e.confidence == CliffConfidence.MEDIUM),
        low_confidence=sum(1 for e in detected if e.confidence == CliffConfidence.LOW),
        no_cliff=sum(1 for e in entries if e.status == BulkCliffStatus.NO_CLIFF),
        skipped=sum(1 for e in entries if e.status == BulkCliffStatus.SKIPPED),
        errors=sum(1 for e in entries if e.status == BulkCliffStatus.ERROR),
        total_students_impacted=sum(e.students_impacted or 0 for e in detected),
    )


async def detect_cliffs_bulk(
    db: AsyncSession,
    provider: ParticipantProvider,
    delay_seconds: float = 0.0,
) -> BulkCliffReport:
    """
    Run cliff detection for every session linked to a Zoom meeting, newest
    first.

    Sessions whose cliff was dismissed are skipped. A failure in one session
    is reported in its entry and does not stop the run.
    """
    stmt = (
        select(CohortSession)
        .where(CohortSession.zoom_meeting_id.is_not(None))
        .order_by(CohortSession.scheduled_at.desc().nulls_last())
    )
    sessions = list((await db.execute(stmt)).scalars().all())

    entries: List[BulkCliffEntry] = []
    for session in sessions:
        if (session.cliff_detection or {}).get("dismissed"):
            entries.append(
                BulkCliffEntry(
                    session_id=session.id,
                    title=session.title,
                    status=BulkCliffStatus.SKIPPED,
                    error="Previously dismissed",
                )
            )
            continue

        meeting_uuid = await _latest_meeting_uuid(db, session)
        try:
            result = await analyze_meeting(provider, meeting_uuid)
        except NoParticipantsError:
            entries.append(
                BulkCliffEntry(
                    session_id=session.id,
                    title=session.title,
                    status=BulkCliffStatus.SKIPPED,
                    error="No participant data",
                )
            )
            continue
        except ProviderFetchError as exc:
            logger.warning("bulk_cliff_detection_failed", session_id=session.id, error=str(exc))
            entries.append(
                BulkCliffEntry(
                    session_id=session.id,
                    title=session.title,
                    status=BulkCliffStatus.ERROR,
                    error=str(exc),
                )
            )
            continue

        session.cliff_detection = result.model_dump(mode="json", exclude_none=True)
        await db.commit()

        if result.detected:
            entries.append(
                BulkCliffEntry(
                    session_id=session.id,
                    title=session.title,
                    status=BulkCliffStatus.DETECTED,
                    confidence=result.confidence,
                    effective_end_minutes=result.effective_end_minutes,
                    students_impacted=result.students_impacted,
                )
            )
        else:
            entries.append(
                BulkCliffEntry(
                    session_id=session.id,
                    title=session.title,
                    status=BulkCliffStatus.NO_CLIFF,
                )
            )

        if delay_seconds > 0:
            await asyncio.sleep(delay_seconds)

    summary = _summarize(len(sessions), entries)
    logger.info("bulk_cliff_detection_finished", **summary.model_dump())
    return BulkCliffReport(summary=summary, results=entries)


async def _recalculate(
    db: AsyncSession,
    provider: ParticipantProvider,
    session_id: str,
    meeting_uuid: str,
) -> ReconciliationSummary:
    reconciler = AttendanceReconciler(
        provider=provider,
        directory=SqlUserDirectory(db),
        store=SqlAttendanceStore(db),
    )
    return await reconciler.reconcile_session_attendance(session_id, meeting_uuid)


async def apply_cliff(
    db: AsyncSession,
    provider: ParticipantProvider,
    session_id: str,
    meeting_uuid: str,
    formal_end_minutes: int,
    now: Optional[datetime] = None,
) -> CliffActionResult:
    """
    Make `formal_end_minutes` the session's effective length and recalculate
    its attendance against it.

    The formal end is committed before the recalculation, so a failed
    recalculation can simply be retried.
    """
    session = await _get_session(db, session_id)
    applied_at = now or datetime.now(timezone.utc)

    session.formal_end_minutes = formal_end_minutes
    session.cliff_detection = {
        **(session.cliff_detection or {}),
        "applied_at": applied_at.isoformat(),
        "applied_formal_end_minutes": formal_end_minutes,
    }
    await db.commit()
    logger.info("formal_end_applied", session_id=session_id, formal_end_minutes=formal_end_minutes)

    summary = await _recalculate(db, provider, session_id, meeting_uuid)
    return CliffActionResult(
        formal_end_minutes=formal_end_minutes,
        applied_at=applied_at,
        attendance=summary,
    )


async def dismiss_cliff(
    db: AsyncSession,
    provider: ParticipantProvider,
    session_id: str,
    meeting_uuid: Optional[str] = None,
) -> CliffActionResult:
    """
    Clear the session's formal end and mark its cliff as dismissed, so bulk
    detection leaves it alone. Attendance is recalculated when a meeting is
    given.
    """
    session = await _get_session(db, session_id)

    session.formal_end_minutes = None
    session.cliff_detection = {
        **(session.cliff_detection or {}),
        "dismissed": True,
        "applied_at": None,
        "applied_formal_end_minutes": None,
    }
    await db.commit()
    logger.info("cliff_dismissed", session_id=session_id)

    summary = None
    if meeting_uuid:
        summary = await _recalculate(db, provider, session_id, meeting_uuid)
    return CliffActionResult(attendance=summary)
