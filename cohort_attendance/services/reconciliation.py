# cohort_attendance/services/reconciliation.py
from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

import structlog

from cohort_attendance.core.exceptions import PersistenceWriteError, ProviderFetchError
from cohort_attendance.schemas.attendance import ReconciliationSummary
from cohort_attendance.schemas.participant import RawParticipantRecord
from cohort_attendance.services.attendance_calculator import calculate_attendance, round_half_up
from cohort_attendance.services.contracts import (
    AttendanceRow,
    AttendanceStore,
    ParticipantProvider,
    SegmentRow,
    UserDirectory,
)
from cohort_attendance.services.duration_resolver import (
    DurationResolver,
    compute_meeting_end_time,
)
from cohort_attendance.services.identity_resolver import (
    IdentityResolver,
    Matched,
    ResolvedKey,
    ResolvedParticipant,
    resolve_user_ids,
)
from cohort_attendance.services.participant_grouper import EmailKey, group_participants
from cohort_attendance.services.segment_merger import TimeSegment, merge_overlapping_segments
from cohort_attendance.services.zoom_client import ZoomClientError

logger = structlog.get_logger(__name__)


class ReconciliationState(str, Enum):
    IDLE = "IDLE"
    FETCHING_PARTICIPANTS = "FETCHING_PARTICIPANTS"
    RESOLVING_DURATION = "RESOLVING_DURATION"
    GROUPING = "GROUPING"
    RESOLVING_IDENTITIES = "RESOLVING_IDENTITIES"
    MERGING = "MERGING"
    CALCULATING = "CALCULATING"
    PERSISTING = "PERSISTING"
    DONE = "DONE"
    FAILED = "FAILED"


def _persist_order(key: ResolvedKey) -> Tuple[int, str]:
    if isinstance(key, Matched):
        return (0, key.user_id)
    group_key = key.group_key
    if isinstance(group_key, EmailKey):
        return (1, group_key.email)
    return (2, group_key.participant_id)


def _build_row(
    session_id: str,
    participant: ResolvedParticipant,
    merged: List[TimeSegment],
    duration_minutes: int,
) -> AttendanceRow:
    metrics = calculate_attendance(merged, duration_minutes)
    return AttendanceRow(
        session_id=session_id,
        user_id=participant.user_id,
        resolved_email_or_name=participant.email or participant.display_name,
        first_join_time=merged[0].join_time,
        last_leave_time=merged[-1].leave_time,
        total_duration_seconds=metrics.total_seconds,
        attendance_percentage=metrics.percentage,
        meeting_duration_minutes=duration_minutes,
        segments=[
            SegmentRow(
                join_time=seg.join_time,
                leave_time=seg.leave_time,
                duration_seconds=int(round_half_up(Decimal(str(seg.duration.total_seconds())))),
            )
            for seg in merged
        ],
    )


class AttendanceReconciler:
    """
    Computes and persists attendance of one session from a completed meeting.

    Pipeline
    --------
    1) Fetch the meeting's full participant log from the provider.
    2) Resolve the meeting duration (fatal if no source yields one).
    3) Group records by email / guest connection id.
    4) Resolve groups to users, collapsing aliases, filling missing leaves.
    5) Merge overlapping segments per identity.
    6) Calculate connected time and percentage per identity.
    7) Replace the session's stored attendance (delete, then insert).

    Steps 1-6 touch nothing persistent, so every fatal error happens before
    the delete. Once persisting, an identity whose insert fails is logged and
    skipped; the rest of the session is still written.
    """

    def __init__(
        self,
        provider: ParticipantProvider,
        directory: UserDirectory,
        store: AttendanceStore,
    ) -> None:
        self.provider = provider
        self.store = store
        self.identity_resolver = IdentityResolver(directory)
        self.duration_resolver = DurationResolver(provider, store)
        self.state = ReconciliationState.IDLE

    def _enter(self, state: ReconciliationState, **context) -> None:
        self.state = state
        logger.debug("reconciliation_state", state=state.value, **context)

    async def reconcile_session_attendance(
        self,
        session_id: str,
        meeting_id: str,
        caller_duration_minutes: Optional[int] = None,
    ) -> ReconciliationSummary:
        log = logger.bind(session_id=session_id, meeting_id=meeting_id)
        try:
            self._enter(ReconciliationState.FETCHING_PARTICIPANTS, session_id=session_id)
            participants = await self._fetch_participants(meeting_id)

            self._enter(ReconciliationState.RESOLVING_DURATION, session_id=session_id)
            duration = await self.duration_resolver.resolve_meeting_duration(
                session_id, meeting_id, caller_duration_minutes
            )
            log.info(
                "meeting_duration_resolved",
                minutes=duration.minutes,
                source=duration.source.value,
            )

            if not participants:
                self._enter(ReconciliationState.DONE, session_id=session_id)
                log.info("no_participants_recorded")
                return ReconciliationSummary(
                    session_id=session_id,
                    imported=0,
                    unmatched=0,
                    duration_used=duration.minutes,
                    duration_source=duration.source,
                )

            meeting_end_time = compute_meeting_end_time(participants, duration.minutes)

            self._enter(ReconciliationState.GROUPING, session_id=session_id)
            groups = group_participants(participants)

            self._enter(ReconciliationState.RESOLVING_IDENTITIES, session_id=session_id)
            resolved = await resolve_user_ids(groups, meeting_end_time, self.identity_resolver)

            self._enter(ReconciliationState.MERGING, session_id=session_id)
            merged: Dict[ResolvedKey, List[TimeSegment]] = {
                key: merge_overlapping_segments(p.segments) for key, p in resolved.items()
            }

            self._enter(ReconciliationState.CALCULATING, session_id=session_id)
            rows = [
                _build_row(session_id, resolved[key], merged[key], duration.minutes)
                for key in sorted(resolved, key=_persist_order)
            ]

            self._enter(ReconciliationState.PERSISTING, session_id=session_id)
            imported, unmatched, skipped = await self._persist(session_id, rows)
        except Exception:
            self._enter(ReconciliationState.FAILED, session_id=session_id)
            raise

        self._enter(ReconciliationState.DONE, session_id=session_id)
        log.info(
            "attendance_reconciled",
            participants=len(participants),
            identities=len(rows),
            imported=imported,
            unmatched=unmatched,
            skipped=skipped,
        )
        return ReconciliationSummary(
            session_id=session_id,
            imported=imported,
            unmatched=unmatched,
            skipped=skipped,
            duration_used=duration.minutes,
            duration_source=duration.source,
        )

    async def _fetch_participants(self, meeting_id: str) -> List[RawParticipantRecord]:
        try:
            return list(await self.provider.list_participants(meeting_id))
        except ZoomClientError as exc:
            raise ProviderFetchError(
                f"Could not fetch participants for meeting {meeting_id}: {exc}"
            ) from exc

    async def _persist(self, session_id: str, rows: List[AttendanceRow]) -> Tuple[int, int, int]:
        try:
            deleted = await self.store.delete_session_attendance(session_id)
        except Exception:
            await self.store.rollback()
            raise
        logger.debug("previous_attendance_deleted", session_id=session_id, deleted=deleted)

        imported = unmatched = skipped = 0
        for row in rows:
            try:
                await self.store.insert_attendance(row)
            except PersistenceWriteError as exc:
                skipped += 1
                logger.error(
                    "attendance_insert_failed",
                    session_id=session_id,
                    identity=exc.identity or row.resolved_email_or_name,
                    error=str(exc),
                )
                continue

            if row.user_id:
                imported += 1
            else:
                unmatched += 1

        await self.store.commit()
        return imported, unmatched, skipped
