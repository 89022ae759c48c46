# cohort_attendance/services/duration_resolver.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

import structlog

from cohort_attendance.core.exceptions import DurationUnresolvedError, ProviderFetchError
from cohort_attendance.schemas.attendance import DurationSource
from cohort_attendance.schemas.participant import RawParticipantRecord
from cohort_attendance.services.attendance_calculator import round_half_up
from cohort_attendance.services.contracts import AttendanceStore, ParticipantProvider
from cohort_attendance.services.zoom_client import ZoomClientError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ResolvedDuration:
    minutes: int
    source: DurationSource


class DurationResolver:
    """
    Determines the authoritative meeting duration (the percentage denominator).

    Priority, first positive value wins:
    0) session `formal_end_minutes` (an applied departure cliff)
    1) provider-reported actual start/end difference, rounded to whole minutes
    2) caller-supplied minutes
    3) session `actual_duration_minutes`
    4) session `duration_minutes` (scheduled)
    """

    def __init__(self, provider: ParticipantProvider, store: AttendanceStore) -> None:
        self.provider = provider
        self.store = store

    async def resolve_meeting_duration(
        self,
        session_id: str,
        meeting_id: str,
        caller_minutes: Optional[int] = None,
    ) -> ResolvedDuration:
        fields = await self.store.get_session_duration_fields(session_id)
        if fields is not None and fields.formal_end_minutes and fields.formal_end_minutes > 0:
            return ResolvedDuration(fields.formal_end_minutes, DurationSource.FORMAL_END)

        provider_minutes = await self._provider_minutes(meeting_id)
        if provider_minutes > 0:
            return ResolvedDuration(provider_minutes, DurationSource.PROVIDER)

        if caller_minutes and caller_minutes > 0:
            return ResolvedDuration(int(caller_minutes), DurationSource.CALLER)

        if fields is not None:
            if fields.actual_minutes and fields.actual_minutes > 0:
                return ResolvedDuration(fields.actual_minutes, DurationSource.SESSION_ACTUAL)
            if fields.scheduled_minutes and fields.scheduled_minutes > 0:
                return ResolvedDuration(fields.scheduled_minutes, DurationSource.SESSION_SCHEDULED)

        raise DurationUnresolvedError(session_id=session_id, meeting_id=meeting_id)

    async def _provider_minutes(self, meeting_id: str) -> int:
        try:
            times = await self.provider.get_meeting_actual_times(meeting_id)
        except (ZoomClientError, ProviderFetchError) as exc:
            logger.warning(
                "meeting_times_unavailable",
                meeting_id=meeting_id,
                error=str(exc),
            )
            return 0

        if times is None:
            return 0

        seconds = Decimal(str((times.end_time - times.start_time).total_seconds()))
        return int(round_half_up(seconds / 60))


def compute_meeting_end_time(
    records: Sequence[RawParticipantRecord],
    duration_minutes: int,
) -> datetime:
    """
    Latest recorded leave time; without any, earliest join plus the duration.
    """
    leave_times = [r.leave_time for r in records if r.leave_time is not None]
    if leave_times:
        return max(leave_times)

    earliest_join = min(r.join_time for r in records)
    return earliest_join + timedelta(minutes=duration_minutes)
