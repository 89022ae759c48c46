# cohort_attendance/services/contracts.py
"""
Narrow interfaces the reconciliation engine depends on.

Concrete implementations: ZoomClient (provider), SqlUserDirectory and
SqlAttendanceStore (database). Tests supply in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol

from cohort_attendance.schemas.participant import MeetingActualTimes, RawParticipantRecord


@dataclass(frozen=True)
class SessionDurationFields:
    actual_minutes: Optional[int] = None
    scheduled_minutes: Optional[int] = None
    formal_end_minutes: Optional[int] = None


@dataclass(frozen=True)
class SegmentRow:
    join_time: datetime
    leave_time: datetime
    duration_seconds: int


@dataclass(frozen=True)
class AttendanceRow:
    """
    Everything persisted for one resolved identity of one session.
    """

    session_id: str
    user_id: Optional[str]
    resolved_email_or_name: str
    first_join_time: datetime
    last_leave_time: datetime
    total_duration_seconds: int
    attendance_percentage: float
    segments: List[SegmentRow] = field(default_factory=list)
    meeting_duration_minutes: Optional[int] = None


class ParticipantProvider(Protocol):
    async def list_participants(self, meeting_id: str) -> List[RawParticipantRecord]:
        ...

    async def get_meeting_actual_times(self, meeting_id: str) -> Optional[MeetingActualTimes]:
        ...


class UserDirectory(Protocol):
    async def resolve_user_by_email(self, email: str) -> Optional[str]:
        ...

    async def resolve_user_by_alias(self, email: str) -> Optional[str]:
        ...


class AttendanceStore(Protocol):
    async def get_session_duration_fields(self, session_id: str) -> Optional[SessionDurationFields]:
        ...

    async def delete_session_attendance(self, session_id: str) -> int:
        """Delete every record (and its segments) of the session; return the count."""
        ...

    async def insert_attendance(self, row: AttendanceRow) -> None:
        """Insert one record with its segments; raise PersistenceWriteError on failure."""
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...
