# cohort_attendance/services/attendance_store.py
from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_attendance.core.exceptions import PersistenceWriteError
from cohort_attendance.models.attendance import Attendance, AttendanceSegment
from cohort_attendance.models.cohort_session import CohortSession
from cohort_attendance.services.contracts import AttendanceRow, SessionDurationFields

logger = structlog.get_logger(__name__)


class SqlAttendanceStore:
    """
    Attendance persistence on top of an AsyncSession.

    A run is one transaction: the session's rows are deleted, every identity
    is inserted inside its own SAVEPOINT (so one failing insert is rolled back
    alone), and `commit` is called once at the end.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_session_duration_fields(self, session_id: str) -> Optional[SessionDurationFields]:
        stmt = select(
            CohortSession.actual_duration_minutes,
            CohortSession.duration_minutes,
            CohortSession.formal_end_minutes,
        ).where(CohortSession.id == session_id)
        row = (await self.db.execute(stmt)).one_or_none()
        if row is None:
            return None
        return SessionDurationFields(
            actual_minutes=row[0],
            scheduled_minutes=row[1],
            formal_end_minutes=row[2],
        )

    async def delete_session_attendance(self, session_id: str) -> int:
        attendance_ids = select(Attendance.id).where(Attendance.session_id == session_id)
        await self.db.execute(
            delete(AttendanceSegment)
            .where(AttendanceSegment.attendance_id.in_(attendance_ids))
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(
            delete(Attendance)
            .where(Attendance.session_id == session_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def insert_attendance(self, row: AttendanceRow) -> None:
        record = Attendance(
            session_id=row.session_id,
            user_id=row.user_id,
            zoom_user_email=row.resolved_email_or_name,
            join_time=row.first_join_time,
            leave_time=row.last_leave_time,
            duration_seconds=row.total_duration_seconds,
            attendance_percentage=row.attendance_percentage,
            meeting_duration_minutes=row.meeting_duration_minutes,
            segments=[
                AttendanceSegment(
                    join_time=seg.join_time,
                    leave_time=seg.leave_time,
                    duration_seconds=seg.duration_seconds,
                )
                for seg in row.segments
            ],
        )
        try:
            async with self.db.begin_nested():
                self.db.add(record)
                await self.db.flush()
        except SQLAlchemyError as exc:
            raise PersistenceWriteError(
                f"Failed to insert attendance for {row.resolved_email_or_name}: {exc}",
                identity=row.resolved_email_or_name,
            ) from exc

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()
