# cohort_attendance/services/student_attendance.py
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_attendance.models.attendance import Attendance
from cohort_attendance.models.cohort_session import CohortSession
from cohort_attendance.models.profile import Profile
from cohort_attendance.schemas.student_attendance import (
    CohortSessionRef,
    CohortStudentAttendance,
    StudentAttendance,
    StudentSegment,
    StudentSessionAttendance,
)
from cohort_attendance.services.attendance_calculator import round_half_up

_CENTS = Decimal("0.01")


def _whole_minutes(seconds: Optional[int]) -> int:
    if not seconds:
        return 0
    return int(round_half_up(Decimal(seconds) / 60))


def _session_length(session: CohortSession, record: Optional[Attendance]) -> Optional[int]:
    if record is not None and record.meeting_duration_minutes:
        return record.meeting_duration_minutes
    return session.formal_end_minutes or session.actual_duration_minutes or session.duration_minutes


def _session_entry(session: CohortSession, record: Optional[Attendance]) -> StudentSessionAttendance:
    return StudentSessionAttendance(
        session_id=session.id,
        title=session.title,
        date=session.scheduled_at,
        attended=record is not None,
        percentage=(record.attendance_percentage or 0) if record is not None else 0,
        duration_attended_minutes=_whole_minutes(record.duration_seconds) if record else 0,
        total_duration_minutes=_session_length(session, record),
        segments=[
            StudentSegment(
                join=seg.join_time,
                leave=seg.leave_time,
                duration_minutes=_whole_minutes(seg.duration_seconds),
            )
            for seg in (record.segments if record is not None else [])
        ],
    )


def _average(records: List[Attendance]) -> float:
    if not records:
        return 0.0
    total = sum((Decimal(str(r.attendance_percentage or 0)) for r in records), Decimal(0))
    return float(round_half_up(total / len(records), _CENTS))


async def build_cohort_student_attendance(
    db: AsyncSession,
    cohort_id: str,
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CohortStudentAttendance:
    """
    Per-student attendance over a cohort's past sessions that count for students.

    Students are profiles with role "student" in the cohort (optionally just
    `user_id`), sorted by name. A student's average covers the sessions they
    attended; sessions they missed are listed with `attended=False`.
    """
    now = now or datetime.now(timezone.utc)

    session_stmt = (
        select(CohortSession)
        .where(
            CohortSession.cohort_id == cohort_id,
            CohortSession.counts_for_students.is_(True),
            CohortSession.scheduled_at < now,
        )
        .order_by(CohortSession.scheduled_at.asc())
    )
    sessions = list((await db.execute(session_stmt)).scalars().all())
    if not sessions:
        return CohortStudentAttendance()

    session_refs = [CohortSessionRef.model_validate(s) for s in sessions]

    student_stmt = select(Profile).where(
        Profile.role == "student",
        Profile.cohort_id == cohort_id,
    )
    if user_id is not None:
        student_stmt = student_stmt.where(Profile.id == user_id)
    students = list((await db.execute(student_stmt)).scalars().all())
    if not students:
        return CohortStudentAttendance(sessions=session_refs)

    attendance_stmt = select(Attendance).where(
        Attendance.session_id.in_([s.id for s in sessions]),
        Attendance.user_id.in_([p.id for p in students]),
    )
    by_student_session: Dict[Tuple[str, str], Attendance] = {
        (r.user_id, r.session_id): r
        for r in (await db.execute(attendance_stmt)).scalars().all()
    }

    results = []
    for profile in students:
        attended = [
            by_student_session[(profile.id, s.id)]
            for s in sessions
            if (profile.id, s.id) in by_student_session
        ]
        results.append(
            StudentAttendance(
                user_id=profile.id,
                name=profile.full_name or "Unknown",
                email=profile.email or "",
                avatar_url=profile.avatar_url,
                sessions_attended=len(attended),
                sessions_total=len(sessions),
                avg_percentage=_average(attended),
                sessions=[
                    _session_entry(s, by_student_session.get((profile.id, s.id)))
                    for s in sessions
                ],
            )
        )

    results.sort(key=lambda student: student.name.lower())
    return CohortStudentAttendance(students=results, sessions=session_refs)
