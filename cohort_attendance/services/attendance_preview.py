# cohort_attendance/services/attendance_preview.py
from __future__ import annotations

from decimal import Decimal
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_attendance.models.attendance import Attendance
from cohort_attendance.models.profile import Profile
from cohort_attendance.schemas.attendance import (
    AttendancePreview,
    MatchedPreviewEntry,
    PreviewSummary,
    UnmatchedPreviewEntry,
)
from cohort_attendance.services.attendance_calculator import round_half_up


async def list_session_attendance(db: AsyncSession, session_id: str) -> List[Attendance]:
    """
    Persisted attendance records of a session, highest percentage first.
    """
    stmt = (
        select(Attendance)
        .where(Attendance.session_id == session_id)
        .order_by(
            Attendance.attendance_percentage.desc().nulls_last(),
            Attendance.zoom_user_email,
        )
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def build_attendance_preview(db: AsyncSession, session_id: str) -> AttendancePreview:
    """
    Split a session's computed attendance into matched and unmatched entries.

    Records whose user no longer has a profile are reported as unmatched.
    """
    records = await list_session_attendance(db, session_id)
    if not records:
        return AttendancePreview()

    user_ids = {r.user_id for r in records if r.user_id}
    profiles: Dict[str, Profile] = {}
    if user_ids:
        result = await db.execute(select(Profile).where(Profile.id.in_(user_ids)))
        profiles = {p.id: p for p in result.scalars().all()}

    matched: List[MatchedPreviewEntry] = []
    unmatched: List[UnmatchedPreviewEntry] = []
    total_percentage = Decimal(0)

    for record in records:
        percentage = record.attendance_percentage or 0.0
        duration_minutes = int(round_half_up(Decimal(record.duration_seconds or 0) / 60))
        total_percentage += Decimal(str(percentage))

        profile = profiles.get(record.user_id) if record.user_id else None
        if profile is not None:
            matched.append(
                MatchedPreviewEntry(
                    name=profile.full_name or "Unknown",
                    email=profile.email or "",
                    avatar_url=profile.avatar_url,
                    percentage=percentage,
                    duration_minutes=duration_minutes,
                    join_time=record.join_time,
                    leave_time=record.leave_time,
                )
            )
        else:
            unmatched.append(
                UnmatchedPreviewEntry(
                    zoom_email=record.zoom_user_email or "Unknown",
                    percentage=percentage,
                    duration_minutes=duration_minutes,
                    join_time=record.join_time,
                    leave_time=record.leave_time,
                )
            )

    total = len(records)
    return AttendancePreview(
        matched=matched,
        unmatched=unmatched,
        summary=PreviewSummary(
            total=total,
            matched=len(matched),
            unmatched=len(unmatched),
            avg_percentage=int(round_half_up(total_percentage / total)),
        ),
    )
