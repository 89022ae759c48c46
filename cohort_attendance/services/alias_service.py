# cohort_attendance/services/alias_service.py
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_attendance.core.exceptions import (
    AliasConflictError,
    AliasNotFoundError,
    UserNotFoundError,
)
from cohort_attendance.models.attendance import Attendance, AttendanceSegment
from cohort_attendance.models.cohort_session import CohortSession
from cohort_attendance.models.profile import Profile, UserEmailAlias
from cohort_attendance.schemas.alias import UnmatchedEmail, UnmatchedSessionRef
from cohort_attendance.services.attendance_calculator import calculate_attendance, round_half_up
from cohort_attendance.services.attendance_store import SqlAttendanceStore
from cohort_attendance.services.participant_grouper import normalize_email
from cohort_attendance.services.segment_merger import TimeSegment, merge_overlapping_segments

logger = structlog.get_logger(__name__)


async def add_email_alias(db: AsyncSession, user_id: str, alias_email: str) -> UserEmailAlias:
    """
    Register an alternate email for a user.

    Raises UserNotFoundError for an unknown user and AliasConflictError when
    the (normalized) email is already an alias or some profile's primary
    email.
    """
    email = normalize_email(alias_email)
    if email is None:
        raise ValueError("alias_email must not be blank")

    if await db.get(Profile, user_id) is None:
        raise UserNotFoundError(f"User '{user_id}' does not exist.")

    existing = await db.execute(
        select(UserEmailAlias.id).where(UserEmailAlias.alias_email == email)
    )
    if existing.scalar_one_or_none() is not None:
        raise AliasConflictError("This email is already linked to a user")

    primary = await db.execute(select(Profile.id).where(func.lower(Profile.email) == email))
    if primary.scalar_one_or_none() is not None:
        raise AliasConflictError("This email is already a primary email")

    alias = UserEmailAlias(user_id=user_id, alias_email=email)
    db.add(alias)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise AliasConflictError("This email is already linked to a user") from exc
    await db.refresh(alias)

    logger.info("email_alias_added", user_id=user_id, alias_email=email)
    return alias


async def remove_email_alias(db: AsyncSession, alias_id: str) -> None:
    alias = await db.get(UserEmailAlias, alias_id)
    if alias is None:
        raise AliasNotFoundError(f"Alias '{alias_id}' does not exist.")
    await db.delete(alias)
    await db.commit()
    logger.info("email_alias_removed", alias_id=alias_id)


async def list_email_aliases(
    db: AsyncSession, user_id: Optional[str] = None
) -> List[UserEmailAlias]:
    stmt = select(UserEmailAlias).order_by(UserEmailAlias.created_at.desc())
    if user_id is not None:
        stmt = stmt.where(UserEmailAlias.user_id == user_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


async def _session_minutes(db: AsyncSession, session_id: str) -> Optional[int]:
    fields = await SqlAttendanceStore(db).get_session_duration_fields(session_id)
    if fields is None:
        return None
    for minutes in (fields.formal_end_minutes, fields.actual_minutes, fields.scheduled_minutes):
        if minutes and minutes > 0:
            return minutes
    return None


def _fold_into(target: Attendance, orphan: Attendance, duration_minutes: int) -> None:
    """
    Merge `orphan`'s segments into `target` and recompute its metrics.
    """
    segments = [
        TimeSegment(join_time=_as_utc(s.join_time), leave_time=_as_utc(s.leave_time))
        for s in list(target.segments) + list(orphan.segments)
        if s.leave_time is not None
    ]
    merged = merge_overlapping_segments(segments)
    metrics = calculate_attendance(merged, duration_minutes)

    target.segments = [
        AttendanceSegment(
            join_time=seg.join_time,
            leave_time=seg.leave_time,
            duration_seconds=int(round_half_up(Decimal(str(seg.duration.total_seconds())))),
        )
        for seg in merged
    ]
    if merged:
        target.join_time = merged[0].join_time
        target.leave_time = merged[-1].leave_time
    target.duration_seconds = metrics.total_seconds
    target.attendance_percentage = metrics.percentage
    target.meeting_duration_minutes = duration_minutes


async def rematch_attendance_by_email(db: AsyncSession, email: str, user_id: str) -> int:
    """
    Link previously unmatched attendance rows carrying `email` to `user_id`.

    Where the user already has a record in the same session, the unmatched
    row is folded into it (segments re-merged, metrics recomputed against the
    stored denominator) so a session keeps one record per user. A row whose
    denominator cannot be determined is left unmatched.

    Returns the number of rows linked or folded.
    """
    normalized = normalize_email(email)
    if normalized is None:
        return 0

    result = await db.execute(
        select(Attendance).where(
            Attendance.zoom_user_email == normalized,
            Attendance.user_id.is_(None),
        )
    )
    orphans = list(result.scalars().all())

    rematched = 0
    for orphan in orphans:
        existing = (
            await db.execute(
                select(Attendance).where(
                    Attendance.session_id == orphan.session_id,
                    Attendance.user_id == user_id,
                )
            )
        ).scalars().first()

        if existing is None:
            orphan.user_id = user_id
            rematched += 1
            continue

        minutes = (
            existing.meeting_duration_minutes
            or orphan.meeting_duration_minutes
            or await _session_minutes(db, orphan.session_id)
        )
        if not minutes:
            logger.warning(
                "attendance_rematch_skipped",
                session_id=orphan.session_id,
                email=normalized,
                user_id=user_id,
                reason="meeting duration unknown",
            )
            continue

        _fold_into(existing, orphan, minutes)
        await db.delete(orphan)
        rematched += 1
        logger.info(
            "attendance_rows_folded",
            session_id=orphan.session_id,
            email=normalized,
            user_id=user_id,
        )

    await db.commit()

    logger.info("attendance_rematched", email=normalized, user_id=user_id, rows=rematched)
    return rematched


async def list_unmatched_emails(db: AsyncSession) -> List[UnmatchedEmail]:
    """
    Unmatched attendance emails with the sessions they appeared in.
    """
    stmt = (
        select(
            Attendance.zoom_user_email,
            Attendance.session_id,
            CohortSession.title,
            CohortSession.scheduled_at,
        )
        .outerjoin(CohortSession, CohortSession.id == Attendance.session_id)
        .where(Attendance.user_id.is_(None))
        .order_by(Attendance.created_at.desc(), Attendance.zoom_user_email)
    )
    result = await db.execute(stmt)

    groups: Dict[str, UnmatchedEmail] = {}
    for email, session_id, title, scheduled_at in result.all():
        key = email or "Unknown"
        entry = groups.setdefault(key, UnmatchedEmail(email=key))
        entry.sessions.append(
            UnmatchedSessionRef(id=session_id, title=title, date=scheduled_at)
        )
    return list(groups.values())
