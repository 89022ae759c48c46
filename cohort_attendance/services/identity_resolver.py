# cohort_attendance/services/identity_resolver.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple, Union

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_attendance.core.exceptions import IdentityResolutionError
from cohort_attendance.models.profile import Profile, UserEmailAlias
from cohort_attendance.schemas.participant import RawParticipantRecord
from cohort_attendance.services.contracts import UserDirectory
from cohort_attendance.services.participant_grouper import (
    EmailKey,
    GroupKey,
    normalize_email,
)
from cohort_attendance.services.segment_merger import TimeSegment

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Matched:
    user_id: str


@dataclass(frozen=True)
class Unmatched:
    group_key: GroupKey


ResolvedKey = Union[Matched, Unmatched]


@dataclass
class ResolvedParticipant:
    """
    One resolved identity of a meeting with its (unmerged) segments.
    """

    key: ResolvedKey
    email: str
    display_name: str
    segments: List[TimeSegment] = field(default_factory=list)

    @property
    def user_id(self) -> Optional[str]:
        return self.key.user_id if isinstance(self.key, Matched) else None


class SqlUserDirectory:
    """
    Identity directory backed by the `profiles` and `user_email_aliases` tables.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def resolve_user_by_email(self, email: str) -> Optional[str]:
        return await self._scalar(select(Profile.id).where(Profile.email == email))

    async def resolve_user_by_alias(self, email: str) -> Optional[str]:
        return await self._scalar(
            select(UserEmailAlias.user_id).where(UserEmailAlias.alias_email == email)
        )

    async def _scalar(self, stmt) -> Optional[str]:
        try:
            result = await self.db.execute(stmt.limit(1))
        except SQLAlchemyError as exc:
            raise IdentityResolutionError(f"User directory lookup failed: {exc}") from exc
        return result.scalar_one_or_none()


@dataclass(frozen=True)
class IdentityMatch:
    user_id: str
    via_alias: bool


class IdentityResolver:
    """
    Maps a participant email to a registered user id.

    Direct profile email first, then registered aliases. A miss is a normal
    None; only a failing directory raises.
    """

    def __init__(self, directory: UserDirectory) -> None:
        self.directory = directory

    async def match(self, email: Optional[str]) -> Optional[IdentityMatch]:
        normalized = normalize_email(email)
        if normalized is None:
            return None

        user_id = await self.directory.resolve_user_by_email(normalized)
        if user_id:
            return IdentityMatch(user_id=user_id, via_alias=False)

        user_id = await self.directory.resolve_user_by_alias(normalized)
        if user_id:
            return IdentityMatch(user_id=user_id, via_alias=True)
        return None

    async def resolve(self, email: Optional[str]) -> Optional[str]:
        match = await self.match(email)
        return match.user_id if match else None


def _segment_for(record: RawParticipantRecord, meeting_end_time: datetime) -> TimeSegment:
    leave_time = record.leave_time or meeting_end_time
    # Provider clock skew can report a leave before the join.
    return TimeSegment(join_time=record.join_time, leave_time=max(leave_time, record.join_time))


def _display_name(records: List[RawParticipantRecord], email: str) -> str:
    return next((r.display_name for r in records if r.display_name), "") or email or "Unknown"


async def resolve_user_ids(
    groups: Mapping[GroupKey, List[RawParticipantRecord]],
    meeting_end_time: datetime,
    resolver: IdentityResolver,
) -> Dict[ResolvedKey, ResolvedParticipant]:
    """
    Resolve grouped records to identities, collapsing aliases.

    Email groups that resolve to the same user id (a direct email plus an
    alias, say) end up in a single Matched bucket. Everything else, guests
    included, keeps its own Unmatched bucket. Missing leave times are filled
    with `meeting_end_time`.

    A collapsed identity is labelled with its primary email when that was
    seen, otherwise with the alphabetically first alias, so the label does
    not depend on provider ordering.
    """
    resolved: Dict[ResolvedKey, ResolvedParticipant] = {}
    # (via_alias, email) of the label currently held by each Matched identity.
    label_rank: Dict[ResolvedKey, Tuple[bool, str]] = {}

    for group_key, records in groups.items():
        email = group_key.email if isinstance(group_key, EmailKey) else ""
        match = await resolver.match(email) if email else None

        segments = [_segment_for(r, meeting_end_time) for r in records]
        key: ResolvedKey = Matched(match.user_id) if match else Unmatched(group_key)

        existing = resolved.get(key)
        if existing is None:
            resolved[key] = ResolvedParticipant(
                key=key,
                email=email,
                display_name=_display_name(records, email),
                segments=segments,
            )
            if match:
                label_rank[key] = (match.via_alias, email)
            continue

        existing.segments.extend(segments)
        rank = (match.via_alias, email)
        if rank < label_rank[key]:
            existing.email = email
            existing.display_name = _display_name(records, email)
            label_rank[key] = rank
        logger.debug("alias_groups_collapsed", user_id=match.user_id, email=email)

    return resolved
