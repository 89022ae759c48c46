# cohort_attendance/services/participant_grouper.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

from cohort_attendance.schemas.participant import RawParticipantRecord


@dataclass(frozen=True)
class EmailKey:
    email: str


@dataclass(frozen=True)
class GuestKey:
    participant_id: str


GroupKey = Union[EmailKey, GuestKey]


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Lowercase and trim an email; blank values normalize to None.
    """
    if email is None:
        return None
    normalized = email.strip().lower()
    return normalized or None


def group_key_for(record: RawParticipantRecord) -> GroupKey:
    email = normalize_email(record.email)
    if email is not None:
        return EmailKey(email)
    # Keyed by the connection id, never by display name: two guests both
    # called "iPhone" are two people.
    return GuestKey(record.participant_id)


def group_participants(
    records: Iterable[RawParticipantRecord],
) -> Dict[GroupKey, List[RawParticipantRecord]]:
    """
    Bucket raw connection events so one person's rejoins share a bucket.

    Records within a bucket keep their input order.
    """
    groups: Dict[GroupKey, List[RawParticipantRecord]] = {}
    for record in records:
        groups.setdefault(group_key_for(record), []).append(record)
    return groups
