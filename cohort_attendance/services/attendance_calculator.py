# cohort_attendance/services/attendance_calculator.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from cohort_attendance.services.segment_merger import TimeSegment

_HUNDRED = Decimal(100)
_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class AttendanceMetrics:
    total_seconds: int
    percentage: float


def round_half_up(value: Decimal, exponent: Decimal = Decimal(1)) -> Decimal:
    return value.quantize(exponent, rounding=ROUND_HALF_UP)


def calculate_attendance(
    segments: Sequence[TimeSegment],
    meeting_duration_minutes: int,
) -> AttendanceMetrics:
    """
    Connected time and attendance percentage for one identity.

    `segments` must already be merged (disjoint). The percentage is
    total minutes over meeting minutes, rounded half up to two decimals and
    capped at 100. The caller guarantees a positive duration.
    """
    total = sum(
        (Decimal(str(seg.duration.total_seconds())) for seg in segments),
        Decimal(0),
    )
    meeting_seconds = Decimal(meeting_duration_minutes) * 60

    percentage = round_half_up(total / meeting_seconds * _HUNDRED, _CENTS)
    percentage = min(_HUNDRED, percentage)

    return AttendanceMetrics(
        total_seconds=int(round_half_up(total)),
        percentage=float(percentage),
    )
