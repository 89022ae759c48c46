# cohort_attendance/services/cliff_detector.py
from __future__ import annotations

import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Sequence

from cohort_attendance.schemas.cliff import (
    CliffConfidence,
    CliffDetectionResult,
    CliffRejection,
    HistogramBucket,
)
from cohort_attendance.services.attendance_calculator import round_half_up
from cohort_attendance.services.segment_merger import TimeSegment

WINDOW_MINUTES = 10
BUCKET_MINUTES = 5
STAYER_THRESHOLD = timedelta(minutes=2)

MIN_DEPARTURES = 3
MIN_PARTICIPANTS = 5
SMALL_SESSION_PARTICIPANTS = 20
MIN_SPIKE_RATIO = 2.5


def _minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


def _best_window(departures: Sequence[float], halfway: float) -> tuple[float, int]:
    """
    Densest WINDOW_MINUTES window starting at a departure in the second half.

    Earliest start wins ties.
    """
    best_start, best_count = 0.0, 0
    for start in departures:
        if start < halfway:
            continue
        end = start + WINDOW_MINUTES
        count = sum(1 for other in departures if start <= other <= end)
        if count > best_count:
            best_start, best_count = start, count
    return best_start, best_count


def _confidence(cliff_ratio: float, count: int, spike_ratio: float) -> CliffConfidence:
    if cliff_ratio >= 0.50 and count >= 8 and spike_ratio >= 5:
        return CliffConfidence.HIGH
    if cliff_ratio >= 0.35 or (count >= 6 and spike_ratio >= 3):
        return CliffConfidence.MEDIUM
    return CliffConfidence.LOW


def _histogram(
    departures: Sequence[float],
    stayers: int,
    meeting_minutes: float,
    window_start: float,
    window_end: float,
) -> List[HistogramBucket]:
    bucket_count = math.ceil(meeting_minutes / BUCKET_MINUTES)
    buckets = []
    for index in range(bucket_count):
        start = index * BUCKET_MINUTES
        end = start + BUCKET_MINUTES
        count = sum(1 for d in departures if start <= d < end)
        if index == bucket_count - 1:
            count += stayers
        buckets.append(
            HistogramBucket(
                minute=start,
                departures=count,
                is_cliff=start < window_end and end > window_start,
            )
        )
    return buckets


def detect_formal_end(
    participants: Sequence[Sequence[TimeSegment]],
    meeting_start: datetime,
    meeting_end: datetime,
) -> CliffDetectionResult:
    """
    Look for the mass departure that follows an instructor ending a session.

    Each entry of `participants` is one person's connection segments. A person
    whose last leave falls within two minutes of `meeting_end` is a stayer;
    everyone else contributes one final departure, measured in minutes after
    `meeting_start`.

    The densest ten-minute window of departures in the second half of the
    meeting is a cliff when it holds enough of the departures (30% below 20
    participants, else 25%), enough people in absolute terms (3, else 5) and
    at least 2.5x the departures the rest of the meeting's rate predicts.
    The window start, rounded half up, is the suggested effective end.
    """
    meeting_minutes = _minutes_between(meeting_start, meeting_end)

    departures: List[float] = []
    stayers = 0
    for segments in participants:
        if not segments:
            continue
        final_leave = max(seg.leave_time for seg in segments)
        if final_leave >= meeting_end - STAYER_THRESHOLD:
            stayers += 1
        else:
            departures.append(_minutes_between(meeting_start, final_leave))

    total_participants = len(departures) + stayers

    if len(departures) < MIN_DEPARTURES:
        return CliffDetectionResult(detected=False, reason=CliffRejection.TOO_FEW_DEPARTURES)
    if total_participants < MIN_PARTICIPANTS:
        return CliffDetectionResult(detected=False, reason=CliffRejection.SESSION_TOO_SMALL)
    # The background rate is measured outside one window.
    if meeting_minutes <= WINDOW_MINUTES:
        return CliffDetectionResult(detected=False, reason=CliffRejection.SESSION_TOO_SHORT)

    departures.sort()
    window_start, window_count = _best_window(departures, meeting_minutes * 0.5)

    cliff_ratio = window_count / len(departures)
    background_rate = (len(departures) - window_count) / (meeting_minutes - WINDOW_MINUTES)
    spike_ratio = window_count / max(background_rate * WINDOW_MINUTES, 0.5)

    small = total_participants < SMALL_SESSION_PARTICIPANTS
    min_ratio = 0.30 if small else 0.25
    min_absolute = 3 if small else 5

    if cliff_ratio < min_ratio:
        return CliffDetectionResult(detected=False, reason=CliffRejection.CLUSTER_TOO_SMALL)
    if window_count < min_absolute:
        return CliffDetectionResult(detected=False, reason=CliffRejection.ABSOLUTE_COUNT_LOW)
    if spike_ratio < MIN_SPIKE_RATIO:
        return CliffDetectionResult(detected=False, reason=CliffRejection.NOT_ENOUGH_SPIKE)

    effective_end = int(round_half_up(Decimal(str(window_start))))
    window_end = window_start + WINDOW_MINUTES

    # From 85% of the effective end up to the last 5% of the meeting.
    impacted = sum(
        1
        for d in departures
        if d >= effective_end * 0.85 and d / meeting_minutes < 0.95
    )

    return CliffDetectionResult(
        detected=True,
        confidence=_confidence(cliff_ratio, window_count, spike_ratio),
        effective_end_minutes=effective_end,
        cliff_window_start_min=window_start,
        cliff_window_end_min=window_end,
        departures_in_cliff=window_count,
        total_final_departures=len(departures),
        meeting_end_stayers=stayers,
        total_participants=total_participants,
        cliff_ratio=cliff_ratio,
        spike_ratio=spike_ratio,
        students_impacted=impacted,
        histogram=_histogram(departures, stayers, meeting_minutes, window_start, window_end),
    )
