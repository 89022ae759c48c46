# cohort_attendance/services/segment_merger.py
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import List, Sequence


@dataclass(frozen=True)
class TimeSegment:
    """
    One continuous connected interval of a participant.
    """

    join_time: datetime
    leave_time: datetime

    def __post_init__(self) -> None:
        if self.leave_time < self.join_time:
            raise ValueError(
                f"leave_time {self.leave_time.isoformat()} precedes "
                f"join_time {self.join_time.isoformat()}"
            )

    @property
    def duration(self) -> timedelta:
        return self.leave_time - self.join_time


def merge_overlapping_segments(segments: Sequence[TimeSegment]) -> List[TimeSegment]:
    """
    Collapse possibly-overlapping segments into the minimal disjoint cover.

    Sweep-line merge: sort by join time, then extend the last merged segment
    while the next one starts at or before its leave time (touching segments
    merge too). The result is sorted and pairwise disjoint, so summing its
    durations never double counts reconnects from several devices.
    """
    if len(segments) <= 1:
        return list(segments)

    ordered = sorted(segments, key=lambda s: s.join_time)
    merged: List[TimeSegment] = [ordered[0]]

    for current in ordered[1:]:
        last = merged[-1]
        if current.join_time <= last.leave_time:
            if current.leave_time > last.leave_time:
                merged[-1] = replace(last, leave_time=current.leave_time)
        else:
            merged.append(current)

    return merged
