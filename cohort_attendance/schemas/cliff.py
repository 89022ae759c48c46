# cohort_attendance/schemas/cliff.py
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from cohort_attendance.schemas.attendance import ReconciliationSummary


class CliffConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CliffRejection(str, Enum):
    """
    Why no departure cliff was reported.
    """

    TOO_FEW_DEPARTURES = "TOO_FEW_DEPARTURES"
    SESSION_TOO_SMALL = "SESSION_TOO_SMALL"
    SESSION_TOO_SHORT = "SESSION_TOO_SHORT"
    CLUSTER_TOO_SMALL = "CLUSTER_TOO_SMALL"
    ABSOLUTE_COUNT_LOW = "ABSOLUTE_COUNT_LOW"
    NOT_ENOUGH_SPIKE = "NOT_ENOUGH_SPIKE"


class HistogramBucket(BaseModel):
    minute: int = Field(..., description="Bucket start, minutes after meeting start.")
    departures: int = Field(..., description="Final departures in the bucket (stayers in the last one).")
    is_cliff: bool = Field(..., description="Bucket overlaps the detected cliff window.")


class CliffDetectionResult(BaseModel):
    """
    Outcome of a departure-cliff analysis of one completed meeting.

    When `detected` is false only `reason` is set.
    """

    detected: bool
    reason: CliffRejection | None = None
    confidence: CliffConfidence | None = None
    effective_end_minutes: int | None = Field(
        None,
        description="Suggested formal end of the session, minutes after meeting start.",
        examples=[45],
    )
    cliff_window_start_min: float | None = None
    cliff_window_end_min: float | None = None
    departures_in_cliff: int | None = None
    total_final_departures: int | None = None
    meeting_end_stayers: int | None = None
    total_participants: int | None = None
    cliff_ratio: float | None = None
    spike_ratio: float | None = None
    students_impacted: int | None = Field(
        None,
        description="Departures the formal end would stop penalizing.",
    )
    histogram: list[HistogramBucket] | None = None


class DetectCliffRequest(BaseModel):
    meeting_uuid: str = Field(
        ...,
        description="Zoom meeting UUID (or numeric id) of the completed meeting.",
        examples=["4444AAAiAAAAAiAiAiiAii=="],
    )


class ApplyCliffRequest(DetectCliffRequest):
    formal_end_minutes: int = Field(
        ...,
        gt=0,
        description="Effective session length to use as the attendance denominator.",
        examples=[45],
    )


class DismissCliffRequest(BaseModel):
    meeting_uuid: str | None = Field(
        None,
        description="When given, attendance is recalculated without the formal end.",
    )


class CliffActionResult(BaseModel):
    """
    Result of applying or dismissing a session's formal end.
    """

    success: bool = True
    formal_end_minutes: int | None = None
    applied_at: datetime | None = None
    attendance: ReconciliationSummary | None = Field(
        None,
        description="Recalculated attendance, when a recalculation ran.",
    )


class BulkCliffStatus(str, Enum):
    DETECTED = "detected"
    NO_CLIFF = "no_cliff"
    SKIPPED = "skipped"
    ERROR = "error"


class BulkCliffEntry(BaseModel):
    session_id: str
    title: str
    status: BulkCliffStatus
    confidence: CliffConfidence | None = None
    effective_end_minutes: int | None = None
    students_impacted: int | None = None
    error: str | None = None


class BulkCliffSummary(BaseModel):
    total: int = 0
    detected: int = 0
    high_confidence: int = 0
    medium_confidence: int = 0
    low_confidence: int = 0
    no_cliff: int = 0
    skipped: int = 0
    errors: int = 0
    total_students_impacted: int = 0


class BulkCliffReport(BaseModel):
    summary: BulkCliffSummary
    results: list[BulkCliffEntry]
