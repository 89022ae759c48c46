# cohort_attendance/schemas/attendance.py
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class DurationSource(str, Enum):
    """
    Where the authoritative meeting duration of a run came from.
    """

    FORMAL_END = "formal_end"
    PROVIDER = "provider"
    CALLER = "caller"
    SESSION_ACTUAL = "session_actual"
    SESSION_SCHEDULED = "session_scheduled"


class ReconcileRequest(BaseModel):
    """
    Body of POST /attendance/sessions/{session_id}/reconcile.
    """

    meeting_uuid: str = Field(
        ...,
        description="Zoom meeting UUID (or numeric id) of the completed meeting.",
        examples=["4444AAAiAAAAAiAiAiiAii=="],
    )
    duration_minutes: int | None = Field(
        None,
        gt=0,
        description=(
            "Optional explicit meeting length. Used only when Zoom does not "
            "report the actual start/end times."
        ),
        examples=[60],
    )


class ImportRequest(ReconcileRequest):
    """
    Body of POST /attendance/import.
    """

    session_id: str = Field(..., description="Session the attendance belongs to.")
    imported_by: str | None = Field(
        None,
        description="Admin user id triggering the import (recorded in the import log).",
    )


class ReconciliationSummary(BaseModel):
    """
    Outcome of one reconciliation run for a session.
    """

    session_id: str = Field(..., description="Session that was reconciled.")
    imported: int = Field(
        ...,
        description="Number of identities matched to a registered user and persisted.",
        examples=[18],
    )
    unmatched: int = Field(
        ...,
        description="Number of guest/unregistered identities persisted without a user.",
        examples=[2],
    )
    skipped: int = Field(
        0,
        description="Identities whose record could not be written and were skipped.",
        examples=[0],
    )
    duration_used: int = Field(
        ...,
        description="Meeting duration (minutes) used as the percentage denominator.",
        examples=[60],
    )
    duration_source: DurationSource = Field(
        ...,
        description="Which source the duration was taken from.",
        examples=["provider"],
    )


class ImportResult(BaseModel):
    """
    Outcome of POST /attendance/import. Failures are reported, not raised.
    """

    success: bool
    participants_imported: int = 0
    participants_skipped: int = 0
    error: str | None = None


class AttendanceSegmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    join_time: datetime
    leave_time: datetime | None
    duration_seconds: int | None


class AttendanceRead(BaseModel):
    """
    Public representation of a persisted attendance record with its segments.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Database identifier of the record.")
    session_id: str
    user_id: str | None = Field(
        None,
        description="Registered user; null for unmatched participants.",
    )
    zoom_user_email: str | None = Field(
        None,
        description="Resolved email, or display name for participants without one.",
    )
    join_time: datetime | None = Field(None, description="First join.")
    leave_time: datetime | None = Field(None, description="Last leave.")
    duration_seconds: int | None = None
    attendance_percentage: float | None = Field(
        None,
        ge=0,
        le=100,
        description="Connected time over meeting duration, capped at 100.",
        examples=[87.5],
    )
    meeting_duration_minutes: int | None = Field(
        None,
        description="Meeting duration the percentage was computed against.",
    )
    segments: list[AttendanceSegmentRead] = Field(default_factory=list)


class MatchedPreviewEntry(BaseModel):
    name: str
    email: str
    avatar_url: str | None = None
    percentage: float
    duration_minutes: int
    join_time: datetime | None = None
    leave_time: datetime | None = None


class UnmatchedPreviewEntry(BaseModel):
    zoom_email: str
    percentage: float
    duration_minutes: int
    join_time: datetime | None = None
    leave_time: datetime | None = None


class PreviewSummary(BaseModel):
    total: int = 0
    matched: int = 0
    unmatched: int = 0
    avg_percentage: int = Field(
        0,
        description="Mean attendance percentage across all records, rounded.",
    )


class AttendancePreview(BaseModel):
    """
    Matched/unmatched split of a session's computed attendance.
    """

    matched: list[MatchedPreviewEntry] = Field(default_factory=list)
    unmatched: list[UnmatchedPreviewEntry] = Field(default_factory=list)
    summary: PreviewSummary = Field(default_factory=PreviewSummary)
