# cohort_attendance/schemas/student_attendance.py
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CohortSessionRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    scheduled_at: datetime | None = None
    duration_minutes: int | None = None
    actual_duration_minutes: int | None = None


class StudentSegment(BaseModel):
    join: datetime
    leave: datetime | None = None
    duration_minutes: int = 0


class StudentSessionAttendance(BaseModel):
    session_id: str
    title: str
    date: datetime | None = None
    attended: bool
    percentage: float = 0
    duration_attended_minutes: int = 0
    total_duration_minutes: int | None = None
    segments: list[StudentSegment] = Field(default_factory=list)


class StudentAttendance(BaseModel):
    """
    One student's attendance across the countable sessions of a cohort.
    """

    user_id: str
    name: str
    email: str
    avatar_url: str | None = None
    sessions_attended: int
    sessions_total: int
    avg_percentage: float = Field(
        0,
        description="Mean percentage over attended sessions, two decimals.",
        examples=[87.5],
    )
    sessions: list[StudentSessionAttendance] = Field(default_factory=list)


class CohortStudentAttendance(BaseModel):
    students: list[StudentAttendance] = Field(default_factory=list)
    sessions: list[CohortSessionRef] = Field(default_factory=list)
