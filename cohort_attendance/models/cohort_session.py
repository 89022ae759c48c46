# cohort_attendance/models/cohort_session.py
import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String

from cohort_attendance.db.base import Base


class CohortSession(Base):
    """
    A scheduled class session that attendance is computed for.

    `duration_minutes` is the scheduled duration; `actual_duration_minutes`
    is an optional override recorded once the real length is known.
    `formal_end_minutes`, when set from an applied departure cliff, is the
    effective length and takes precedence over every other duration.
    """

    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(255), nullable=False)
    cohort_id = Column(String(36), nullable=True, index=True)
    zoom_meeting_id = Column(String(255), nullable=True, index=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)

    # Sessions that don't count (guest lectures, office hours) are left out
    # of per-student cohort attendance.
    counts_for_students = Column(Boolean, nullable=False, default=True)

    duration_minutes = Column(Integer, nullable=True)
    actual_duration_minutes = Column(Integer, nullable=True)
    formal_end_minutes = Column(Integer, nullable=True)

    # Last cliff detection result plus apply/dismiss markers. NULL = never analyzed.
    cliff_detection = Column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<CohortSession id={self.id} title={self.title!r}>"
