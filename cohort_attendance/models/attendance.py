# cohort_attendance/models/attendance.py
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import relationship

from cohort_attendance.db.base import Base


class Attendance(Base):
    """
    Computed attendance of one resolved identity for one session.

    Rows are only ever written by the reconciliation run, which deletes every
    row of a session before inserting the fresh computation.
    """

    __tablename__ = "attendance"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    session_id = Column(
        String(36),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # NULL for guests and unregistered emails.
    user_id = Column(
        String(36),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    zoom_user_email = Column(String(320), nullable=True, index=True)
    join_time = Column(DateTime(timezone=True), nullable=True)
    leave_time = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    attendance_percentage = Column(Numeric(5, 2, asdecimal=False), nullable=True)
    # Denominator the percentage was computed against.
    meeting_duration_minutes = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    segments = relationship(
        "AttendanceSegment",
        back_populates="attendance",
        cascade="all, delete-orphan",
        order_by="AttendanceSegment.join_time",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<Attendance id={self.id} session_id={self.session_id} "
            f"user_id={self.user_id} pct={self.attendance_percentage}>"
        )


class AttendanceSegment(Base):
    """
    One merged, disjoint connected interval belonging to an Attendance row.
    """

    __tablename__ = "attendance_segments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    attendance_id = Column(
        String(36),
        ForeignKey("attendance.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    join_time = Column(DateTime(timezone=True), nullable=False)
    leave_time = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    attendance = relationship("Attendance", back_populates="segments")

    def __repr__(self) -> str:
        return (
            f"<AttendanceSegment id={self.id} attendance_id={self.attendance_id} "
            f"{self.join_time}..{self.leave_time}>"
        )
