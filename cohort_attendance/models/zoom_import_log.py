# cohort_attendance/models/zoom_import_log.py
import uuid

from sqlalchemy import Column, DateTime, Integer, String, Text, func

from cohort_attendance.db.base import Base


class ZoomImportLog(Base):
    """
    Audit trail of attendance imports triggered from Zoom.
    """

    __tablename__ = "zoom_import_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    zoom_meeting_id = Column(String(255), nullable=False, index=True)
    zoom_meeting_uuid = Column(String(255), nullable=False)
    session_id = Column(String(36), nullable=True, index=True)

    status = Column(String(32), nullable=False)  # completed | failed
    participants_imported = Column(Integer, nullable=False, default=0)
    participants_unmatched = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    imported_by = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return (
            f"<ZoomImportLog id={self.id} session_id={self.session_id} "
            f"status={self.status}>"
        )
