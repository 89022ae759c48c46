# cohort_attendance/models/profile.py
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, func

from cohort_attendance.db.base import Base


class Profile(Base):
    """
    Registered platform user. Acts as the identity directory for attendance
    matching: a participant email equal to `email` resolves to `id`.
    """

    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(320), nullable=False, unique=True, index=True)
    full_name = Column(String(255), nullable=True)
    avatar_url = Column(String(1024), nullable=True)
    role = Column(String(32), nullable=False, default="student", index=True)
    cohort_id = Column(String(36), nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<Profile id={self.id} email={self.email}>"


class UserEmailAlias(Base):
    """
    Alternate email address registered as belonging to a profile.
    """

    __tablename__ = "user_email_aliases"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    user_id = Column(
        String(36),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    alias_email = Column(String(320), nullable=False, unique=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return f"<UserEmailAlias id={self.id} user_id={self.user_id} alias={self.alias_email}>"
