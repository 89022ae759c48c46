# cohort_attendance/schemas/alias.py
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class AliasCreate(BaseModel):
    """
    Body of POST /attendance/aliases.
    """

    user_id: str = Field(..., description="Profile the alias belongs to.")
    alias_email: str = Field(
        ...,
        min_length=3,
        description="Alternate email address used by this user when joining meetings.",
        examples=["ada.personal@example.org"],
    )


class AliasRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    alias_email: str
    created_at: datetime | None = None


class AliasCreateResult(BaseModel):
    success: bool = True
    alias: AliasRead
    rematched_records: int = Field(
        0,
        description="Previously unmatched attendance rows now linked to the user.",
    )


class UnmatchedSessionRef(BaseModel):
    id: str
    title: str | None = None
    date: datetime | None = None


class UnmatchedEmail(BaseModel):
    email: str
    sessions: list[UnmatchedSessionRef] = Field(default_factory=list)
