# cohort_attendance/schemas/participant.py
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class RawParticipantRecord(BaseModel):
    """
    One provider-reported connection event of a completed meeting.

    A person who drops and rejoins produces several records, each with its own
    `participant_id`.
    """

    model_config = ConfigDict(frozen=True)

    participant_id: str = Field(
        ...,
        description="Provider identifier, unique per connection event (not per person).",
        examples=["16778240"],
    )
    email: str | None = Field(
        None,
        description="Participant email; absent for anonymous/guest joins.",
        examples=["ada@example.com"],
    )
    display_name: str = Field(
        "",
        description="Provider-supplied display label.",
        examples=["Ada Lovelace"],
    )
    join_time: datetime = Field(..., description="When this connection started.")
    leave_time: datetime | None = Field(
        None,
        description="When this connection ended, if the provider recorded it.",
    )


class MeetingActualTimes(BaseModel):
    """
    Actual start/end of a completed meeting as reported by the provider.
    """

    meeting_id: str = Field(..., description="Provider meeting id/UUID used for lookup.")
    start_time: datetime = Field(..., description="UTC start time of the meeting.")
    end_time: datetime = Field(..., description="UTC end time of the meeting.")
    raw: dict | None = Field(
        None,
        description="Raw provider JSON for debugging purposes.",
    )
