# tests/test_duration_resolver.py
import pytest

from cohort_attendance.core.exceptions import DurationUnresolvedError
from cohort_attendance.schemas.attendance import DurationSource
from cohort_attendance.services.contracts import SessionDurationFields
from cohort_attendance.services.duration_resolver import DurationResolver, compute_meeting_end_time
from cohort_attendance.services.zoom_client import ZoomClientError
from factories import MEETING_START, StubParticipantProvider, at, record


class FakeSessionStore:
    def __init__(self, fields=None):
        self.fields = fields

    async def get_session_duration_fields(self, session_id: str):
        return self.fields


class FailingTimesProvider(StubParticipantProvider):
    async def get_meeting_actual_times(self, meeting_id: str):
        raise ZoomClientError("Simulated Zoom outage")


@pytest.mark.asyncio
async def test_provider_actual_times_win():
    resolver = DurationResolver(
        StubParticipantProvider(actual_minutes=52),
        FakeSessionStore(SessionDurationFields(actual_minutes=70, scheduled_minutes=60)),
    )

    duration = await resolver.resolve_meeting_duration("s1", "m1", caller_minutes=45)

    assert duration.minutes == 52
    assert duration.source == DurationSource.PROVIDER


@pytest.mark.asyncio
async def test_applied_formal_end_outranks_every_other_source():
    resolver = DurationResolver(
        StubParticipantProvider(actual_minutes=52),
        FakeSessionStore(
            SessionDurationFields(actual_minutes=70, scheduled_minutes=60, formal_end_minutes=45)
        ),
    )

    duration = await resolver.resolve_meeting_duration("s1", "m1", caller_minutes=90)

    assert (duration.minutes, duration.source) == (45, DurationSource.FORMAL_END)


@pytest.mark.asyncio
async def test_provider_minutes_are_rounded_half_up():
    resolver = DurationResolver(StubParticipantProvider(actual_minutes=59.5), FakeSessionStore())

    duration = await resolver.resolve_meeting_duration("s1", "m1")

    assert duration.minutes == 60


@pytest.mark.asyncio
async def test_caller_minutes_used_when_provider_has_no_times():
    resolver = DurationResolver(
        StubParticipantProvider(),
        FakeSessionStore(SessionDurationFields(actual_minutes=70, scheduled_minutes=60)),
    )

    duration = await resolver.resolve_meeting_duration("s1", "m1", caller_minutes=45)

    assert duration.minutes == 45
    assert duration.source == DurationSource.CALLER


@pytest.mark.asyncio
async def test_session_actual_then_scheduled():
    resolver = DurationResolver(
        StubParticipantProvider(),
        FakeSessionStore(SessionDurationFields(actual_minutes=70, scheduled_minutes=60)),
    )
    duration = await resolver.resolve_meeting_duration("s1", "m1")
    assert (duration.minutes, duration.source) == (70, DurationSource.SESSION_ACTUAL)

    resolver = DurationResolver(
        StubParticipantProvider(),
        FakeSessionStore(SessionDurationFields(actual_minutes=0, scheduled_minutes=60)),
    )
    duration = await resolver.resolve_meeting_duration("s1", "m1")
    assert (duration.minutes, duration.source) == (60, DurationSource.SESSION_SCHEDULED)


@pytest.mark.asyncio
async def test_provider_failure_falls_through_to_session_scheduled():
    """
    Provider times unavailable, no caller value, no actual override:
    the scheduled 60 minutes is used.
    """
    resolver = DurationResolver(
        FailingTimesProvider(),
        FakeSessionStore(SessionDurationFields(actual_minutes=None, scheduled_minutes=60)),
    )

    duration = await resolver.resolve_meeting_duration("s1", "m1")

    assert duration.minutes == 60
    assert duration.source == DurationSource.SESSION_SCHEDULED


@pytest.mark.asyncio
async def test_zero_length_provider_meeting_is_ignored():
    resolver = DurationResolver(
        StubParticipantProvider(actual_minutes=0),
        FakeSessionStore(SessionDurationFields(scheduled_minutes=30)),
    )

    duration = await resolver.resolve_meeting_duration("s1", "m1")

    assert duration.source == DurationSource.SESSION_SCHEDULED


@pytest.mark.asyncio
async def test_no_source_raises():
    resolver = DurationResolver(StubParticipantProvider(), FakeSessionStore())

    with pytest.raises(DurationUnresolvedError) as excinfo:
        await resolver.resolve_meeting_duration("s1", "m1", caller_minutes=0)

    assert excinfo.value.session_id == "s1"
    assert excinfo.value.meeting_id == "m1"


def test_meeting_end_time_is_latest_leave():
    records = [record("p1", 0, 20), record("p2", 5, 58), record("p3", 30, None)]

    assert compute_meeting_end_time(records, 60) == at(58)


def test_meeting_end_time_without_leaves_uses_duration():
    records = [record("p1", 3, None), record("p2", 1, None)]

    assert compute_meeting_end_time(records, 60) == at(61)
    assert compute_meeting_end_time(records, 60) > MEETING_START
