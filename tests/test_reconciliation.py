# tests/test_reconciliation.py
import pytest

from cohort_attendance.core.exceptions import (
    DurationUnresolvedError,
    PersistenceWriteError,
    ProviderFetchError,
)
from cohort_attendance.schemas.attendance import DurationSource
from cohort_attendance.services.contracts import SessionDurationFields
from cohort_attendance.services.reconciliation import AttendanceReconciler, ReconciliationState
from cohort_attendance.services.zoom_client import ZoomClientError
from factories import StubParticipantProvider, at, record


class FakeDirectory:
    def __init__(self, users=None, aliases=None):
        self.users = users or {}
        self.aliases = aliases or {}

    async def resolve_user_by_email(self, email: str):
        return self.users.get(email)

    async def resolve_user_by_alias(self, email: str):
        return self.aliases.get(email)


class FakeStore:
    """
    Records every persistence call; `existing` simulates rows of a previous run.
    """

    def __init__(self, fields=None, existing=None, fail_for=()):
        self.fields = fields
        self.rows = list(existing or [])
        self.fail_for = set(fail_for)
        self.calls = []

    async def get_session_duration_fields(self, session_id: str):
        return self.fields

    async def delete_session_attendance(self, session_id: str) -> int:
        self.calls.append("delete")
        deleted = len(self.rows)
        self.rows = []
        return deleted

    async def insert_attendance(self, row) -> None:
        self.calls.append("insert")
        if row.resolved_email_or_name in self.fail_for:
            raise PersistenceWriteError("Simulated write failure", identity=row.resolved_email_or_name)
        self.rows.append(row)

    async def commit(self) -> None:
        self.calls.append("commit")

    async def rollback(self) -> None:
        self.calls.append("rollback")


class FailingProvider(StubParticipantProvider):
    async def list_participants(self, meeting_id: str):
        raise ZoomClientError("Simulated Zoom outage")


SCHEDULED_60 = SessionDurationFields(scheduled_minutes=60)


def by_identity(store: FakeStore):
    return {row.resolved_email_or_name: row for row in store.rows}


@pytest.mark.asyncio
async def test_rejoin_with_gap_yields_one_record():
    """
    0-20 and 40-60 of one student in a 60 minute meeting: one record,
    2400 seconds, 66.67%, two stored segments.
    """
    provider = StubParticipantProvider(
        [
            record("p1", 0, 20, email="ada@example.com"),
            record("p2", 40, 60, email="ada@example.com"),
        ]
    )
    store = FakeStore(SCHEDULED_60)
    reconciler = AttendanceReconciler(
        provider, FakeDirectory(users={"ada@example.com": "user-ada"}), store
    )

    summary = await reconciler.reconcile_session_attendance("s1", "m1")

    assert reconciler.state == ReconciliationState.DONE
    assert (summary.imported, summary.unmatched, summary.skipped) == (1, 0, 0)
    assert summary.duration_used == 60
    assert summary.duration_source == DurationSource.SESSION_SCHEDULED

    (row,) = store.rows
    assert row.user_id == "user-ada"
    assert row.total_duration_seconds == 2400
    assert row.attendance_percentage == 66.67
    assert row.first_join_time == at(0)
    assert row.last_leave_time == at(60)
    assert [(s.join_time, s.leave_time, s.duration_seconds) for s in row.segments] == [
        (at(0), at(20), 1200),
        (at(40), at(60), 1200),
    ]


@pytest.mark.asyncio
async def test_overlapping_devices_are_not_double_counted():
    provider = StubParticipantProvider(
        [
            record("phone", 0, 30, email="ada@example.com"),
            record("laptop", 10, 60, email="ada@example.com"),
        ]
    )
    store = FakeStore(SCHEDULED_60)
    reconciler = AttendanceReconciler(
        provider, FakeDirectory(users={"ada@example.com": "user-ada"}), store
    )

    await reconciler.reconcile_session_attendance("s1", "m1")

    (row,) = store.rows
    assert row.total_duration_seconds == 3600
    assert row.attendance_percentage == 100.0
    assert len(row.segments) == 1


@pytest.mark.asyncio
async def test_alias_and_primary_email_produce_a_single_record():
    provider = StubParticipantProvider(
        [
            record("p1", 0, 30, email="ada@example.com"),
            record("p2", 30, 45, email="ada.personal@example.org"),
        ]
    )
    store = FakeStore(SCHEDULED_60)
    directory = FakeDirectory(
        users={"ada@example.com": "user-ada"},
        aliases={"ada.personal@example.org": "user-ada"},
    )

    summary = await AttendanceReconciler(provider, directory, store).reconcile_session_attendance(
        "s1", "m1"
    )

    assert summary.imported == 1
    (row,) = store.rows
    assert row.user_id == "user-ada"
    assert row.total_duration_seconds == 45 * 60
    assert row.attendance_percentage == 75.0


@pytest.mark.asyncio
async def test_guests_with_same_name_are_two_unmatched_records():
    provider = StubParticipantProvider(
        [
            record("guest-1", 0, 30, name="iPhone"),
            record("guest-2", 0, 60, name="iPhone"),
        ]
    )
    store = FakeStore(SCHEDULED_60)

    summary = await AttendanceReconciler(provider, FakeDirectory(), store).reconcile_session_attendance(
        "s1", "m1"
    )

    assert (summary.imported, summary.unmatched) == (0, 2)
    assert sorted(row.attendance_percentage for row in store.rows) == [50.0, 100.0]
    assert all(row.user_id is None for row in store.rows)
    assert all(row.resolved_email_or_name == "iPhone" for row in store.rows)


@pytest.mark.asyncio
async def test_missing_leave_time_counts_until_meeting_end():
    provider = StubParticipantProvider(
        [
            record("p1", 0, 60, email="ada@example.com"),
            record("guest-1", 30, None, name="Visitor"),
        ]
    )
    store = FakeStore(SCHEDULED_60)

    await AttendanceReconciler(
        provider, FakeDirectory(users={"ada@example.com": "user-ada"}), store
    ).reconcile_session_attendance("s1", "m1")

    guest = by_identity(store)["Visitor"]
    assert guest.total_duration_seconds == 1800
    assert guest.attendance_percentage == 50.0
    assert guest.last_leave_time == at(60)


@pytest.mark.asyncio
async def test_rows_are_persisted_matched_first_in_stable_order():
    provider = StubParticipantProvider(
        [
            record("guest-9", 0, 10, name="Guest"),
            record("p2", 0, 10, email="zed@example.com"),
            record("p3", 0, 10, email="grace@example.com"),
            record("p1", 0, 10, email="ada@example.com"),
        ]
    )
    store = FakeStore(SCHEDULED_60)
    directory = FakeDirectory(
        users={"ada@example.com": "user-ada", "grace@example.com": "user-grace"}
    )

    await AttendanceReconciler(provider, directory, store).reconcile_session_attendance("s1", "m1")

    assert [row.resolved_email_or_name for row in store.rows] == [
        "ada@example.com",
        "grace@example.com",
        "zed@example.com",
        "Guest",
    ]


@pytest.mark.asyncio
async def test_rerun_replaces_previous_rows():
    provider = StubParticipantProvider([record("p1", 0, 30, email="ada@example.com")])
    store = FakeStore(SCHEDULED_60, existing=["stale-1", "stale-2"])
    reconciler = AttendanceReconciler(
        provider, FakeDirectory(users={"ada@example.com": "user-ada"}), store
    )

    await reconciler.reconcile_session_attendance("s1", "m1")
    first = list(store.rows)
    await reconciler.reconcile_session_attendance("s1", "m1")

    assert store.rows == first
    assert len(store.rows) == 1
    assert store.calls == ["delete", "insert", "commit", "delete", "insert", "commit"]


@pytest.mark.asyncio
async def test_empty_meeting_writes_nothing_and_keeps_existing_rows():
    store = FakeStore(SCHEDULED_60, existing=["previous"])
    reconciler = AttendanceReconciler(StubParticipantProvider([]), FakeDirectory(), store)

    summary = await reconciler.reconcile_session_attendance("s1", "m1")

    assert (summary.imported, summary.unmatched) == (0, 0)
    assert store.calls == []
    assert store.rows == ["previous"]
    assert reconciler.state == ReconciliationState.DONE


@pytest.mark.asyncio
async def test_provider_failure_is_fatal_and_touches_nothing():
    store = FakeStore(SCHEDULED_60, existing=["previous"])
    reconciler = AttendanceReconciler(FailingProvider(), FakeDirectory(), store)

    with pytest.raises(ProviderFetchError):
        await reconciler.reconcile_session_attendance("s1", "m1")

    assert reconciler.state == ReconciliationState.FAILED
    assert store.calls == []
    assert store.rows == ["previous"]


@pytest.mark.asyncio
async def test_unresolved_duration_is_fatal_before_delete():
    store = FakeStore(fields=None, existing=["previous"])
    reconciler = AttendanceReconciler(
        StubParticipantProvider([record("p1", 0, 30, email="ada@example.com")]),
        FakeDirectory(),
        store,
    )

    with pytest.raises(DurationUnresolvedError):
        await reconciler.reconcile_session_attendance("s1", "m1")

    assert reconciler.state == ReconciliationState.FAILED
    assert store.calls == []
    assert store.rows == ["previous"]


@pytest.mark.asyncio
async def test_failed_insert_skips_only_that_identity():
    provider = StubParticipantProvider(
        [
            record("p1", 0, 60, email="ada@example.com"),
            record("p2", 0, 30, email="grace@example.com"),
            record("guest-1", 0, 15, name="Guest"),
        ]
    )
    store = FakeStore(SCHEDULED_60, fail_for={"grace@example.com"})
    directory = FakeDirectory(
        users={"ada@example.com": "user-ada", "grace@example.com": "user-grace"}
    )

    summary = await AttendanceReconciler(provider, directory, store).reconcile_session_attendance(
        "s1", "m1"
    )

    assert (summary.imported, summary.unmatched, summary.skipped) == (1, 1, 1)
    assert set(by_identity(store)) == {"ada@example.com", "Guest"}
    assert store.calls[-1] == "commit"


@pytest.mark.asyncio
async def test_caller_duration_used_when_provider_has_no_times():
    provider = StubParticipantProvider([record("p1", 0, 45, email="ada@example.com")])
    store = FakeStore(SCHEDULED_60)

    summary = await AttendanceReconciler(
        provider, FakeDirectory(users={"ada@example.com": "user-ada"}), store
    ).reconcile_session_attendance("s1", "m1", caller_duration_minutes=90)

    assert summary.duration_used == 90
    assert summary.duration_source == DurationSource.CALLER
    assert store.rows[0].attendance_percentage == 50.0
