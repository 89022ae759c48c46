# tests/test_attendance_api.py
from http import HTTPStatus

import pytest
from sqlalchemy import select

from cohort_attendance.models.zoom_import_log import ZoomImportLog
from cohort_attendance.services.zoom_client import ZoomClientError
from factories import record, seed_directory


@pytest.fixture
def meeting(provider):
    provider.records = [
        record("p1", 0, 20, email="ada@example.com", name="Ada"),
        record("p2", 40, 60, email="ada.personal@example.org", name="Ada"),
        record("p3", 0, 60, email="grace@example.com", name="Grace"),
        record("guest-1", 0, 30, name="iPhone"),
    ]
    return provider


@pytest.mark.asyncio
async def test_reconcile_session_returns_summary_and_stores_rows(client, db, meeting):
    await seed_directory(db)

    resp = await client.post(
        "/attendance/sessions/session-1/reconcile",
        json={"meeting_uuid": "85746065432"},
    )

    assert resp.status_code == HTTPStatus.OK
    data = resp.json()
    assert data == {
        "session_id": "session-1",
        "imported": 2,
        "unmatched": 1,
        "skipped": 0,
        "duration_used": 60,
        "duration_source": "session_scheduled",
    }

    listing = await client.get("/attendance/sessions/session-1")
    assert listing.status_code == HTTPStatus.OK
    rows = listing.json()
    assert [(r["zoom_user_email"], r["attendance_percentage"]) for r in rows] == [
        ("grace@example.com", 100.0),
        ("ada@example.com", 66.67),
        ("iPhone", 50.0),
    ]
    assert len(rows[1]["segments"]) == 2


@pytest.mark.asyncio
async def test_reconcile_twice_gives_the_same_rows(client, db, meeting):
    await seed_directory(db)

    for _ in range(2):
        resp = await client.post(
            "/attendance/sessions/session-1/reconcile",
            json={"meeting_uuid": "85746065432"},
        )
        assert resp.status_code == HTTPStatus.OK

    rows = (await client.get("/attendance/sessions/session-1")).json()
    assert len(rows) == 3


@pytest.mark.asyncio
async def test_reconcile_uses_caller_duration(client, db, meeting):
    await seed_directory(db)

    resp = await client.post(
        "/attendance/sessions/session-1/reconcile",
        json={"meeting_uuid": "85746065432", "duration_minutes": 120},
    )

    assert resp.json()["duration_used"] == 120
    assert resp.json()["duration_source"] == "caller"


@pytest.mark.asyncio
async def test_reconcile_rejects_non_positive_duration(client):
    resp = await client.post(
        "/attendance/sessions/session-1/reconcile",
        json={"meeting_uuid": "85746065432", "duration_minutes": 0},
    )

    assert resp.status_code == HTTPStatus.UNPROCESSABLE_ENTITY


@pytest.mark.asyncio
async def test_reconcile_unknown_session_without_duration_is_422(client, meeting):
    resp = await client.post(
        "/attendance/sessions/session-unknown/reconcile",
        json={"meeting_uuid": "85746065432"},
    )

    assert resp.status_code == HTTPStatus.UNPROCESSABLE_ENTITY
    assert "duration" in resp.json()["detail"].lower()


@pytest.mark.asyncio
async def test_reconcile_provider_failure_is_502(client, db, provider, monkeypatch):
    await seed_directory(db)

    async def _fail(meeting_id: str):
        raise ZoomClientError("Simulated Zoom outage")

    monkeypatch.setattr(provider, "list_participants", _fail)

    resp = await client.post(
        "/attendance/sessions/session-1/reconcile",
        json={"meeting_uuid": "85746065432"},
    )

    assert resp.status_code == HTTPStatus.BAD_GATEWAY


@pytest.mark.asyncio
async def test_reconcile_while_session_busy_is_409(app, client, db, meeting):
    await seed_directory(db)

    async with app.state.session_locks.hold("session-1"):
        busy = await client.post(
            "/attendance/sessions/session-1/reconcile",
            json={"meeting_uuid": "85746065432"},
        )
        other = await client.post(
            "/attendance/sessions/session-2/reconcile",
            json={"meeting_uuid": "85746065432", "duration_minutes": 60},
        )

    assert busy.status_code == HTTPStatus.CONFLICT
    assert other.status_code == HTTPStatus.OK
    assert meeting.list_calls == 1
    assert not app.state.session_locks.is_locked("session-1")


@pytest.mark.asyncio
async def test_import_endpoint_records_import_log(client, db, meeting):
    await seed_directory(db)

    resp = await client.post(
        "/attendance/import",
        json={
            "session_id": "session-1",
            "meeting_uuid": "85746065432",
            "imported_by": "admin-1",
        },
    )

    assert resp.status_code == HTTPStatus.OK
    assert resp.json() == {
        "success": True,
        "participants_imported": 2,
        "participants_skipped": 1,
        "error": None,
    }
    logs = (await db.execute(select(ZoomImportLog))).scalars().all()
    assert [log.status for log in logs] == ["completed"]


@pytest.mark.asyncio
async def test_import_endpoint_reports_failure_in_body(client, meeting):
    resp = await client.post(
        "/attendance/import",
        json={"session_id": "session-unknown", "meeting_uuid": "85746065432"},
    )

    assert resp.status_code == HTTPStatus.OK
    assert resp.json()["success"] is False
    assert resp.json()["error"]


@pytest.mark.asyncio
async def test_preview_endpoint(client, db, meeting):
    await seed_directory(db)
    await client.post(
        "/attendance/sessions/session-1/reconcile",
        json={"meeting_uuid": "85746065432"},
    )

    resp = await client.get("/attendance/sessions/session-1/preview")

    assert resp.status_code == HTTPStatus.OK
    data = resp.json()
    assert [m["name"] for m in data["matched"]] == ["Grace Hopper", "Ada Lovelace"]
    assert [u["zoom_email"] for u in data["unmatched"]] == ["iPhone"]
    assert data["summary"] == {"total": 3, "matched": 2, "unmatched": 1, "avg_percentage": 72}


@pytest.mark.asyncio
async def test_alias_lifecycle_rematches_existing_attendance(client, db, provider):
    """
    A student joined with an unregistered address; registering it as an alias
    links the already stored record to them.
    """
    await seed_directory(db)
    provider.records = [record("p1", 0, 60, email="grace.work@example.com")]
    await client.post(
        "/attendance/sessions/session-1/reconcile",
        json={"meeting_uuid": "85746065432"},
    )

    unmatched = (await client.get("/attendance/aliases/unmatched")).json()
    assert [u["email"] for u in unmatched] == ["grace.work@example.com"]
    assert unmatched[0]["sessions"][0]["title"] == "Week 1 Live"

    created = await client.post(
        "/attendance/aliases",
        json={"user_id": "user-grace", "alias_email": "Grace.Work@example.com"},
    )
    assert created.status_code == HTTPStatus.CREATED
    body = created.json()
    assert body["alias"]["alias_email"] == "grace.work@example.com"
    assert body["rematched_records"] == 1

    assert (await client.get("/attendance/aliases/unmatched")).json() == []
    rows = (await client.get("/attendance/sessions/session-1")).json()
    assert rows[0]["user_id"] == "user-grace"

    listed = (await client.get("/attendance/aliases", params={"user_id": "user-grace"})).json()
    assert [a["alias_email"] for a in listed] == ["grace.work@example.com"]

    deleted = await client.delete(f"/attendance/aliases/{body['alias']['id']}")
    assert deleted.status_code == HTTPStatus.NO_CONTENT
    missing = await client.delete(f"/attendance/aliases/{body['alias']['id']}")
    assert missing.status_code == HTTPStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_alias_create_errors(client, db):
    await seed_directory(db)

    unknown_user = await client.post(
        "/attendance/aliases",
        json={"user_id": "user-missing", "alias_email": "x@example.com"},
    )
    duplicate = await client.post(
        "/attendance/aliases",
        json={"user_id": "user-grace", "alias_email": "ada.personal@example.org"},
    )
    blank = await client.post(
        "/attendance/aliases",
        json={"user_id": "user-grace", "alias_email": "     "},
    )
    someone_elses_primary = await client.post(
        "/attendance/aliases",
        json={"user_id": "user-ada", "alias_email": "grace@example.com"},
    )

    assert unknown_user.status_code == HTTPStatus.NOT_FOUND
    assert duplicate.status_code == HTTPStatus.CONFLICT
    assert blank.status_code == HTTPStatus.BAD_REQUEST
    assert someone_elses_primary.status_code == HTTPStatus.CONFLICT
