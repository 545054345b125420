"""API tests: enqueue, dispatch trigger, note intake and the reply landing page."""

from unittest.mock import patch

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from spinecheck.config import settings
from spinecheck.db.session import async_session_maker
from spinecheck.models.audit_log import AuditLog
from spinecheck.models.check_in_alert import CheckInAlert
from spinecheck.models.check_in_event import CheckInEvent
from spinecheck.models.check_in_response import CheckInResponse
from spinecheck.services import reply_token
from spinecheck.services.checkin_enqueue import enqueue_checkins_for_assessment
from spinecheck.services.checkin_intake import SAFETY_MESSAGE


def _token(assessment_id="assessment-123", day=7, value="same") -> str:
    return reply_token.sign({"assessment_id": assessment_id, "day": day, "value": value})


async def _responses() -> list[CheckInResponse]:
    async with async_session_maker() as session:
        return list((await session.execute(select(CheckInResponse))).scalars().all())


@pytest.mark.asyncio
async def test_enqueue_requires_operator(client: AsyncClient, make_assessment):
    aid = await make_assessment()
    resp = await client.post("/api/v1/checkins/enqueue", json={"assessment_id": aid})
    assert resp.status_code == 401
    resp = await client.post(
        "/api/v1/checkins/enqueue", json={"assessment_id": aid}, headers={"X-Admin-Password": "wrong"}
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_enqueue_with_jwt(client: AsyncClient, auth_headers, operator_user, make_assessment):
    aid = await make_assessment()
    resp = await client.post("/api/v1/checkins/enqueue", json={"assessment_id": aid}, headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json() == {"queued": 3, "skipped": 0, "reason": None}

    resp = await client.post("/api/v1/checkins/enqueue", json={"assessment_id": aid}, headers=auth_headers)
    assert resp.json() == {"queued": 0, "skipped": 3, "reason": None}

    async with async_session_maker() as session:
        logs = (await session.execute(select(AuditLog).where(AuditLog.action == "checkins_enqueue"))).scalars().all()
    assert len(logs) == 2
    assert logs[0].user_id == operator_user[0]
    assert logs[0].resource_id == aid


@pytest.mark.asyncio
async def test_enqueue_with_admin_password(client: AsyncClient, admin_password_headers, make_assessment):
    aid = await make_assessment(guide_type="urgent_symptoms")
    resp = await client.post("/api/v1/checkins/enqueue", json={"assessment_id": aid}, headers=admin_password_headers)
    assert resp.status_code == 200
    assert resp.json() == {"queued": 0, "skipped": 0, "reason": "urgent_symptoms"}


@pytest.mark.asyncio
async def test_enqueue_unknown_assessment(client: AsyncClient, admin_password_headers, clean_db):
    resp = await client.post(
        "/api/v1/checkins/enqueue", json={"assessment_id": "missing"}, headers=admin_password_headers
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_enqueue_validates_body(client: AsyncClient, admin_password_headers, clean_db):
    resp = await client.post("/api/v1/checkins/enqueue", json={}, headers=admin_password_headers)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_dispatch_requires_token(client: AsyncClient, clean_db):
    resp = await client.post("/api/v1/checkins/dispatch")
    assert resp.status_code == 401
    resp = await client.post("/api/v1/checkins/dispatch", headers={"X-Dispatch-Token": "wrong"})
    assert resp.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", ["0", "-5"])
async def test_dispatch_rejects_non_positive_limit(client: AsyncClient, dispatch_headers, make_assessment, limit):
    aid = await make_assessment()
    async with async_session_maker() as session:
        await enqueue_checkins_for_assessment(session, aid)
        await session.commit()
    resp = await client.post(f"/api/v1/checkins/dispatch?limit={limit}", headers=dispatch_headers)
    assert resp.status_code == 422
    async with async_session_maker() as session:
        statuses = (await session.execute(select(CheckInEvent.status))).scalars().all()
    assert sorted(statuses) == ["pending", "pending", "pending"]


@pytest.mark.asyncio
async def test_dispatch_sends_via_console_fallback(client: AsyncClient, dispatch_headers, make_assessment):
    aid = await make_assessment()
    async with async_session_maker() as session:
        await enqueue_checkins_for_assessment(session, aid)
        await session.commit()

    resp = await client.post("/api/v1/checkins/dispatch?dryRun=true", headers=dispatch_headers)
    assert resp.status_code == 200
    data = resp.json()
    assert (data["dry_run"], data["selected"], len(data["would_send"])) == (True, 3, 3)

    resp = await client.post(
        "/api/v1/checkins/dispatch?limit=2", headers={"Authorization": f"Bearer {dispatch_headers['X-Dispatch-Token']}"}
    )
    data = resp.json()
    assert (data["selected"], data["sent"], data["failed"]) == (2, 2, 0)
    async with async_session_maker() as session:
        statuses = (
            await session.execute(select(CheckInEvent.status).where(CheckInEvent.assessment_id == aid))
        ).scalars().all()
    assert sorted(statuses) == ["pending", "sent", "sent"]


@pytest.mark.asyncio
async def test_note_with_invalid_token(client: AsyncClient, make_assessment):
    await make_assessment()
    resp = await client.post("/api/v1/checkins/note", json={"token": "bad.token", "note": "hello"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "invalid_token"
    assert await _responses() == []


@pytest.mark.asyncio
async def test_note_ok(client: AsyncClient, make_assessment):
    aid = await make_assessment()
    resp = await client.post("/api/v1/checkins/note", json={"token": _token(aid), "note": "Feeling looser today"})
    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "red_flag": False,
        "message": "Thanks for your note; it has been logged successfully.",
    }


@pytest.mark.asyncio
async def test_note_red_flag_and_ignores_client_fields(client: AsyncClient, make_assessment):
    aid = await make_assessment()
    resp = await client.post(
        "/api/v1/checkins/note",
        json={
            "token": _token(aid, 14, "worse"),
            "note": "I have saddle numbness",
            "assessment_id": "someone-else",
            "day": 3,
            "value": "better",
        },
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["red_flag"] is True
    assert data["message"] == SAFETY_MESSAGE

    [stored] = await _responses()
    assert (stored.assessment_id, stored.day, stored.branch) == (aid, 14, "worse")
    assert "saddle" in stored.red_flags_matched


@pytest.mark.asyncio
async def test_note_with_malformed_alert_webhook_still_succeeds(client: AsyncClient, make_assessment):
    aid = await make_assessment()
    with patch.object(settings, "alert_webhook_url", "http://hooks.example.com:abc/alert"):
        resp = await client.post("/api/v1/checkins/note", json={"token": _token(aid), "note": "bladder issues"})
    assert resp.status_code == 200
    assert resp.json()["red_flag"] is True
    assert len(await _responses()) == 1
    async with async_session_maker() as session:
        statuses = (await session.execute(select(CheckInAlert.webhook_status))).scalars().all()
    assert statuses == ["failed"]


@pytest.mark.asyncio
async def test_landing_records_click_and_renders(client: AsyncClient, make_assessment):
    aid = await make_assessment(tier="monograph")
    resp = await client.get("/c/i", params={"token": _token(aid, 3, "better"), "source": "checkin_d3"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/html")
    assert "Great to hear!" in resp.text
    assert "View Your Comprehensive Guide" in resp.text
    assert f"/guide/{aid}?source=checkin_d3" in resp.text
    assert 'name="token"' in resp.text

    [stored] = await _responses()
    assert (stored.day, stored.branch, stored.note) == (3, "better", None)


@pytest.mark.asyncio
async def test_landing_invalid_token(client: AsyncClient, make_assessment):
    await make_assessment()
    resp = await client.get("/c/i", params={"token": "nope"})
    assert resp.status_code == 400
    assert "Oops!" in resp.text
    assert await _responses() == []


@pytest.mark.asyncio
async def test_landing_missing_token(client: AsyncClient, clean_db):
    resp = await client.get("/c/i")
    assert resp.status_code == 400
