"""Tests for Stripe checkout handling: attribution, tier upgrades, first-purchase scheduling."""

from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from spinecheck.config import settings
from spinecheck.db.session import async_session_maker
from spinecheck.models.assessment import Assessment
from spinecheck.models.check_in_event import CheckInEvent
from spinecheck.models.revenue_event import RevenueEvent
from spinecheck.services.stripe_service import handle_checkout_session_completed


def _checkout(session_id="cs_test_1", **metadata) -> dict:
    return {"id": session_id, "amount_total": 2000, "metadata": metadata}


async def _handle(stripe_session: dict):
    async with async_session_maker() as session:
        return await handle_checkout_session_completed(session, stripe_session)


async def _count(model, *where) -> int:
    async with async_session_maker() as session:
        q = select(func.count()).select_from(model)
        for clause in where:
            q = q.where(clause)
        return (await session.execute(q)).scalar()


@pytest.mark.asyncio
async def test_first_purchase_stamps_delivery_and_schedules(make_assessment):
    aid = await make_assessment(delivered_days_ago=None)
    event = await _handle(_checkout(assessmentId=aid, tierName="enhanced"))
    assert event is not None
    assert (event.tier, event.checkin_day, event.amount_cents) == ("enhanced", None, 2000)

    async with async_session_maker() as session:
        assessment = await session.get(Assessment, aid)
    assert assessment.tier == "enhanced"
    assert assessment.guide_delivered_at is not None
    assert await _count(CheckInEvent, CheckInEvent.assessment_id == aid) == 3


@pytest.mark.asyncio
async def test_checkin_attributed_upgrade(make_assessment):
    aid = await make_assessment(tier="enhanced")
    event = await _handle(_checkout(assessment_id=aid, tier="monograph", source="checkin_d7"))
    assert (event.checkin_day, event.source) == (7, "checkin_d7")
    async with async_session_maker() as session:
        assert (await session.get(Assessment, aid)).tier == "monograph"
    # upgrades from a check-in link do not reschedule check-ins
    assert await _count(CheckInEvent) == 0


@pytest.mark.asyncio
async def test_tier_is_never_downgraded(make_assessment):
    aid = await make_assessment(tier="monograph")
    await _handle(_checkout(assessment_id=aid, tier="enhanced", source="checkin_d3"))
    async with async_session_maker() as session:
        assert (await session.get(Assessment, aid)).tier == "monograph"


@pytest.mark.asyncio
async def test_duplicate_session_is_ignored(make_assessment):
    aid = await make_assessment()
    assert await _handle(_checkout(assessment_id=aid, tier="enhanced", source="checkin_d3")) is not None
    assert await _handle(_checkout(assessment_id=aid, tier="enhanced", source="checkin_d3")) is None
    assert await _count(RevenueEvent) == 1


@pytest.mark.asyncio
async def test_unknown_assessment_still_records_revenue(clean_db):
    event = await _handle(_checkout(assessment_id="ghost", tier="enhanced", source="checkin_d14"))
    assert event.assessment_id is None
    assert event.checkin_day == 14


@pytest.mark.asyncio
async def test_webhook_requires_signature(client, clean_db):
    resp = await client.post("/api/v1/billing/webhook", content=b"{}")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(client, clean_db):
    with patch.object(settings, "stripe_webhook_secret", "whsec_test"):
        resp = await client.post(
            "/api/v1/billing/webhook",
            content=b'{"type": "checkout.session.completed"}',
            headers={"stripe-signature": "t=1,v1=deadbeef"},
        )
    assert resp.status_code == 400
