"""Tests for check-in enqueue: schedule, channel choice, idempotency, skip reasons."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import select

from spinecheck.config import settings
from spinecheck.core.errors import AssessmentNotFound
from spinecheck.db.base import as_utc
from spinecheck.db.session import async_session_maker
from spinecheck.models.assessment import Assessment
from spinecheck.models.check_in_event import CheckInEvent
from spinecheck.services.checkin_enqueue import (
    choose_channel,
    compute_due_at,
    enqueue_checkins_for_assessment,
    template_key,
)


async def _enqueue(assessment_id: str):
    async with async_session_maker() as session:
        result = await enqueue_checkins_for_assessment(session, assessment_id)
        await session.commit()
        return result


async def _events(assessment_id: str) -> list[CheckInEvent]:
    async with async_session_maker() as session:
        r = await session.execute(
            select(CheckInEvent).where(CheckInEvent.assessment_id == assessment_id).order_by(CheckInEvent.day)
        )
        return list(r.scalars().all())


def test_compute_due_at():
    base = datetime(2026, 1, 1, 8, 30, tzinfo=timezone.utc)
    assert compute_due_at(base, 3) == datetime(2026, 1, 4, 8, 30, tzinfo=timezone.utc)
    assert compute_due_at(base, 14, due_hour_utc=15) == datetime(2026, 1, 15, 15, 0, tzinfo=timezone.utc)
    # naive values read back from SQLite are treated as UTC
    assert compute_due_at(datetime(2026, 1, 1), 7) == datetime(2026, 1, 8, tzinfo=timezone.utc)


def test_template_key():
    assert template_key("email", 3) == "checkin.email.day3"
    assert template_key("sms", 14) == "checkin.sms.day14"


def test_choose_channel():
    assert choose_channel(Assessment(email="a@b.com", phone_number="5551234567", sms_opt_in=True)) == "email"
    assert choose_channel(Assessment(email=None, phone_number="5551234567", sms_opt_in=True, sms_opted_out=False)) == "sms"
    assert choose_channel(Assessment(email=" ", phone_number="5551234567", sms_opt_in=False, sms_opted_out=False)) is None
    assert choose_channel(Assessment(email=None, phone_number="5551234567", sms_opt_in=True, sms_opted_out=True)) is None
    assert choose_channel(Assessment(email=None, phone_number="123", sms_opt_in=True, sms_opted_out=False)) is None


@pytest.mark.asyncio
async def test_enqueue_creates_three_events(make_assessment):
    aid = await make_assessment(delivered_days_ago=1)
    result = await _enqueue(aid)
    assert (result.queued, result.skipped, result.reason) == (3, 0, None)

    events = await _events(aid)
    assert [e.day for e in events] == [3, 7, 14]
    assert {e.status for e in events} == {"pending"}
    assert {e.channel for e in events} == {"email"}
    assert events[0].template_key == "checkin.email.day3"
    assert all(e.attempts == 0 for e in events)

    async with async_session_maker() as session:
        delivered = as_utc((await session.get(Assessment, aid)).guide_delivered_at)
    for e in events:
        assert abs(as_utc(e.due_at) - (delivered + timedelta(days=e.day))) < timedelta(seconds=1)


@pytest.mark.asyncio
async def test_enqueue_is_idempotent(make_assessment):
    aid = await make_assessment()
    await _enqueue(aid)
    again = await _enqueue(aid)
    assert (again.queued, again.skipped) == (0, 3)
    assert len(await _events(aid)) == 3


@pytest.mark.asyncio
async def test_enqueue_fills_missing_days_only(make_assessment):
    aid = await make_assessment()
    await _enqueue(aid)
    async with async_session_maker() as session:
        event = (
            await session.execute(select(CheckInEvent).where(CheckInEvent.assessment_id == aid, CheckInEvent.day == 7))
        ).scalar_one()
        await session.delete(event)
        await session.commit()
    result = await _enqueue(aid)
    assert (result.queued, result.skipped) == (1, 2)


@pytest.mark.asyncio
async def test_enqueue_sms_channel(make_assessment):
    aid = await make_assessment(email=None, phone_number="(555) 123-4567", sms_opt_in=True)
    await _enqueue(aid)
    events = await _events(aid)
    assert {e.channel for e in events} == {"sms"}
    assert events[2].template_key == "checkin.sms.day14"


@pytest.mark.asyncio
async def test_enqueue_no_contact(make_assessment):
    aid = await make_assessment(email=None, phone_number="5551234567", sms_opt_in=False)
    result = await _enqueue(aid)
    assert (result.queued, result.reason) == (0, "no_contact")
    assert await _events(aid) == []


@pytest.mark.asyncio
async def test_enqueue_urgent_guide_type(make_assessment):
    aid = await make_assessment(guide_type="urgent_symptoms")
    result = await _enqueue(aid)
    assert (result.queued, result.reason) == (0, "urgent_symptoms")
    assert await _events(aid) == []


@pytest.mark.asyncio
async def test_enqueue_disabled(make_assessment):
    aid = await make_assessment()
    with patch.object(settings, "checkins_enabled", False):
        result = await _enqueue(aid)
    assert result.reason == "disabled"
    assert await _events(aid) == []


@pytest.mark.asyncio
async def test_enqueue_unknown_assessment(clean_db):
    async with async_session_maker() as session:
        with pytest.raises(AssessmentNotFound):
            await enqueue_checkins_for_assessment(session, "missing")


@pytest.mark.asyncio
async def test_enqueue_aligns_due_hour(make_assessment):
    aid = await make_assessment()
    with patch.object(settings, "checkins_due_hour_utc", 15):
        await _enqueue(aid)
    for e in await _events(aid):
        due = as_utc(e.due_at)
        assert (due.hour, due.minute) == (15, 0)


@pytest.mark.asyncio
async def test_concurrent_enqueue_creates_each_day_once(make_assessment):
    aid = await make_assessment()
    results = await asyncio.gather(_enqueue(aid), _enqueue(aid))
    assert sum(r.queued for r in results) == 3
    assert sum(r.skipped for r in results) == 3
    assert [e.day for e in await _events(aid)] == [3, 7, 14]
