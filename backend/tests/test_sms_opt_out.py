"""Tests for phone normalization, the SMS opt-out store and the inbound STOP webhook."""

import pytest
from sqlalchemy import select

from spinecheck.db.session import async_session_maker
from spinecheck.models.assessment import Assessment
from spinecheck.models.sms_opt_out import SmsOptOut
from spinecheck.services.sms_opt_out import is_opted_out, is_stop_keyword, normalize_phone, process_sms_opt_out


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("+15551234567", "+15551234567"),
        ("15551234567", "+15551234567"),
        ("5551234567", "+15551234567"),
        ("(555) 123-4567", "+15551234567"),
        ("555.123.4567", "+15551234567"),
        ("+447911123456", "+447911123456"),
        ("12345", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def test_stop_keywords():
    assert is_stop_keyword(" stop ")
    assert is_stop_keyword("UNSUBSCRIBE")
    assert not is_stop_keyword("stop please")
    assert not is_stop_keyword(None)


@pytest.mark.asyncio
async def test_process_opt_out_flags_matching_assessments(make_assessment):
    aid = await make_assessment(email=None, phone_number="+15551234567", sms_opt_in=True)
    other = await make_assessment("other", email=None, phone_number="+15559999999", sms_opt_in=True)
    async with async_session_maker() as session:
        normalized = await process_sms_opt_out(session, "(555) 123-4567")
        await session.commit()
    assert normalized == "+15551234567"

    async with async_session_maker() as session:
        assert await is_opted_out(session, "555-123-4567") is True
        assert await is_opted_out(session, "+15559999999") is False
        assert (await session.get(Assessment, aid)).sms_opted_out is True
        assert (await session.get(Assessment, other)).sms_opted_out is False


@pytest.mark.asyncio
async def test_process_opt_out_is_idempotent(clean_db):
    for source in ("sms_stop", "admin"):
        async with async_session_maker() as session:
            await process_sms_opt_out(session, "5551234567", source=source)
            await session.commit()
    async with async_session_maker() as session:
        rows = (await session.execute(select(SmsOptOut))).scalars().all()
    assert len(rows) == 1
    assert rows[0].opt_out_source == "admin"


@pytest.mark.asyncio
async def test_process_opt_out_ignores_unparseable(clean_db):
    async with async_session_maker() as session:
        assert await process_sms_opt_out(session, "not-a-number") is None


@pytest.mark.asyncio
async def test_unsubscribe_webhook_stop(client, make_assessment):
    aid = await make_assessment(email=None, phone_number="+15551234567", sms_opt_in=True)
    resp = await client.post("/api/v1/sms/unsubscribe", data={"From": "+15551234567", "Body": "STOP"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/xml")
    assert "<Message>You have been unsubscribed" in resp.text
    async with async_session_maker() as session:
        assert (await session.get(Assessment, aid)).sms_opted_out is True
        assert await is_opted_out(session, "+15551234567") is True


@pytest.mark.asyncio
async def test_unsubscribe_webhook_ignores_other_messages(client, clean_db):
    resp = await client.post("/api/v1/sms/unsubscribe", data={"From": "+15551234567", "Body": "thanks!"})
    assert resp.status_code == 200
    assert "<Message>" not in resp.text
    async with async_session_maker() as session:
        assert await is_opted_out(session, "+15551234567") is False
