"""Tests for email and SMS channel adapters against mocked provider transports."""

import json
from unittest.mock import patch

import httpx
import pytest

from spinecheck.config import settings
from spinecheck.core.errors import DeliveryFailure
from spinecheck.models.assessment import Assessment
from spinecheck.services.channels import get_channel_adapters, recipient_hash
from spinecheck.services.checkin_renderer import OutboundMessage
from spinecheck.services.email_channel import EmailChannel, build_sendgrid_payload
from spinecheck.services.sms_channel import SmsChannel

EMAIL = OutboundMessage(channel="email", subject="Quick check-in (Day 3)", text="plain body", html="<p>html body</p>")
SMS = OutboundMessage(channel="sms", subject=None, text="Day 3 check-in")


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_recipient_hash_is_stable_and_opaque():
    assert recipient_hash("A@B.com ") == recipient_hash("a@b.com")
    assert "a@b.com" not in recipient_hash("a@b.com")
    assert len(recipient_hash("a@b.com")) == 12
    assert recipient_hash(None) == "-"


def test_channel_registry():
    adapters = get_channel_adapters()
    assert set(adapters) == {"email", "sms"}


def test_sendgrid_payload():
    payload = build_sendgrid_payload("p@example.com", EMAIL)
    assert payload["personalizations"] == [{"to": [{"email": "p@example.com"}]}]
    assert payload["subject"] == "Quick check-in (Day 3)"
    assert [c["type"] for c in payload["content"]] == ["text/plain", "text/html"]


@pytest.mark.asyncio
async def test_email_send_success():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202, headers={"X-Message-Id": "sg-1"})

    async with _client(handler) as client:
        with patch.object(settings, "sendgrid_api_key", "SG.key"):
            result = await EmailChannel(client=client).send(Assessment(id="a1", email="p@example.com"), EMAIL)
    assert (result.provider, result.provider_message_id) == ("sendgrid", "sg-1")
    assert seen[0].headers["Authorization"] == "Bearer SG.key"
    assert json.loads(seen[0].content)["personalizations"][0]["to"][0]["email"] == "p@example.com"


@pytest.mark.asyncio
@pytest.mark.parametrize("status,retryable", [(500, True), (429, True), (400, False), (403, False)])
async def test_email_http_errors(status, retryable):
    async with _client(lambda request: httpx.Response(status, text="nope")) as client:
        with patch.object(settings, "sendgrid_api_key", "SG.key"):
            with pytest.raises(DeliveryFailure) as exc:
                await EmailChannel(client=client).send(Assessment(id="a1", email="p@example.com"), EMAIL)
    assert exc.value.retryable is retryable
    assert exc.value.provider == "sendgrid"


@pytest.mark.asyncio
async def test_email_timeout_is_retryable():
    def handler(request):
        raise httpx.ConnectTimeout("slow", request=request)

    async with _client(handler) as client:
        with patch.object(settings, "sendgrid_api_key", "SG.key"):
            with pytest.raises(DeliveryFailure) as exc:
                await EmailChannel(client=client).send(Assessment(id="a1", email="p@example.com"), EMAIL)
    assert exc.value.retryable is True


@pytest.mark.asyncio
async def test_email_console_fallback_without_key():
    with patch.object(settings, "sendgrid_api_key", ""), patch.object(settings, "app_env", "development"):
        result = await EmailChannel().send(Assessment(id="a1", email="p@example.com"), EMAIL)
    assert result.provider == "console"


@pytest.mark.asyncio
async def test_email_missing_key_in_production_is_terminal():
    with patch.object(settings, "sendgrid_api_key", ""), patch.object(settings, "app_env", "production"):
        with pytest.raises(DeliveryFailure) as exc:
            await EmailChannel().send(Assessment(id="a1", email="p@example.com"), EMAIL)
    assert exc.value.retryable is False


@pytest.mark.asyncio
async def test_email_suppression_without_address():
    assert await EmailChannel().suppression_reason(None, Assessment(id="a1", email="  ")) == "no_email"
    assert await EmailChannel().suppression_reason(None, Assessment(id="a1", email="p@example.com")) is None


@pytest.mark.asyncio
async def test_sms_send_success():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "sms-9"})

    async with _client(handler) as client:
        with patch.object(settings, "sms_webhook_url", "https://sms.test/send"), patch.object(
            settings, "sms_webhook_token", "gw-token"
        ):
            result = await SmsChannel(client=client).send(Assessment(id="a1", phone_number="(555) 123-4567"), SMS)
    assert result.provider_message_id == "sms-9"
    assert json.loads(seen[0].content) == {"to": "+15551234567", "body": "Day 3 check-in"}
    assert seen[0].headers["Authorization"] == "Bearer gw-token"


@pytest.mark.asyncio
async def test_sms_without_gateway_is_terminal():
    with patch.object(settings, "sms_webhook_url", ""):
        with pytest.raises(DeliveryFailure) as exc:
            await SmsChannel().send(Assessment(id="a1", phone_number="5551234567"), SMS)
    assert exc.value.retryable is False


@pytest.mark.asyncio
async def test_sms_gateway_5xx_is_retryable():
    async with _client(lambda request: httpx.Response(503)) as client:
        with patch.object(settings, "sms_webhook_url", "https://sms.test/send"):
            with pytest.raises(DeliveryFailure) as exc:
                await SmsChannel(client=client).send(Assessment(id="a1", phone_number="5551234567"), SMS)
    assert exc.value.retryable is True


@pytest.mark.asyncio
async def test_sms_suppression_reasons(clean_db):
    from spinecheck.db.session import async_session_maker

    sms = SmsChannel()
    async with async_session_maker() as session:
        assert await sms.suppression_reason(session, Assessment(id="a", phone_number="12", sms_opt_in=True)) == "no_phone"
        assert (
            await sms.suppression_reason(
                session, Assessment(id="a", phone_number="5551234567", sms_opt_in=True, sms_opted_out=True)
            )
            == "opted_out"
        )
        assert (
            await sms.suppression_reason(
                session, Assessment(id="a", phone_number="5551234567", sms_opt_in=False, sms_opted_out=False)
            )
            == "no_consent"
        )
        assert (
            await sms.suppression_reason(
                session, Assessment(id="a", phone_number="5551234567", sms_opt_in=True, sms_opted_out=False)
            )
            is None
        )
