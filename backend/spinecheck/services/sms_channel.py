"""SMS delivery through an operator-configured HTTP gateway. Opt-outs are enforced here."""

from __future__ import annotations

import logging

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from spinecheck.config import settings
from spinecheck.core.errors import DeliveryFailure
from spinecheck.models.assessment import Assessment
from spinecheck.models.check_in_event import CHANNEL_SMS
from spinecheck.services.channels import DeliveryResult, recipient_hash
from spinecheck.services.checkin_renderer import OutboundMessage
from spinecheck.services.http_client import get_http_client
from spinecheck.services.sms_opt_out import is_opted_out, normalize_phone

logger = logging.getLogger(__name__)

PROVIDER = "sms_webhook"


class SmsChannel:
    channel = CHANNEL_SMS

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    async def suppression_reason(self, session: AsyncSession, assessment: Assessment) -> str | None:
        if normalize_phone(assessment.phone_number) is None:
            return "no_phone"
        if assessment.sms_opted_out or await is_opted_out(session, assessment.phone_number):
            return "opted_out"
        if not assessment.sms_opt_in:
            return "no_consent"
        return None

    async def send(self, assessment: Assessment, message: OutboundMessage) -> DeliveryResult:
        to = normalize_phone(assessment.phone_number)
        if not settings.sms_webhook_url:
            raise DeliveryFailure("SMS_WEBHOOK_URL not configured", retryable=False, provider=PROVIDER)

        headers = {}
        if settings.sms_webhook_token:
            headers["Authorization"] = f"Bearer {settings.sms_webhook_token}"
        client = self._client or get_http_client()
        try:
            r = await client.post(settings.sms_webhook_url, json={"to": to, "body": message.text}, headers=headers)
            r.raise_for_status()
        except httpx.TimeoutException as e:
            raise DeliveryFailure(f"SMS gateway timeout: {e}", provider=PROVIDER) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise DeliveryFailure(
                f"SMS gateway HTTP {status}", retryable=status == 429 or status >= 500, provider=PROVIDER
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryFailure(f"SMS gateway request failed: {e}", provider=PROVIDER) from e

        message_id = None
        try:
            data = r.json()
            if isinstance(data, dict):
                message_id = data.get("id") or data.get("sid")
        except ValueError:
            pass
        logger.info("SMS sent to=%s provider_id=%s", recipient_hash(to), message_id)
        return DeliveryResult(provider=PROVIDER, provider_message_id=message_id)
