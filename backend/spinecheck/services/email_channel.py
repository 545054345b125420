"""Email delivery through the SendGrid v3 mail API, with a log-only fallback outside production."""

from __future__ import annotations

import logging

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from spinecheck.config import settings
from spinecheck.core.errors import DeliveryFailure
from spinecheck.models.assessment import Assessment
from spinecheck.models.check_in_event import CHANNEL_EMAIL
from spinecheck.services.channels import DeliveryResult, recipient_hash
from spinecheck.services.checkin_renderer import OutboundMessage
from spinecheck.services.http_client import get_http_client

logger = logging.getLogger(__name__)

PROVIDER = "sendgrid"


def build_sendgrid_payload(to_email: str, message: OutboundMessage) -> dict:
    content = [{"type": "text/plain", "value": message.text}]
    if message.html:
        content.append({"type": "text/html", "value": message.html})
    return {
        "personalizations": [{"to": [{"email": to_email}]}],
        "from": {"email": settings.email_from, "name": settings.email_from_name},
        "subject": message.subject or "",
        "content": content,
    }


class EmailChannel:
    channel = CHANNEL_EMAIL

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    async def suppression_reason(self, session: AsyncSession, assessment: Assessment) -> str | None:
        if not (assessment.email or "").strip():
            return "no_email"
        return None

    async def send(self, assessment: Assessment, message: OutboundMessage) -> DeliveryResult:
        to_email = (assessment.email or "").strip()
        if not settings.sendgrid_api_key:
            if settings.app_env == "production":
                raise DeliveryFailure("SENDGRID_API_KEY not configured", retryable=False, provider=PROVIDER)
            logger.info(
                "Email (console fallback) to=%s subject=%r\n%s",
                recipient_hash(to_email),
                message.subject,
                message.text,
            )
            return DeliveryResult(provider="console")

        client = self._client or get_http_client()
        try:
            r = await client.post(
                settings.sendgrid_api_url,
                json=build_sendgrid_payload(to_email, message),
                headers={"Authorization": f"Bearer {settings.sendgrid_api_key}"},
            )
            r.raise_for_status()
        except httpx.TimeoutException as e:
            raise DeliveryFailure(f"SendGrid timeout: {e}", provider=PROVIDER) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            retryable = status == 429 or status >= 500
            raise DeliveryFailure(
                f"SendGrid HTTP {status}: {e.response.text[:200]}", retryable=retryable, provider=PROVIDER
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryFailure(f"SendGrid request failed: {e}", provider=PROVIDER) from e

        message_id = r.headers.get("X-Message-Id")
        logger.info("Email sent to=%s provider_id=%s", recipient_hash(to_email), message_id)
        return DeliveryResult(provider=PROVIDER, provider_message_id=message_id)
