"""
Channel adapter contract shared by email and SMS delivery.

An adapter decides whether a recipient is suppressed and hands a rendered
message to its provider. Provider errors surface as DeliveryFailure.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from spinecheck.models.assessment import Assessment
from spinecheck.services.checkin_renderer import OutboundMessage


@dataclass(frozen=True)
class DeliveryResult:
    provider: str
    provider_message_id: str | None = None


class ChannelAdapter(Protocol):
    channel: str

    async def suppression_reason(self, session: AsyncSession, assessment: Assessment) -> str | None:
        """Non-empty reason when this recipient must not be contacted on this channel."""
        ...

    async def send(self, assessment: Assessment, message: OutboundMessage) -> DeliveryResult:
        ...


def recipient_hash(value: str | None) -> str:
    """Short stable digest for logs; contact details never appear in clear."""
    if not value:
        return "-"
    return hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()[:12]


def get_channel_adapters() -> dict[str, ChannelAdapter]:
    from spinecheck.services.email_channel import EmailChannel
    from spinecheck.services.sms_channel import SmsChannel

    email, sms = EmailChannel(), SmsChannel()
    return {email.channel: email, sms.channel: sms}
