"""Stripe webhooks: purchase attribution, tier upgrades and check-in scheduling after a guide purchase."""

from __future__ import annotations

import logging
from typing import Any

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from spinecheck.config import settings
from spinecheck.core.errors import CheckinError
from spinecheck.db.base import utcnow
from spinecheck.models.assessment import Assessment
from spinecheck.models.revenue_event import RevenueEvent
from spinecheck.schemas.checkins import Tier, parse_tier
from spinecheck.services.attribution import parse_source_tag
from spinecheck.services.checkin_enqueue import enqueue_checkins_for_assessment

logger = logging.getLogger(__name__)

stripe.api_key = settings.stripe_secret_key

_TIER_RANK = {Tier.FREE: 0, Tier.ENHANCED: 1, Tier.MONOGRAPH: 2}


def construct_webhook_event(payload: bytes, sig_header: str):
    """Verify and construct Stripe event. Raises on invalid signature."""
    return stripe.Webhook.construct_event(
        payload, sig_header, settings.stripe_webhook_secret
    )


def _metadata(stripe_session: Any) -> dict:
    md = stripe_session.get("metadata") or {}
    return {k: v for k, v in dict(md).items() if v is not None}


async def handle_checkout_session_completed(
    session: AsyncSession, stripe_session: Any
) -> RevenueEvent | None:
    """
    Record the purchase once per Stripe session, upgrade the assessment tier, and for a
    first guide purchase (not attributed to a check-in) stamp delivery and queue check-ins.
    """
    session_id = stripe_session.get("id")
    md = _metadata(stripe_session)
    assessment_id = md.get("assessment_id") or md.get("assessmentId")
    if not session_id:
        return None

    r = await session.execute(select(RevenueEvent).where(RevenueEvent.stripe_session_id == session_id))
    if r.scalar_one_or_none() is not None:
        logger.info("Stripe: session %s already recorded", session_id)
        return None

    tier = parse_tier(md.get("tier") or md.get("tierName"))
    source = md.get("source")
    checkin_day = parse_source_tag(source)
    assessment = await session.get(Assessment, assessment_id) if assessment_id else None

    event = RevenueEvent(
        assessment_id=assessment.id if assessment else None,
        stripe_session_id=session_id,
        tier=tier.value,
        amount_cents=int(stripe_session.get("amount_total") or 0),
        source=source,
        checkin_day=checkin_day,
    )
    session.add(event)
    if assessment is not None and _TIER_RANK[tier] > _TIER_RANK[parse_tier(assessment.tier)]:
        assessment.tier = tier.value
    first_delivery = assessment is not None and checkin_day is None and assessment.guide_delivered_at is None
    if first_delivery:
        assessment.guide_delivered_at = utcnow()
    await session.commit()
    logger.info("Stripe: recorded %s purchase source=%s checkin_day=%s", tier.value, source, checkin_day)

    if first_delivery:
        try:
            await enqueue_checkins_for_assessment(session, assessment.id)
            await session.commit()
        except CheckinError as e:
            logger.warning("Stripe: check-in enqueue failed for assessment %s: %s", assessment.id, e)
    return event


async def handle_webhook(session: AsyncSession, payload: bytes, sig_header: str) -> None:
    """Dispatch Stripe webhook event to handlers."""
    event = construct_webhook_event(payload, sig_header)
    if event["type"] == "checkout.session.completed":
        await handle_checkout_session_completed(session, event["data"]["object"])
    elif event["type"] in ("checkout.session.expired", "checkout.session.async_payment_failed"):
        logger.info("Stripe: checkout %s (%s)", event["data"]["object"].get("id"), event["type"])
