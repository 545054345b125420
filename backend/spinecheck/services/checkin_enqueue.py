"""
Schedule day 3/7/14 check-ins for an assessment.

Idempotent per (assessment, day): days that already have a queue row are
counted as skipped. The unique constraint on (assessment_id, day) backs this
up when two enqueues race; the loser re-reads and skips.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from spinecheck.config import settings
from spinecheck.core.errors import AssessmentNotFound, PersistenceError
from spinecheck.db.base import as_utc, utcnow
from spinecheck.models.assessment import Assessment
from spinecheck.models.check_in_event import CHANNEL_EMAIL, CHANNEL_SMS, STATUS_PENDING, CheckInEvent
from spinecheck.schemas.checkins import CHECKIN_DAYS
from spinecheck.services.diagnosis import is_urgent_guide_type
from spinecheck.services.sms_opt_out import normalize_phone

logger = logging.getLogger(__name__)

REASON_DISABLED = "disabled"
REASON_URGENT = "urgent_symptoms"
REASON_NO_CONTACT = "no_contact"


@dataclass
class EnqueueResult:
    queued: int = 0
    skipped: int = 0
    reason: str | None = None


def template_key(channel: str, day: int) -> str:
    return f"checkin.{channel}.day{day}"


def choose_channel(assessment: Assessment) -> str | None:
    """Email when available, else SMS for consenting, not-opted-out numbers."""
    if (assessment.email or "").strip():
        return CHANNEL_EMAIL
    if assessment.sms_opt_in and not assessment.sms_opted_out and normalize_phone(assessment.phone_number):
        return CHANNEL_SMS
    return None


def compute_due_at(base: datetime, day: int, due_hour_utc: int | None = None) -> datetime:
    due = as_utc(base) + timedelta(days=day)
    if due_hour_utc is not None:
        due = due.replace(hour=due_hour_utc, minute=0, second=0, microsecond=0)
    return due


async def _existing_days(session: AsyncSession, assessment_id: str) -> set[int]:
    r = await session.execute(select(CheckInEvent.day).where(CheckInEvent.assessment_id == assessment_id))
    return {row[0] for row in r.all()}


async def _insert_missing_days(
    session: AsyncSession, assessment_id: str, channel: str, base: datetime
) -> EnqueueResult:
    result = EnqueueResult()
    existing = await _existing_days(session, assessment_id)
    for day in CHECKIN_DAYS:
        if day in existing:
            result.skipped += 1
            continue
        session.add(
            CheckInEvent(
                assessment_id=assessment_id,
                day=day,
                due_at=compute_due_at(base, day, settings.checkins_due_hour_utc),
                status=STATUS_PENDING,
                channel=channel,
                template_key=template_key(channel, day),
            )
        )
        result.queued += 1
    await session.flush()
    return result


async def enqueue_checkins_for_assessment(
    session: AsyncSession,
    assessment_id: str,
    *,
    now: datetime | None = None,
) -> EnqueueResult:
    """
    Queue the fixed check-in schedule relative to guide delivery.

    Raises AssessmentNotFound for an unknown id and PersistenceError when the
    write fails; either every missing day is queued or none is. The caller commits.
    """
    if not settings.checkins_enabled:
        return EnqueueResult(reason=REASON_DISABLED)

    try:
        assessment = await session.get(Assessment, assessment_id)
    except SQLAlchemyError as e:
        raise PersistenceError(f"Failed to load assessment {assessment_id}") from e
    if assessment is None:
        raise AssessmentNotFound(assessment_id)

    if is_urgent_guide_type(assessment.guide_type):
        logger.info("Enqueue: assessment %s has urgent guide type, no check-ins", assessment_id)
        return EnqueueResult(reason=REASON_URGENT)
    channel = choose_channel(assessment)
    if channel is None:
        logger.info("Enqueue: assessment %s has no usable contact", assessment_id)
        return EnqueueResult(reason=REASON_NO_CONTACT)

    base = assessment.guide_delivered_at or assessment.created_at or now or utcnow()
    try:
        try:
            result = await _insert_missing_days(session, assessment_id, channel, base)
        except IntegrityError:
            # Concurrent enqueue won the race for at least one day; re-read and skip those.
            await session.rollback()
            result = await _insert_missing_days(session, assessment_id, channel, base)
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error("Enqueue: persistence failure for assessment %s: %s", assessment_id, e)
        raise PersistenceError(f"Failed to enqueue check-ins for {assessment_id}") from e

    logger.info(
        "Enqueue: assessment=%s channel=%s queued=%s skipped=%s",
        assessment_id,
        channel,
        result.queued,
        result.skipped,
    )
    return result
