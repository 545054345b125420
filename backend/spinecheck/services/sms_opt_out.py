"""SMS opt-out store: STOP keyword handling and suppression lookups keyed by E.164 phone."""

import logging
import re

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from spinecheck.db.base import utcnow
from spinecheck.models.assessment import Assessment
from spinecheck.models.sms_opt_out import SmsOptOut

logger = logging.getLogger(__name__)

STOP_KEYWORDS = frozenset({"STOP", "STOPALL", "UNSUBSCRIBE", "CANCEL", "END", "QUIT"})


def normalize_phone(phone: str | None, default_country: str = "1") -> str | None:
    """
    Normalize to E.164 (+1XXXXXXXXXX for US). Returns None when the input cannot be parsed.

    Accepts +15551234567, 15551234567, 5551234567, (555) 123-4567, 555.123.4567.
    """
    if not phone or not phone.strip():
        return None
    phone = phone.strip()
    digits = re.sub(r"[^\d]", "", phone)
    if len(digits) == 10:
        return f"+{default_country}{digits}"
    if len(digits) == 11 and digits.startswith(default_country):
        return f"+{digits}"
    if len(digits) >= 10 and phone.startswith("+"):
        return f"+{digits}"
    return None


def is_stop_keyword(body: str | None) -> bool:
    return (body or "").strip().upper() in STOP_KEYWORDS


async def is_opted_out(session: AsyncSession, phone: str | None) -> bool:
    normalized = normalize_phone(phone)
    if normalized is None:
        return False
    r = await session.execute(select(SmsOptOut.phone_number).where(SmsOptOut.phone_number == normalized))
    return r.scalar_one_or_none() is not None


async def process_sms_opt_out(session: AsyncSession, phone: str, source: str = "sms_stop") -> str | None:
    """
    Record an opt-out and flag matching assessments. Idempotent: a repeat STOP
    refreshes opted_out_at. Returns the normalized phone, or None if unparseable.
    """
    normalized = normalize_phone(phone)
    if normalized is None:
        logger.warning("SMS opt-out: unparseable phone number ignored")
        return None

    row = await session.get(SmsOptOut, normalized)
    if row is None:
        session.add(SmsOptOut(phone_number=normalized, opt_out_source=source))
    else:
        row.opted_out_at = utcnow()
        row.opt_out_source = source

    candidates = {normalized, phone.strip(), normalized.removeprefix("+1")}
    await session.execute(
        update(Assessment)
        .where(Assessment.phone_number.in_(candidates))
        .values(sms_opted_out=True, updated_at=utcnow())
    )
    await session.flush()
    logger.info("SMS opt-out recorded source=%s", source)
    return normalized
