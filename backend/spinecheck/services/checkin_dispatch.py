"""
Dispatch due check-in events.

Selection is oldest-due-first across all assessments. Each event is claimed
with a conditional UPDATE (pending, or failed below the attempt ceiling ->
sending) committed before the provider call, so overlapping runs from cron,
the admin trigger and the in-process scheduler never send the same event twice.
A failure on one event is recorded on its row and never aborts the batch.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spinecheck.config import parse_send_window, settings
from spinecheck.core.errors import DeliveryFailure
from spinecheck.db.base import as_utc, utcnow
from spinecheck.db.session import async_session_maker
from spinecheck.models.assessment import Assessment
from spinecheck.models.check_in_event import (
    CHANNEL_EMAIL,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SENDING,
    STATUS_SENT,
    STATUS_SKIPPED,
    CheckInEvent,
)
from spinecheck.models.diagnosis_insert import DiagnosisInsert
from spinecheck.models.message_template import MessageTemplate
from spinecheck.schemas.checkins import Branch
from spinecheck.services.channels import ChannelAdapter, get_channel_adapters, recipient_hash
from spinecheck.services.checkin_renderer import (
    OutboundMessage,
    RenderContext,
    TemplateContent,
    context_from_settings,
    render_checkin_message,
)
from spinecheck.services.diagnosis import GENERIC_DIAGNOSIS, resolve_diagnosis_code
from spinecheck.services.metrics import CHECKIN_DISPATCH_EVENTS

logger = logging.getLogger(__name__)

# Outbound prompts go out before any reply, so inserts are looked up for the neutral branch.
OUTBOUND_BRANCH = Branch.SAME
LAST_ERROR_MAX = 1000


@dataclass
class DispatchSummary:
    dry_run: bool = False
    selected: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    deferred: int = 0
    errors: list[dict] = field(default_factory=list)
    would_send: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


def clamp_limit(limit: int | None) -> int:
    """Requested limit capped at DISPATCH_MAX_LIMIT; None means the configured default, zero or less selects nothing."""
    if limit is None:
        limit = settings.dispatch_default_limit
    return max(0, min(int(limit), settings.dispatch_max_limit))


def within_send_window(now: datetime, tz_name: str, window: str) -> bool:
    bounds = parse_send_window(window)
    if bounds is None:
        return True
    try:
        tz = ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        logger.warning("Dispatch: unknown CHECKINS_SEND_TZ %r, using UTC", tz_name)
        tz = ZoneInfo("UTC")
    local = as_utc(now).astimezone(tz).time()
    start, end = bounds
    if start <= end:
        return start <= local < end
    return local >= start or local < end  # overnight window


def sending_blocked_reason(now: datetime) -> str | None:
    start_at = as_utc(settings.checkins_start_at)
    if start_at is not None and now < start_at:
        return "before_start"
    if not within_send_window(now, settings.checkins_send_tz, settings.checkins_send_window):
        return "outside_send_window"
    return None


def _eligible_clause():
    return or_(
        CheckInEvent.status == STATUS_PENDING,
        and_(
            CheckInEvent.status == STATUS_FAILED,
            CheckInEvent.attempts < settings.dispatch_max_attempts,
        ),
    )


async def select_due_event_ids(session: AsyncSession, now: datetime, limit: int) -> list[int]:
    r = await session.execute(
        select(CheckInEvent.id)
        .where(CheckInEvent.due_at <= now, _eligible_clause())
        .order_by(CheckInEvent.due_at.asc(), CheckInEvent.id.asc())
        .limit(limit)
    )
    return [row[0] for row in r.all()]


async def claim_event(session: AsyncSession, event_id: int, now: datetime) -> bool:
    """Atomically move an eligible event to 'sending'. False when another run got there first."""
    try:
        r = await session.execute(
            update(CheckInEvent)
            .where(CheckInEvent.id == event_id, _eligible_clause())
            .values(
                status=STATUS_SENDING,
                attempts=CheckInEvent.attempts + 1,
                claimed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    except OperationalError as e:
        # Lock contention with a concurrent claimer; the other writer owns the row.
        await session.rollback()
        logger.info("Dispatch: claim of event %s lost to contention: %s", event_id, e)
        return False
    return r.rowcount == 1


async def _finish(session: AsyncSession, event_id: int, **values) -> None:
    values.setdefault("updated_at", utcnow())
    await session.execute(
        update(CheckInEvent)
        .where(CheckInEvent.id == event_id, CheckInEvent.status == STATUS_SENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.commit()


async def load_template(session: AsyncSession, key: str) -> TemplateContent | None:
    # Savepoint: a failed lookup must not abort the claim transaction or expire loaded rows.
    try:
        async with session.begin_nested():
            r = await session.execute(select(MessageTemplate).where(MessageTemplate.key == key))
            row = r.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.warning("Dispatch: template lookup failed for %s, using default: %s", key, e)
        return None
    if row is None:
        return None
    return TemplateContent(shell_text=row.shell_text, subject=row.subject, disclaimer_text=row.disclaimer_text)


async def load_insert_text(session: AsyncSession, guide_type: str | None, day: int, branch: Branch) -> str | None:
    """Diagnosis-specific insert, falling back to the generic insert, then to nothing."""
    code = resolve_diagnosis_code(guide_type)
    codes = [code] if code == GENERIC_DIAGNOSIS else [code, GENERIC_DIAGNOSIS]
    try:
        async with session.begin_nested():
            for c in codes:
                r = await session.execute(
                    select(DiagnosisInsert.insert_text).where(
                        DiagnosisInsert.diagnosis_code == c,
                        DiagnosisInsert.day == day,
                        DiagnosisInsert.branch == branch.value,
                    )
                )
                text = r.scalar_one_or_none()
                if text:
                    return text
    except SQLAlchemyError as e:
        logger.warning("Dispatch: insert lookup failed for %s day=%s: %s", code, day, e)
    return None


async def build_message(
    session: AsyncSession,
    event: CheckInEvent,
    assessment: Assessment,
    ctx: RenderContext,
) -> OutboundMessage:
    template = await load_template(session, event.template_key)
    insert_text = await load_insert_text(session, assessment.guide_type, event.day, OUTBOUND_BRANCH)
    return render_checkin_message(event.channel, event.day, assessment.id, template, insert_text, ctx)


async def _preview_event(
    session_factory: async_sessionmaker,
    event_id: int,
    adapters: dict[str, ChannelAdapter],
    ctx: RenderContext,
    summary: DispatchSummary,
) -> None:
    async with session_factory() as session:
        event = await session.get(CheckInEvent, event_id)
        assessment = await session.get(Assessment, event.assessment_id) if event else None
        if event is None or assessment is None:
            summary.skipped += 1
            return
        adapter = adapters.get(event.channel)
        reason = await adapter.suppression_reason(session, assessment) if adapter else "unknown_channel"
        if reason:
            summary.skipped += 1
            return
        message = await build_message(session, event, assessment, ctx)
        summary.would_send.append(
            {
                "event_id": event.id,
                "assessment_id": event.assessment_id,
                "day": event.day,
                "channel": event.channel,
                "subject": message.subject,
            }
        )


async def _process_event(
    session_factory: async_sessionmaker,
    event_id: int,
    adapters: dict[str, ChannelAdapter],
    ctx: RenderContext,
    summary: DispatchSummary,
    now: datetime,
) -> None:
    async with session_factory() as session:
        if not await claim_event(session, event_id, now):
            logger.debug("Dispatch: event %s already claimed elsewhere", event_id)
            return

        event = await session.get(CheckInEvent, event_id)
        assessment = await session.get(Assessment, event.assessment_id)
        if assessment is None:
            await _finish(session, event_id, status=STATUS_SKIPPED, last_error="assessment_missing")
            summary.skipped += 1
            return

        adapter = adapters.get(event.channel)
        if adapter is None:
            await _finish(
                session,
                event_id,
                status=STATUS_FAILED,
                last_error=f"unknown channel {event.channel!r}",
                attempts=settings.dispatch_max_attempts,
            )
            summary.failed += 1
            summary.errors.append({"event_id": event_id, "error": f"unknown channel {event.channel!r}"})
            return

        reason = await adapter.suppression_reason(session, assessment)
        if reason:
            await _finish(session, event_id, status=STATUS_SKIPPED, last_error=reason)
            summary.skipped += 1
            CHECKIN_DISPATCH_EVENTS.labels(event.channel, "skipped").inc()
            logger.info("Dispatch: event %s skipped (%s)", event_id, reason)
            return

        try:
            message = await build_message(session, event, assessment, ctx)
            result = await adapter.send(assessment, message)
        except DeliveryFailure as e:
            values = {"status": STATUS_FAILED, "last_error": str(e)[:LAST_ERROR_MAX]}
            if not e.retryable:
                values["attempts"] = max(event.attempts, settings.dispatch_max_attempts)
            await _finish(session, event_id, **values)
            summary.failed += 1
            summary.errors.append({"event_id": event_id, "error": str(e)})
            CHECKIN_DISPATCH_EVENTS.labels(event.channel, "failed").inc()
            logger.warning(
                "Dispatch: event %s failed attempt=%s retryable=%s: %s", event_id, event.attempts, e.retryable, e
            )
            return
        except Exception as e:
            logger.exception("Dispatch: event %s failed unexpectedly", event_id)
            await _finish(session, event_id, status=STATUS_FAILED, last_error=type(e).__name__)
            summary.failed += 1
            summary.errors.append({"event_id": event_id, "error": type(e).__name__})
            CHECKIN_DISPATCH_EVENTS.labels(event.channel, "failed").inc()
            return

        await _finish(
            session,
            event_id,
            status=STATUS_SENT,
            sent_at=utcnow(),
            provider_message_id=result.provider_message_id,
            last_error=None,
        )
        summary.sent += 1
        CHECKIN_DISPATCH_EVENTS.labels(event.channel, "sent").inc()
        logger.info(
            "Dispatch: event %s day=%s sent via %s to=%s",
            event_id,
            event.day,
            result.provider,
            recipient_hash(assessment.email if event.channel == CHANNEL_EMAIL else assessment.phone_number),
        )


async def dispatch_due(
    limit: int | None = None,
    *,
    dry_run: bool = False,
    session_factory: async_sessionmaker = async_session_maker,
    adapters: dict[str, ChannelAdapter] | None = None,
    render_context: RenderContext | None = None,
    now: datetime | None = None,
) -> DispatchSummary:
    """Send up to `limit` due events. Dry run (or sandbox mode) renders without sending or mutating."""
    now = as_utc(now) if now else utcnow()
    limit = clamp_limit(limit)
    if settings.checkins_sandbox and not dry_run:
        logger.info("Dispatch: sandbox mode, running as dry run")
        dry_run = True
    summary = DispatchSummary(dry_run=dry_run)
    adapters = adapters if adapters is not None else get_channel_adapters()
    ctx = render_context or context_from_settings()

    if limit == 0:
        return summary
    async with session_factory() as session:
        event_ids = await select_due_event_ids(session, now, limit)
    summary.selected = len(event_ids)
    if not event_ids:
        return summary

    blocked = sending_blocked_reason(now)
    if blocked:
        summary.deferred = len(event_ids)
        logger.info("Dispatch: %s due events deferred (%s)", len(event_ids), blocked)
        return summary

    for event_id in event_ids:
        try:
            if dry_run:
                await _preview_event(session_factory, event_id, adapters, ctx, summary)
            else:
                await _process_event(session_factory, event_id, adapters, ctx, summary, now)
        except Exception as e:
            # Row may remain 'sending'; the health endpoint reports stale claims.
            logger.exception("Dispatch: unexpected error on event %s", event_id)
            summary.failed += 1
            summary.errors.append({"event_id": event_id, "error": type(e).__name__})

    logger.info(
        "Dispatch run: selected=%s sent=%s failed=%s skipped=%s dry_run=%s",
        summary.selected,
        summary.sent,
        summary.failed,
        summary.skipped,
        summary.dry_run,
    )
    return summary
