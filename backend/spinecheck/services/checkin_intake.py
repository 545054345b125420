"""
Check-in response intake: landing-page clicks and free-text notes.

Only fields from a verified reply token are persisted; anything else the
client sends is ignored. Red-flag notes raise an urgent alert after the
response is committed, so an alert failure can never lose the response.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from spinecheck.config import settings
from spinecheck.core.errors import AlertDeliveryFailure, AssessmentNotFound, PersistenceError
from spinecheck.db.base import utcnow
from spinecheck.models.assessment import Assessment
from spinecheck.models.check_in_alert import CheckInAlert
from spinecheck.models.check_in_response import CheckInResponse
from spinecheck.services import reply_token
from spinecheck.services.alerts import post_alert
from spinecheck.services.metrics import CHECKIN_RESPONSES, RED_FLAG_ALERTS
from spinecheck.services.red_flags import RedFlagTermCache, scan_red_flags

logger = logging.getLogger(__name__)

NOTE_LIMIT = 280
ALERT_TYPE_RED_FLAG = "red_flag"

SAFETY_MESSAGE = (
    "Thanks for your note. Some symptoms can signal serious conditions. "
    "Please seek in-person care if you have any concerns. "
    "This information is educational and not a diagnosis."
)
OK_MESSAGE = "Thanks for your note; it has been logged successfully."
EMPTY_NOTE_MESSAGE = "No note provided."

AlertSender = Callable[[dict], Awaitable[int]]


@dataclass
class IntakeResult:
    response: CheckInResponse
    matched_terms: list[str] = field(default_factory=list)
    alert_status: str | None = None

    @property
    def red_flag(self) -> bool:
        return bool(self.matched_terms)

    @property
    def message(self) -> str:
        if self.red_flag:
            return SAFETY_MESSAGE
        return OK_MESSAGE if self.response.note else EMPTY_NOTE_MESSAGE


async def _persist(session: AsyncSession, *rows) -> None:
    try:
        session.add_all(rows)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise PersistenceError("Failed to record check-in response") from e


async def _verified_assessment(session: AsyncSession, token: str) -> dict:
    payload = reply_token.verify(token)
    assessment = await session.get(Assessment, payload["assessment_id"])
    if assessment is None:
        raise AssessmentNotFound(payload["assessment_id"])
    return payload


async def record_click(session: AsyncSession, token: str) -> tuple[dict, CheckInResponse]:
    """Record the branch a recipient tapped. Returns the verified payload and the new row."""
    payload = await _verified_assessment(session, token)
    response = CheckInResponse(
        assessment_id=payload["assessment_id"],
        day=payload["day"],
        branch=payload["value"],
        note=None,
        red_flags_matched=[],
    )
    await _persist(session, response)
    CHECKIN_RESPONSES.labels(payload["value"]).inc()
    logger.info("Check-in click: assessment=%s day=%s branch=%s", payload["assessment_id"], payload["day"], payload["value"])
    return payload, response


async def submit_note(
    session: AsyncSession,
    token: str,
    note: str | None,
    *,
    cache: RedFlagTermCache | None = None,
    alert_sender: AlertSender | None = None,
) -> IntakeResult:
    """
    Verify the token, append a CheckInResponse and alert on red flags.

    Raises InvalidToken (nothing persisted), AssessmentNotFound, or PersistenceError.
    Alert delivery problems are logged and reflected in alert_status only.
    """
    payload = await _verified_assessment(session, token)
    text = (note or "").strip()[:NOTE_LIMIT] or None
    matched = scan_red_flags(text, cache)

    response = CheckInResponse(
        assessment_id=payload["assessment_id"],
        day=payload["day"],
        branch=payload["value"],
        note=text,
        red_flags_matched=matched,
    )
    alert = None
    if matched:
        alert = CheckInAlert(
            assessment_id=payload["assessment_id"],
            day=payload["day"],
            type=ALERT_TYPE_RED_FLAG,
            payload={"day": payload["day"], "matched": matched, "note_excerpt": text[:100]},
        )
        await _persist(session, response, alert)
    else:
        await _persist(session, response)
    CHECKIN_RESPONSES.labels(payload["value"]).inc()

    result = IntakeResult(response=response, matched_terms=matched)
    logger.info(
        "Check-in note: assessment=%s day=%s red_flag=%s len=%s",
        payload["assessment_id"],
        payload["day"],
        result.red_flag,
        len(text or ""),
    )
    if alert is not None:
        result.alert_status = await _deliver_alert(session, alert, payload, matched, alert_sender)
    return result


async def _deliver_alert(
    session: AsyncSession,
    alert: CheckInAlert,
    payload: dict,
    matched: list[str],
    alert_sender: AlertSender | None,
) -> str:
    body = {
        "type": ALERT_TYPE_RED_FLAG,
        "occurred_at": utcnow().isoformat(),
        "assessment_id": payload["assessment_id"],
        "day": payload["day"],
        "matched_terms": matched,
    }
    if alert_sender is None and not settings.alert_webhook_url:
        status = "disabled"
        logger.warning("Red-flag alert for assessment=%s not posted: no webhook configured", payload["assessment_id"])
    else:
        try:
            await (alert_sender or post_alert)(body)
            status = "sent"
            logger.info("Red-flag alert posted for assessment=%s terms=%s", payload["assessment_id"], matched)
        except AlertDeliveryFailure as e:
            status = "timeout" if e.timed_out else "failed"
            logger.warning("Red-flag alert %s for assessment=%s: %s", status, payload["assessment_id"], e)
        except Exception:
            # The note is already stored; an alert problem never fails the submission.
            status = "failed"
            logger.exception("Red-flag alert failed for assessment=%s", payload["assessment_id"])
    RED_FLAG_ALERTS.labels(status).inc()

    try:
        alert.webhook_status = status
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.warning("Red-flag alert status not saved for alert=%s: %s", alert.id, e)
    return status
