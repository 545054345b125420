"""Inbound SMS webhook (Twilio-style form post): STOP keywords opt the sender out."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from spinecheck.db.session import get_db
from spinecheck.services.sms_opt_out import is_stop_keyword, process_sms_opt_out

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sms", tags=["sms"])

STOP_REPLY = "You have been unsubscribed from PainOptix messages. No more messages will be sent."


def _twiml(message: str | None = None) -> Response:
    body = f"<Message>{message}</Message>" if message else ""
    return Response(
        content=f'<?xml version="1.0" encoding="UTF-8"?><Response>{body}</Response>',
        media_type="text/xml",
    )


@router.post("/unsubscribe", include_in_schema=False)
async def sms_unsubscribe(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> Response:
    """Always 200 with TwiML so the provider does not retry."""
    form = await request.form()
    sender = str(form.get("From") or "")
    body = str(form.get("Body") or "")
    if not sender or not is_stop_keyword(body):
        return _twiml()
    normalized = await process_sms_opt_out(session, sender, source="sms_stop")
    if normalized is None:
        return _twiml()
    return _twiml(STOP_REPLY)
