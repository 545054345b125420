"""Billing: Stripe webhook for guide purchases and check-in revenue attribution."""

import logging

from fastapi import APIRouter, HTTPException, Request

from spinecheck.db.session import async_session_maker
from spinecheck.services import stripe_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/billing", tags=["billing"])


@router.post(
    "/webhook",
    summary="Stripe webhook",
    include_in_schema=False,
)
async def stripe_webhook(request: Request):
    """Stripe sends events here. Signature is verified; then the purchase is attributed and the tier updated."""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")
    if not sig_header:
        raise HTTPException(status_code=400, detail="Missing stripe-signature")
    try:
        stripe_service.construct_webhook_event(payload, sig_header)
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Invalid signature: {e}")
    async with async_session_maker() as session:
        try:
            await stripe_service.handle_webhook(session, payload, sig_header)
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.exception("Stripe webhook processing failed")
            raise HTTPException(status_code=500, detail="Webhook processing failed") from e
    return {"received": True}
