"""Operator check-in console: manual dispatch, queue and response views, revenue, health, alert tooling."""

import logging
from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from spinecheck.api.deps import get_current_operator
from spinecheck.config import settings
from spinecheck.core.errors import AlertDeliveryFailure
from spinecheck.db.base import as_utc, utcnow
from spinecheck.db.session import get_db
from spinecheck.models.check_in_event import STATUS_PENDING, STATUS_SENDING, STATUS_SENT, CheckInEvent
from spinecheck.models.check_in_response import CheckInResponse
from spinecheck.models.revenue_event import RevenueEvent
from spinecheck.models.user import User
from spinecheck.schemas.checkins import CHECKIN_DAYS, Branch, DispatchBody
from spinecheck.schemas.pagination import PaginatedResponse
from spinecheck.services.alerts import post_alert
from spinecheck.services.attribution import source_tag
from spinecheck.services.audit import log_operator_action
from spinecheck.services.checkin_dispatch import dispatch_due
from spinecheck.services.red_flags import clear_red_flag_cache, get_red_flag_cache

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/checkins", tags=["admin"])

STALE_SENDING_AFTER = timedelta(minutes=15)


def _iso(value) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def _event_to_response(e: CheckInEvent) -> dict:
    return {
        "id": e.id,
        "assessment_id": e.assessment_id,
        "day": e.day,
        "due_at": _iso(e.due_at),
        "status": e.status,
        "channel": e.channel,
        "template_key": e.template_key,
        "attempts": e.attempts,
        "last_error": e.last_error,
        "sent_at": _iso(e.sent_at),
    }


@router.post(
    "/dispatch",
    summary="Run dispatch now",
    responses={401: {"description": "Not authenticated"}},
)
async def admin_dispatch(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    operator: Annotated[User | None, Depends(get_current_operator)],
    body: DispatchBody | None = None,
) -> dict:
    body = body or DispatchBody()
    # Dispatch uses its own sessions; do not hold the request transaction open across the run.
    await session.commit()
    summary = await dispatch_due(body.limit, dry_run=body.dryRun)
    await log_operator_action(
        session,
        request,
        operator,
        "checkins_dispatch",
        "check_in_queue",
        details={"sent": summary.sent, "failed": summary.failed, "skipped": summary.skipped, "dry_run": summary.dry_run},
    )
    return summary.as_dict()


@router.get(
    "/dispatch",
    summary="Dry-run dispatch with the default limit",
    responses={401: {"description": "Not authenticated"}},
)
async def admin_dispatch_preview(
    session: Annotated[AsyncSession, Depends(get_db)],
    operator: Annotated[User | None, Depends(get_current_operator)],
) -> dict:
    await session.commit()
    summary = await dispatch_due(settings.dispatch_default_limit, dry_run=True)
    return summary.as_dict()


@router.get(
    "/queue",
    response_model=PaginatedResponse,
    summary="List check-in queue rows",
    responses={401: {"description": "Not authenticated"}},
)
async def list_queue(
    session: Annotated[AsyncSession, Depends(get_db)],
    operator: Annotated[User | None, Depends(get_current_operator)],
    status: str | None = Query(default=None),
    assessment_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> PaginatedResponse:
    """Queue rows ordered by due_at ascending (paginated)."""
    base = select(CheckInEvent)
    if status:
        base = base.where(CheckInEvent.status == status)
    if assessment_id:
        base = base.where(CheckInEvent.assessment_id == assessment_id)
    base = base.order_by(CheckInEvent.due_at.asc(), CheckInEvent.id.asc())
    total = (await session.execute(select(func.count()).select_from(base.subquery()))).scalar() or 0
    r = await session.execute(base.offset(offset).limit(limit))
    return PaginatedResponse(
        items=[_event_to_response(e) for e in r.scalars().all()],
        total=total,
        limit=limit,
        offset=offset,
        has_more=(offset + limit) < total,
    )


@router.get(
    "/responses",
    response_model=PaginatedResponse,
    summary="List check-in responses",
    responses={401: {"description": "Not authenticated"}},
)
async def list_responses(
    session: Annotated[AsyncSession, Depends(get_db)],
    operator: Annotated[User | None, Depends(get_current_operator)],
    day: int | None = Query(default=None),
    branch: Branch | None = Query(default=None),
    with_note: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> PaginatedResponse:
    """Newest first. with_note=true limits to responses carrying a note."""
    base = select(CheckInResponse)
    if day is not None:
        base = base.where(CheckInResponse.day == day)
    if branch is not None:
        base = base.where(CheckInResponse.branch == branch.value)
    if with_note:
        base = base.where(CheckInResponse.note.isnot(None))
    base = base.order_by(CheckInResponse.created_at.desc(), CheckInResponse.id.desc())
    total = (await session.execute(select(func.count()).select_from(base.subquery()))).scalar() or 0
    r = await session.execute(base.offset(offset).limit(limit))
    items = [
        {
            "id": row.id,
            "assessment_id": row.assessment_id,
            "day": row.day,
            "branch": row.branch,
            "note": row.note,
            "red_flags_matched": row.red_flags_matched or [],
            "created_at": _iso(row.created_at),
        }
        for row in r.scalars().all()
    ]
    return PaginatedResponse(items=items, total=total, limit=limit, offset=offset, has_more=(offset + limit) < total)


@router.get(
    "/revenue",
    summary="Revenue attributed to check-in days",
    responses={401: {"description": "Not authenticated"}},
)
async def checkin_revenue(
    session: Annotated[AsyncSession, Depends(get_db)],
    operator: Annotated[User | None, Depends(get_current_operator)],
) -> dict:
    r = await session.execute(
        select(
            RevenueEvent.checkin_day,
            func.count(RevenueEvent.id),
            func.coalesce(func.sum(RevenueEvent.amount_cents), 0),
        )
        .where(RevenueEvent.checkin_day.isnot(None))
        .group_by(RevenueEvent.checkin_day)
    )
    by_day = {day: {"purchases": 0, "amount_cents": 0} for day in CHECKIN_DAYS}
    for day, count, amount in r.all():
        by_day[day] = {"purchases": int(count), "amount_cents": int(amount)}
    return {
        "by_day": {source_tag(day): stats for day, stats in sorted(by_day.items())},
        "total_purchases": sum(s["purchases"] for s in by_day.values()),
        "total_amount_cents": sum(s["amount_cents"] for s in by_day.values()),
    }


@router.get(
    "/health",
    summary="Check-in queue health",
    responses={401: {"description": "Not authenticated"}},
)
async def checkin_health(
    session: Annotated[AsyncSession, Depends(get_db)],
    operator: Annotated[User | None, Depends(get_current_operator)],
) -> dict:
    now = utcnow()
    r = await session.execute(select(CheckInEvent.status, func.count(CheckInEvent.id)).group_by(CheckInEvent.status))
    counts = {status: int(n) for status, n in r.all()}
    due_now = (
        await session.execute(
            select(func.count(CheckInEvent.id)).where(
                CheckInEvent.status == STATUS_PENDING, CheckInEvent.due_at <= now
            )
        )
    ).scalar() or 0
    oldest_due = (
        await session.execute(select(func.min(CheckInEvent.due_at)).where(CheckInEvent.status == STATUS_PENDING))
    ).scalar()
    last_sent = (
        await session.execute(select(func.max(CheckInEvent.sent_at)).where(CheckInEvent.status == STATUS_SENT))
    ).scalar()
    stale_sending = (
        await session.execute(
            select(func.count(CheckInEvent.id)).where(
                CheckInEvent.status == STATUS_SENDING, CheckInEvent.claimed_at < now - STALE_SENDING_AFTER
            )
        )
    ).scalar() or 0
    return {
        "counts": counts,
        "due_now": int(due_now),
        "oldest_due_pending": _iso(oldest_due),
        "last_sent_at": _iso(last_sent),
        "stale_sending": int(stale_sending),
        "sandbox": settings.checkins_sandbox,
        "checked_at": now.isoformat(),
    }


@router.post(
    "/test/red-flag",
    summary="Send a test payload to the urgent-alert webhook",
    responses={401: {"description": "Not authenticated"}, 500: {"description": "Webhook missing or failed"}},
)
async def test_red_flag_webhook(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    operator: Annotated[User | None, Depends(get_current_operator)],
) -> dict:
    try:
        status = await post_alert({"type": "red_flag_test", "occurred_at": utcnow().isoformat()})
    except AlertDeliveryFailure as e:
        logger.warning("Red-flag test webhook failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))
    await log_operator_action(session, request, operator, "red_flag_test", "alert_webhook", details={"status": status})
    return {"ok": True, "status": status}


@router.post(
    "/red-flags/reload",
    summary="Drop the cached red-flag term list and reload it",
    responses={401: {"description": "Not authenticated"}},
)
async def reload_red_flags(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    operator: Annotated[User | None, Depends(get_current_operator)],
) -> dict:
    clear_red_flag_cache()
    terms = get_red_flag_cache().terms()
    await log_operator_action(session, request, operator, "red_flags_reload", "red_flags", details={"count": len(terms)})
    return {"count": len(terms), "terms": list(terms)}
