"""Check-ins: enqueue (operator), scheduled dispatch trigger (shared token), note intake (reply token)."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from spinecheck.api.deps import get_current_operator, require_dispatch_token
from spinecheck.core.errors import AssessmentNotFound, InvalidToken, PersistenceError
from spinecheck.db.session import get_db
from spinecheck.models.user import User
from spinecheck.schemas.checkins import EnqueueBody, EnqueueOut, NoteBody, NoteOut
from spinecheck.services.audit import log_operator_action
from spinecheck.services.checkin_dispatch import dispatch_due
from spinecheck.services.checkin_enqueue import enqueue_checkins_for_assessment
from spinecheck.services.checkin_intake import submit_note

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/checkins", tags=["checkins"])


@router.post(
    "/enqueue",
    response_model=EnqueueOut,
    summary="Queue day 3/7/14 check-ins for an assessment",
    responses={401: {"description": "Not authenticated"}, 404: {"description": "Assessment not found"}},
)
async def enqueue(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    operator: Annotated[User | None, Depends(get_current_operator)],
    body: EnqueueBody,
) -> EnqueueOut:
    try:
        result = await enqueue_checkins_for_assessment(session, body.assessment_id)
    except AssessmentNotFound:
        raise HTTPException(status_code=404, detail="Assessment not found")
    except PersistenceError as e:
        logger.error("Enqueue failed for %s: %s", body.assessment_id, e.__cause__ or e)
        raise HTTPException(status_code=500, detail="Failed to enqueue check-ins")
    await log_operator_action(
        session,
        request,
        operator,
        "checkins_enqueue",
        "assessment",
        resource_id=body.assessment_id,
        details={"queued": result.queued, "skipped": result.skipped, "reason": result.reason},
    )
    return EnqueueOut(queued=result.queued, skipped=result.skipped, reason=result.reason)


@router.post(
    "/dispatch",
    summary="Scheduled dispatch trigger",
    responses={401: {"description": "Missing or wrong dispatch token"}},
    dependencies=[Depends(require_dispatch_token)],
)
async def dispatch(
    limit: int | None = Query(default=None, ge=1),
    dryRun: bool = Query(default=False),
) -> dict:
    """Called by cron with the shared dispatch token. Returns per-run counts."""
    summary = await dispatch_due(limit, dry_run=dryRun)
    return summary.as_dict()


@router.post(
    "/note",
    response_model=NoteOut,
    summary="Submit a free-text note from the reply landing page",
    responses={400: {"description": "Invalid or expired token"}},
)
async def note(
    session: Annotated[AsyncSession, Depends(get_db)],
    body: NoteBody,
) -> NoteOut:
    """Only the signed token identifies the assessment, day and branch; other fields are ignored."""
    try:
        result = await submit_note(session, body.token, body.note)
    except (InvalidToken, AssessmentNotFound) as e:
        logger.info("Check-in note rejected: %s", e)
        raise HTTPException(status_code=400, detail="invalid_token")
    except PersistenceError as e:
        logger.error("Check-in note not saved: %s", e.__cause__ or e)
        raise HTTPException(status_code=500, detail="Unable to save note")
    return NoteOut(success=True, red_flag=result.red_flag, message=result.message)
