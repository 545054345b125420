"""One-tap reply landing page: records the tapped branch and renders the follow-up page."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from spinecheck.core.errors import AssessmentNotFound, InvalidToken, PersistenceError
from spinecheck.db.session import get_db
from spinecheck.models.assessment import Assessment
from spinecheck.schemas.checkins import Branch, parse_tier
from spinecheck.services import reply_token
from spinecheck.services.checkin_dispatch import load_insert_text
from spinecheck.services.checkin_intake import record_click
from spinecheck.services.checkin_renderer import context_from_settings, render_error_page, render_landing_page

logger = logging.getLogger(__name__)
router = APIRouter(tags=["landing"])


@router.get("/c/i", response_class=HTMLResponse, include_in_schema=False)
async def checkin_landing(
    session: Annotated[AsyncSession, Depends(get_db)],
    token: str = Query(default=""),
) -> HTMLResponse:
    try:
        payload, _ = await record_click(session, token)
    except (InvalidToken, AssessmentNotFound) as e:
        logger.info("Check-in landing rejected: %s", e)
        return HTMLResponse(render_error_page("Invalid or expired link."), status_code=400)
    except PersistenceError as e:
        # The page is still useful without the recorded click.
        logger.error("Check-in click not recorded: %s", e.__cause__ or e)
        payload = reply_token.verify(token)

    assessment = await session.get(Assessment, payload["assessment_id"])
    branch = Branch(payload["value"])
    insert_text = await load_insert_text(session, assessment.guide_type if assessment else None, payload["day"], branch)
    page = render_landing_page(
        branch,
        payload["day"],
        payload["assessment_id"],
        context_from_settings(),
        tier=parse_tier(assessment.tier if assessment else None),
        insert_text=insert_text,
    )
    return HTMLResponse(page)
