"""Shared check-in vocabulary: schedule days, reply branches, guide tiers, and API bodies."""

from enum import Enum

from pydantic import BaseModel, Field

CHECKIN_DAYS: tuple[int, ...] = (3, 7, 14)


class Branch(str, Enum):
    """Recipient's self-reported trend."""

    BETTER = "better"
    SAME = "same"
    WORSE = "worse"


class Tier(str, Enum):
    FREE = "free"
    ENHANCED = "enhanced"
    MONOGRAPH = "monograph"


def parse_tier(raw: str | None) -> Tier:
    """Unknown or missing tier values are treated as free."""
    try:
        return Tier((raw or "").strip().lower())
    except ValueError:
        return Tier.FREE


class EnqueueBody(BaseModel):
    assessment_id: str = Field(..., min_length=1, max_length=64)


class EnqueueOut(BaseModel):
    queued: int
    skipped: int
    reason: str | None = None


class DispatchBody(BaseModel):
    limit: int | None = Field(default=None, ge=1)
    dryRun: bool = False


class NoteBody(BaseModel):
    token: str = Field(..., min_length=1)
    note: str | None = None


class NoteOut(BaseModel):
    success: bool
    red_flag: bool
    message: str
