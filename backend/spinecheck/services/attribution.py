"""Check-in day <-> source tag used in upgrade links and payment metadata."""

import re

from spinecheck.schemas.checkins import CHECKIN_DAYS

_SOURCE_TAG_RE = re.compile(r"^checkin_d(\d+)$")


def source_tag(day: int) -> str:
    if day not in CHECKIN_DAYS:
        raise ValueError(f"day must be one of {CHECKIN_DAYS}")
    return f"checkin_d{day}"


def parse_source_tag(tag: object) -> int | None:
    """Return the check-in day for a valid tag; None for anything else."""
    if not isinstance(tag, str):
        return None
    m = _SOURCE_TAG_RE.match(tag)
    if not m:
        return None
    day = int(m.group(1))
    return day if day in CHECKIN_DAYS else None
