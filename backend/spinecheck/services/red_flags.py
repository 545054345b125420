"""
Red-flag scanner for free-text check-in notes.

Terms come from a JSON file ({"terms": [...]}) and are cached for a bounded time.
When the file is missing, unreadable or empty the built-in safety list is used.
Matching is case-insensitive substring containment (not word-boundary aware), so
"numbness" also matches "numbnesses"; false positives are preferred to misses.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable, Sequence
from pathlib import Path

from spinecheck.config import settings

logger = logging.getLogger(__name__)

FALLBACK_RED_FLAGS: tuple[str, ...] = (
    "bladder",
    "bowel",
    "saddle",
    "numbness",
    "fever",
    "trauma",
    "progressive weakness",
    "loss of control",
    "incontinence",
)


def _normalize_terms(raw: Sequence[object]) -> tuple[str, ...]:
    seen: list[str] = []
    for term in raw:
        t = str(term).strip().lower()
        if t and t not in seen:
            seen.append(t)
    return tuple(seen)


def load_terms_from_json(path: str) -> list[str] | None:
    """Read {"terms": [...]} from path. Returns None when no file is configured or present."""
    if not path:
        return None
    p = Path(path)
    if not p.is_file():
        logger.debug("Red flags: term file %s not found", path)
        return None
    data = json.loads(p.read_text(encoding="utf-8"))
    terms = data.get("terms") if isinstance(data, dict) else None
    if not isinstance(terms, list):
        raise ValueError(f"{path}: expected an object with a 'terms' list")
    return terms


class RedFlagTermCache:
    """Process-wide term list with time-based expiry and explicit invalidation.

    The cached (terms, loaded_at) pair is swapped as one object, so concurrent
    readers see either the old or the new list, never a partial one.
    """

    def __init__(
        self,
        loader: Callable[[], Sequence[object] | None],
        *,
        ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
        fallback: Sequence[str] = FALLBACK_RED_FLAGS,
    ):
        self._loader = loader
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._fallback = _normalize_terms(fallback)
        self._snapshot: tuple[tuple[str, ...], float] | None = None
        self._lock = threading.Lock()

    def terms(self) -> tuple[str, ...]:
        snapshot = self._snapshot
        now = self._clock()
        if snapshot is not None and now - snapshot[1] < self._ttl_seconds:
            return snapshot[0]
        with self._lock:
            snapshot = self._snapshot
            if snapshot is not None and now - snapshot[1] < self._ttl_seconds:
                return snapshot[0]
            terms = self._load()
            self._snapshot = (terms, now)
            return terms

    def _load(self) -> tuple[str, ...]:
        try:
            raw = self._loader()
        except Exception as e:
            logger.error("Red flags: failed to load term list, using fallback: %s", e)
            return self._fallback
        if raw is None:
            return self._fallback
        terms = _normalize_terms(raw)
        if not terms:
            logger.warning("Red flags: term source is empty, using fallback")
            return self._fallback
        logger.info("Red flags: loaded %s terms", len(terms))
        return terms

    def invalidate(self) -> None:
        with self._lock:
            self._snapshot = None

    def scan(self, text: object) -> list[str]:
        """Return matched terms in list order; empty for empty or non-string input."""
        if not text or not isinstance(text, str):
            return []
        lower = text.lower()
        return [term for term in self.terms() if term in lower]


_default_cache: RedFlagTermCache | None = None
_default_cache_lock = threading.Lock()


def get_red_flag_cache() -> RedFlagTermCache:
    global _default_cache
    if _default_cache is None:
        with _default_cache_lock:
            if _default_cache is None:
                _default_cache = RedFlagTermCache(
                    lambda: load_terms_from_json(settings.red_flags_path),
                    ttl_seconds=settings.red_flags_cache_ttl_seconds,
                )
    return _default_cache


def scan_red_flags(text: object, cache: RedFlagTermCache | None = None) -> list[str]:
    return (cache or get_red_flag_cache()).scan(text)


def clear_red_flag_cache() -> None:
    """Force the next scan to reload terms (operational refresh, tests)."""
    get_red_flag_cache().invalidate()
