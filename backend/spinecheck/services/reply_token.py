"""
Stateless signed reply tokens for check-in links and note forms.

Format: base64url(JSON payload) "." base64url(HMAC-SHA256(secret, encoded payload)), no padding.
The payload is not confidential; integrity and expiry are enforced on verify.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from spinecheck.config import settings
from spinecheck.core.errors import InvalidToken
from spinecheck.schemas.checkins import CHECKIN_DAYS, Branch

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("assessment_id", "day", "value")
_BRANCH_VALUES = frozenset(b.value for b in Branch)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(encoded: str) -> bytes:
    padded = encoded + "=" * (-len(encoded) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _validate_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Return the canonical {assessment_id, day, value} triple or raise ValueError."""
    missing = [f for f in REQUIRED_FIELDS if f not in payload]
    if missing:
        raise ValueError(f"missing fields: {', '.join(missing)}")
    assessment_id = payload["assessment_id"]
    day = payload["day"]
    value = payload["value"]
    if isinstance(value, Branch):
        value = value.value
    if not isinstance(assessment_id, str) or not assessment_id:
        raise ValueError("assessment_id must be a non-empty string")
    if isinstance(day, bool) or not isinstance(day, int) or day not in CHECKIN_DAYS:
        raise ValueError(f"day must be one of {CHECKIN_DAYS}")
    if value not in _BRANCH_VALUES:
        raise ValueError(f"value must be one of {sorted(_BRANCH_VALUES)}")
    return {"assessment_id": assessment_id, "day": day, "value": value}


class ReplyTokenCodec:
    """HMAC signer/verifier for {assessment_id, day, value} payloads."""

    def __init__(
        self,
        secret_provider: Callable[[], str],
        *,
        ttl_seconds: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._secret_provider = secret_provider
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def _secret(self) -> bytes:
        secret = (self._secret_provider() or "").strip()
        if not secret:
            raise RuntimeError("CHECKINS_TOKEN_SECRET not configured")
        return secret.encode("utf-8")

    def _signature(self, secret: bytes, encoded_payload: str) -> str:
        digest = hmac.new(secret, encoded_payload.encode("ascii"), hashlib.sha256).digest()
        return _b64encode(digest)

    def sign(self, payload: Mapping[str, Any]) -> str:
        body = _validate_fields(payload)
        if self._ttl_seconds:
            body["exp"] = int(self._clock()) + int(self._ttl_seconds)
        encoded = _b64encode(json.dumps(body, separators=(",", ":"), sort_keys=True).encode("utf-8"))
        return f"{encoded}.{self._signature(self._secret(), encoded)}"

    def verify(self, token: str) -> dict[str, Any]:
        """Return the signed triple. Raises InvalidToken on any structural, signature or expiry problem."""
        if not isinstance(token, str) or not token:
            raise InvalidToken("empty token")
        try:
            secret = self._secret()
        except RuntimeError as e:
            logger.error("Reply token verification unavailable: %s", e)
            raise InvalidToken("token verification unavailable") from e

        parts = token.split(".")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise InvalidToken("malformed token")
        encoded, provided = parts
        try:
            expected = self._signature(secret, encoded)
            matches = hmac.compare_digest(provided.encode("utf-8"), expected.encode("ascii"))
        except UnicodeEncodeError as e:
            raise InvalidToken("malformed token") from e
        if not matches:
            raise InvalidToken("signature mismatch")

        try:
            decoded = json.loads(_b64decode(encoded).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            raise InvalidToken("malformed payload") from e
        if not isinstance(decoded, dict):
            raise InvalidToken("malformed payload")

        exp = decoded.get("exp")
        if exp is not None:
            if isinstance(exp, bool) or not isinstance(exp, int):
                raise InvalidToken("malformed expiry")
            if exp < int(self._clock()):
                raise InvalidToken("token expired")
        elif self._ttl_seconds:
            raise InvalidToken("token has no expiry")

        try:
            return _validate_fields(decoded)
        except ValueError as e:
            raise InvalidToken(f"invalid payload: {e}") from e


def get_reply_token_codec() -> ReplyTokenCodec:
    """Codec bound to process settings. The secret is read lazily so tests can patch settings."""
    return ReplyTokenCodec(
        lambda: settings.checkins_token_secret,
        ttl_seconds=settings.checkins_token_ttl_seconds or None,
    )


def sign(payload: Mapping[str, Any]) -> str:
    return get_reply_token_codec().sign(payload)


def verify(token: str) -> dict[str, Any]:
    return get_reply_token_codec().verify(token)
