"""Error taxonomy for the check-in lifecycle. Route handlers map these to HTTP status codes."""

from __future__ import annotations


class CheckinError(Exception):
    """Base class for check-in errors."""


class InvalidToken(CheckinError):
    """Reply token failed signature, structure or expiry checks. Never retried."""


class AssessmentNotFound(CheckinError):
    def __init__(self, assessment_id: str):
        super().__init__(f"Assessment not found: {assessment_id}")
        self.assessment_id = assessment_id


class PersistenceError(CheckinError):
    """Database write failed. Wraps the driver/ORM exception as __cause__."""


class DeliveryFailure(CheckinError):
    """A channel adapter could not hand the message to its provider."""

    def __init__(self, message: str, *, retryable: bool = True, provider: str | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.provider = provider


class AlertDeliveryFailure(CheckinError):
    """Urgent-alert webhook failed. Logged only, never surfaced to the recipient."""

    def __init__(self, message: str, *, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out
