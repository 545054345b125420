"""Urgent red-flag alerts posted to an operator-configured webhook. Short timeout, never retried."""

import logging

import httpx

from spinecheck.config import settings
from spinecheck.core.errors import AlertDeliveryFailure
from spinecheck.services.http_client import get_http_client

logger = logging.getLogger(__name__)


async def post_alert(
    payload: dict,
    *,
    url: str | None = None,
    timeout: float | None = None,
    client: httpx.AsyncClient | None = None,
) -> int:
    """
    POST payload as JSON and return the HTTP status.

    Raises AlertDeliveryFailure when no URL is configured, on non-2xx, on transport
    errors, on a malformed URL or missing HTTP client, and (with timed_out=True)
    when the bounded timeout elapses.
    """
    url = url if url is not None else settings.alert_webhook_url
    if not url:
        raise AlertDeliveryFailure("ALERT_WEBHOOK_URL not configured")
    timeout = timeout if timeout is not None else settings.alert_webhook_timeout_seconds
    try:
        client = client or get_http_client()
        r = await client.post(url, json=payload, timeout=timeout)
    except httpx.TimeoutException as e:
        raise AlertDeliveryFailure(f"Request timeout ({timeout:g}s)", timed_out=True) from e
    except httpx.HTTPError as e:
        raise AlertDeliveryFailure(f"Webhook request failed: {e}") from e
    except Exception as e:
        # Malformed URL (httpx.InvalidURL) or uninitialized shared client.
        raise AlertDeliveryFailure(f"Webhook request could not be made: {type(e).__name__}: {e}") from e
    if r.status_code >= 400:
        raise AlertDeliveryFailure(f"Webhook returned {r.status_code}")
    return r.status_code
