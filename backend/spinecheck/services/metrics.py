"""Prometheus counters exposed on /metrics."""

from prometheus_client import Counter

CHECKIN_DISPATCH_EVENTS = Counter(
    "spinecheck_checkin_dispatch_events_total",
    "Check-in queue events processed by dispatch, by channel and outcome.",
    ["channel", "outcome"],
)
CHECKIN_RESPONSES = Counter(
    "spinecheck_checkin_responses_total",
    "Recorded check-in responses by branch.",
    ["branch"],
)
RED_FLAG_ALERTS = Counter(
    "spinecheck_red_flag_alerts_total",
    "Urgent red-flag alerts by webhook delivery status.",
    ["status"],
)
