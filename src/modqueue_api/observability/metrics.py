from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

operation_total = Counter(
    "mq_operation_total",
    "Count of critical moderation operations.",
    labelnames=("operation", "outcome", "error_code"),
)
operation_duration_seconds = Histogram(
    "mq_operation_duration_seconds",
    "Duration of critical moderation operations in seconds.",
    labelnames=("operation", "outcome"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

report_intake_total = Counter(
    "mq_report_intake_total",
    "Report submissions by outcome.",
    labelnames=("report_type", "outcome", "moderator_flag"),
)

action_transition_total = Counter(
    "mq_action_transition_total",
    "Moderation action state transitions.",
    labelnames=("action_type", "from_state", "to_state", "outcome"),
)

restrictions_expired_total = Counter(
    "mq_restrictions_expired_total",
    "Restrictions deactivated by the expiration sweep.",
)

security_alerts_total = Counter(
    "mq_security_alerts_total",
    "Admin security alerts raised, by severity.",
    labelnames=("severity",),
)


def render_metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
