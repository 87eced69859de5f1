"""Prometheus metric definitions shared across the engine services."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


notifications_scheduled_total = Counter(
    "notifications_scheduled_total",
    "Notifications durably scheduled for the delivery worker",
    ["service", "channel", "source"],
)
ledger_conflicts_total = Counter(
    "ledger_conflicts_total",
    "Dedup ledger claims rejected because the scope was already claimed",
    ["service", "source"],
)
duplicate_notifications_skipped_total = Counter(
    "duplicate_notifications_skipped_total",
    "Notification inserts skipped on an existing dedupe key",
    ["service", "source"],
)
dispatch_errors_total = Counter(
    "dispatch_errors_total",
    "Per-channel or per-rule failures counted instead of raised",
    ["service", "source"],
)
rules_matched_total = Counter(
    "rules_matched_total",
    "Rules that survived product-scope and filter checks",
    ["service", "event_type"],
)
backfill_items_total = Counter(
    "backfill_items_total",
    "Backfill items handled per outcome",
    ["service", "outcome"],
)
backfill_jobs_completed_total = Counter(
    "backfill_jobs_completed_total",
    "Backfill jobs transitioned to completed",
    ["service"],
)
backfill_batch_seconds = Histogram(
    "backfill_batch_seconds",
    "Wall time of one backfill batch",
    ["service"],
)
events_received_total = Counter(
    "events_received_total",
    "Inbound business events accepted into the inbox",
    ["service", "event_type"],
)
duplicate_events_skipped_total = Counter(
    "duplicate_events_skipped_total",
    "Duplicate inbox events skipped",
    ["service", "event_type"],
)
event_queue_delay_seconds = Histogram(
    "event_queue_delay_seconds",
    "Event queue delay seconds between occurred_at and consume time",
    ["service", "topic"],
)
side_task_failures_total = Counter(
    "side_task_failures_total",
    "Best-effort background tasks that raised",
    ["service", "task"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
