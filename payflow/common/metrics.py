"""Prometheus metric definitions for the payment service."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


order_created_received_total = Counter(
    "order_created_received_total",
    "Total OrderCreated deliveries received",
    ["service"],
)
payments_processed_total = Counter(
    "payments_processed_total",
    "Payments that reached a terminal status",
    ["service", "status"],
)
duplicate_events_skipped_total = Counter(
    "duplicate_events_skipped_total",
    "Redeliveries acked without side effects",
    ["service", "reason"],
)
poison_messages_total = Counter(
    "poison_messages_total",
    "Undecodable deliveries acked and dropped",
    ["service"],
)
handler_failures_total = Counter(
    "handler_failures_total",
    "Deliveries nacked without requeue",
    ["service", "error_type"],
)
events_published_total = Counter(
    "events_published_total",
    "Envelopes published to the exchange",
    ["service", "routing_key"],
)
publish_failures_total = Counter(
    "publish_failures_total",
    "Envelopes that could not be published",
    ["service", "routing_key"],
)
event_queue_delay_seconds = Histogram(
    "event_queue_delay_seconds",
    "Event queue delay seconds between occurredAt and consume time",
    ["service", "routing_key"],
)
payment_handler_seconds = Histogram(
    "payment_handler_seconds",
    "Time spent handling one OrderCreated delivery",
    ["service"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
