"""
Prometheus metrics: status updates per entry point, rejected transitions, queue processing (worker), queue depth.
"""
from prometheus_client import Counter, Gauge, generate_latest

# Handlers: outcome per entry point ("callable" | "queue"); outcome is "success" or the failure kind
status_updates_total = Counter(
    "order_status_updates_total",
    "Total order status update attempts by entry point and outcome",
    ["entry_point", "outcome"],
)
transitions_rejected_total = Counter(
    "order_status_transitions_rejected_total",
    "Total status updates rejected due to invalid order status transition",
    ["current_status", "requested_status"],
)

# API: status requests accepted into the queue
status_requests_enqueued_total = Counter(
    "order_status_requests_enqueued_total",
    "Total queued status requests accepted (202) for processing",
)

# Worker: processing outcomes
messages_processed_total = Counter(
    "messages_processed_total",
    "Total queue messages handled (outcome recorded on the status request)",
)
messages_failed_total = Counter(
    "messages_failed_total",
    "Total queue messages that raised during processing (retried or sent to DLQ)",
)
messages_dlq_total = Counter(
    "messages_dlq_total",
    "Total messages moved to DLQ after max retries",
)

# Redis queue depth - backpressure / consumer lag
status_request_queue_waiting = Gauge(
    "status_request_queue_waiting",
    "Status requests waiting in the Redis queue",
)
status_request_queue_dead_lettered = Gauge(
    "status_request_queue_dead_lettered",
    "Status requests parked on the DLQ list after max retries",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
