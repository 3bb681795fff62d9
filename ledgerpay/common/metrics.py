"""Prometheus metric definitions for the ledger service."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


transactions_total = Counter(
    "transactions_total",
    "Transaction engine outcomes by operation type",
    ["service", "transaction_type", "outcome"],
)
transaction_latency_seconds = Histogram(
    "transaction_latency_seconds",
    "Time spent inside the transaction engine per operation",
    ["service", "transaction_type"],
)
idempotent_replays_total = Counter(
    "idempotent_replays_total",
    "Requests answered from an existing transaction via idempotency key",
    ["service", "transaction_type"],
)
webhook_deliveries_total = Counter(
    "webhook_deliveries_total",
    "Webhook delivery attempts by outcome",
    ["service", "outcome"],
)
webhook_delivery_seconds = Histogram(
    "webhook_delivery_seconds",
    "Webhook delivery duration seconds per endpoint attempt",
    ["service"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
