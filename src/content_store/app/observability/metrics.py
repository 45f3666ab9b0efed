"""Prometheus metrics for the content-store access layer.

Metric naming follows Prometheus conventions.

Usage::

    from content_store.app.observability.metrics import ACCESS_VERDICTS_TOTAL

    ACCESS_VERDICTS_TOTAL.labels(verdict="grant", reason="owner").inc()
"""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

HTTP_REQUESTS_TOTAL = Counter(
    "content_store_http_requests_total",
    "Total HTTP requests by method, route template and status code.",
    labelnames=["method", "route", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "content_store_http_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "route"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_FLIGHT = Gauge(
    "content_store_http_requests_in_flight",
    "Number of HTTP requests currently being processed.",
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Access-control metrics
# ---------------------------------------------------------------------------

ACCESS_VERDICTS_TOTAL = Counter(
    "content_store_access_verdicts_total",
    "Access decisions by verdict (grant/deny) and reason.",
    labelnames=["verdict", "reason"],
    registry=REGISTRY,
)

CAPABILITY_TOKENS_ISSUED = Counter(
    "content_store_capability_tokens_issued_total",
    "Signed URLs issued to object owners.",
    registry=REGISTRY,
)

COLLABORATOR_FAILURES_TOTAL = Counter(
    "content_store_collaborator_failures_total",
    "Retryable collaborator failures (storage, introspection).",
    labelnames=["collaborator"],
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
