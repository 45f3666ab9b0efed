"""Observability for the content-store access layer.

structlog logging with request-scoped context, Prometheus metrics, and
the request-ID / metrics / access-log middleware wired by ``create_app``.
"""

from .logging import configure_logging, get_logger, redact_token
from .metrics import metrics_text

__all__ = [
    "configure_logging",
    "get_logger",
    "metrics_text",
    "redact_token",
]
