"""structlog pipeline for the content-store access layer.

Every line, whether emitted through ``get_logger()`` or a stdlib
``logging.getLogger(__name__)`` logger, goes through one processor chain:

    request context -> level, logger, timestamp -> scrub_secrets -> renderer

Request-scoped fields live in structlog's contextvars: the middleware binds
``request_id`` and the download route binds ``file_id``, so everything
logged while resolving or verifying carries them without passing them
around.

Usage::

    from content_store.app.observability.logging import configure_logging, get_logger

    configure_logging()  # once, in the process entry point
    logger = get_logger(__name__)
    logger.info("access_verdict", file_id=file_id, verdict="grant", reason="owner")
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog
from structlog.contextvars import get_contextvars, merge_contextvars

# Characters of a token or signature kept for log correlation.
TOKEN_PREFIX_LENGTH = 8

# Event keys whose values are credentials or signatures.
SENSITIVE_KEYS = frozenset({
    "authorization",
    "credential",
    "jwt_secret",
    "sig",
    "signature",
    "signed_url_secret",
    "token",
})

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")

_HANDLER_MARKER = "_content_store_handler"


def redact_token(token: str | None) -> str:
    """Truncate a token or signature to ``<prefix>...`` for logging.

    Missing or short values become ``<redacted>``.
    """
    if not token or len(token) < TOKEN_PREFIX_LENGTH:
        return "<redacted>"
    return f"{token[:TOKEN_PREFIX_LENGTH]}..."


def scrub_secrets(
    logger: Any, method_name: str, event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Replace credential-bearing values with their redacted prefix."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        value = event_dict[key]
        event_dict[key] = redact_token(value if isinstance(value, str) else None)
    return event_dict


def current_request_id() -> str | None:
    """Request ID bound by RequestIdMiddleware for the running request."""
    return get_contextvars().get("request_id")


def _processors() -> list:
    return [
        merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        scrub_secrets,
        structlog.processors.format_exc_info,
    ]


def build_formatter(json_output: bool) -> structlog.stdlib.ProcessorFormatter:
    """Formatter rendering stdlib records through the shared chain."""
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
) -> logging.Handler:
    """Install the structlog pipeline on the root logger.

    ``level`` defaults to ``LOG_LEVEL`` (INFO); ``json_output`` defaults
    to ``LOG_FORMAT != "console"``. Calling it again returns the handler
    installed the first time.
    """
    root = logging.getLogger()
    for existing in root.handlers:
        if getattr(existing, _HANDLER_MARKER, False):
            return existing

    level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "json") != "console"

    structlog.configure(
        processors=[
            *_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(json_output))
    setattr(handler, _HANDLER_MARKER, True)

    root.handlers = [handler]
    root.setLevel(getattr(logging, level, logging.INFO))
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
