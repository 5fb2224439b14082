"""
Observability and monitoring integrations.
structlog for structured logging, Sentry for error tracking.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.redis import RedisIntegration

from app.core.config import settings

logger = structlog.get_logger(__name__)

_sentry_initialized = False


def configure_logging() -> None:
    """
    Configure structlog and the stdlib root logger.

    log_format "json" emits one JSON object per line (for log shipping);
    "console" renders coloured key=value output for local development.
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def init_sentry() -> None:
    """Initialize Sentry error tracking."""
    global _sentry_initialized

    if _sentry_initialized or not settings.sentry_dsn:
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            RedisIntegration(),
        ],
        # Don't send PII (phone numbers live in callback metadata)
        send_default_pii=False,
    )

    _sentry_initialized = True
    logger.info(
        "Sentry initialized",
        environment=settings.sentry_environment,
        sample_rate=settings.sentry_traces_sample_rate,
    )


def capture_exception(error: Exception, context: Optional[dict] = None) -> None:
    """
    Capture an exception to Sentry with additional context.

    Args:
        error: The exception to capture
        context: Additional context to attach
    """
    if not settings.sentry_dsn:
        return

    if context:
        sentry_sdk.set_context("additional", context)

    sentry_sdk.capture_exception(error)


def set_task_context(task_id: str, user_id: str, task_type: Optional[str] = None) -> None:
    """Attach the orchestrated task to Sentry events and to bound log context."""
    structlog.contextvars.bind_contextvars(task_id=task_id)

    if not settings.sentry_dsn:
        return

    sentry_sdk.set_user({"id": user_id})
    sentry_sdk.set_context("agent_task", {
        "task_id": task_id,
        "task_type": task_type,
    })


@contextmanager
def trace_span(name: str, metadata: Optional[dict] = None):
    """
    Context manager for creating Sentry trace spans.

    Args:
        name: Span name
        metadata: Additional metadata
    """
    if not settings.sentry_dsn:
        yield
        return

    with sentry_sdk.start_span(op=name) as span:
        for key, value in (metadata or {}).items():
            span.set_data(key, value)
        yield
