"""
Structured logging setup using structlog.

Modules log through the standard library (``logging.getLogger(__name__)``
with ``extra={...}``); structlog renders every record, adding the bound
job context and the current trace ids.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from opentelemetry import trace

from bulkqueue.config import get_settings

# Libraries whose INFO output drowns job logs
NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore", "aiosqlite")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Add the current OpenTelemetry trace and span ids to a log event."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure structured logging for the process.

    Args:
        level: Log level name. Defaults to LOG_LEVEL.
        log_format: "json" or "console". Defaults to LOG_FORMAT.
    """
    settings = get_settings()
    level = (level or settings.log_level).upper()
    log_format = log_format or settings.log_format

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.ExtraAdder(),
    ]

    if log_format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def job_log_context(job_id: str, queue: str, **fields: Any) -> Iterator[None]:
    """
    Bind job fields to every log record emitted inside the block.

    Context variables are task-local, so concurrent executors never see
    each other's job fields.
    """
    with structlog.contextvars.bound_contextvars(job_id=job_id, queue=queue, **fields):
        yield
