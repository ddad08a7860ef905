"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from bulkqueue.observability.logging import job_log_context, setup_logging
from bulkqueue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from bulkqueue.observability.tracing import create_span, get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "job_log_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
    "create_span",
]
