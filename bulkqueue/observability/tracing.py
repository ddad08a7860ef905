"""
OpenTelemetry tracing setup.

Spans are always created so log records carry trace ids; they leave the
process only when OTEL_ENABLED is set.
"""

import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Tracer

from bulkqueue import __version__
from bulkqueue.config import Settings, get_settings

logger = logging.getLogger(__name__)

_tracer: Tracer | None = None


def build_tracer_provider(settings: Settings) -> TracerProvider:
    """Tracer provider for the service, sampling root spans at OTEL_SAMPLE_RATIO."""
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
            }
        ),
        sampler=ParentBased(TraceIdRatioBased(settings.otel_sample_ratio)),
    )

    if settings.otel_enabled:
        try:
            exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
            provider.add_span_processor(BatchSpanProcessor(exporter))
        except Exception as e:
            logger.warning("OTLP exporter unavailable", extra={"error": str(e)})

    return provider


def setup_tracing() -> Tracer:
    """Install the service tracer provider and return the service tracer."""
    global _tracer

    settings = get_settings()
    trace.set_tracer_provider(build_tracer_provider(settings))
    _tracer = trace.get_tracer(settings.otel_service_name)

    logger.info(
        "Tracing configured",
        extra={"export": settings.otel_enabled, "sample_ratio": settings.otel_sample_ratio},
    )
    return _tracer


def instrument_fastapi(app: Any) -> None:
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: Any) -> None:
    """Trace statements of an async engine (instrumented through its sync core)."""
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def get_tracer() -> Tracer:
    """
    Get the service tracer.

    Before setup_tracing runs this is the globally registered tracer, which
    yields no-op spans.
    """
    if _tracer is None:
        return trace.get_tracer(get_settings().otel_service_name)
    return _tracer


def create_span(name: str, **attributes: Any) -> Any:
    """
    Start a span as the current span.

    Attribute values are stringified; None values are dropped.

    Usage:
        with create_span(SPAN_CLAIM_JOB, queue=queue.value):
            ...
    """
    attrs = {key: str(value) for key, value in attributes.items() if value is not None}
    return get_tracer().start_as_current_span(name, attributes=attrs)
