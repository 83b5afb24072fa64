"""OpenTelemetry tracing for the ORM engine.

Spans emitted by the engine:

    orm.execute     one per executed statement (db.statement_type)
    orm.save        Model.save() (orm.model, orm.exists)
    orm.delete      Model.delete() (orm.model, orm.soft)
    orm.eager_load  one per load()/with_() resolution (orm.relations)

Until setup_tracing() runs, spans come from the API's default provider and
record nothing.
"""

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from typing import Any, Generator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)

TRACER_NAME = "orm_engine"

_tracer: trace.Tracer | None = None


def setup_tracing(
    service_name: str = "orm_engine",
    otlp_endpoint: str | None = None,
    console_export: bool = False,
    exporter: SpanExporter | None = None,
) -> trace.Tracer:
    """
    Set up OpenTelemetry tracing.

    The first call installs its provider as the global one. Later calls
    (tests, reconfiguration) keep the global provider and only replace the
    engine's tracer.

    Args:
        service_name: Name of the service for tracing
        otlp_endpoint: OTLP collector endpoint (e.g., "http://localhost:4317")
        console_export: Whether to also export to console (for debugging)
        exporter: Extra exporter, flushed synchronously per span

    Returns:
        Configured tracer instance
    """
    global _tracer

    from orm_engine import __version__

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": __version__,
        }
    )
    provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)))
    if console_export:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))

    if not isinstance(trace.get_tracer_provider(), TracerProvider):
        trace.set_tracer_provider(provider)

    _tracer = provider.get_tracer(TRACER_NAME, __version__)
    return _tracer


def reset_tracing() -> None:
    """Forget the configured tracer; spans fall back to the global provider."""
    global _tracer
    _tracer = None


def get_tracer() -> trace.Tracer:
    """Get the engine's tracer."""
    if _tracer is None:
        return trace.get_tracer(TRACER_NAME)
    return _tracer


def _attribute_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, bool, int, float)):
        return value
    return str(value)


@contextmanager
def trace_span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[trace.Span, None, None]:
    """
    Context manager for creating a trace span.

    None-valued attributes are skipped; enums are recorded by value and
    other non-primitive values as strings.

    Args:
        name: Name of the span
        attributes: Optional attributes to add to the span

    Yields:
        The created span
    """
    with get_tracer().start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, _attribute_value(value))
        yield span
