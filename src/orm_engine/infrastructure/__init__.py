"""Infrastructure layer - cross-cutting concerns."""

from orm_engine.infrastructure.config import Config, get_config
from orm_engine.infrastructure.container import Container, configure_observability, get_container
from orm_engine.infrastructure.logging import setup_logging, get_logger
from orm_engine.infrastructure.metrics import setup_metrics, get_metrics, MetricsRegistry
from orm_engine.infrastructure.tracing import setup_tracing, get_tracer, trace_span

__all__ = [
    "Config",
    "get_config",
    "Container",
    "get_container",
    "configure_observability",
    "setup_logging",
    "get_logger",
    "setup_metrics",
    "get_metrics",
    "MetricsRegistry",
    "setup_tracing",
    "get_tracer",
    "trace_span",
]
