"""Prometheus metrics for the ORM engine."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
    REGISTRY,
    CollectorRegistry,
)


class MetricsRegistry:
    """Registry of all ORM engine metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Statement metrics
        self.queries_total = Counter(
            "orm_queries_total",
            "Total number of statements executed",
            ["statement_type", "status"],  # status: success, error
            registry=self._registry,
        )

        self.query_latency_seconds = Histogram(
            "orm_query_latency_seconds",
            "Statement latency in seconds",
            ["statement_type"],  # select, insert, update, delete, other
            buckets=(0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
            registry=self._registry,
        )

        # Transaction metrics
        self.transactions_total = Counter(
            "orm_transactions_total",
            "Total transaction boundary operations",
            ["status"],  # begin, commit, rollback
            registry=self._registry,
        )

        self.transaction_depth = Gauge(
            "orm_transaction_depth",
            "Current transaction nesting depth",
            registry=self._registry,
        )

        # Eager loading metrics
        self.eager_loads_total = Counter(
            "orm_eager_loads_total",
            "Eager-load steps by relation kind",
            ["relation_kind", "outcome"],  # outcome: loaded, skipped
            registry=self._registry,
        )

        # Entity metrics
        self.models_hydrated_total = Counter(
            "orm_models_hydrated_total",
            "Entities hydrated from result rows",
            ["model"],
            registry=self._registry,
        )

        self.concurrency_conflicts_total = Counter(
            "orm_concurrency_conflicts_total",
            "Optimistic concurrency conflicts detected on update",
            ["model"],
            registry=self._registry,
        )

        self.info = Info(
            "orm_engine",
            "ORM engine information",
            registry=self._registry,
        )


# Global metrics registry
_metrics: MetricsRegistry | None = None


def setup_metrics(port: int = 8001, registry: CollectorRegistry | None = None) -> MetricsRegistry:
    """
    Serve the engine's metrics over HTTP.

    Without a registry the current global MetricsRegistry is served, so the
    counters already recorded by a running Database stay visible.

    Args:
        port: Port for the metrics HTTP server
        registry: Optional custom registry; installs a new MetricsRegistry on it

    Returns:
        The metrics registry being served
    """
    global _metrics
    if registry is not None:
        _metrics = MetricsRegistry(registry)
    metrics = get_metrics()

    from orm_engine import __version__
    metrics.info.info({"version": __version__})

    start_http_server(port, registry=metrics._registry)
    return metrics


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics


def set_metrics(metrics: MetricsRegistry | None) -> None:
    """Replace the global metrics registry (tests install a private one)."""
    global _metrics
    _metrics = metrics
