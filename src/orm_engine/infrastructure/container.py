"""Process-wide service container and observability bootstrap.

The engine shares one storage connection (and one Database facade over it)
across every entity type. Both are registered here as lazy factories and
built on first resolve, so importing the library never opens a connection.

configure_observability() applies the observability config section to
structlog, OpenTelemetry and the Prometheus endpoint. The default Database
factory runs it once, before the first connection is opened.
"""

from __future__ import annotations

from typing import Any, Callable, TypeVar

from orm_engine.infrastructure import metrics as metrics_module
from orm_engine.infrastructure import tracing as tracing_module
from orm_engine.infrastructure.config import Config, get_config
from orm_engine.infrastructure.logging import get_logger, setup_logging

T = TypeVar("T")


class Container:
    """
    Minimal dependency container.

    Supports instance and factory registrations with lazy initialization.
    """

    def __init__(self) -> None:
        """Initialize the container."""
        self._factories: dict[type, Callable[[Container], Any]] = {}
        self._instances: dict[type, Any] = {}

    def register_instance(self, interface: type[T], instance: T) -> None:
        """
        Register a ready-made instance.

        Args:
            interface: The type to register under
            instance: The instance returned by resolve()
        """
        self._instances[interface] = instance

    def register_factory(
        self,
        interface: type[T],
        factory: Callable[[Container], T],
    ) -> None:
        """
        Register a factory building the instance on first resolve.

        Registering a factory drops any instance already built for the type.

        Args:
            interface: The type to register under
            factory: Called with the container; returns the instance
        """
        self._factories[interface] = factory
        self._instances.pop(interface, None)

    def resolve(self, interface: type[T]) -> T:
        """
        Resolve a registration, building it if needed.

        Raises:
            KeyError: If nothing is registered for the type
        """
        if interface in self._instances:
            return self._instances[interface]

        if interface in self._factories:
            instance = self._factories[interface](self)
            self._instances[interface] = instance
            return instance

        raise KeyError(f"No registration found for {interface}")

    def has(self, interface: type) -> bool:
        """Check if a type is registered."""
        return interface in self._factories or interface in self._instances

    def is_resolved(self, interface: type) -> bool:
        """Check if an instance has been built (or registered) for a type."""
        return interface in self._instances

    def forget(self, interface: type) -> Any:
        """Drop the built instance for a type and return it. The factory stays."""
        return self._instances.pop(interface, None)

    def clear(self) -> None:
        """Clear all registrations and instances."""
        self._factories.clear()
        self._instances.clear()


_container: Container | None = None


def get_container() -> Container:
    """Get the process-wide container."""
    global _container
    if _container is None:
        _container = Container()
    return _container


_observability_configured = False


def configure_observability(config: Config | None = None, force: bool = False) -> bool:
    """
    Apply the observability section of the config.

    Logging is always configured. Tracing is set up when an OTLP endpoint or
    console export is configured, and the metrics endpoint is started when a
    port is configured. Runs once per process unless force is set.

    Args:
        config: Configuration to apply (default: get_config())
        force: Re-apply even if already configured

    Returns:
        True if the configuration was applied by this call
    """
    global _observability_configured
    if _observability_configured and not force:
        return False

    settings = (config or get_config()).observability
    setup_logging(
        level=settings.log_level,
        log_format=settings.log_format,
        log_statements=settings.log_statements,
    )
    if settings.otel_endpoint or settings.console_traces:
        tracing_module.setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_endpoint,
            console_export=settings.console_traces,
        )
    if settings.metrics_port is not None:
        metrics_module.setup_metrics(settings.metrics_port)

    _observability_configured = True
    get_logger(__name__).info(
        "Observability configured",
        log_level=settings.log_level,
        tracing=bool(settings.otel_endpoint or settings.console_traces),
        metrics_port=settings.metrics_port,
    )
    return True
