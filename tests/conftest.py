"""Pytest configuration and fixtures for orm_engine tests."""

from __future__ import annotations

from typing import Generator

import pytest
from prometheus_client import CollectorRegistry

from orm_engine.adapters.outbound import SQLiteConnection
from orm_engine.application import Database, get_registry, reset_database, set_database
from orm_engine.infrastructure import metrics as metrics_module
from orm_engine.infrastructure.config import (
    Config,
    DatabaseConfig,
    ModelConfig,
    get_config,
)
from orm_engine.infrastructure.metrics import MetricsRegistry, set_metrics

TEST_ENCRYPTION_KEY = "base64:test-application-key-0123456789"


@pytest.fixture
def test_config() -> Config:
    """Provide a test configuration."""
    return Config(
        database=DatabaseConfig(path=":memory:", query_log=True),
        models=ModelConfig(per_page=10, max_per_page=50, chunk_size=2),
    )


@pytest.fixture
def metrics_registry() -> Generator[MetricsRegistry, None, None]:
    """Provide a fresh metrics registry installed as the global one."""
    # Use a separate registry to avoid conflicts between tests
    previous = metrics_module._metrics
    registry = MetricsRegistry(registry=CollectorRegistry(auto_describe=True))
    set_metrics(registry)
    yield registry
    set_metrics(previous)


@pytest.fixture
def encryption_key(monkeypatch: pytest.MonkeyPatch) -> Generator[str, None, None]:
    """Configure an application encryption key through the environment."""
    monkeypatch.setenv("ORM_ENGINE_ENCRYPTION__KEY", TEST_ENCRYPTION_KEY)
    get_config.cache_clear()
    yield TEST_ENCRYPTION_KEY
    get_config.cache_clear()


@pytest.fixture
def connection() -> Generator[SQLiteConnection, None, None]:
    """Provide an in-memory SQLite connection."""
    conn = SQLiteConnection(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def make_database(metrics_registry: MetricsRegistry):
    """Build a process-wide Database over a fresh in-memory store with the given schema."""
    created: list[Database] = []

    def factory(schema: str = "") -> Database:
        conn = SQLiteConnection(":memory:")
        if schema:
            conn.execute_script(schema)
        db = Database(conn, metrics=metrics_registry, query_log=True)
        set_database(db)
        created.append(db)
        return db

    yield factory
    if created:
        reset_database()
    registry = get_registry()
    registry.prevent_lazy_loading = None
    registry.clear_morph_map()


# Markers for test categories
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
