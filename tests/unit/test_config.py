"""Unit tests for configuration module."""

from __future__ import annotations

import pytest

from orm_engine.infrastructure.config import (
    Config,
    DatabaseConfig,
    EncryptionConfig,
    ModelConfig,
    ObservabilityConfig,
    get_config,
)


@pytest.mark.unit
class TestConfig:
    """Tests for Config class."""

    def test_default_config(self) -> None:
        """Test default configuration values."""
        config = Config()

        assert config.database.path == ":memory:"
        assert config.database.query_log is False
        assert config.database.savepoint_prefix == "trans_"
        assert config.models.date_format == "%Y-%m-%d %H:%M:%S"
        assert config.models.per_page == 15
        assert config.models.max_per_page == 100
        assert config.models.chunk_size == 1000
        assert config.models.prevent_lazy_loading is False
        assert config.encryption_key is None
        assert config.observability.log_statements is True
        assert config.observability.otel_endpoint is None
        assert config.observability.metrics_port is None

    def test_custom_model_config(self, test_config: Config) -> None:
        """Test custom model configuration."""
        assert test_config.models.per_page == 10
        assert test_config.models.max_per_page == 50
        assert test_config.database.query_log is True

    def test_invalid_page_size(self) -> None:
        """Test that a zero page size raises validation error."""
        with pytest.raises(ValueError):
            ModelConfig(per_page=0)

    def test_invalid_savepoint_prefix(self) -> None:
        """Savepoint names must be plain identifiers."""
        with pytest.raises(ValueError):
            DatabaseConfig(savepoint_prefix="bad name;")

    def test_low_kdf_iterations_rejected(self) -> None:
        """Test that weak key derivation settings are rejected."""
        with pytest.raises(ValueError):
            EncryptionConfig(kdf_iterations=10)

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Nested settings are read from ORM_ENGINE_ variables."""
        monkeypatch.setenv("ORM_ENGINE_MODELS__PER_PAGE", "25")
        monkeypatch.setenv("ORM_ENGINE_DATABASE__QUERY_LOG", "true")

        config = Config()

        assert config.models.per_page == 25
        assert config.database.query_log is True

    def test_encryption_key_is_secret(self, encryption_key: str) -> None:
        """The key is masked in reprs but available to the encrypter."""
        config = get_config()

        assert config.encryption_key == encryption_key
        assert encryption_key not in repr(config.encryption)

    def test_empty_encryption_key_counts_as_missing(self) -> None:
        """Test that an empty key is treated as unset."""
        config = Config(encryption=EncryptionConfig(key=""))
        assert config.encryption_key is None


@pytest.mark.unit
class TestConfigSingleton:
    """Tests for get_config singleton."""

    def test_get_config_returns_same_instance(self) -> None:
        """Test that get_config returns the same instance."""
        config1 = get_config()
        config2 = get_config()
        assert config1 is config2


@pytest.mark.unit
class TestObservabilityConfig:
    """Tests for the observability section."""

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Observability settings are read from nested variables."""
        monkeypatch.setenv("ORM_ENGINE_OBSERVABILITY__METRICS_PORT", "9464")
        monkeypatch.setenv("ORM_ENGINE_OBSERVABILITY__LOG_STATEMENTS", "false")

        config = Config()

        assert config.observability.metrics_port == 9464
        assert config.observability.log_statements is False

    def test_invalid_metrics_port(self) -> None:
        """Test that an out-of-range port raises validation error."""
        with pytest.raises(ValueError):
            ObservabilityConfig(metrics_port=70000)
