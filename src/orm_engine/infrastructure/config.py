"""Configuration management for the ORM engine."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseModel):
    """Storage connection configuration."""

    path: str = Field(default=":memory:", description="SQLite database path for the default connection")
    query_log: bool = Field(default=False, description="Record every executed statement")
    savepoint_prefix: str = Field(
        default="trans_", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$", description="Savepoint name prefix"
    )


class ModelConfig(BaseModel):
    """Entity behaviour configuration."""

    date_format: str = Field(default="%Y-%m-%d %H:%M:%S", description="Storage format for date columns")
    per_page: int = Field(default=15, ge=1, description="Default page size")
    max_per_page: int = Field(default=100, ge=1, description="Upper bound applied to page sizes")
    chunk_size: int = Field(default=1000, ge=1, description="Default chunk size for lazy iteration")
    prevent_lazy_loading: bool = Field(
        default=False, description="Raise instead of lazily loading relations"
    )


class EncryptionConfig(BaseModel):
    """Encrypted attribute configuration."""

    key: SecretStr | None = Field(default=None, description="Application encryption key")
    kdf_iterations: int = Field(default=10000, ge=1000, description="PBKDF2 iterations")


class ObservabilityConfig(BaseModel):
    """Logging, tracing and metrics configuration applied by configure_observability()."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(default="json", description="Log format")
    log_statements: bool = Field(
        default=True, description="Include SQL text in statement log events"
    )
    otel_endpoint: str | None = Field(
        default=None, description="OpenTelemetry collector endpoint"
    )
    otel_service_name: str = Field(default="orm_engine", description="Service name for tracing")
    console_traces: bool = Field(default=False, description="Also print finished spans to stdout")
    metrics_port: int | None = Field(
        default=None, ge=1, le=65535, description="Serve Prometheus metrics on this port when set"
    )


class Config(BaseSettings):
    """Main configuration for the ORM engine."""

    model_config = SettingsConfigDict(
        env_prefix="ORM_ENGINE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    models: ModelConfig = Field(default_factory=ModelConfig)
    encryption: EncryptionConfig = Field(default_factory=EncryptionConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    @property
    def encryption_key(self) -> str | None:
        """Return the plain encryption key, if one is configured."""
        if self.encryption.key is None:
            return None
        value = self.encryption.key.get_secret_value()
        return value or None


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()
