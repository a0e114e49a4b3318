"""Application configuration using Pydantic Settings.

Loads configuration from environment variables and .env files.
Each concern has its own settings class and environment prefix.
"""

from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """ClickHouse connection configuration."""

    model_config = SettingsConfigDict(env_prefix="CLICKHOUSE_")

    host: str = "localhost"
    port: int = Field(default=9000, ge=1, le=65535)
    user: str = "default"
    password: SecretStr = SecretStr("")
    database: str = "default"
    secure: bool = False
    connect_timeout: int = Field(default=10, ge=1)

    # Performance tuning
    echo: bool = False

    @property
    def async_url(self) -> str:
        """Construct async ClickHouse connection URL."""
        password = self.password.get_secret_value()
        auth = f"{self.user}:{password}" if password else self.user
        return f"clickhouse+asynch://{auth}@{self.host}:{self.port}/{self.database}"


class PipelineSettings(BaseSettings):
    """Classification and batching pipeline configuration."""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    # Bounded queue between the reader and the writer stage
    queue_size: int = Field(default=100, ge=1)

    # Records per bulk insert
    bunch_size: int = Field(default=100000, ge=1)

    # Fixed collection timestamp; current time at start if unset
    collected: datetime | None = None

    # Write policy. One attempt means no retries.
    write_attempts: int = Field(default=1, ge=1, le=10)
    retry_delay: float = Field(default=1.0, ge=0.0, le=60.0)

    # First field of the ipcad table header
    header_token: str = "Source"


class LookupSourceSettings(BaseSettings):
    """Common fields for lookup table sources."""

    url: str | None = None
    file: Path | None = None
    comma: str = ","
    timeout: float = Field(default=30.0, ge=0.1)

    @field_validator("comma")
    @classmethod
    def validate_comma(cls, v: str) -> str:
        """CSV delimiter must be a single character."""
        if len(v) != 1:
            raise ValueError("comma must be a single character")
        return v


class UsersSettings(LookupSourceSettings):
    """User lookup table configuration (IP address -> user id)."""

    model_config = SettingsConfigDict(env_prefix="USERS_")

    users: dict[str, str] = Field(default_factory=dict)

    # CSV column indexes
    id_field: int = Field(default=0, ge=0)
    ip_field: int = Field(default=1, ge=0)


class NetworksSettings(LookupSourceSettings):
    """Network lookup table configuration (CIDR -> class)."""

    model_config = SettingsConfigDict(env_prefix="NETWORKS_")

    networks: dict[str, str] = Field(default_factory=dict)

    # CSV column indexes
    cidr_field: int = Field(default=0, ge=0)
    class_field: int = Field(default=1, ge=0)


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "console"] = "json"
    include_timestamp: bool = True
    include_caller: bool = True


class MetricsSettings(BaseSettings):
    """Prometheus exporter configuration."""

    model_config = SettingsConfigDict(env_prefix="METRICS_")

    # 0 disables the exporter
    port: int = Field(default=0, ge=0, le=65535)
    bind_address: str = "0.0.0.0"


class Settings(BaseSettings):
    """Main application settings aggregating all configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application info
    app_name: str = "acctflow"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "production"

    # Sub-configurations
    storage: StorageSettings = Field(default_factory=StorageSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    users: UsersSettings = Field(default_factory=UsersSettings)
    networks: NetworksSettings = Field(default_factory=NetworksSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton."""
    return Settings()
