"""Configuration models for the search index synchronizer."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from index_sync.models.entity import Chain

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class DetectionMode(str, Enum):
    """How the change detector reads the source."""

    INCREMENTAL = "incremental"
    FULL_REFRESH = "full_refresh"


class ChangeDetectionConfig(BaseModel):
    """Configuration for the polling change detector."""

    chains: list[Chain] = Field(
        default=..., min_length=1, description="Database schemas to poll, one per chain"
    )
    polling_interval: float = Field(
        default=30.0, gt=0, description="Seconds between two detection cycles"
    )
    batch_size: int = Field(
        default=1000, ge=1, le=100_000, description="Maximum rows per kind and chain per cycle"
    )
    mode: DetectionMode = Field(
        default=DetectionMode.INCREMENTAL, description="incremental or full_refresh"
    )
    cycle_timeout: float = Field(
        default=60.0, gt=0, description="Seconds a single detection cycle may take"
    )
    initial_watermark: datetime = Field(
        default=EPOCH, description="Watermark the detector starts from"
    )

    @field_validator("initial_watermark")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class PostgresConfig(BaseModel):
    """Configuration for the source database."""

    dsn: str = Field(default=..., min_length=1, description="PostgreSQL connection string")
    min_pool_size: int = Field(default=1, ge=1, description="Minimum pooled connections")
    max_pool_size: int = Field(default=10, ge=1, description="Maximum pooled connections")
    command_timeout: float = Field(
        default=30.0, gt=0, description="Seconds a single statement may take"
    )
    change_detection: ChangeDetectionConfig


class MeiliSearchConfig(BaseModel):
    """Configuration for the Meilisearch backend."""

    host: HttpUrl = Field(default=..., description="Meilisearch base URL")
    api_key: str = Field(default=..., min_length=1, description="Meilisearch API key")
    timeout: float = Field(default=5.0, gt=0, description="HTTP request timeout in seconds")
    task_timeout: float = Field(
        default=30.0, gt=0, description="Seconds to wait for a task to reach a terminal state"
    )
    task_poll_interval: float = Field(
        default=0.1, gt=0, description="Seconds between two task status polls"
    )
    drip_lists_index: str = Field(default="drip_lists", description="Drip lists index uid")
    projects_index: str = Field(default="projects", description="Projects index uid")


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        description="If True, output JSON logs. If False, use console format.",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional path to log file. If None, logs only to stdout.",
    )


class HealthConfig(BaseModel):
    """Configuration for the HTTP health endpoint."""

    enabled: bool = Field(default=True, description="Serve the health endpoint")
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=3000, ge=1, le=65535, description="Bind port")


class AppConfig(BaseSettings):
    """Main application configuration.

    This class uses pydantic-settings to load configuration from environment
    variables with the APP_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    env: str = Field(default="development", pattern="^(development|test|production)$")
    postgres: PostgresConfig
    meilisearch: MeiliSearchConfig
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
