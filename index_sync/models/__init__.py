"""Data models for the search index synchronizer."""

from index_sync.models.config import (
    AppConfig,
    ChangeDetectionConfig,
    DetectionMode,
    HealthConfig,
    LoggingConfig,
    MeiliSearchConfig,
    PostgresConfig,
)
from index_sync.models.entity import (
    ALLOWED_CHAINS,
    Chain,
    DripList,
    Entity,
    EntityKind,
    Project,
)

__all__ = [
    "ALLOWED_CHAINS",
    "AppConfig",
    "Chain",
    "ChangeDetectionConfig",
    "DetectionMode",
    "DripList",
    "Entity",
    "EntityKind",
    "HealthConfig",
    "LoggingConfig",
    "MeiliSearchConfig",
    "PostgresConfig",
    "Project",
]
