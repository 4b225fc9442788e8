"""Data models for synchronization operations."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from index_sync.models.entity import DripList, Project


class ChangeSet(BaseModel):
    """Entities changed since the previous watermark, produced by one detection cycle."""

    model_config = ConfigDict(frozen=True)

    drip_lists: tuple[DripList, ...] = Field(
        default=(), description="Changed list-like entities"
    )
    projects: tuple[Project, ...] = Field(default=(), description="Changed record-like entities")
    timestamp: datetime = Field(
        default=..., description="Watermark to adopt once the changes are applied"
    )

    @property
    def has_changes(self) -> bool:
        """Check if there are any changes to process."""
        return bool(self.drip_lists or self.projects)

    @property
    def total_changes(self) -> int:
        """Get total number of changed entities."""
        return len(self.drip_lists) + len(self.projects)


class SyncMetrics(BaseModel):
    """Snapshot of the synchronizer's process-lifetime counters."""

    model_config = ConfigDict(frozen=True)

    last_sync_time: datetime | None = Field(
        default=None, description="Watermark of the last successfully applied change set"
    )
    last_successful_sync: datetime | None = Field(
        default=None, description="Wall-clock time of the last successful apply"
    )
    total_processed_records: int = Field(
        default=0, ge=0, description="Entities applied since the process started"
    )


class SynchronizerState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"
