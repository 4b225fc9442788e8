"""Change detection and synchronization of the search indexes."""

from index_sync.sync.change_detector import DisallowedPartitionError, PollingChangeDetector
from index_sync.sync.models import ChangeSet, SyncMetrics, SynchronizerState
from index_sync.sync.protocols import ChangeDetector, OnChangesDetected, Synchronizer
from index_sync.sync.synchronizer import MeiliSearchSynchronizer
from index_sync.sync.watermark import WatermarkTracker

__all__ = [
    "ChangeDetector",
    "ChangeSet",
    "DisallowedPartitionError",
    "MeiliSearchSynchronizer",
    "OnChangesDetected",
    "PollingChangeDetector",
    "SyncMetrics",
    "Synchronizer",
    "SynchronizerState",
    "WatermarkTracker",
]
