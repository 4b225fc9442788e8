"""Contracts between the change detector, the synchronizer and the process wiring."""

from typing import Awaitable, Callable, Protocol

from index_sync.sync.models import ChangeSet, SyncMetrics

OnChangesDetected = Callable[[ChangeSet], Awaitable[None]]


class ChangeDetector(Protocol):
    """Detects changes in the source and reports them to a single consumer.

    The consumer returning normally is the signal that the change set has
    been durably applied and that the detector may move its watermark past it.
    """

    async def start(self, on_changes_detected: OnChangesDetected) -> None: ...

    async def stop(self) -> None: ...

    async def wait_idle(self) -> None: ...


class Synchronizer(Protocol):
    """Applies detected changes to a target and supervises its detector."""

    name: str

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    def get_metrics(self) -> SyncMetrics: ...

    async def is_healthy(self) -> bool: ...
