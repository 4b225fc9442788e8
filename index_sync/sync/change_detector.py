"""Polling change detection against the source database."""

import asyncio
from contextlib import suppress
from datetime import datetime
from typing import Iterable

import structlog

from index_sync.models.config import EPOCH, ChangeDetectionConfig, DetectionMode
from index_sync.models.entity import (
    ALLOWED_CHAINS,
    Chain,
    DripList,
    Entity,
    EntityKind,
    Project,
)
from index_sync.storage.postgres import PostgresSource
from index_sync.sync.models import ChangeSet
from index_sync.sync.protocols import OnChangesDetected
from index_sync.sync.watermark import WatermarkTracker

log = structlog.stdlib.get_logger()

_MODELS: dict[EntityKind, type[Entity]] = {
    EntityKind.DRIP_LISTS: DripList,
    EntityKind.PROJECTS: Project,
}


class DisallowedPartitionError(ValueError):
    """Raised when a configured chain is not an allowed database schema."""

    pass


def validate_chains(chains: Iterable[Chain | str]) -> tuple[Chain, ...]:
    """
    Check chains against the schema allow-list.

    Args:
        chains: Chains (or raw schema names) to poll

    Returns:
        The chains as ``Chain`` members, duplicates removed, order preserved

    Raises:
        DisallowedPartitionError: If a chain is not allowed or none is given
    """
    validated: list[Chain] = []

    for chain in chains:
        value = chain.value if isinstance(chain, Chain) else chain
        if value not in ALLOWED_CHAINS:
            raise DisallowedPartitionError(f'Schema "{value}" is not allowed.')
        if Chain(value) not in validated:
            validated.append(Chain(value))

    if not validated:
        raise DisallowedPartitionError("At least one chain must be configured.")

    return tuple(validated)


class PollingChangeDetector:
    """Polls the source at a fixed interval and reports changed entities.

    In incremental mode each cycle reads, per kind and chain, the rows whose
    ``updatedAt`` is at or after the watermark, skipping rows locked by
    concurrent writers. In full-refresh mode every row is read each cycle.
    The watermark only moves once the registered callback has returned, so a
    change set whose apply fails is read again on the next cycle.
    """

    def __init__(
        self,
        source: PostgresSource,
        chains: Iterable[Chain | str],
        polling_interval: float = 30.0,
        batch_size: int = 1000,
        mode: DetectionMode = DetectionMode.INCREMENTAL,
        cycle_timeout: float = 60.0,
        initial_watermark: datetime = EPOCH,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        """
        Initialize the change detector.

        Args:
            source: Source database to poll
            chains: Chains whose schemas are polled and unioned into one change set
            polling_interval: Seconds between two cycles
            batch_size: Maximum rows per kind and chain in incremental mode
            mode: Incremental (watermark filtered) or full refresh
            cycle_timeout: Seconds the read phase of a cycle may take
            initial_watermark: Watermark to start from
            logger: Optional bound logger, defaults to the module logger

        Raises:
            DisallowedPartitionError: If a chain is not an allowed schema
        """
        self._chains: tuple[Chain, ...] = validate_chains(chains)
        self._source = source
        self._polling_interval = polling_interval
        self._batch_size = batch_size
        self._mode = DetectionMode(mode)
        self._cycle_timeout = cycle_timeout
        self._log = (logger or log).bind(component="change_detector")
        self._watermark = WatermarkTracker(initial_watermark, self._log)

        self._running = False
        self._on_changes_detected: OnChangesDetected | None = None
        self._timer: asyncio.Task[None] | None = None
        self._cycle: asyncio.Task[None] | None = None

    @classmethod
    def from_config(
        cls,
        source: PostgresSource,
        config: ChangeDetectionConfig,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> "PollingChangeDetector":
        return cls(
            source,
            chains=config.chains,
            polling_interval=config.polling_interval,
            batch_size=config.batch_size,
            mode=config.mode,
            cycle_timeout=config.cycle_timeout,
            initial_watermark=config.initial_watermark,
            logger=logger,
        )

    @property
    def watermark(self) -> datetime:
        return self._watermark.current

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def chains(self) -> tuple[Chain, ...]:
        return self._chains

    async def start(self, on_changes_detected: OnChangesDetected) -> None:
        """
        Run one detection cycle now and then one every polling interval.

        Calling start on a running detector logs a warning and does nothing.

        Args:
            on_changes_detected: Coroutine function receiving each change set
        """
        if self._running:
            self._log.warning("change_detection_already_running")
            return

        self._log.info(
            "change_detection_starting",
            interval_seconds=self._polling_interval,
            mode=self._mode.value,
            chains=[chain.value for chain in self._chains],
            watermark=self.watermark.isoformat(),
        )
        self._running = True
        self._on_changes_detected = on_changes_detected

        await self.poll_once()

        # The callback may have stopped the detector during the first cycle.
        if not self._running:
            self._log.info("change_detection_stopped_during_initial_cycle")
            return

        self._timer = asyncio.create_task(self._tick(), name="change-detection-timer")

    async def stop(self) -> None:
        """
        Stop scheduling cycles.

        A cycle already in flight is not cancelled; use ``wait_idle`` to wait
        for it to finish.
        """
        if not self._running and self._timer is None:
            return

        self._log.info("change_detection_stopping")
        self._running = False

        timer, self._timer = self._timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()
            with suppress(asyncio.CancelledError):
                await timer

    async def wait_idle(self) -> None:
        """Wait for the in-flight cycle, if any, to finish."""
        cycle = self._cycle
        if cycle is None or cycle.done() or cycle is asyncio.current_task():
            return
        await asyncio.wait({cycle})

    async def poll_once(self) -> bool:
        """
        Run one detection cycle unless one is already in flight.

        Errors raised by the cycle are logged and never propagate.

        Returns:
            True if a cycle ran, False if it was skipped
        """
        if self._cycle is not None and not self._cycle.done():
            self._log.warning("polling_tick_skipped", watermark=self.watermark.isoformat())
            return False

        self._cycle = asyncio.create_task(self._run_cycle(), name="change-detection-cycle")
        await asyncio.wait({self._cycle})
        return True

    async def detect_changes(self) -> ChangeSet | None:
        """
        Read changed entities from the source.

        Both kinds are read concurrently, each in its own transaction; within
        a kind the chains are read in turn and unioned. If one read fails the
        other is cancelled and awaited, so its transaction is rolled back
        before the error propagates.

        Returns:
            The change set with the watermark to adopt, or None if nothing changed

        Raises:
            Exception: Any source error; the failing transaction is rolled back
        """
        since = self._watermark.current

        reads = [
            asyncio.ensure_future(self._read_kind(EntityKind.DRIP_LISTS, since)),
            asyncio.ensure_future(self._read_kind(EntityKind.PROJECTS, since)),
        ]
        try:
            drip_list_batches, project_batches = await asyncio.gather(*reads)
        except BaseException:
            for read in reads:
                read.cancel()
            await asyncio.gather(*reads, return_exceptions=True)
            raise

        timestamp = self._watermark.propose(
            (
                [entity.updated_at for entity in batch]
                for batch in [*drip_list_batches, *project_batches]
            ),
            self._batch_size if self._mode is DetectionMode.INCREMENTAL else None,
        )

        if timestamp is None:
            return None

        return ChangeSet(
            drip_lists=tuple(entity for batch in drip_list_batches for entity in batch),
            projects=tuple(entity for batch in project_batches for entity in batch),
            timestamp=timestamp,
        )

    async def _tick(self) -> None:
        while self._running:
            await asyncio.sleep(self._polling_interval)
            if not self._running:
                break
            await self.poll_once()

    async def _run_cycle(self) -> None:
        try:
            await self._poll()
        except Exception as e:
            self._log.error(
                "polling_cycle_failed",
                error=str(e),
                error_type=type(e).__name__,
                watermark=self.watermark.isoformat(),
                exc_info=True,
            )

    async def _poll(self) -> None:
        if self._on_changes_detected is None:
            raise RuntimeError("Change detector polled before start()")

        changes = await asyncio.wait_for(self.detect_changes(), timeout=self._cycle_timeout)

        if changes is None:
            self._log.info("no_changes_detected", watermark=self.watermark.isoformat())
            return

        self._log.info(
            "changes_detected",
            drip_lists=len(changes.drip_lists),
            projects=len(changes.projects),
            watermark=self.watermark.isoformat(),
            next_watermark=changes.timestamp.isoformat(),
        )

        await self._on_changes_detected(changes)

        self._watermark.advance(changes.timestamp)

    async def _read_kind(self, kind: EntityKind, since: datetime) -> list[list[Entity]]:
        model = _MODELS[kind]
        batches: list[list[Entity]] = []

        async with self._source.transaction() as tx:
            for chain in self._chains:
                if self._mode is not DetectionMode.INCREMENTAL:
                    rows = await tx.fetch_all(kind, chain)
                    batches.append([model.model_validate(row) for row in rows])
                    continue

                rows = await tx.fetch_changed(kind, chain, since, self._batch_size)
                batch = [model.model_validate(row) for row in rows]

                # A full batch stuck on the watermark would never let it move.
                if len(batch) >= self._batch_size and batch[-1].updated_at <= since:
                    rows = await tx.fetch_at(kind, chain, since)
                    batch = [model.model_validate(row) for row in rows]
                    self._log.warning(
                        "watermark_batch_saturated",
                        kind=kind.value,
                        chain=chain.value,
                        watermark=since.isoformat(),
                        batch_size=self._batch_size,
                        drained=len(batch),
                    )

                batches.append(batch)

        return batches
