"""Watermark tracking for the polling change detector."""

from datetime import datetime, timedelta
from typing import Iterable, Sequence

import structlog

log = structlog.stdlib.get_logger()

# PostgreSQL timestamps have microsecond resolution.
WATERMARK_RESOLUTION = timedelta(microseconds=1)


class WatermarkTracker:
    """Owns the timestamp boundary below which all source changes have been observed."""

    def __init__(
        self,
        initial: datetime,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        """
        Initialize watermark tracker.

        Args:
            initial: Watermark to start from; rows updated at or after it are read
            logger: Optional bound logger, defaults to the module logger
        """
        self._current: datetime = initial
        self._log = logger or log

    @property
    def current(self) -> datetime:
        return self._current

    def propose(
        self,
        batches: Iterable[Sequence[datetime]],
        batch_size: int | None = None,
    ) -> datetime | None:
        """
        Compute the watermark to adopt once the given batches are applied.

        Each batch holds the ``updated_at`` values returned by one query, in
        ascending order. The proposal is one resolution unit past the newest
        row, so rows sharing that timestamp are not read again. A batch that
        filled ``batch_size`` may have left rows behind; the proposal is then
        capped at that batch's newest timestamp so those rows are read on the
        next cycle.

        A full batch whose rows all sit at the current watermark caps the
        proposal one unit past it instead. The caller must have drained that
        timestamp (read every row stamped with it) before proposing, otherwise
        rows beyond the batch would be skipped.

        Args:
            batches: ``updated_at`` values per query
            batch_size: Row limit applied to each query, None when unlimited

        Returns:
            The proposed watermark, or None when no rows were returned
        """
        newest: datetime | None = None
        caps: list[datetime] = []

        for batch in batches:
            if not batch:
                continue
            batch_newest = max(batch)
            if newest is None or batch_newest > newest:
                newest = batch_newest
            if batch_size is not None and len(batch) >= batch_size:
                if batch_newest > self._current:
                    caps.append(batch_newest)
                else:
                    caps.append(batch_newest + WATERMARK_RESOLUTION)

        if newest is None:
            return None

        proposal = newest + WATERMARK_RESOLUTION
        if caps:
            proposal = min(proposal, *caps)

        return proposal

    def advance(self, value: datetime) -> datetime:
        """
        Move the watermark forward to ``value``; never moves it backwards.

        Returns:
            The watermark after the update
        """
        if value > self._current:
            self._log.debug(
                "watermark_advanced",
                previous=self._current.isoformat(),
                current=value.isoformat(),
            )
            self._current = value
        return self._current
