"""Synchronizer applying detected changes to the Meilisearch indexes."""

import asyncio
from datetime import datetime, timezone
from typing import Any

import structlog

from index_sync.models.config import MeiliSearchConfig
from index_sync.storage.search_index import (
    IndexSettings,
    IndexTaskFailedError,
    SearchIndexClient,
    TaskInfo,
    TaskResult,
    TaskStatus,
)
from index_sync.sync.documents import (
    DRIP_LISTS_SETTINGS,
    PRIMARY_KEY,
    PROJECTS_SETTINGS,
    to_drip_list_document,
    to_project_document,
)
from index_sync.sync.models import ChangeSet, SyncMetrics, SynchronizerState
from index_sync.sync.protocols import ChangeDetector

log = structlog.stdlib.get_logger()


class MeiliSearchSynchronizer:
    """Keeps the drip list and project indexes in step with the source.

    Each change set reported by the detector is projected onto documents,
    upserted into both indexes concurrently and confirmed by waiting for the
    backend tasks. Only a confirmed apply lets the detector advance its
    watermark. Any apply failure stops the synchronizer and its detector;
    restarting is left to the operator.
    """

    name = "meilisearch synchronizer"

    def __init__(
        self,
        search_client: SearchIndexClient,
        change_detector: ChangeDetector,
        drip_lists_index: str = "drip_lists",
        projects_index: str = "projects",
        task_timeout: float = 30.0,
        task_poll_interval: float = 0.1,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        """
        Initialize the synchronizer.

        Args:
            search_client: Client for the Meilisearch backend
            change_detector: Detector whose change sets are applied
            drip_lists_index: Uid of the drip lists index
            projects_index: Uid of the projects index
            task_timeout: Seconds to wait for each backend task
            task_poll_interval: Seconds between two task status polls
            logger: Optional bound logger, defaults to the module logger
        """
        self._search_client = search_client
        self._change_detector = change_detector
        self._drip_lists_index = drip_lists_index
        self._projects_index = projects_index
        self._task_timeout = task_timeout
        self._task_poll_interval = task_poll_interval
        self._log = (logger or log).bind(component="synchronizer")

        self._state = SynchronizerState.STOPPED
        self._last_error: BaseException | None = None
        self._stopped = asyncio.Event()
        self._stopped.set()

        self._last_sync_time: datetime | None = None
        self._last_successful_sync: datetime | None = None
        self._total_processed_records = 0

    @classmethod
    def from_config(
        cls,
        search_client: SearchIndexClient,
        change_detector: ChangeDetector,
        config: MeiliSearchConfig,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> "MeiliSearchSynchronizer":
        return cls(
            search_client,
            change_detector,
            drip_lists_index=config.drip_lists_index,
            projects_index=config.projects_index,
            task_timeout=config.task_timeout,
            task_poll_interval=config.task_poll_interval,
            logger=logger,
        )

    @property
    def state(self) -> SynchronizerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state in (SynchronizerState.STARTING, SynchronizerState.RUNNING)

    @property
    def last_error(self) -> BaseException | None:
        """Error that last moved the synchronizer to the failed state, if any."""
        return self._last_error

    async def start(self) -> None:
        """
        Configure the indexes and start the change detector.

        Raises:
            Exception: Any index configuration or detector start error; the
                       detector is stopped before the error is re-raised
        """
        if self.is_running:
            self._log.warning("synchronizer_already_running")
            return

        self._log.info("synchronizer_starting")
        self._state = SynchronizerState.STARTING
        self._last_error = None
        self._stopped.clear()

        try:
            await self.initialize_indexes()
            await self._change_detector.start(self.on_changes_detected)
        except Exception as e:
            self._log.error(
                "synchronizer_start_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            await self._fail(e, "Error while stopping change detection after startup failure")
            raise

        # The first detection cycle runs inside start() and may have failed.
        if self._state is SynchronizerState.STARTING:
            self._state = SynchronizerState.RUNNING
            self._log.info("synchronizer_started")

    async def stop(self) -> None:
        """Stop the change detector and wait for the in-flight cycle."""
        if not self.is_running:
            return

        self._state = SynchronizerState.STOPPING

        try:
            await self._change_detector.stop()
            await self._change_detector.wait_idle()
        finally:
            self._state = SynchronizerState.STOPPED
            self._stopped.set()

        self._log.info("synchronizer_stopped", **self._metrics_context())

    async def wait_stopped(self) -> None:
        """Wait until the synchronizer has settled in the stopped state."""
        await self._stopped.wait()

    def get_metrics(self) -> SyncMetrics:
        return SyncMetrics(
            last_sync_time=self._last_sync_time,
            last_successful_sync=self._last_successful_sync,
            total_processed_records=self._total_processed_records,
        )

    async def is_healthy(self) -> bool:
        """Probe the search backend; never raises."""
        try:
            return await self._search_client.health()
        except Exception as e:
            self._log.error("search_backend_health_check_failed", error=str(e))
            return False

    async def initialize_indexes(self) -> None:
        """
        Apply searchable, filterable and displayed attributes to both indexes.

        Raises:
            SearchIndexError: If a settings update is rejected or its task fails
        """
        await asyncio.gather(
            self._configure_index(self._drip_lists_index, DRIP_LISTS_SETTINGS),
            self._configure_index(self._projects_index, PROJECTS_SETTINGS),
        )
        self._log.info(
            "indexes_configured",
            indexes=[self._drip_lists_index, self._projects_index],
        )

    async def on_changes_detected(self, changes: ChangeSet) -> None:
        """
        Apply a change set and confirm the backend committed it.

        Raises:
            Exception: Any translation, submission or task error; the
                       synchronizer and its detector are stopped first
        """
        try:
            self._log.info("sync_started", total_changes=changes.total_changes)

            submissions: list[tuple[str, list[dict[str, Any]]]] = [
                (self._drip_lists_index, [to_drip_list_document(d) for d in changes.drip_lists]),
                (self._projects_index, [to_project_document(p) for p in changes.projects]),
            ]
            submissions = [(index, docs) for index, docs in submissions if docs]

            tasks: list[TaskInfo] = await asyncio.gather(
                *(
                    self._search_client.update_documents(index, docs, primary_key=PRIMARY_KEY)
                    for index, docs in submissions
                )
            )
            await asyncio.gather(*(self._confirm(task) for task in tasks))

            self._last_sync_time = changes.timestamp
            self._last_successful_sync = datetime.now(timezone.utc)
            self._total_processed_records += changes.total_changes

            self._log.info(
                "sync_completed",
                drip_lists=len(changes.drip_lists),
                projects=len(changes.projects),
                **self._metrics_context(),
            )
        except Exception as e:
            self._log.error(
                "sync_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            await self._fail(e, "Error while stopping change detection after sync failure")
            raise

    async def _configure_index(self, index_uid: str, settings: IndexSettings) -> None:
        task = await self._search_client.update_settings(index_uid, settings)
        await self._confirm(task)

    async def _confirm(self, task: TaskInfo) -> TaskResult:
        result = await self._search_client.wait_for_task(
            task.task_uid,
            timeout=self._task_timeout,
            interval=self._task_poll_interval,
        )
        if result.status is not TaskStatus.SUCCEEDED:
            raise IndexTaskFailedError(result)
        return result

    async def _fail(self, error: BaseException, stop_warning: str) -> None:
        self._state = SynchronizerState.FAILED
        self._last_error = error

        try:
            await self._change_detector.stop()
        except Exception as stop_error:
            self._log.warning(
                "change_detection_stop_failed",
                message=stop_warning,
                error=str(stop_error),
            )

        self._state = SynchronizerState.STOPPED
        self._stopped.set()

    def _metrics_context(self) -> dict[str, Any]:
        return self.get_metrics().model_dump(mode="json")
