"""Process wiring: builds the components, runs them and shuts them down in order."""

import asyncio
import signal
from typing import Awaitable, Callable

import structlog

from index_sync.health import HealthServer, create_health_app
from index_sync.models.config import AppConfig
from index_sync.storage.postgres import PostgresSource
from index_sync.storage.search_index import SearchIndexClient
from index_sync.sync.change_detector import PollingChangeDetector
from index_sync.sync.synchronizer import MeiliSearchSynchronizer

log = structlog.stdlib.get_logger()

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class SyncService:
    """Runs the synchronizer until a termination signal or an unrecoverable error."""

    def __init__(
        self,
        config: AppConfig,
        source: PostgresSource | None = None,
        search_client: SearchIndexClient | None = None,
    ):
        """
        Initialize the service.

        Args:
            config: Application configuration
            source: Optional prebuilt source; created from config if None
            search_client: Optional prebuilt search client; created from config if None
        """
        self._config = config
        self._source = source
        self._search_client = search_client
        self._synchronizer: MeiliSearchSynchronizer | None = None
        self._health_server: HealthServer | None = None
        self._shutdown_requested = asyncio.Event()
        self._shutdown_reason: str | None = None

    @property
    def synchronizer(self) -> MeiliSearchSynchronizer | None:
        return self._synchronizer

    def request_shutdown(self, reason: str) -> None:
        """Ask the running service to shut down; safe to call from a signal handler."""
        if self._shutdown_reason is None:
            self._shutdown_reason = reason
        self._shutdown_requested.set()

    async def run(self) -> int:
        """
        Start the synchronizer and supervise it.

        Returns:
            Process exit code: 0 after a requested shutdown, 1 after a startup
            or synchronization failure, or when shutdown itself failed
        """
        log.info("application_starting", env=self._config.env)

        try:
            synchronizer = await self._build()
        except Exception as e:
            log.error("application_build_failed", error=str(e), exc_info=True)
            return await self.shutdown("STARTUP_ERROR", exit_code=1)

        loop = asyncio.get_running_loop()
        self._register_signal_handlers(loop)

        try:
            if self._health_server is not None:
                await self._health_server.start()

            if not await synchronizer.is_healthy():
                log.error("synchronizer_unhealthy_at_startup")
                return await self.shutdown("UNHEALTHY", exit_code=1)

            try:
                await synchronizer.start()
            except Exception as e:
                log.error("sync_process_start_failed", error=str(e))
                return await self.shutdown("STARTUP_ERROR", exit_code=1)

            shutdown_wait = asyncio.create_task(self._shutdown_requested.wait())
            stopped_wait = asyncio.create_task(synchronizer.wait_stopped())
            await asyncio.wait({shutdown_wait, stopped_wait}, return_when=asyncio.FIRST_COMPLETED)
            for waiter in (shutdown_wait, stopped_wait):
                waiter.cancel()

            if self._shutdown_reason is not None:
                return await self.shutdown(self._shutdown_reason, exit_code=0)

            log.error(
                "synchronizer_stopped_unexpectedly",
                error=str(synchronizer.last_error) if synchronizer.last_error else None,
            )
            return await self.shutdown("SYNC_FAILURE", exit_code=1)
        finally:
            self._remove_signal_handlers(loop)

    async def shutdown(self, reason: str, exit_code: int = 0) -> int:
        """
        Stop the synchronizer, then release the database pool, the search
        client and the health server, in that order.

        A failing step is logged and the remaining steps still run.

        Returns:
            ``exit_code``, or 1 if any step failed
        """
        log.info("graceful_shutdown_started", reason=reason)

        steps: list[tuple[str, Callable[[], Awaitable[None]]]] = []
        if self._synchronizer is not None:
            steps.append(("synchronizer", self._synchronizer.stop))
        if self._source is not None:
            steps.append(("postgres_pool", self._source.close))
        if self._search_client is not None:
            steps.append(("search_client", self._search_client.aclose))
        if self._health_server is not None:
            steps.append(("health_server", self._health_server.stop))

        for name, step in steps:
            try:
                await step()
            except Exception as e:
                log.warning("shutdown_step_failed", step=name, error=str(e))
                exit_code = 1

        log.info("graceful_shutdown_completed", reason=reason, exit_code=exit_code)
        return exit_code

    async def _build(self) -> MeiliSearchSynchronizer:
        if self._source is None:
            self._source = await PostgresSource.create(self._config.postgres)
        if self._search_client is None:
            self._search_client = SearchIndexClient.from_config(self._config.meilisearch)

        detector = PollingChangeDetector.from_config(
            self._source, self._config.postgres.change_detection
        )
        synchronizer = MeiliSearchSynchronizer.from_config(
            self._search_client, detector, self._config.meilisearch
        )
        self._synchronizer = synchronizer

        if self._config.health.enabled:
            self._health_server = HealthServer(
                create_health_app(self._source, synchronizer), self._config.health
            )
        else:
            log.info("health_endpoint_disabled")

        return synchronizer

    def _register_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
            except (NotImplementedError, RuntimeError):
                # Not supported outside the main thread or on Windows.
                log.debug("signal_handler_unavailable", signal=sig.name)

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass
