"""HTTP health endpoint reporting source connectivity and synchronizer progress."""

import asyncio
from contextlib import contextmanager
from typing import Iterator, Literal

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from index_sync.models.config import EPOCH, HealthConfig
from index_sync.storage.postgres import PostgresSource
from index_sync.sync.synchronizer import MeiliSearchSynchronizer

log = structlog.stdlib.get_logger()


class ComponentStatus(BaseModel):
    """Health of one component, serialized with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    status: Literal["ok", "fail", "initializing"]
    latency_ms: float | None = Field(default=None, alias="latencyMs")
    message: str | None = None
    last_sync_time: str | None = Field(default=None, alias="lastSyncTime")
    total_processed_records: int | None = Field(default=None, alias="totalProcessedRecords")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


async def check_postgres(source: PostgresSource) -> ComponentStatus:
    """Time a trivial query against the source database."""
    try:
        latency_ms = await source.ping()
    except Exception as e:
        log.error("postgres_health_check_failed", error=str(e))
        return ComponentStatus(status="fail", message=str(e) or type(e).__name__)

    return ComponentStatus(status="ok", latency_ms=latency_ms)


def evaluate_synchronizer(synchronizer: MeiliSearchSynchronizer) -> ComponentStatus:
    """Derive the synchronizer's status from its metrics and lifecycle state."""
    metrics = synchronizer.get_metrics()
    last_sync_time = metrics.last_sync_time.isoformat() if metrics.last_sync_time else None

    if synchronizer.last_error is not None and not synchronizer.is_running:
        return ComponentStatus(
            status="fail",
            message=f"Synchronizer stopped after an error: {synchronizer.last_error}",
            last_sync_time=last_sync_time,
            total_processed_records=metrics.total_processed_records,
        )

    if metrics.last_sync_time is None:
        return ComponentStatus(
            status="initializing",
            message="Synchronizer has not reported a last sync time yet.",
            total_processed_records=metrics.total_processed_records,
        )

    if metrics.last_sync_time <= EPOCH:
        return ComponentStatus(
            status="initializing",
            message="Synchronizer has not completed a sync cycle yet.",
            last_sync_time=last_sync_time,
            total_processed_records=metrics.total_processed_records,
        )

    return ComponentStatus(
        status="ok",
        last_sync_time=last_sync_time,
        total_processed_records=metrics.total_processed_records,
    )


def create_health_app(source: PostgresSource, synchronizer: MeiliSearchSynchronizer) -> FastAPI:
    """
    Build the health application.

    ``GET /health`` answers 200 when both the database and the synchronizer
    are ok, and 503 otherwise, with per-component detail in the body.
    """
    app = FastAPI(title="search-index-sync", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> JSONResponse:
        postgres_status = await check_postgres(source)
        synchronizer_status = evaluate_synchronizer(synchronizer)
        is_healthy = postgres_status.status == "ok" and synchronizer_status.status == "ok"

        return JSONResponse(
            status_code=200 if is_healthy else 503,
            content={
                "status": "ok" if is_healthy else "fail",
                "components": {
                    "postgres": postgres_status.to_payload(),
                    "synchronizer": synchronizer_status.to_payload(),
                },
            },
        )

    return app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the host process."""

    def install_signal_handlers(self) -> None:
        pass

    @contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class HealthServer:
    """Serves the health application inside the running event loop."""

    def __init__(self, app: FastAPI, config: HealthConfig):
        self._config = config
        self._server = _EmbeddedServer(
            uvicorn.Config(app, host=config.host, port=config.port, log_level="warning")
        )
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._server.serve(), name="health-server")
        log.info("health_endpoint_listening", host=self._config.host, port=self._config.port)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        self._server.should_exit = True
        await task
        log.info("health_endpoint_stopped")
