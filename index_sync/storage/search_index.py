"""Meilisearch client: index settings, document upserts and task confirmation."""

import asyncio
from enum import Enum
from typing import Any, Sequence

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from index_sync.models.config import MeiliSearchConfig
from index_sync.utils.retry import exponential_backoff_retry

log = structlog.stdlib.get_logger()


class SearchIndexError(Exception):
    """Raised when the search backend rejects a request."""

    pass


class IndexTaskFailedError(SearchIndexError):
    """Raised when an asynchronous index task ends in a failed or canceled state."""

    def __init__(self, task: "TaskResult"):
        self.task = task
        super().__init__(
            f"Task {task.uid} on index {task.index_uid!r} ended as {task.status.value}: "
            f"{task.error}"
        )


class IndexTaskTimeoutError(SearchIndexError):
    """Raised when an asynchronous index task does not finish in time."""

    def __init__(self, task_uid: int, timeout: float):
        self.task_uid = task_uid
        self.timeout = timeout
        super().__init__(f"Task {task_uid} did not finish within {timeout} seconds")


class TaskStatus(str, Enum):
    ENQUEUED = "enqueued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.CANCELED)


class TaskInfo(BaseModel):
    """Handle returned when a write is enqueued."""

    model_config = ConfigDict(populate_by_name=True)

    task_uid: int = Field(default=..., alias="taskUid")
    index_uid: str | None = Field(default=None, alias="indexUid")
    status: TaskStatus = TaskStatus.ENQUEUED
    type: str | None = None


class TaskResult(BaseModel):
    """Status of an enqueued write, as reported by ``GET /tasks/{uid}``."""

    model_config = ConfigDict(populate_by_name=True)

    uid: int
    index_uid: str | None = Field(default=None, alias="indexUid")
    status: TaskStatus
    type: str | None = None
    error: dict[str, Any] | None = None


class TypoTolerance(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    disable_on_attributes: list[str] = Field(default_factory=list, alias="disableOnAttributes")


class IndexSettings(BaseModel):
    """Subset of the Meilisearch index settings managed by the synchronizer."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    searchable_attributes: list[str] | None = Field(default=None, alias="searchableAttributes")
    distinct_attribute: str | None = Field(default=None, alias="distinctAttribute")
    filterable_attributes: list[str] | None = Field(default=None, alias="filterableAttributes")
    displayed_attributes: list[str] | None = Field(default=None, alias="displayedAttributes")
    typo_tolerance: TypoTolerance | None = Field(default=None, alias="typoTolerance")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class SearchIndexClient:
    """Thin asynchronous client over the Meilisearch REST API."""

    def __init__(
        self,
        host: str,
        api_key: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            host: Meilisearch base URL
            api_key: API key sent as a bearer token
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport, used to stub the backend
        """
        self._client = httpx.AsyncClient(
            base_url=host.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: MeiliSearchConfig) -> "SearchIndexClient":
        return cls(host=str(config.host), api_key=config.api_key, timeout=config.timeout)

    @exponential_backoff_retry(max_retries=3, base_delay=0.5, exceptions=(httpx.TransportError,))
    async def update_settings(self, index_uid: str, settings: IndexSettings) -> TaskInfo:
        """
        Replace the managed settings of an index, creating the index if needed.

        Returns:
            Handle of the enqueued settings task

        Raises:
            SearchIndexError: If the backend rejects the request
            httpx.TransportError: If the backend stays unreachable
        """
        response = await self._request(
            "PATCH", f"/indexes/{index_uid}/settings", json=settings.to_payload()
        )
        return TaskInfo.model_validate(response.json())

    @exponential_backoff_retry(max_retries=3, base_delay=0.5, exceptions=(httpx.TransportError,))
    async def update_documents(
        self,
        index_uid: str,
        documents: Sequence[dict[str, Any]],
        primary_key: str = "id",
    ) -> TaskInfo:
        """
        Add or update documents, keyed by ``primary_key``.

        Upserting a document with an existing key merges it into the stored
        one, so submitting the same documents twice yields the same state.

        Returns:
            Handle of the enqueued document task

        Raises:
            SearchIndexError: If the backend rejects the request
            httpx.TransportError: If the backend stays unreachable
        """
        response = await self._request(
            "PUT",
            f"/indexes/{index_uid}/documents",
            params={"primaryKey": primary_key},
            json=list(documents),
        )
        task = TaskInfo.model_validate(response.json())
        log.debug(
            "documents_submitted",
            index_uid=index_uid,
            document_count=len(documents),
            task_uid=task.task_uid,
        )
        return task

    async def get_task(self, task_uid: int) -> TaskResult:
        response = await self._request("GET", f"/tasks/{task_uid}")
        return TaskResult.model_validate(response.json())

    async def wait_for_task(
        self, task_uid: int, timeout: float = 30.0, interval: float = 0.1
    ) -> TaskResult:
        """
        Poll a task until it reaches a terminal status.

        Args:
            task_uid: Task to wait for
            timeout: Seconds to wait before giving up
            interval: Seconds between two polls

        Returns:
            The terminal task; callers inspect ``status`` for failures

        Raises:
            IndexTaskTimeoutError: If the task is still pending after ``timeout``
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            task = await self.get_task(task_uid)
            if task.status.is_terminal:
                return task
            if loop.time() >= deadline:
                raise IndexTaskTimeoutError(task_uid, timeout)
            await asyncio.sleep(interval)

    async def health(self) -> bool:
        """Check whether the backend reports itself as available."""
        response = await self._request("GET", "/health")
        return response.json().get("status") == "available"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        response = await self._client.request(method, url, **kwargs)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            try:
                detail = response.json()
            except ValueError:
                detail = {"message": response.text}
            log.error(
                "search_backend_request_failed",
                method=method,
                url=url,
                status_code=response.status_code,
                code=detail.get("code"),
                message=detail.get("message"),
            )
            raise SearchIndexError(
                f"{method} {url} failed with {response.status_code}: {detail.get('message')}"
            ) from e

        return response
