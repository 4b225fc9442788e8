"""In-memory stand-ins for the database and the search backend."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Sequence

from index_sync.models.entity import Chain, EntityKind
from index_sync.storage.search_index import (
    IndexSettings,
    IndexTaskTimeoutError,
    SearchIndexError,
    TaskInfo,
    TaskResult,
    TaskStatus,
)

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def ts(seconds: float) -> datetime:
    """Timestamp ``seconds`` after BASE_TIME."""
    return BASE_TIME + timedelta(seconds=seconds)


def drip_list_row(entity_id: str, updated_at: datetime, **fields: Any) -> dict[str, Any]:
    row = {
        "id": entity_id,
        "name": f"List {entity_id}",
        "description": None,
        "ownerAddress": "0xabc",
        "ownerAccountId": "42",
        "isVisible": True,
        "updatedAt": updated_at,
    }
    row.update(fields)
    return row


def project_row(entity_id: str, updated_at: datetime, **fields: Any) -> dict[str, Any]:
    row = {
        "id": entity_id,
        "name": f"octocat/repo-{entity_id}",
        "description": None,
        "ownerAddress": "0xabc",
        "ownerAccountId": "42",
        "url": f"https://github.com/octocat/repo-{entity_id}",
        "avatarCid": None,
        "emoji": None,
        "color": None,
        "isVisible": True,
        "verificationStatus": "Claimed",
        "updatedAt": updated_at,
    }
    row.update(fields)
    return row


class FakeTransaction:
    def __init__(self, source: "FakeSource"):
        self._source = source

    async def fetch_changed(
        self, kind: EntityKind, chain: Chain, since: datetime, limit: int
    ) -> list[dict[str, Any]]:
        await self._source.before_query(kind)
        rows = [
            row
            for row in self._source.rows_for(kind, chain)
            if row["updatedAt"] >= since and not self._source.is_locked(kind, chain, row["id"])
        ]
        return [{**row, "chain": chain.value} for row in rows[:limit]]

    async def fetch_at(
        self, kind: EntityKind, chain: Chain, updated_at: datetime
    ) -> list[dict[str, Any]]:
        await self._source.before_query(kind)
        rows = [
            row
            for row in self._source.rows_for(kind, chain)
            if row["updatedAt"] == updated_at
            and not self._source.is_locked(kind, chain, row["id"])
        ]
        self._source.drains += 1
        return [{**row, "chain": chain.value} for row in sorted(rows, key=lambda row: row["id"])]

    async def fetch_all(self, kind: EntityKind, chain: Chain) -> list[dict[str, Any]]:
        await self._source.before_query(kind)
        return [{**row, "chain": chain.value} for row in self._source.rows_for(kind, chain)]


class FakeSource:
    """Tables keyed by (kind, chain), with row locks and injectable failures."""

    def __init__(self) -> None:
        self.tables: dict[tuple[EntityKind, Chain], list[dict[str, Any]]] = {}
        self.locked: set[tuple[EntityKind, Chain, str]] = set()
        self.error: Exception | None = None
        self.query_delay: float = 0.0
        self.errors: dict[EntityKind, Exception] = {}
        self.query_delays: dict[EntityKind, float] = {}
        self.ping_error: Exception | None = None
        self.close_error: Exception | None = None
        self.commits = 0
        self.rollbacks = 0
        self.drains = 0
        self.open_transactions = 0
        self.closed = False

    def add(self, kind: EntityKind, chain: Chain, *rows: dict[str, Any]) -> None:
        table = self.tables.setdefault((kind, chain), [])
        ids = {row["id"] for row in rows}
        table[:] = [row for row in table if row["id"] not in ids] + list(rows)

    def lock(self, kind: EntityKind, chain: Chain, entity_id: str) -> None:
        self.locked.add((kind, chain, entity_id))

    def unlock(self, kind: EntityKind, chain: Chain, entity_id: str) -> None:
        self.locked.discard((kind, chain, entity_id))

    def is_locked(self, kind: EntityKind, chain: Chain, entity_id: str) -> bool:
        return (kind, chain, entity_id) in self.locked

    def rows_for(self, kind: EntityKind, chain: Chain) -> list[dict[str, Any]]:
        return sorted(self.tables.get((kind, chain), []), key=lambda row: row["updatedAt"])

    async def before_query(self, kind: EntityKind) -> None:
        delay = self.query_delays.get(kind, self.query_delay)
        if delay:
            await asyncio.sleep(delay)
        error = self.errors.get(kind, self.error)
        if error is not None:
            raise error

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[FakeTransaction]:
        self.open_transactions += 1
        try:
            yield FakeTransaction(self)
        except BaseException:
            self.rollbacks += 1
            raise
        finally:
            self.open_transactions -= 1
        self.commits += 1

    async def ping(self) -> float:
        if self.ping_error is not None:
            raise self.ping_error
        return 0.5

    async def missing_tables(self, chains: Sequence[Chain]) -> list[str]:
        return []

    async def close(self) -> None:
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeSearchClient:
    """Meilisearch double: upserts merge into per-index dicts keyed by primary key."""

    def __init__(self) -> None:
        self.indexes: dict[str, dict[str, dict[str, Any]]] = {}
        self.settings: dict[str, IndexSettings] = {}
        self.submissions: list[tuple[str, list[dict[str, Any]]]] = []
        self.task_outcome: TaskStatus | str = TaskStatus.SUCCEEDED
        self.settings_error: Exception | None = None
        self.healthy: bool | Exception = True
        self.closed = False
        self._tasks: dict[int, TaskResult] = {}
        self._pending: dict[int, tuple[str, list[dict[str, Any]], str]] = {}

    async def update_settings(self, index_uid: str, settings: IndexSettings) -> TaskInfo:
        if self.settings_error is not None:
            raise self.settings_error
        self.settings[index_uid] = settings
        return self._enqueue(index_uid, "settingsUpdate")

    async def update_documents(
        self, index_uid: str, documents: Sequence[dict[str, Any]], primary_key: str = "id"
    ) -> TaskInfo:
        self.submissions.append((index_uid, list(documents)))
        task = self._enqueue(index_uid, "documentAdditionOrUpdate")
        self._pending[task.task_uid] = (index_uid, list(documents), primary_key)
        return task

    async def wait_for_task(
        self, task_uid: int, timeout: float = 30.0, interval: float = 0.1
    ) -> TaskResult:
        # task_outcome only applies to document writes; settings tasks always succeed.
        pending = self._pending.pop(task_uid, None)
        if pending is None:
            status = TaskStatus.SUCCEEDED
        elif self.task_outcome == "timeout":
            raise IndexTaskTimeoutError(task_uid, timeout)
        else:
            status = TaskStatus(self.task_outcome)

        if pending is not None and status is TaskStatus.SUCCEEDED:
            index_uid, documents, primary_key = pending
            index = self.indexes.setdefault(index_uid, {})
            for document in documents:
                index[document[primary_key]] = {**index.get(document[primary_key], {}), **document}

        task = self._tasks[task_uid].model_copy(
            update={
                "status": status,
                "error": None if status is TaskStatus.SUCCEEDED else {"code": "internal"},
            }
        )
        self._tasks[task_uid] = task
        return task

    async def health(self) -> bool:
        if isinstance(self.healthy, Exception):
            raise self.healthy
        return self.healthy

    async def aclose(self) -> None:
        self.closed = True

    def documents(self, index_uid: str) -> dict[str, dict[str, Any]]:
        return self.indexes.get(index_uid, {})

    def _enqueue(self, index_uid: str, task_type: str) -> TaskInfo:
        uid = len(self._tasks)
        self._tasks[uid] = TaskResult(
            uid=uid, index_uid=index_uid, status=TaskStatus.ENQUEUED, type=task_type
        )
        return TaskInfo(task_uid=uid, index_uid=index_uid, type=task_type)


class RejectingSearchClient(FakeSearchClient):
    """Search backend that refuses every document write."""

    async def update_documents(
        self, index_uid: str, documents: Sequence[dict[str, Any]], primary_key: str = "id"
    ) -> TaskInfo:
        raise SearchIndexError(f"PUT /indexes/{index_uid}/documents failed with 400")
