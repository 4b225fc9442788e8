"""PostgreSQL source of truth: pooled connections, transactions and change queries."""

import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Iterable

import asyncpg
import structlog

from index_sync.models.config import PostgresConfig
from index_sync.models.entity import Chain, EntityKind
from index_sync.utils.retry import exponential_backoff_retry

log = structlog.stdlib.get_logger()

_TABLES: dict[EntityKind, str] = {
    EntityKind.DRIP_LISTS: "DripLists",
    EntityKind.PROJECTS: "GitProjects",
}

_COLUMNS: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.DRIP_LISTS: (
        "id",
        "name",
        "description",
        "ownerAddress",
        "ownerAccountId",
        "isVisible",
        "updatedAt",
    ),
    EntityKind.PROJECTS: (
        "id",
        "name",
        "description",
        "ownerAddress",
        "ownerAccountId",
        "url",
        "avatarCid",
        "emoji",
        "color",
        "isVisible",
        "verificationStatus",
        "updatedAt",
    ),
}


def build_select(kind: EntityKind, chain: Chain | str, incremental: bool) -> str:
    """
    Build the change query for one entity kind in one chain's schema.

    Schema names cannot be bind parameters, so the chain is checked against
    the ``Chain`` enum before it is interpolated.

    Args:
        kind: Entity kind to read
        chain: Chain whose schema holds the table
        incremental: If True, filter on ``updatedAt >= $1``, limit to ``$2``
                     rows and skip rows locked by concurrent writers

    Returns:
        SQL text

    Raises:
        ValueError: If the chain is not an allowed schema
    """
    schema = Chain(chain).value
    columns = ", ".join(f'"{column}"' for column in _COLUMNS[kind])
    sql = f'SELECT {columns} FROM {schema}."{_TABLES[kind]}"'

    if incremental:
        sql += (
            ' WHERE "updatedAt" >= $1'
            ' ORDER BY "updatedAt" ASC'
            " LIMIT $2"
            " FOR UPDATE SKIP LOCKED"
        )
    else:
        sql += ' ORDER BY "updatedAt" ASC'

    return sql


def build_select_at(kind: EntityKind, chain: Chain | str) -> str:
    """
    Build the query reading every unlocked row stamped exactly ``$1``.

    Used to drain a timestamp shared by more rows than fit in one batch.
    """
    schema = Chain(chain).value
    columns = ", ".join(f'"{column}"' for column in _COLUMNS[kind])
    return (
        f'SELECT {columns} FROM {schema}."{_TABLES[kind]}"'
        ' WHERE "updatedAt" = $1'
        ' ORDER BY "id" ASC'
        " FOR UPDATE SKIP LOCKED"
    )


class SourceTransaction:
    """Change queries bound to one open transaction."""

    def __init__(self, connection: asyncpg.Connection):
        self._connection = connection

    async def fetch_changed(
        self, kind: EntityKind, chain: Chain, since: datetime, limit: int
    ) -> list[dict[str, Any]]:
        """Rows of ``kind`` updated at or after ``since``, oldest first, skipping locked rows."""
        records = await self._connection.fetch(build_select(kind, chain, True), since, limit)
        return [{**dict(record), "chain": chain.value} for record in records]

    async def fetch_at(
        self, kind: EntityKind, chain: Chain, updated_at: datetime
    ) -> list[dict[str, Any]]:
        """All unlocked rows of ``kind`` whose ``updatedAt`` equals ``updated_at``, no limit."""
        records = await self._connection.fetch(build_select_at(kind, chain), updated_at)
        return [{**dict(record), "chain": chain.value} for record in records]

    async def fetch_all(self, kind: EntityKind, chain: Chain) -> list[dict[str, Any]]:
        """Every row of ``kind``, oldest first."""
        records = await self._connection.fetch(build_select(kind, chain, False))
        return [{**dict(record), "chain": chain.value} for record in records]


class PostgresSource:
    """Connection pool over the source database, shared process-wide."""

    def __init__(self, pool: asyncpg.Pool):
        """
        Initialize the source.

        Args:
            pool: asyncpg connection pool, owned by this source from now on
        """
        self._pool: asyncpg.Pool = pool

    @classmethod
    async def create(cls, config: PostgresConfig) -> "PostgresSource":
        """
        Create the connection pool and wrap it.

        Connection errors are retried with exponential backoff, so the
        service can start while the database is still coming up.

        Raises:
            OSError, asyncpg.PostgresError: If the database stays unreachable
        """
        pool = await _create_pool(config)
        log.info(
            "postgres_pool_created",
            min_size=config.min_pool_size,
            max_size=config.max_pool_size,
        )
        return cls(pool)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SourceTransaction]:
        """
        Open a transaction on a pooled connection.

        Commits when the block exits normally and rolls back when it raises;
        the error propagates to the caller.

        Usage:
            async with source.transaction() as tx:
                rows = await tx.fetch_changed(kind, chain, since, limit)
        """
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                yield SourceTransaction(connection)

    async def ping(self) -> float:
        """
        Run a trivial query.

        Returns:
            Round-trip latency in milliseconds
        """
        start = time.perf_counter()
        await self._pool.fetchval("SELECT 1")
        return round((time.perf_counter() - start) * 1000, 2)

    async def missing_tables(self, chains: Iterable[Chain]) -> list[str]:
        """
        List the tracked tables that do not exist for the given chains.

        Returns:
            Qualified names (``schema."Table"``) of missing tables
        """
        missing: list[str] = []
        for chain in chains:
            for table in _TABLES.values():
                name = f'{Chain(chain).value}."{table}"'
                if await self._pool.fetchval("SELECT to_regclass($1)", name) is None:
                    missing.append(name)
        return missing

    async def close(self) -> None:
        """Close the connection pool and release its connections."""
        await self._pool.close()
        log.info("postgres_pool_closed")


@exponential_backoff_retry(
    max_retries=5,
    base_delay=1.0,
    max_delay=30.0,
    exceptions=(OSError, asyncpg.exceptions.PostgresConnectionError),
)
async def _create_pool(config: PostgresConfig) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        dsn=config.dsn,
        min_size=config.min_pool_size,
        max_size=config.max_pool_size,
        command_timeout=config.command_timeout,
    )
