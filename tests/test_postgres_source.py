"""Tests for the change queries and the transaction wrapper of the source."""

from contextlib import asynccontextmanager

import pytest
from fakes import ts

from index_sync.models.entity import Chain, EntityKind
from index_sync.storage.postgres import (
    PostgresSource,
    SourceTransaction,
    build_select,
    build_select_at,
)


class StubConnection:
    def __init__(self, records: list[dict]):
        self.records = records
        self.queries: list[tuple] = []
        self.committed = False
        self.rolled_back = False

    async def fetch(self, sql: str, *args):
        self.queries.append((sql, *args))
        return self.records

    @asynccontextmanager
    async def transaction(self):
        try:
            yield
        except Exception:
            self.rolled_back = True
            raise
        self.committed = True


class StubPool:
    def __init__(self, connection: StubConnection):
        self.connection = connection

    @asynccontextmanager
    async def acquire(self):
        yield self.connection

    async def fetchval(self, sql: str, *args):
        if sql.startswith("SELECT to_regclass"):
            return None if "GitProjects" in args[0] else args[0]
        return 1


def test_incremental_query_filters_locks_and_limits() -> None:
    sql = build_select(EntityKind.DRIP_LISTS, Chain.MAINNET, incremental=True)

    assert sql.startswith('SELECT "id", "name"')
    assert 'FROM mainnet."DripLists"' in sql
    assert '"updatedAt" >= $1' in sql
    assert 'ORDER BY "updatedAt" ASC' in sql
    assert "LIMIT $2" in sql
    assert sql.endswith("FOR UPDATE SKIP LOCKED")


def test_full_refresh_query_reads_whole_table() -> None:
    sql = build_select(EntityKind.PROJECTS, "sepolia", incremental=False)

    assert 'FROM sepolia."GitProjects"' in sql
    assert '"verificationStatus"' in sql
    assert "LIMIT" not in sql
    assert "LOCKED" not in sql


def test_schema_outside_allow_list_is_never_interpolated() -> None:
    with pytest.raises(ValueError):
        build_select(EntityKind.PROJECTS, 'public"; DROP TABLE x; --', incremental=True)


async def test_fetch_changed_binds_values_and_tags_chain() -> None:
    connection = StubConnection([{"id": "1", "updatedAt": ts(1)}])
    tx = SourceTransaction(connection)

    rows = await tx.fetch_changed(EntityKind.DRIP_LISTS, Chain.METIS, ts(0), 50)

    assert rows == [{"id": "1", "updatedAt": ts(1), "chain": "metis"}]
    _, since, limit = connection.queries[0]
    assert (since, limit) == (ts(0), 50)


def test_drain_query_reads_one_timestamp_without_limit() -> None:
    sql = build_select_at(EntityKind.PROJECTS, Chain.FILECOIN)

    assert 'FROM filecoin."GitProjects"' in sql
    assert '"updatedAt" = $1' in sql
    assert "LIMIT" not in sql
    assert sql.endswith("FOR UPDATE SKIP LOCKED")


async def test_fetch_at_binds_timestamp_only() -> None:
    connection = StubConnection([{"id": "7", "updatedAt": ts(5)}])
    tx = SourceTransaction(connection)

    rows = await tx.fetch_at(EntityKind.PROJECTS, Chain.MAINNET, ts(5))

    assert rows == [{"id": "7", "updatedAt": ts(5), "chain": "mainnet"}]
    sql, *args = connection.queries[0]
    assert args == [ts(5)]
    assert '"updatedAt" = $1' in sql


async def test_transaction_commits_and_rolls_back() -> None:
    connection = StubConnection([])
    source = PostgresSource(StubPool(connection))

    async with source.transaction() as tx:
        assert await tx.fetch_all(EntityKind.PROJECTS, Chain.MAINNET) == []
    assert connection.committed

    connection.committed = False
    with pytest.raises(RuntimeError):
        async with source.transaction():
            raise RuntimeError("query failed")
    assert connection.rolled_back
    assert not connection.committed


async def test_missing_tables_and_ping() -> None:
    source = PostgresSource(StubPool(StubConnection([])))

    assert await source.missing_tables([Chain.MAINNET]) == ['mainnet."GitProjects"']
    assert await source.ping() >= 0
