"""Clients for the source database and the search backend."""

from index_sync.storage.postgres import PostgresSource, SourceTransaction
from index_sync.storage.search_index import (
    IndexSettings,
    IndexTaskFailedError,
    IndexTaskTimeoutError,
    SearchIndexClient,
    SearchIndexError,
    TaskStatus,
)

__all__ = [
    "IndexSettings",
    "IndexTaskFailedError",
    "IndexTaskTimeoutError",
    "PostgresSource",
    "SearchIndexClient",
    "SearchIndexError",
    "SourceTransaction",
    "TaskStatus",
]
