"""Indexing loop service module."""

from hapi_indexer.services.indexer.checkpoint import (
    CursorStore,
    FileCursorStore,
    PersistenceError,
    RedisCursorStore,
)
from hapi_indexer.services.indexer.indexer import (
    Indexer,
    IndexerConfig,
    IndexerState,
    IndexerStats,
)
from hapi_indexer.services.indexer.retry import (
    RetryCancelled,
    RetryPolicy,
    retry_async,
)
from hapi_indexer.services.indexer.runner import IndexerRunner

__all__ = [
    # Checkpoint
    "CursorStore",
    "FileCursorStore",
    "RedisCursorStore",
    "PersistenceError",
    # Indexer
    "Indexer",
    "IndexerConfig",
    "IndexerState",
    "IndexerStats",
    # Retry
    "RetryCancelled",
    "RetryPolicy",
    "retry_async",
    # Runner
    "IndexerRunner",
]
