"""Indexer data models."""

from hapi_indexer.models.entities import (
    Address,
    Asset,
    Case,
    CaseStatus,
    Category,
    Reporter,
    ReporterRole,
    ReporterStatus,
)
from hapi_indexer.models.push import EventName, PushData, PushEvent, PushPayload
from hapi_indexer.models.state import (
    BlockCursor,
    EvmLogJob,
    FetchingArtifacts,
    IndexerJob,
    IndexingCursor,
    LogCursor,
    NearReceiptJob,
    NoCursor,
    PersistedState,
    SolanaTransactionJob,
    TransactionCursor,
)

__all__ = [
    # Entities
    "Address",
    "Asset",
    "Case",
    "CaseStatus",
    "Category",
    "Reporter",
    "ReporterRole",
    "ReporterStatus",
    # Push protocol
    "EventName",
    "PushData",
    "PushEvent",
    "PushPayload",
    # Indexing state
    "BlockCursor",
    "EvmLogJob",
    "FetchingArtifacts",
    "IndexerJob",
    "IndexingCursor",
    "LogCursor",
    "NearReceiptJob",
    "NoCursor",
    "PersistedState",
    "SolanaTransactionJob",
    "TransactionCursor",
]
