"""Indexing cursors, jobs and persisted state."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class NoCursor(BaseModel):
    """Indexing has not started yet."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["none"] = "none"

    def position(self) -> tuple[int, float]:
        return (-1, -1)

    def __str__(self) -> str:
        return "none"


class BlockCursor(BaseModel):
    """Every block up to and including ``height`` is processed."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["block"] = "block"
    height: int = Field(..., ge=0)

    def position(self) -> tuple[int, float]:
        return (self.height, float("inf"))

    def __str__(self) -> str:
        return f"block:{self.height}"


class LogCursor(BaseModel):
    """Every log up to and including ``log_index`` of ``block`` is processed."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["log"] = "log"
    block: int = Field(..., ge=0)
    log_index: int = Field(..., ge=0)

    def position(self) -> tuple[int, float]:
        return (self.block, self.log_index)

    def __str__(self) -> str:
        return f"log:{self.block}:{self.log_index}"


class TransactionCursor(BaseModel):
    """Every transaction up to and including ``signature`` is processed."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["transaction"] = "transaction"
    slot: int = Field(..., ge=0)
    signature: str = Field(..., min_length=1)

    def position(self) -> tuple[int, float]:
        # Signatures within one slot are not ordered by value
        return (self.slot, 0)

    def __str__(self) -> str:
        return f"transaction:{self.slot}:{self.signature}"


IndexingCursor = Annotated[
    Union[NoCursor, BlockCursor, LogCursor, TransactionCursor],
    Field(discriminator="kind"),
]


def is_behind(candidate: IndexingCursor, current: IndexingCursor) -> bool:
    """Check whether ``candidate`` is an earlier chain position than ``current``."""
    return candidate.position() < current.position()


class PersistedState(BaseModel):
    """Durable record of indexing progress for one network."""

    network: str
    cursor: IndexingCursor = Field(default_factory=NoCursor)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class EvmLogJob:
    """Contract log awaiting resolution."""

    tx_hash: str
    block_number: int
    log_index: int
    timestamp: int
    topics: tuple[str, ...]
    data: str

    def __str__(self) -> str:
        return f"{self.tx_hash}#{self.log_index}"


@dataclass(frozen=True)
class SolanaTransactionJob:
    """Program transaction awaiting resolution."""

    signature: str
    slot: int

    def __str__(self) -> str:
        return self.signature


@dataclass(frozen=True)
class NearReceiptJob:
    """Contract receipt awaiting resolution."""

    hash: str
    block_height: int
    timestamp: int

    def __str__(self) -> str:
        return self.hash


IndexerJob = EvmLogJob | SolanaTransactionJob | NearReceiptJob


@dataclass
class FetchingArtifacts:
    """Result of one fetch pass.

    ``cursor`` is the rightmost position scanned, whether or not jobs were found.
    """

    jobs: list[IndexerJob] = field(default_factory=list)
    cursor: IndexingCursor = field(default_factory=NoCursor)
