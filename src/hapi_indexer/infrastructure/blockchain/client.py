"""Indexer client interface shared by all supported chains."""

import asyncio
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator

from hapi_indexer.core.config import NetworkSettings
from hapi_indexer.models.push import EventName, PushData, PushEvent, PushPayload
from hapi_indexer.models.state import FetchingArtifacts, IndexerJob, IndexingCursor


class RpcError(Exception):
    """A blockchain RPC call failed."""


class JobResolutionError(Exception):
    """A job could not be turned into a payload."""


@asynccontextmanager
async def paced(interval: float) -> AsyncIterator[None]:
    """Stretch the enclosed block to at least ``interval`` seconds.

    The remainder is slept only when the block exits normally.
    """
    started = time.monotonic()
    yield
    remaining = interval - (time.monotonic() - started)
    if remaining > 0:
        await asyncio.sleep(remaining)


class IndexerClient(ABC):
    """Fetches candidate jobs from one chain and resolves them into payloads."""

    def __init__(self, network: NetworkSettings):
        """Initialize indexer client.

        Args:
            network: Settings of the indexed network
        """
        self.network = network
        self.page_size = network.effective_page_size
        self.fetching_delay = network.fetching_delay

    @property
    def name(self) -> str:
        """Network name used in logs."""
        return self.network.name

    @abstractmethod
    async def fetch_jobs(self, cursor: IndexingCursor) -> FetchingArtifacts:
        """List jobs after ``cursor`` within one page.

        Raises:
            RpcError: If the window bound cannot be determined
        """
        ...

    @abstractmethod
    async def process_job(self, job: IndexerJob) -> list[PushPayload] | None:
        """Resolve a job into payloads.

        Returns:
            Payloads, or None when the job carries nothing to forward

        Raises:
            RpcError: If an RPC call fails
            JobResolutionError: If the job cannot be decoded
        """
        ...

    async def close(self) -> None:
        """Release network resources."""

    def build_payload(
        self,
        name: EventName,
        tx_hash: str,
        tx_index: int,
        timestamp: int,
        data: PushData,
    ) -> PushPayload:
        """Build a validated payload."""
        return PushPayload(
            event=PushEvent(
                name=name,
                tx_hash=tx_hash,
                tx_index=tx_index,
                timestamp=timestamp,
            ),
            data=data,
        )
