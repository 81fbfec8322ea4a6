"""Per-network indexing loop with cursor-based resumption."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from hapi_indexer.infrastructure.blockchain.client import IndexerClient, RpcError
from hapi_indexer.models.push import PushPayload
from hapi_indexer.models.state import (
    FetchingArtifacts,
    IndexerJob,
    IndexingCursor,
    NoCursor,
    is_behind,
)
from hapi_indexer.services.auth.token import TokenProvider
from hapi_indexer.services.indexer.checkpoint import CursorStore, PersistenceError
from hapi_indexer.services.indexer.retry import (
    RetryCancelled,
    RetryPolicy,
    retry_async,
    wait_for_stop,
)
from hapi_indexer.services.push.client import DeliveryError, PushClient

logger = logging.getLogger(__name__)


class IndexerState(str, Enum):
    """Indexing loop state."""

    IDLE = "idle"
    FETCHING = "fetching"
    RESOLVING = "resolving"
    SENDING = "sending"
    PERSISTING = "persisting"
    WAITING = "waiting"
    STOPPED = "stopped"


@dataclass
class IndexerConfig:
    """Configuration for one network's indexing loop."""

    network: str

    # Idle seconds between iterations
    wait_interval: float = 5.0

    # Window determination failures give up after max_attempts
    fetch_retry: RetryPolicy = field(default_factory=RetryPolicy)

    # Delivery and persistence retry until they succeed
    delivery_retry: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(max_attempts=None)
    )
    persist_retry: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(max_attempts=None)
    )

    # Consecutive failed iterations before logging critical
    alert_after_failures: int = 3


@dataclass
class IndexerStats:
    """Statistics for one indexing loop."""

    state: IndexerState = IndexerState.IDLE
    cursor: str = "none"
    iterations: int = 0
    jobs_fetched: int = 0
    jobs_failed: int = 0
    jobs_ignored: int = 0
    payloads_sent: int = 0
    errors: int = 0
    consecutive_failures: int = 0
    last_error: str = ""
    last_iteration_at: datetime | None = None
    started_at: datetime | None = None
    uptime_seconds: float = 0.0


def is_transient_rpc_error(error: Exception) -> bool:
    return isinstance(error, (RpcError, OSError, asyncio.TimeoutError))


def is_delivery_error(error: Exception) -> bool:
    return isinstance(error, DeliveryError)


def is_persistence_error(error: Exception) -> bool:
    return isinstance(error, PersistenceError)


class Indexer:
    """Fetch, resolve, send and persist loop for one network.

    Guarantees:
    - Payloads are delivered in job discovery order
    - The cursor is persisted only after every payload of its batch is delivered
    - The cursor never moves backward
    - A failed iteration is logged and retried, never fatal
    """

    def __init__(
        self,
        client: IndexerClient,
        cursor_store: CursorStore,
        push_client: PushClient,
        token_provider: TokenProvider,
        config: IndexerConfig,
    ):
        """Initialize indexer.

        Args:
            client: Chain client for the network
            cursor_store: Durable cursor storage
            push_client: Event receiver client
            token_provider: Bearer token source for the receiver
            config: Loop configuration
        """
        self.client = client
        self.cursor_store = cursor_store
        self.push_client = push_client
        self.token_provider = token_provider
        self.config = config

        self._state = IndexerState.IDLE
        self._stats = IndexerStats()
        self._cursor: IndexingCursor = NoCursor()
        self._cursor_loaded = False
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    @property
    def network(self) -> str:
        return self.config.network

    @property
    def state(self) -> IndexerState:
        """Get current loop state."""
        return self._state

    @property
    def cursor(self) -> IndexingCursor:
        """Get last persisted cursor."""
        return self._cursor

    @property
    def stats(self) -> IndexerStats:
        """Get loop statistics."""
        self._stats.state = self._state
        self._stats.cursor = str(self._cursor)
        if self._stats.started_at:
            self._stats.uptime_seconds = (
                datetime.now(timezone.utc) - self._stats.started_at
            ).total_seconds()
        return self._stats

    def _set_state(self, state: IndexerState) -> None:
        logger.debug(f"[{self.network}] {self._state.value} -> {state.value}")
        self._state = state

    async def start(self) -> None:
        """Start the indexing loop."""
        if self._task is not None and not self._task.done():
            logger.warning(f"[{self.network}] Indexer is already running")
            return

        self._stop_event.clear()
        self._stats.started_at = datetime.now(timezone.utc)
        self._task = asyncio.create_task(self._run_loop(), name=f"indexer-{self.network}")
        logger.info(f"[{self.network}] Indexer started")

    async def stop(self) -> None:
        """Stop the indexing loop at its next suspension point."""
        if self._task is None:
            self._set_state(IndexerState.STOPPED)
            return

        logger.info(f"[{self.network}] Stopping indexer...")
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._set_state(IndexerState.STOPPED)
        logger.info(f"[{self.network}] Indexer stopped")

    async def load_cursor(self) -> IndexingCursor:
        """Load the persisted cursor, retrying storage failures."""
        self._cursor = await retry_async(
            lambda: self.cursor_store.load(self.network),
            self.config.persist_retry,
            f"[{self.network}] Cursor load",
            is_retryable=is_persistence_error,
            stop_event=self._stop_event,
        )
        self._cursor_loaded = True
        logger.info(f"[{self.network}] Resuming from cursor {self._cursor}")
        return self._cursor

    async def _run_loop(self) -> None:
        """Main indexing loop."""
        try:
            await self.load_cursor()

            while not self._stop_event.is_set():
                try:
                    await self.run_once()
                    self._stats.consecutive_failures = 0
                except RetryCancelled:
                    break
                except Exception as e:
                    self._record_failure(e)

                self._set_state(IndexerState.WAITING)
                if await wait_for_stop(self._stop_event, self.config.wait_interval):
                    break

        except (asyncio.CancelledError, RetryCancelled):
            pass

        finally:
            self._set_state(IndexerState.STOPPED)

    def _record_failure(self, error: Exception) -> None:
        """Record a failed iteration for logs and status."""
        self._stats.errors += 1
        self._stats.consecutive_failures += 1
        self._stats.last_error = str(error)

        failures = self._stats.consecutive_failures
        if failures >= self.config.alert_after_failures:
            logger.critical(
                f"[{self.network}] Indexing failing for {failures} consecutive "
                f"iterations at cursor {self._cursor}: {error}"
            )
        else:
            logger.error(f"[{self.network}] Indexing iteration failed: {error}")

    async def run_once(self) -> int:
        """Execute one fetch, resolve, send and persist cycle.

        Returns:
            Number of payloads delivered
        """
        if not self._cursor_loaded:
            await self.load_cursor()

        artifacts = await self._fetch()
        payloads = await self._resolve(artifacts.jobs)
        await self._send(payloads)
        await self._persist(artifacts.cursor)

        self._stats.iterations += 1
        self._stats.last_iteration_at = datetime.now(timezone.utc)
        return len(payloads)

    async def _fetch(self) -> FetchingArtifacts:
        """Fetch the next page of jobs."""
        self._set_state(IndexerState.FETCHING)
        cursor = self._cursor
        artifacts = await retry_async(
            lambda: self.client.fetch_jobs(cursor),
            self.config.fetch_retry,
            f"[{self.network}] Fetch from {cursor}",
            is_retryable=is_transient_rpc_error,
            stop_event=self._stop_event,
        )

        if is_behind(artifacts.cursor, cursor):
            raise ValueError(
                f"Fetch moved cursor backward from {cursor} to {artifacts.cursor}"
            )

        self._stats.jobs_fetched += len(artifacts.jobs)
        return artifacts

    async def _resolve(self, jobs: list[IndexerJob]) -> list[PushPayload]:
        """Resolve jobs in order, dropping those that fail."""
        self._set_state(IndexerState.RESOLVING)
        payloads: list[PushPayload] = []

        for job in jobs:
            try:
                result = await self.client.process_job(job)
            except Exception as e:
                self._stats.jobs_failed += 1
                logger.error(f"[{self.network}] Failed to process job {job}: {e}")
                continue

            if result is None:
                self._stats.jobs_ignored += 1
                continue
            payloads.extend(result)

        return payloads

    async def _send(self, payloads: list[PushPayload]) -> None:
        """Deliver the whole batch, retrying it until accepted."""
        if not payloads:
            return

        self._set_state(IndexerState.SENDING)
        await retry_async(
            lambda: self._deliver(payloads),
            self.config.delivery_retry,
            f"[{self.network}] Delivery of {len(payloads)} payloads",
            is_retryable=is_delivery_error,
            stop_event=self._stop_event,
        )
        self._stats.payloads_sent += len(payloads)
        logger.info(f"[{self.network}] Delivered {len(payloads)} payloads")

    async def _deliver(self, payloads: list[PushPayload]) -> None:
        token = self.token_provider.get_token()
        for payload in payloads:
            await self.push_client.send(payload, token)

    async def _persist(self, cursor: IndexingCursor) -> None:
        """Persist the cursor once its batch is delivered."""
        if cursor == self._cursor:
            return

        self._set_state(IndexerState.PERSISTING)
        await retry_async(
            lambda: self.cursor_store.save(self.network, cursor),
            self.config.persist_retry,
            f"[{self.network}] Cursor save {cursor}",
            is_retryable=is_persistence_error,
            stop_event=self._stop_event,
        )
        self._cursor = cursor

    def get_sync_status(self) -> dict[str, Any]:
        """Get synchronization status.

        Returns:
            Status dictionary
        """
        stats = self.stats
        return {
            "network": self.network,
            "state": stats.state.value,
            "cursor": stats.cursor,
            "iterations": stats.iterations,
            "jobs_fetched": stats.jobs_fetched,
            "jobs_failed": stats.jobs_failed,
            "jobs_ignored": stats.jobs_ignored,
            "payloads_sent": stats.payloads_sent,
            "errors": stats.errors,
            "consecutive_failures": stats.consecutive_failures,
            "last_error": stats.last_error,
            "last_iteration_at": (
                stats.last_iteration_at.isoformat() if stats.last_iteration_at else None
            ),
            "uptime_seconds": stats.uptime_seconds,
        }
