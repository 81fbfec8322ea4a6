"""Tests for the per-network indexing loop."""

import asyncio
import logging
from unittest.mock import AsyncMock
from uuid import UUID

import pytest

from hapi_indexer.infrastructure.blockchain.client import JobResolutionError, RpcError
from hapi_indexer.models import (
    BlockCursor,
    Case,
    CaseStatus,
    EventName,
    FetchingArtifacts,
    NearReceiptJob,
    NoCursor,
    PushEvent,
    PushPayload,
)
from hapi_indexer.services.auth.token import StaticTokenProvider
from hapi_indexer.services.indexer import (
    Indexer,
    IndexerConfig,
    IndexerState,
    IndexerStats,
    RetryPolicy,
)
from hapi_indexer.services.indexer.checkpoint import FileCursorStore, PersistenceError
from hapi_indexer.services.push.client import DeliveryError


def make_job(n: int) -> NearReceiptJob:
    return NearReceiptJob(hash=f"R{n}", block_height=n, timestamp=n * 1000)


def make_payload(job: NearReceiptJob) -> PushPayload:
    return PushPayload(
        event=PushEvent(
            name=EventName.UPDATE_CASE, tx_hash=job.hash, timestamp=job.timestamp
        ),
        data=Case(
            id=UUID(int=job.block_height),
            name="Case",
            url="https://case.example",
            status=CaseStatus.OPEN,
            reporter_id=UUID(int=1),
        ),
    )


async def resolve(job: NearReceiptJob) -> list[PushPayload]:
    return [make_payload(job)]


def make_config(**overrides) -> IndexerConfig:
    fields = {
        "network": "near",
        "wait_interval": 0.01,
        "fetch_retry": RetryPolicy(max_attempts=3, base_delay=0),
        "delivery_retry": RetryPolicy(max_attempts=None, base_delay=0),
        "persist_retry": RetryPolicy(max_attempts=None, base_delay=0),
    }
    fields.update(overrides)
    return IndexerConfig(**fields)


class TestIndexerStats:
    """Tests for IndexerStats dataclass."""

    def test_default_stats(self):
        """Test default statistics."""
        stats = IndexerStats()

        assert stats.state == IndexerState.IDLE
        assert stats.cursor == "none"
        assert stats.payloads_sent == 0
        assert stats.last_iteration_at is None


class TestIndexer:
    """Tests for Indexer."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = AsyncMock()
        self.client.process_job.side_effect = resolve
        self.store = AsyncMock()
        self.store.load.return_value = NoCursor()
        self.push_client = AsyncMock()
        self.indexer = Indexer(
            client=self.client,
            cursor_store=self.store,
            push_client=self.push_client,
            token_provider=StaticTokenProvider("token"),
            config=make_config(),
        )

    def sent_hashes(self) -> list[str]:
        calls = self.push_client.send.await_args_list
        return [call.args[0].event.tx_hash for call in calls]

    @pytest.mark.asyncio
    async def test_initial_state(self):
        """Test indexer initial state."""
        assert self.indexer.network == "near"
        assert self.indexer.state == IndexerState.IDLE
        assert self.indexer.cursor == NoCursor()

    @pytest.mark.asyncio
    async def test_run_once_delivers_in_order(self):
        """Test payloads are sent in job order before the cursor is saved."""
        jobs = [make_job(1), make_job(2), make_job(3)]
        self.client.fetch_jobs.return_value = FetchingArtifacts(
            jobs=jobs, cursor=BlockCursor(height=3)
        )
        events = []
        self.push_client.send.side_effect = lambda payload, token: events.append(
            ("send", payload.event.tx_hash)
        )
        self.store.save.side_effect = lambda network, cursor: events.append(
            ("save", str(cursor))
        )

        sent = await self.indexer.run_once()

        assert sent == 3
        assert events == [
            ("send", "R1"),
            ("send", "R2"),
            ("send", "R3"),
            ("save", "block:3"),
        ]
        assert self.indexer.cursor == BlockCursor(height=3)
        assert all(
            call.args[1] == "token" for call in self.push_client.send.await_args_list
        )

    @pytest.mark.asyncio
    async def test_empty_window_persists_cursor(self):
        """Test an empty window still advances and saves the cursor."""
        self.client.fetch_jobs.return_value = FetchingArtifacts(
            jobs=[], cursor=BlockCursor(height=50)
        )

        assert await self.indexer.run_once() == 0

        self.push_client.send.assert_not_awaited()
        self.store.save.assert_awaited_once_with("near", BlockCursor(height=50))

    @pytest.mark.asyncio
    async def test_unchanged_cursor_not_saved(self):
        """Test nothing is written when the cursor did not move."""
        self.client.fetch_jobs.return_value = FetchingArtifacts(jobs=[], cursor=NoCursor())

        await self.indexer.run_once()

        self.store.save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delivery_failure_retries_whole_batch(self):
        """Test a rejected delivery re-sends the batch from its first payload."""
        self.client.fetch_jobs.return_value = FetchingArtifacts(
            jobs=[make_job(1), make_job(2)], cursor=BlockCursor(height=2)
        )
        self.push_client.send.side_effect = [
            None,
            DeliveryError("HTTP 503", status_code=503),
            None,
            None,
        ]

        await self.indexer.run_once()

        assert self.sent_hashes() == ["R1", "R2", "R1", "R2"]
        self.store.save.assert_awaited_once_with("near", BlockCursor(height=2))
        assert self.indexer.cursor == BlockCursor(height=2)
        assert self.indexer.stats.payloads_sent == 2

    @pytest.mark.asyncio
    async def test_cursor_not_saved_before_delivery(self):
        """Test the cursor stays put while delivery keeps failing."""
        self.client.fetch_jobs.return_value = FetchingArtifacts(
            jobs=[make_job(1)], cursor=BlockCursor(height=1)
        )
        self.push_client.send.side_effect = DeliveryError("HTTP 500", status_code=500)
        indexer = Indexer(
            client=self.client,
            cursor_store=self.store,
            push_client=self.push_client,
            token_provider=StaticTokenProvider("token"),
            config=make_config(delivery_retry=RetryPolicy(max_attempts=3, base_delay=0)),
        )

        with pytest.raises(DeliveryError):
            await indexer.run_once()

        assert self.push_client.send.await_count == 3
        self.store.save.assert_not_awaited()
        assert indexer.cursor == NoCursor()

    @pytest.mark.asyncio
    async def test_persist_failure_retried_without_refetch(self):
        """Test a failing save is retried without fetching or sending again."""
        self.client.fetch_jobs.return_value = FetchingArtifacts(
            jobs=[make_job(1)], cursor=BlockCursor(height=1)
        )
        self.store.save.side_effect = [
            PersistenceError("disk full"),
            PersistenceError("disk full"),
            None,
        ]

        await self.indexer.run_once()

        assert self.store.save.await_count == 3
        assert self.client.fetch_jobs.await_count == 1
        assert self.push_client.send.await_count == 1
        assert self.indexer.cursor == BlockCursor(height=1)

    @pytest.mark.asyncio
    async def test_failed_job_dropped(self):
        """Test a job that fails to resolve is dropped and the rest delivered."""
        self.client.fetch_jobs.return_value = FetchingArtifacts(
            jobs=[make_job(1), make_job(2), make_job(3)], cursor=BlockCursor(height=3)
        )

        async def flaky_resolve(job):
            if job.hash == "R2":
                raise JobResolutionError("entity not found")
            return await resolve(job)

        self.client.process_job.side_effect = flaky_resolve

        assert await self.indexer.run_once() == 2

        assert self.sent_hashes() == ["R1", "R3"]
        assert self.indexer.stats.jobs_failed == 1
        assert self.indexer.cursor == BlockCursor(height=3)

    @pytest.mark.asyncio
    async def test_ignored_job(self):
        """Test jobs without payloads are counted as ignored."""
        self.client.fetch_jobs.return_value = FetchingArtifacts(
            jobs=[make_job(1)], cursor=BlockCursor(height=1)
        )
        self.client.process_job.side_effect = None
        self.client.process_job.return_value = None

        assert await self.indexer.run_once() == 0

        assert self.indexer.stats.jobs_ignored == 1
        self.store.save.assert_awaited_once_with("near", BlockCursor(height=1))

    @pytest.mark.asyncio
    async def test_resumes_from_persisted_cursor(self):
        """Test fetching starts from the stored cursor."""
        self.store.load.return_value = BlockCursor(height=40)
        self.client.fetch_jobs.return_value = FetchingArtifacts(
            jobs=[], cursor=BlockCursor(height=50)
        )

        await self.indexer.run_once()

        self.client.fetch_jobs.assert_awaited_once_with(BlockCursor(height=40))

    @pytest.mark.asyncio
    async def test_backward_cursor_rejected(self):
        """Test a fetch that moves the cursor backward fails the iteration."""
        self.store.load.return_value = BlockCursor(height=40)
        self.client.fetch_jobs.return_value = FetchingArtifacts(
            jobs=[make_job(1)], cursor=BlockCursor(height=30)
        )

        with pytest.raises(ValueError, match="backward"):
            await self.indexer.run_once()

        self.push_client.send.assert_not_awaited()
        self.store.save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fetch_retried(self):
        """Test transient fetch failures are retried."""
        self.client.fetch_jobs.side_effect = [
            RpcError("timeout"),
            FetchingArtifacts(jobs=[], cursor=BlockCursor(height=5)),
        ]

        await self.indexer.run_once()

        assert self.client.fetch_jobs.await_count == 2
        assert self.indexer.cursor == BlockCursor(height=5)

    @pytest.mark.asyncio
    async def test_fetch_gives_up(self):
        """Test fetch fails the iteration after max attempts."""
        self.client.fetch_jobs.side_effect = RpcError("timeout")

        with pytest.raises(RpcError):
            await self.indexer.run_once()

        assert self.client.fetch_jobs.await_count == 3

    @pytest.mark.asyncio
    async def test_loop_survives_failures(self, caplog):
        """Test failed iterations are logged and the loop keeps running."""
        self.client.fetch_jobs.side_effect = ValueError("bad cursor")

        with caplog.at_level(logging.ERROR):
            await self.indexer.start()
            for _ in range(200):
                if self.indexer.stats.consecutive_failures >= 3:
                    break
                await asyncio.sleep(0.01)
            await self.indexer.stop()

        assert self.indexer.stats.consecutive_failures >= 3
        assert self.indexer.stats.last_error == "bad cursor"
        assert self.indexer.state == IndexerState.STOPPED
        assert any(record.levelno == logging.CRITICAL for record in caplog.records)

    @pytest.mark.asyncio
    async def test_start_stop(self):
        """Test starting and stopping the loop."""
        self.client.fetch_jobs.return_value = FetchingArtifacts(
            jobs=[], cursor=BlockCursor(height=1)
        )

        await self.indexer.start()
        for _ in range(200):
            if self.indexer.stats.iterations:
                break
            await asyncio.sleep(0.01)
        await self.indexer.stop()

        assert self.indexer.state == IndexerState.STOPPED
        assert self.indexer.stats.iterations >= 1
        self.store.load.assert_awaited_once_with("near")

    @pytest.mark.asyncio
    async def test_stop_interrupts_delivery_retry(self):
        """Test stopping ends an endless delivery retry."""
        self.client.fetch_jobs.return_value = FetchingArtifacts(
            jobs=[make_job(1)], cursor=BlockCursor(height=1)
        )
        self.push_client.send.side_effect = DeliveryError("HTTP 503", status_code=503)
        indexer = Indexer(
            client=self.client,
            cursor_store=self.store,
            push_client=self.push_client,
            token_provider=StaticTokenProvider("token"),
            config=make_config(
                delivery_retry=RetryPolicy(max_attempts=None, base_delay=0.01)
            ),
        )

        await indexer.start()
        await asyncio.sleep(0.05)
        await indexer.stop()

        assert indexer.state == IndexerState.STOPPED
        self.store.save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_sync_status(self):
        """Test status dictionary."""
        status = self.indexer.get_sync_status()

        assert status["network"] == "near"
        assert status["state"] == "idle"
        assert status["cursor"] == "none"
        assert status["last_iteration_at"] is None


class TestIndexerWithFileStore:
    """Tests for Indexer persisting to disk."""

    @pytest.mark.asyncio
    async def test_restart_resumes(self, tmp_path):
        """Test a new indexer resumes where the previous one stopped."""
        store = FileCursorStore(tmp_path)
        client = AsyncMock()
        client.fetch_jobs.return_value = FetchingArtifacts(
            jobs=[], cursor=BlockCursor(height=600)
        )

        first = Indexer(
            client, store, AsyncMock(), StaticTokenProvider("token"), make_config()
        )
        await first.run_once()

        second = Indexer(
            client, store, AsyncMock(), StaticTokenProvider("token"), make_config()
        )
        assert await second.load_cursor() == BlockCursor(height=600)
