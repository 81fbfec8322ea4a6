"""Runs one independent indexing loop per configured network."""

import asyncio
import logging
from typing import Any

from redis.asyncio import Redis

from hapi_indexer.core.config import NetworkSettings, Settings
from hapi_indexer.infrastructure.blockchain import create_indexer_client
from hapi_indexer.services.auth.token import (
    JwtTokenProvider,
    StaticTokenProvider,
    TokenProvider,
)
from hapi_indexer.services.indexer.checkpoint import (
    CursorStore,
    FileCursorStore,
    RedisCursorStore,
)
from hapi_indexer.services.indexer.indexer import Indexer, IndexerConfig
from hapi_indexer.services.indexer.retry import RetryPolicy
from hapi_indexer.services.push.client import PushClient

logger = logging.getLogger(__name__)


def create_cursor_store(settings: Settings) -> CursorStore:
    """Create the configured cursor store."""
    if settings.cursor_store == "redis":
        return RedisCursorStore(Redis.from_url(settings.redis_url))
    return FileCursorStore(settings.state_dir)


def create_token_provider(settings: Settings, network: str) -> TokenProvider:
    """Create the push token source for a network.

    Raises:
        ValueError: If neither a token nor a JWT secret is configured
    """
    if settings.push_token:
        return StaticTokenProvider(settings.push_token)
    if settings.jwt_secret:
        return JwtTokenProvider(
            settings.jwt_secret, network, expire_minutes=settings.jwt_expire_minutes
        )
    raise ValueError("Either PUSH_TOKEN or JWT_SECRET must be configured")


def create_indexer_config(settings: Settings, network: NetworkSettings) -> IndexerConfig:
    """Build loop configuration from settings."""

    def policy(max_attempts: int | None) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )

    return IndexerConfig(
        network=network.name,
        wait_interval=network.wait_interval,
        fetch_retry=policy(settings.fetch_max_attempts),
        delivery_retry=policy(None),
        persist_retry=policy(None),
    )


class IndexerRunner:
    """Owns the indexers of all configured networks.

    Networks share no mutable state; each runs as its own task.
    """

    def __init__(self, settings: Settings, indexers: list[Indexer] | None = None):
        """Initialize runner.

        Args:
            settings: Application settings
            indexers: Prebuilt indexers, built from settings when omitted
        """
        self.settings = settings
        self._cursor_store: CursorStore | None = None
        self._push_client: PushClient | None = None
        self.indexers = indexers if indexers is not None else self._build_indexers()

    def _build_indexers(self) -> list[Indexer]:
        if not self.settings.networks:
            return []

        self._cursor_store = create_cursor_store(self.settings)
        self._push_client = PushClient(
            self.settings.push_url, timeout=self.settings.push_timeout
        )
        return [
            Indexer(
                client=create_indexer_client(network),
                cursor_store=self._cursor_store,
                push_client=self._push_client,
                token_provider=create_token_provider(self.settings, network.name),
                config=create_indexer_config(self.settings, network),
            )
            for network in self.settings.networks
        ]

    def get(self, network: str) -> Indexer:
        """Get the indexer of a network.

        Raises:
            KeyError: If the network is not indexed
        """
        for indexer in self.indexers:
            if indexer.network == network:
                return indexer
        raise KeyError(f"Network not indexed: {network}")

    async def start(self) -> None:
        """Start all indexers."""
        for indexer in self.indexers:
            await indexer.start()
        logger.info(f"Started {len(self.indexers)} indexers")

    async def stop(self) -> None:
        """Stop all indexers and release their resources."""
        await asyncio.gather(*(indexer.stop() for indexer in self.indexers))

        for indexer in self.indexers:
            try:
                await indexer.client.close()
            except Exception as e:
                logger.warning(f"[{indexer.network}] Failed to close client: {e}")

        if self._push_client is not None:
            await self._push_client.close()
        if isinstance(self._cursor_store, RedisCursorStore):
            await self._cursor_store.close()
        logger.info("All indexers stopped")

    def get_status(self) -> dict[str, Any]:
        """Get status of every network."""
        return {indexer.network: indexer.get_sync_status() for indexer in self.indexers}
