"""Tests for the multi-network runner."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from hapi_indexer.infrastructure.blockchain import create_indexer_client
from hapi_indexer.infrastructure.blockchain.evm import EvmIndexerClient
from hapi_indexer.infrastructure.blockchain.near import NearIndexerClient
from hapi_indexer.services.auth.token import JwtTokenProvider, StaticTokenProvider
from hapi_indexer.services.indexer.checkpoint import FileCursorStore, RedisCursorStore
from hapi_indexer.services.indexer.runner import (
    IndexerRunner,
    create_cursor_store,
    create_indexer_config,
    create_token_provider,
)


class TestFactories:
    """Tests for runner factory functions."""

    def test_file_cursor_store(self, settings):
        """Test file store is the default backend."""
        store = create_cursor_store(settings)

        assert isinstance(store, FileCursorStore)
        assert store.state_dir == settings.state_dir

    def test_redis_cursor_store(self, settings):
        """Test redis backend selection."""
        settings = settings.model_copy(update={"cursor_store": "redis"})

        assert isinstance(create_cursor_store(settings), RedisCursorStore)

    def test_static_token_provider(self, settings):
        """Test static token takes precedence."""
        provider = create_token_provider(settings, "near")

        assert isinstance(provider, StaticTokenProvider)
        assert provider.get_token() == "test-token"

    def test_jwt_token_provider(self, settings):
        """Test JWT provider when only a secret is configured."""
        settings = settings.model_copy(update={"push_token": None, "jwt_secret": "s3cret"})

        provider = create_token_provider(settings, "near")

        assert isinstance(provider, JwtTokenProvider)
        assert provider.network == "near"

    def test_missing_credentials(self, settings):
        """Test missing push credentials are rejected."""
        settings = settings.model_copy(update={"push_token": None, "jwt_secret": None})

        with pytest.raises(ValueError):
            create_token_provider(settings, "near")

    def test_indexer_config(self, settings, near_network):
        """Test retry policies follow settings."""
        config = create_indexer_config(settings, near_network)

        assert config.network == "near"
        assert config.wait_interval == near_network.wait_interval
        assert config.fetch_retry.max_attempts == settings.fetch_max_attempts
        assert config.delivery_retry.max_attempts is None
        assert config.persist_retry.max_attempts is None

    def test_create_indexer_client(self, near_network, evm_network):
        """Test clients are chosen by network kind."""
        assert isinstance(create_indexer_client(near_network), NearIndexerClient)
        assert isinstance(create_indexer_client(evm_network), EvmIndexerClient)


class TestIndexerRunner:
    """Tests for IndexerRunner."""

    def test_builds_indexers(self, settings, near_network):
        """Test one indexer per configured network."""
        settings = settings.model_copy(update={"networks": [near_network]})

        runner = IndexerRunner(settings)

        assert [indexer.network for indexer in runner.indexers] == ["near"]
        assert isinstance(runner.get("near").client, NearIndexerClient)

    def test_no_networks(self, settings):
        """Test runner without networks."""
        runner = IndexerRunner(settings)

        assert runner.indexers == []
        assert runner.get_status() == {}

    def test_get_unknown(self, settings):
        """Test unknown network lookup."""
        with pytest.raises(KeyError):
            IndexerRunner(settings).get("near")

    @pytest.mark.asyncio
    async def test_start_stop(self, settings):
        """Test all indexers are started, stopped and closed."""
        indexers = []
        for name in ("near", "ethereum"):
            indexer = AsyncMock()
            indexer.network = name
            indexer.get_sync_status = MagicMock(return_value={"network": name})
            indexers.append(indexer)
        runner = IndexerRunner(settings, indexers=indexers)

        await runner.start()
        await runner.stop()

        for indexer in indexers:
            indexer.start.assert_awaited_once()
            indexer.stop.assert_awaited_once()
            indexer.client.close.assert_awaited_once()
        assert runner.get_status() == {
            "near": {"network": "near"},
            "ethereum": {"network": "ethereum"},
        }
