"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient

from hapi_indexer.core.config import NetworkKind, NetworkSettings, Settings


@pytest.fixture(scope="function")
def settings(tmp_path):
    """Create settings instance for testing."""
    return Settings(
        environment="testing",
        networks=[],
        state_dir=tmp_path / "state",
        push_url="http://receiver.test/events",
        push_token="test-token",
    )


@pytest.fixture
def near_network():
    """NEAR network settings without pacing."""
    return NetworkSettings(
        name="near",
        kind=NetworkKind.NEAR,
        rpc_url="http://near.test",
        contract_address="hapi.testnet",
        fetching_delay=0,
        wait_interval=0,
    )


@pytest.fixture
def evm_network():
    """EVM network settings without pacing."""
    return NetworkSettings(
        name="ethereum",
        kind=NetworkKind.EVM,
        rpc_url="http://evm.test",
        contract_address="0x1234567890123456789012345678901234567890",
        fetching_delay=0,
        wait_interval=0,
    )


@pytest.fixture
def solana_network():
    """Solana network settings without pacing."""
    return NetworkSettings(
        name="solana",
        kind=NetworkKind.SOLANA,
        rpc_url="http://solana.test",
        contract_address="hapiAwBQLYRXrjGn6FLCgC8FpQd2yWbKMqS6AYZ48g6",
        fetching_delay=0,
        wait_interval=0,
    )


@pytest.fixture
def app(settings):
    """Create FastAPI application for testing."""
    from hapi_indexer.main import create_app

    return create_app(settings)


@pytest.fixture
def client(app):
    """Create test client."""
    with TestClient(app) as client:
        yield client
