"""Blockchain infrastructure module."""

from hapi_indexer.core.config import NetworkKind, NetworkSettings
from hapi_indexer.infrastructure.blockchain.client import (
    IndexerClient,
    JobResolutionError,
    RpcError,
    paced,
)
from hapi_indexer.infrastructure.blockchain.evm import EvmIndexerClient, EvmRpc
from hapi_indexer.infrastructure.blockchain.near import NearIndexerClient, NearRpc
from hapi_indexer.infrastructure.blockchain.solana import SolanaIndexerClient, SolanaRpc

CLIENT_TYPES: dict[NetworkKind, type[IndexerClient]] = {
    NetworkKind.EVM: EvmIndexerClient,
    NetworkKind.SOLANA: SolanaIndexerClient,
    NetworkKind.NEAR: NearIndexerClient,
}


def create_indexer_client(network: NetworkSettings) -> IndexerClient:
    """Create the indexer client matching a network's kind."""
    return CLIENT_TYPES[network.kind](network)


__all__ = [
    # Interface
    "IndexerClient",
    "JobResolutionError",
    "RpcError",
    "paced",
    "create_indexer_client",
    # EVM
    "EvmIndexerClient",
    "EvmRpc",
    # NEAR
    "NearIndexerClient",
    "NearRpc",
    # Solana
    "SolanaIndexerClient",
    "SolanaRpc",
]
