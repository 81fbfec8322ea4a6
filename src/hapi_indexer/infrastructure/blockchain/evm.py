"""EVM indexer client with multi-RPC failover support."""

import asyncio
import logging
from itertools import groupby
from typing import Any

import aiohttp
from eth_abi import decode, encode
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware
from web3.types import BlockIdentifier, TxParams

from hapi_indexer.core.config import NetworkSettings
from hapi_indexer.infrastructure.blockchain.client import (
    IndexerClient,
    JobResolutionError,
    RpcError,
    paced,
)
from hapi_indexer.models.entities import (
    CASE_STATUSES,
    CATEGORIES,
    REPORTER_ROLES,
    REPORTER_STATUSES,
    Address,
    Asset,
    Case,
    Reporter,
    enum_at,
    uuid_from_u128,
)
from hapi_indexer.models.push import (
    ADDRESS_EVENTS,
    ASSET_EVENTS,
    CASE_EVENTS,
    IGNORED_EVENTS,
    REPORTER_EVENTS,
    EventName,
    PushData,
    PushPayload,
)
from hapi_indexer.models.state import (
    BlockCursor,
    EvmLogJob,
    FetchingArtifacts,
    IndexingCursor,
    LogCursor,
    NoCursor,
)

logger = logging.getLogger(__name__)


# Contract event signatures
EVENT_SIGNATURES: dict[str, EventName] = {
    "Initialized(uint8)": EventName.INITIALIZE,
    "AuthorityChanged(address)": EventName.SET_AUTHORITY,
    "StakeConfigurationChanged(address,uint256,uint256,uint256,uint256,uint256)": (
        EventName.UPDATE_STAKE_CONFIGURATION
    ),
    "RewardConfigurationChanged(address,uint256,uint256,uint256,uint256)": (
        EventName.UPDATE_REWARD_CONFIGURATION
    ),
    "ReporterCreated(uint128,address,uint8)": EventName.CREATE_REPORTER,
    "ReporterUpdated(uint128,address,uint8)": EventName.UPDATE_REPORTER,
    "ReporterActivated(uint128)": EventName.ACTIVATE_REPORTER,
    "ReporterDeactivated(uint128)": EventName.DEACTIVATE_REPORTER,
    "ReporterStakeWithdrawn(uint128)": EventName.UNSTAKE,
    "CaseCreated(uint128)": EventName.CREATE_CASE,
    "CaseUpdated(uint128)": EventName.UPDATE_CASE,
    "AddressCreated(address,uint8,uint8)": EventName.CREATE_ADDRESS,
    "AddressUpdated(address,uint8,uint8)": EventName.UPDATE_ADDRESS,
    "AddressConfirmed(address)": EventName.CONFIRM_ADDRESS,
    "AssetCreated(address,uint256,uint8,uint8)": EventName.CREATE_ASSET,
    "AssetUpdated(address,uint256,uint8,uint8)": EventName.UPDATE_ASSET,
    "AssetConfirmed(address,uint256)": EventName.CONFIRM_ASSET,
}

# View functions: signature -> returned struct
GET_REPORTER = (
    "getReporter(uint128)",
    "(uint128,address,string,string,uint8,uint8,uint256,uint256)",
)
GET_CASE = ("getCase(uint128)", "(uint128,string,uint128,uint8,string)")
GET_ADDRESS = ("getAddress(address)", "(address,uint128,uint128,uint256,uint8,uint8)")
GET_ASSET = (
    "getAsset(address,uint256)",
    "(address,uint256,uint128,uint128,uint256,uint8,uint8)",
)

# Transport failures worth another attempt or endpoint
RPC_ERRORS = (Web3Exception, aiohttp.ClientError, asyncio.TimeoutError, OSError)


def to_hex(value: Any) -> str:
    """Normalize bytes or hex strings to a 0x-prefixed lowercase hex string."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


def topic_to_event_map() -> dict[str, EventName]:
    """Build mapping from topic0 hash to event name."""
    return {
        to_hex(Web3.keccak(text=signature)): event_name
        for signature, event_name in EVENT_SIGNATURES.items()
    }


class EvmRpc:
    """EVM JSON-RPC access with automatic endpoint failover."""

    def __init__(
        self,
        rpc_urls: list[str],
        max_retries: int = 1,
        retry_delay: float = 1.0,
    ):
        """Initialize EVM RPC.

        Args:
            rpc_urls: List of RPC endpoints (primary + backups)
            max_retries: Attempts per endpoint before switching
            retry_delay: Delay between attempts in seconds
        """
        if not rpc_urls:
            raise ValueError("At least one RPC endpoint is required")
        self.rpc_urls = rpc_urls
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._current_rpc_index = 0
        self._clients: dict[int, AsyncWeb3] = {}

    def _get_web3(self, rpc_index: int) -> AsyncWeb3:
        """Get or create Web3 instance for specified RPC."""
        if rpc_index not in self._clients:
            w3 = AsyncWeb3(AsyncHTTPProvider(self.rpc_urls[rpc_index]))
            # Tolerates POA chains with oversized extraData
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
            self._clients[rpc_index] = w3
        return self._clients[rpc_index]

    async def _execute_with_failover(
        self, method: str, *args: Any, **kwargs: Any
    ) -> Any:
        """Execute ``web3.eth`` method with automatic RPC failover.

        Args:
            method: Web3 method name to call
            *args: Positional arguments for the method
            **kwargs: Keyword arguments for the method

        Returns:
            Result from the Web3 method

        Raises:
            RpcError: If all RPCs fail
        """
        last_error: Exception | None = None

        for rpc_offset in range(len(self.rpc_urls)):
            rpc_index = (self._current_rpc_index + rpc_offset) % len(self.rpc_urls)
            web3 = self._get_web3(rpc_index)

            for attempt in range(self.max_retries):
                try:
                    result = await getattr(web3.eth, method)(*args, **kwargs)
                    self._current_rpc_index = rpc_index
                    return result

                except RPC_ERRORS as e:
                    last_error = e
                    logger.warning(
                        f"RPC {self.rpc_urls[rpc_index]} {method} failed "
                        f"(attempt {attempt + 1}): {e}"
                    )
                    if attempt < self.max_retries - 1:
                        await asyncio.sleep(self.retry_delay * (attempt + 1))

            if len(self.rpc_urls) > 1:
                logger.warning(
                    f"Switching from RPC {self.rpc_urls[rpc_index]} to next backup"
                )

        raise RpcError(f"All RPCs failed for {method}. Last error: {last_error}")

    async def get_block_number(self) -> int:
        """Get current block number."""
        return await self._execute_with_failover("get_block_number")

    async def get_block(self, block_identifier: BlockIdentifier) -> dict[str, Any]:
        """Get block by number or hash."""
        block = await self._execute_with_failover("get_block", block_identifier)
        return dict(block) if block else {}

    async def get_logs(
        self, from_block: int, to_block: int, address: str
    ) -> list[dict[str, Any]]:
        """Get contract logs in an inclusive block range."""
        logs = await self._execute_with_failover(
            "get_logs",
            {
                "fromBlock": from_block,
                "toBlock": to_block,
                "address": Web3.to_checksum_address(address),
            },
        )
        return [dict(log) for log in logs]

    async def eth_call(
        self, transaction: TxParams, block_identifier: BlockIdentifier = "latest"
    ) -> bytes:
        """Execute eth_call (read-only contract call)."""
        return await self._execute_with_failover("call", transaction, block_identifier)


class EvmIndexerClient(IndexerClient):
    """Indexes contract logs on an EVM chain."""

    def __init__(self, network: NetworkSettings, rpc: EvmRpc | None = None):
        """Initialize EVM indexer client.

        Args:
            network: Network settings
            rpc: RPC access, built from settings when omitted
        """
        super().__init__(network)
        self.rpc = rpc or EvmRpc([network.rpc_url, *network.backup_rpc_urls])
        self.contract_address = Web3.to_checksum_address(network.contract_address)
        self.topic_to_event = topic_to_event_map()

    def _window_start(
        self, cursor: IndexingCursor
    ) -> tuple[int, tuple[int, int] | None]:
        """Get first block to scan and the last log already processed in it."""
        if isinstance(cursor, BlockCursor):
            return cursor.height + 1, None
        if isinstance(cursor, LogCursor):
            return cursor.block, (cursor.block, cursor.log_index)
        if isinstance(cursor, NoCursor):
            return self.network.start_block, None
        raise ValueError(f"Unsupported cursor for EVM network: {cursor}")

    async def fetch_jobs(self, cursor: IndexingCursor) -> FetchingArtifacts:
        """Collect contract logs within the next block window."""
        latest_block = await self.rpc.get_block_number()
        safe_block = latest_block - self.network.confirmation_blocks
        from_block, processed = self._window_start(cursor)

        if from_block > safe_block:
            return FetchingArtifacts(jobs=[], cursor=cursor)

        to_block = min(from_block + self.page_size - 1, safe_block)
        logs = await self.rpc.get_logs(from_block, to_block, self.contract_address)

        logs = sorted(logs, key=lambda log: (log["blockNumber"], log["logIndex"]))
        if processed:
            logs = [
                log for log in logs if (log["blockNumber"], log["logIndex"]) > processed
            ]

        jobs: list[EvmLogJob] = []
        for block_number, block_logs in groupby(logs, key=lambda log: log["blockNumber"]):
            block_logs = list(block_logs)
            async with paced(self.fetching_delay):
                try:
                    block = await self.rpc.get_block(block_number)
                    timestamp = int(block["timestamp"])
                except Exception as e:
                    logger.error(
                        f"[{self.name}] Failed to fetch block {block_number}, "
                        f"skipping {len(block_logs)} logs: {e}"
                    )
                    continue

            jobs.extend(
                EvmLogJob(
                    tx_hash=to_hex(log["transactionHash"]),
                    block_number=block_number,
                    log_index=log["logIndex"],
                    timestamp=timestamp,
                    topics=tuple(to_hex(topic) for topic in log.get("topics", [])),
                    data=to_hex(log.get("data", b"")),
                )
                for log in block_logs
            )

        logger.info(f"[{self.name}] Fetched blocks {from_block}-{to_block}: {len(jobs)} jobs")
        return FetchingArtifacts(jobs=jobs, cursor=BlockCursor(height=to_block))

    async def process_job(self, job: EvmLogJob) -> list[PushPayload] | None:
        """Classify a log by topic and fetch the affected entity."""
        topic0 = job.topics[0] if job.topics else None
        event_name = self.topic_to_event.get(topic0) if topic0 else None

        if event_name is None:
            logger.warning(f"[{self.name}] Unknown event topic {topic0} in {job}")
            return None

        if event_name in IGNORED_EVENTS:
            logger.info(f"[{self.name}] Skipping {event_name.value} in {job}")
            return None

        data = await self._fetch_entity(event_name, job)
        logger.info(f"[{self.name}] {event_name.value} resolved in {job}")
        return [
            self.build_payload(
                event_name, job.tx_hash, job.log_index, job.timestamp, data
            )
        ]

    async def _fetch_entity(self, event_name: EventName, job: EvmLogJob) -> PushData:
        """Fetch current state of the entity affected by a log."""
        if len(job.topics) < 2:
            raise JobResolutionError(f"{event_name.value} log {job} has no indexed key")

        if event_name in REPORTER_EVENTS:
            return await self.get_reporter(int(job.topics[1], 16))
        if event_name in CASE_EVENTS:
            return await self.get_case(int(job.topics[1], 16))
        if event_name in ADDRESS_EVENTS:
            return await self.get_address(self._topic_address(job.topics[1]))
        if event_name in ASSET_EVENTS:
            if len(job.topics) < 3:
                raise JobResolutionError(f"{event_name.value} log {job} has no asset id")
            return await self.get_asset(
                self._topic_address(job.topics[1]), int(job.topics[2], 16)
            )
        raise JobResolutionError(f"No entity for event {event_name.value}")

    @staticmethod
    def _topic_address(topic: str) -> str:
        """Decode address from indexed topic (last 20 bytes)."""
        return Web3.to_checksum_address("0x" + topic[-40:])

    async def _call_view(
        self, view: tuple[str, str], arg_types: list[str], args: list[Any]
    ) -> tuple:
        """Call a contract view function and decode the struct it returns."""
        signature, output_type = view
        selector = Web3.keccak(text=signature)[:4]
        data = to_hex(selector + encode(arg_types, args))
        result = await self.rpc.eth_call({"to": self.contract_address, "data": data})
        try:
            return decode([output_type], bytes(result))[0]
        except Exception as e:
            raise JobResolutionError(f"Failed to decode {signature} result: {e}") from e

    async def get_reporter(self, reporter_id: int) -> Reporter:
        """Get reporter by id."""
        _, account, name, url, role, status, stake, unlock_timestamp = await self._call_view(
            GET_REPORTER, ["uint128"], [reporter_id]
        )
        return Reporter(
            id=uuid_from_u128(reporter_id),
            account=account,
            role=enum_at(REPORTER_ROLES, role),
            status=enum_at(REPORTER_STATUSES, status),
            name=name,
            url=url,
            stake=stake,
            unlock_timestamp=unlock_timestamp,
        )

    async def get_case(self, case_id: int) -> Case:
        """Get case by id."""
        _, name, reporter_id, status, url = await self._call_view(
            GET_CASE, ["uint128"], [case_id]
        )
        return Case(
            id=uuid_from_u128(case_id),
            name=name,
            url=url,
            status=enum_at(CASE_STATUSES, status),
            reporter_id=uuid_from_u128(reporter_id),
        )

    async def get_address(self, address: str) -> Address:
        """Get address by value."""
        _, case_id, reporter_id, confirmations, risk, category = await self._call_view(
            GET_ADDRESS, ["address"], [address]
        )
        return Address(
            address=address,
            case_id=uuid_from_u128(case_id),
            reporter_id=uuid_from_u128(reporter_id),
            risk=risk,
            category=enum_at(CATEGORIES, category),
            confirmations=confirmations,
        )

    async def get_asset(self, address: str, asset_id: int) -> Asset:
        """Get asset by address and id."""
        (
            _,
            _,
            case_id,
            reporter_id,
            confirmations,
            risk,
            category,
        ) = await self._call_view(GET_ASSET, ["address", "uint256"], [address, asset_id])
        return Asset(
            address=address,
            asset_id=str(asset_id),
            case_id=uuid_from_u128(case_id),
            reporter_id=uuid_from_u128(reporter_id),
            risk=risk,
            category=enum_at(CATEGORIES, category),
            confirmations=confirmations,
        )
