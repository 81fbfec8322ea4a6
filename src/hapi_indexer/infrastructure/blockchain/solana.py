"""Solana indexer client for the HAPI Anchor program."""

import hashlib
import json
import logging
import math
from typing import Any

import base58
from borsh_construct import U8, U64, U128, CStruct, String
from construct import Bytes as FixedBytes
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Finalized
from solders.pubkey import Pubkey
from solders.signature import Signature

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
    FetchingArtifacts,
    IndexingCursor,
    NoCursor,
    SolanaTransactionJob,
    TransactionCursor,
)

logger = logging.getLogger(__name__)

# getSignaturesForAddress maximum page
SIGNATURES_LIMIT = 1000

# Program instructions: name -> (event, position of the entity account)
INSTRUCTIONS: dict[str, tuple[EventName, int | None]] = {
    "create_network": (EventName.INITIALIZE, None),
    "set_authority": (EventName.SET_AUTHORITY, None),
    "update_stake_configuration": (EventName.UPDATE_STAKE_CONFIGURATION, None),
    "update_reward_configuration": (EventName.UPDATE_REWARD_CONFIGURATION, None),
    "create_reporter": (EventName.CREATE_REPORTER, 2),
    "update_reporter": (EventName.UPDATE_REPORTER, 2),
    "activate_reporter": (EventName.ACTIVATE_REPORTER, 2),
    "deactivate_reporter": (EventName.DEACTIVATE_REPORTER, 2),
    "unstake_reporter": (EventName.UNSTAKE, 2),
    "create_case": (EventName.CREATE_CASE, 3),
    "update_case": (EventName.UPDATE_CASE, 3),
    "create_address": (EventName.CREATE_ADDRESS, 4),
    "update_address": (EventName.UPDATE_ADDRESS, 4),
    "confirm_address": (EventName.CONFIRM_ADDRESS, None),
    "create_asset": (EventName.CREATE_ASSET, 4),
    "update_asset": (EventName.UPDATE_ASSET, 4),
    "confirm_asset": (EventName.CONFIRM_ASSET, None),
}

# Account layouts (after the 8-byte discriminator)
REPORTER_LAYOUT = CStruct(
    "bump" / U8,
    "network" / FixedBytes(32),
    "id" / U128,
    "account" / FixedBytes(32),
    "name" / String,
    "role" / U8,
    "status" / U8,
    "stake" / U64,
    "unlock_timestamp" / U64,
    "url" / String,
)
CASE_LAYOUT = CStruct(
    "bump" / U8,
    "network" / FixedBytes(32),
    "id" / U128,
    "name" / String,
    "reporter_id" / U128,
    "status" / U8,
    "url" / String,
)
ADDRESS_LAYOUT = CStruct(
    "bump" / U8,
    "network" / FixedBytes(32),
    "address" / FixedBytes(64),
    "category" / U8,
    "risk_score" / U8,
    "case_id" / U128,
    "reporter_id" / U128,
    "confirmations" / U64,
)
ASSET_LAYOUT = CStruct(
    "bump" / U8,
    "network" / FixedBytes(32),
    "address" / FixedBytes(64),
    "id" / FixedBytes(64),
    "category" / U8,
    "risk_score" / U8,
    "case_id" / U128,
    "reporter_id" / U128,
    "confirmations" / U64,
)


def instruction_discriminator(name: str) -> bytes:
    """Anchor instruction discriminator."""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def account_discriminator(name: str) -> bytes:
    """Anchor account discriminator."""
    return hashlib.sha256(f"account:{name}".encode()).digest()[:8]


def decode_padded(value: bytes) -> str:
    """Decode a zero-padded byte array holding a foreign address or id."""
    return value.rstrip(b"\x00").decode("utf-8")


class SolanaRpc:
    """Thin async wrapper over the Solana RPC calls used by the indexer."""

    def __init__(self, rpc_url: str, program_id: str):
        """Initialize Solana RPC.

        Args:
            rpc_url: RPC endpoint
            program_id: HAPI program address
        """
        self.client = AsyncClient(rpc_url, commitment=Finalized)
        self.program_id = Pubkey.from_string(program_id)

    async def get_signatures(
        self, before: str | None, until: str | None, limit: int
    ) -> list[dict[str, Any]]:
        """List program signatures, newest first."""
        try:
            response = await self.client.get_signatures_for_address(
                self.program_id,
                before=Signature.from_string(before) if before else None,
                until=Signature.from_string(until) if until else None,
                limit=limit,
                commitment=Finalized,
            )
        except Exception as e:
            raise RpcError(f"getSignaturesForAddress failed: {e}") from e

        return [
            {
                "signature": str(item.signature),
                "slot": item.slot,
                "err": item.err,
                "block_time": item.block_time,
            }
            for item in response.value
        ]

    async def get_transaction(self, signature: str) -> dict[str, Any] | None:
        """Get a finalized transaction in JSON encoding."""
        try:
            response = await self.client.get_transaction(
                Signature.from_string(signature),
                encoding="json",
                commitment=Finalized,
                max_supported_transaction_version=0,
            )
        except Exception as e:
            raise RpcError(f"getTransaction {signature} failed: {e}") from e

        if response.value is None:
            return None
        return json.loads(response.value.to_json())

    async def get_account_data(self, address: str) -> bytes | None:
        """Get raw account data."""
        try:
            response = await self.client.get_account_info(
                Pubkey.from_string(address), commitment=Finalized
            )
        except Exception as e:
            raise RpcError(f"getAccountInfo {address} failed: {e}") from e

        return bytes(response.value.data) if response.value else None

    async def close(self) -> None:
        await self.client.close()


class SolanaIndexerClient(IndexerClient):
    """Indexes HAPI program transactions on Solana."""

    def __init__(self, network: NetworkSettings, rpc: SolanaRpc | None = None):
        """Initialize Solana indexer client.

        Args:
            network: Network settings
            rpc: RPC access, built from settings when omitted
        """
        super().__init__(network)
        self.program_id = network.contract_address
        self.rpc = rpc or SolanaRpc(network.rpc_url, self.program_id)
        self.instructions = {
            instruction_discriminator(name): name for name in INSTRUCTIONS
        }
        # Signature pages listed per pass
        self.max_pages = math.ceil(self.page_size / SIGNATURES_LIMIT)

        # ``before`` bounds of backlog segments above the cursor, oldest last;
        # None stands for the chain head
        self._anchors: list[str | None] = [None]
        self._anchored_cursor: IndexingCursor | None = None
        # Set once the segment below the top anchor is empty
        self._bottomed = False

    async def fetch_jobs(self, cursor: IndexingCursor) -> FetchingArtifacts:
        """Collect the oldest unprocessed program transactions.

        Signatures are only listed newest first, so the backlog above the cursor
        is walked downwards at most ``max_pages`` pages per pass. Each full page
        leaves an anchor behind; later passes resume the walk from the lowest
        anchor instead of the chain head. An empty listing below an anchor drops
        it, and the page listed from the anchor above is then batched even
        when full.

        Anchors live in memory and are rebuilt when the cursor passed in is not
        the one this client last returned.
        """
        if isinstance(cursor, TransactionCursor):
            until = cursor.signature
        elif isinstance(cursor, NoCursor):
            until = None
        else:
            raise ValueError(f"Unsupported cursor for Solana network: {cursor}")

        if cursor != self._anchored_cursor:
            self._anchors = [None]
            self._anchored_cursor = cursor
            self._bottomed = False

        for _ in range(self.max_pages):
            before = self._anchors[-1]
            async with paced(self.fetching_delay):
                page = await self.rpc.get_signatures(before, until, SIGNATURES_LIMIT)

            if len(page) == SIGNATURES_LIMIT and not self._bottomed:
                # Older signatures may remain below this page
                self._anchors.append(page[-1]["signature"])
                continue
            if page:
                return self._take_batch(page)
            if before is None:
                break
            # Nothing is left below this anchor, so the page above it is the oldest
            self._anchors.pop()
            self._bottomed = True

        if len(self._anchors) > 1:
            logger.info(
                f"[{self.name}] Signature backlog above {cursor} spans "
                f"{len(self._anchors) - 1}+ pages, continuing next pass"
            )
        return FetchingArtifacts(jobs=[], cursor=cursor)

    def _take_batch(self, page: list[dict[str, Any]]) -> FetchingArtifacts:
        """Turn the oldest ``page_size`` signatures of a page into jobs."""
        batch = list(reversed(page))[: self.page_size]

        jobs = []
        for item in batch:
            if item["err"] is not None:
                logger.debug(f"[{self.name}] Skipping failed transaction {item['signature']}")
                continue
            jobs.append(SolanaTransactionJob(signature=item["signature"], slot=item["slot"]))

        last = batch[-1]
        cursor = TransactionCursor(slot=last["slot"], signature=last["signature"])
        self._anchored_cursor = cursor
        self._bottomed = False
        logger.info(
            f"[{self.name}] Fetched {len(batch)} signatures until slot {last['slot']}: "
            f"{len(jobs)} jobs"
        )
        return FetchingArtifacts(jobs=jobs, cursor=cursor)

    async def process_job(self, job: SolanaTransactionJob) -> list[PushPayload] | None:
        """Decode program instructions and fetch the affected entities."""
        transaction = await self.rpc.get_transaction(job.signature)
        if transaction is None:
            raise JobResolutionError(f"Transaction {job} not found")

        block_time = transaction.get("blockTime")
        if block_time is None:
            raise JobResolutionError(f"Transaction {job} has no block time")

        message = transaction["transaction"]["transaction"]["message"]
        account_keys = list(message["accountKeys"])
        loaded = (transaction["transaction"].get("meta") or {}).get("loadedAddresses") or {}
        account_keys += loaded.get("writable", []) + loaded.get("readonly", [])

        payloads = []
        for index, instruction in enumerate(message["instructions"]):
            if account_keys[instruction["programIdIndex"]] != self.program_id:
                continue

            name = self.instructions.get(base58.b58decode(instruction["data"])[:8])
            if name is None:
                logger.warning(f"[{self.name}] Unknown instruction #{index} in {job}")
                continue

            event_name, account_position = INSTRUCTIONS[name]
            if event_name in IGNORED_EVENTS or account_position is None:
                logger.info(f"[{self.name}] Skipping {event_name.value} in {job}")
                continue

            accounts = instruction["accounts"]
            if account_position >= len(accounts):
                raise JobResolutionError(
                    f"Instruction {name} in {job} has {len(accounts)} accounts"
                )

            entity_address = account_keys[accounts[account_position]]
            data = await self._fetch_entity(event_name, entity_address)
            logger.info(f"[{self.name}] {event_name.value} resolved in {job}")
            payloads.append(
                self.build_payload(event_name, job.signature, index, block_time, data)
            )

        return payloads or None

    async def _fetch_entity(self, event_name: EventName, address: str) -> PushData:
        """Fetch and decode the entity account."""
        if event_name in REPORTER_EVENTS:
            return await self.get_reporter(address)
        if event_name in CASE_EVENTS:
            return await self.get_case(address)
        if event_name in ADDRESS_EVENTS:
            return await self.get_address(address)
        if event_name in ASSET_EVENTS:
            return await self.get_asset(address)
        raise JobResolutionError(f"No entity for event {event_name.value}")

    async def _read_account(self, address: str, account_name: str, layout: CStruct) -> Any:
        """Read an Anchor account and decode its fields."""
        data = await self.rpc.get_account_data(address)
        if data is None:
            raise JobResolutionError(f"{account_name} account {address} not found")
        if data[:8] != account_discriminator(account_name):
            raise JobResolutionError(f"Account {address} is not a {account_name}")
        try:
            return layout.parse(data[8:])
        except Exception as e:
            raise JobResolutionError(f"Failed to decode {account_name} {address}: {e}") from e

    async def get_reporter(self, address: str) -> Reporter:
        """Get reporter by account address."""
        account = await self._read_account(address, "Reporter", REPORTER_LAYOUT)
        return Reporter(
            id=uuid_from_u128(account.id),
            account=str(Pubkey.from_bytes(account.account)),
            role=enum_at(REPORTER_ROLES, account.role),
            status=enum_at(REPORTER_STATUSES, account.status),
            name=account.name,
            url=account.url,
            stake=account.stake,
            unlock_timestamp=account.unlock_timestamp,
        )

    async def get_case(self, address: str) -> Case:
        """Get case by account address."""
        account = await self._read_account(address, "Case", CASE_LAYOUT)
        return Case(
            id=uuid_from_u128(account.id),
            name=account.name,
            url=account.url,
            status=enum_at(CASE_STATUSES, account.status),
            reporter_id=uuid_from_u128(account.reporter_id),
        )

    async def get_address(self, address: str) -> Address:
        """Get address by account address."""
        account = await self._read_account(address, "Address", ADDRESS_LAYOUT)
        return Address(
            address=decode_padded(account.address),
            case_id=uuid_from_u128(account.case_id),
            reporter_id=uuid_from_u128(account.reporter_id),
            risk=account.risk_score,
            category=enum_at(CATEGORIES, account.category),
            confirmations=account.confirmations,
        )

    async def get_asset(self, address: str) -> Asset:
        """Get asset by account address."""
        account = await self._read_account(address, "Asset", ASSET_LAYOUT)
        return Asset(
            address=decode_padded(account.address),
            asset_id=decode_padded(account.id),
            case_id=uuid_from_u128(account.case_id),
            reporter_id=uuid_from_u128(account.reporter_id),
            risk=account.risk_score,
            category=enum_at(CATEGORIES, account.category),
            confirmations=account.confirmations,
        )

    async def close(self) -> None:
        await self.rpc.close()
