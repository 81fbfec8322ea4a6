"""NEAR indexer client over JSON-RPC."""

import base64
import json
import logging
from typing import Any

import httpx

from hapi_indexer.core.config import NetworkSettings
from hapi_indexer.infrastructure.blockchain.client import (
    IndexerClient,
    JobResolutionError,
    RpcError,
    paced,
)
from hapi_indexer.models.entities import (
    Address,
    Asset,
    Case,
    Reporter,
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
    FetchingArtifacts,
    IndexingCursor,
    NearReceiptJob,
    NoCursor,
)

logger = logging.getLogger(__name__)

# Activation is driven by ft_transfer_call on the stake token
FT_ON_TRANSFER = "ft_on_transfer"


class NearRpc:
    """Minimal NEAR JSON-RPC client."""

    def __init__(self, rpc_url: str, http_client: httpx.AsyncClient | None = None):
        """Initialize NEAR RPC.

        Args:
            rpc_url: JSON-RPC endpoint
            http_client: Optional preconfigured HTTP client
        """
        self.rpc_url = rpc_url
        self._http_client = http_client
        self._request_id = 0

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def call(self, method: str, params: dict[str, Any]) -> Any:
        """Execute a JSON-RPC method.

        Raises:
            RpcError: On transport failure or JSON-RPC error
        """
        self._request_id += 1
        client = await self._get_http_client()
        try:
            response = await client.post(
                self.rpc_url,
                json={
                    "jsonrpc": "2.0",
                    "id": self._request_id,
                    "method": method,
                    "params": params,
                },
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RpcError(f"NEAR RPC {method} failed: {e}") from e

        if "error" in body:
            raise RpcError(f"NEAR RPC {method} returned error: {body['error']}")
        return body["result"]

    async def get_final_block_height(self) -> int:
        """Get height of the latest final block."""
        block = await self.call("block", {"finality": "final"})
        return int(block["header"]["height"])

    async def get_block_timestamp(self, height: int) -> int:
        """Get block timestamp in nanoseconds."""
        block = await self.call("block", {"block_id": height})
        return int(block["header"]["timestamp"])

    async def get_data_changes(self, height: int, account_id: str) -> list[dict[str, Any]]:
        """Get contract storage changes in a block."""
        result = await self.call(
            "EXPERIMENTAL_changes",
            {
                "changes_type": "data_changes",
                "account_ids": [account_id],
                "key_prefix_base64": "",
                "block_id": height,
            },
        )
        return result.get("changes", [])

    async def get_receipt(self, receipt_id: str) -> dict[str, Any]:
        """Get receipt by id."""
        return await self.call("EXPERIMENTAL_receipt", {"receipt_id": receipt_id})

    async def view(self, account_id: str, method_name: str, args: dict[str, Any]) -> Any:
        """Call a view method at final finality and decode its JSON result."""
        result = await self.call(
            "query",
            {
                "request_type": "call_function",
                "finality": "final",
                "account_id": account_id,
                "method_name": method_name,
                "args_base64": base64.b64encode(json.dumps(args).encode()).decode(),
            },
        )
        return json.loads(bytes(result["result"]))

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


def get_hash_from_cause(cause: dict[str, Any]) -> str | None:
    """Extract receipt or transaction hash from a state change cause."""
    cause_type = cause.get("type")
    if cause_type == "transaction_processing":
        return cause.get("tx_hash")
    if cause_type == "receipt_processing":
        return cause.get("receipt_hash")
    return None


def get_method_from_receipt(receipt: dict[str, Any]) -> tuple[str, dict[str, Any]] | None:
    """Get method name and decoded arguments of the receipt's first action."""
    action = receipt.get("receipt", {}).get("Action")
    if not action or not action.get("actions"):
        return None

    function_call = action["actions"][0]
    if not isinstance(function_call, dict) or "FunctionCall" not in function_call:
        return None

    call = function_call["FunctionCall"]
    try:
        args = json.loads(base64.b64decode(call.get("args") or "") or b"{}")
    except ValueError:
        args = {}
    return call["method_name"], (args if isinstance(args, dict) else {})


def get_field_from_args(args: dict[str, Any], field: str) -> str:
    """Get a string field from call arguments.

    Raises:
        JobResolutionError: If the field is missing or not a string
    """
    value = args.get(field)
    if not isinstance(value, str):
        raise JobResolutionError(f"Failed to parse {field} from {args}")
    return value


class NearIndexerClient(IndexerClient):
    """Indexes receipts that change NEAR contract storage."""

    def __init__(self, network: NetworkSettings, rpc: NearRpc | None = None):
        """Initialize NEAR indexer client.

        Args:
            network: Network settings
            rpc: RPC access, built from settings when omitted
        """
        super().__init__(network)
        self.rpc = rpc or NearRpc(network.rpc_url)
        self.contract_id = network.contract_address

    async def fetch_jobs(self, cursor: IndexingCursor) -> FetchingArtifacts:
        """Collect receipts that changed contract state in the next block window."""
        if isinstance(cursor, BlockCursor):
            start_block = cursor.height + 1
        elif isinstance(cursor, NoCursor):
            start_block = self.network.start_block
        else:
            raise ValueError(f"Unsupported cursor for NEAR network: {cursor}")

        latest_block = await self.rpc.get_final_block_height()
        if start_block > latest_block:
            return FetchingArtifacts(jobs=[], cursor=cursor)

        final_block = min(start_block + self.page_size - 1, latest_block)
        jobs: list[NearReceiptJob] = []

        for block_height in range(start_block, final_block + 1):
            async with paced(self.fetching_delay):
                try:
                    jobs.extend(await self._fetch_block_jobs(block_height))
                except Exception as e:
                    logger.error(
                        f"[{self.name}] Failed to fetch near jobs in block {block_height}: {e}"
                    )

        logger.info(f"[{self.name}] Fetched until block {final_block}: {len(jobs)} jobs")
        return FetchingArtifacts(jobs=jobs, cursor=BlockCursor(height=final_block))

    async def _fetch_block_jobs(self, block_height: int) -> list[NearReceiptJob]:
        """Get one job per distinct receipt that changed contract data in a block."""
        changes = await self.rpc.get_data_changes(block_height, self.contract_id)
        if not changes:
            return []

        timestamp = await self.rpc.get_block_timestamp(block_height)
        hashes = [get_hash_from_cause(change.get("cause", {})) for change in changes]

        return [
            NearReceiptJob(hash=receipt_hash, block_height=block_height, timestamp=timestamp)
            for receipt_hash in dict.fromkeys(hashes)
            if receipt_hash
        ]

    async def process_job(self, job: NearReceiptJob) -> list[PushPayload] | None:
        """Classify the receipt's method call and fetch the affected entity."""
        receipt = await self.rpc.get_receipt(job.hash)

        method_call = get_method_from_receipt(receipt)
        if method_call is None:
            logger.info(f"[{self.name}] Receipt {job} has no function call")
            return None

        method, args = method_call
        if method == FT_ON_TRANSFER:
            event_name = EventName.ACTIVATE_REPORTER
        else:
            try:
                event_name = EventName.from_method(method)
            except ValueError as e:
                logger.error(f"[{self.name}] Failed to parse method {method} in {job}: {e}")
                return None

        if event_name in IGNORED_EVENTS:
            logger.info(f"[{self.name}] Skipping {event_name.value} in {job}")
            return None

        data = await self._fetch_entity(event_name, args)
        logger.info(f"[{self.name}] {event_name.value} resolved in {job}")
        return [self.build_payload(event_name, job.hash, 0, job.timestamp, data)]

    async def _fetch_entity(self, event_name: EventName, args: dict[str, Any]) -> PushData:
        """Fetch current state of the entity affected by a call."""
        if event_name == EventName.ACTIVATE_REPORTER:
            # The reporter id is not among the transfer callback arguments
            return await self.get_reporter_by_account(get_field_from_args(args, "sender_id"))
        if event_name in CASE_EVENTS:
            return await self.get_case(get_field_from_args(args, "id"))
        if event_name in ADDRESS_EVENTS:
            return await self.get_address(get_field_from_args(args, "address"))
        if event_name in ASSET_EVENTS:
            return await self.get_asset(
                get_field_from_args(args, "address"), get_field_from_args(args, "id")
            )
        if event_name in REPORTER_EVENTS:
            return await self.get_reporter(get_field_from_args(args, "id"))
        raise JobResolutionError(f"No entity for event {event_name.value}")

    async def get_reporter(self, reporter_id: str) -> Reporter:
        """Get reporter by u128 id."""
        return self._reporter(
            await self.rpc.view(self.contract_id, "get_reporter", {"id": reporter_id})
        )

    async def get_reporter_by_account(self, account_id: str) -> Reporter:
        """Get reporter by NEAR account."""
        return self._reporter(
            await self.rpc.view(
                self.contract_id, "get_reporter_by_account", {"account_id": account_id}
            )
        )

    async def get_case(self, case_id: str) -> Case:
        """Get case by u128 id."""
        view = await self.rpc.view(self.contract_id, "get_case", {"id": case_id})
        return Case(
            id=uuid_from_u128(view["id"]),
            name=view["name"],
            url=view["url"],
            status=view["status"],
            reporter_id=uuid_from_u128(view["reporter_id"]),
        )

    async def get_address(self, address: str) -> Address:
        """Get address by value."""
        view = await self.rpc.view(self.contract_id, "get_address", {"address": address})
        return Address(
            address=view["address"],
            case_id=uuid_from_u128(view["case_id"]),
            reporter_id=uuid_from_u128(view["reporter_id"]),
            risk=view["risk_score"],
            category=view["category"],
            confirmations=view["confirmations_count"],
        )

    async def get_asset(self, address: str, asset_id: str) -> Asset:
        """Get asset by address and id."""
        view = await self.rpc.view(
            self.contract_id, "get_asset", {"address": address, "id": asset_id}
        )
        return Asset(
            address=view["address"],
            asset_id=str(view["id"]),
            case_id=uuid_from_u128(view["case_id"]),
            reporter_id=uuid_from_u128(view["reporter_id"]),
            risk=view["risk_score"],
            category=view["category"],
            confirmations=view["confirmations_count"],
        )

    @staticmethod
    def _reporter(view: dict[str, Any]) -> Reporter:
        return Reporter(
            id=uuid_from_u128(view["id"]),
            account=view["account_id"],
            role=view["role"],
            status=view["status"],
            name=view["name"],
            url=view["url"],
            stake=int(view["stake"]),
            unlock_timestamp=int(view["unlock_timestamp"]),
        )

    async def close(self) -> None:
        await self.rpc.close()
