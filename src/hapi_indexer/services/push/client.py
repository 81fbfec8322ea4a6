"""HTTP client delivering payloads to the event receiver."""

import logging

import httpx

from hapi_indexer.models.push import PushPayload

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """A payload was not accepted by the receiver."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PushClient:
    """Sends one payload per request with a bearer token.

    Performs a single attempt per call; retry policy belongs to the caller.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize push client.

        Args:
            url: Receiver endpoint
            timeout: Request timeout in seconds
            http_client: Optional preconfigured HTTP client
        """
        self.url = url
        self.timeout = timeout
        self._http_client = http_client

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def send(self, payload: PushPayload, token: str) -> None:
        """Deliver a payload.

        Args:
            payload: Payload to deliver
            token: Bearer token

        Raises:
            DeliveryError: On transport failure or non-2xx response
        """
        client = await self._get_http_client()
        try:
            response = await client.post(
                self.url,
                content=payload.model_dump_json(),
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise DeliveryError(f"Failed to reach {self.url}: {e}") from e

        if not response.is_success:
            raise DeliveryError(
                f"Receiver rejected {payload.event.name.value} {payload.event.tx_hash}: "
                f"HTTP {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )

        logger.debug(
            f"Delivered {payload.event.name.value} {payload.event.tx_hash}"
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
