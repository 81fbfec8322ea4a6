"""Bearer token sources for the push sink."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

from jose import jwt

logger = logging.getLogger(__name__)


class TokenProvider(ABC):
    """Supplies the bearer token attached to pushed payloads."""

    @abstractmethod
    def get_token(self) -> str:
        """Get a currently valid token."""
        ...


class StaticTokenProvider(TokenProvider):
    """Returns a preconfigured token."""

    def __init__(self, token: str):
        self.token = token

    def get_token(self) -> str:
        return self.token


class JwtTokenProvider(TokenProvider):
    """Signs short-lived HS256 tokens identifying the indexer network."""

    def __init__(
        self,
        secret_key: str,
        network: str,
        expire_minutes: int = 60,
        algorithm: str = "HS256",
    ):
        """Initialize JWT token provider.

        Args:
            secret_key: Secret shared with the receiver
            network: Network name placed in the token claims
            expire_minutes: Token lifetime in minutes
            algorithm: JWT algorithm
        """
        self.secret_key = secret_key
        self.network = network
        self.expire_minutes = expire_minutes
        self.algorithm = algorithm
        self._token: str | None = None
        self._expires_at: datetime | None = None

    def get_token(self) -> str:
        """Get cached token, minting a new one a minute before expiry."""
        now = datetime.now(timezone.utc)
        if self._token and self._expires_at and now < self._expires_at - timedelta(minutes=1):
            return self._token

        self._expires_at = now + timedelta(minutes=self.expire_minutes)
        payload = {
            "sub": "indexer",
            "network": self.network,
            "iat": now,
            "exp": self._expires_at,
        }
        self._token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        logger.debug(f"Minted push token for {self.network}")
        return self._token
