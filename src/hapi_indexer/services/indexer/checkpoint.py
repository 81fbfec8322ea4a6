"""Durable cursor storage for indexer resumption."""

import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from hapi_indexer.models.state import IndexingCursor, NoCursor, PersistedState

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Cursor state could not be read or written."""


class CursorStore(ABC):
    """Durable record of the last processed position per network."""

    @abstractmethod
    async def load_state(self, network: str) -> PersistedState | None:
        """Load persisted state, or None when nothing is stored.

        Raises:
            PersistenceError: If the stored state cannot be read
        """
        ...

    @abstractmethod
    async def save_state(self, state: PersistedState) -> None:
        """Persist state.

        Raises:
            PersistenceError: If the state cannot be written
        """
        ...

    async def load(self, network: str) -> IndexingCursor:
        """Load the cursor of a network, defaulting to no cursor."""
        state = await self.load_state(network)
        return state.cursor if state else NoCursor()

    async def save(self, network: str, cursor: IndexingCursor) -> None:
        """Persist the cursor of a network."""
        await self.save_state(
            PersistedState(
                network=network,
                cursor=cursor,
                updated_at=datetime.now(timezone.utc),
            )
        )

    async def reset(self, network: str) -> None:
        """Roll a network back to no cursor (operator action)."""
        logger.warning(f"Resetting cursor of {network}")
        await self.save(network, NoCursor())


class FileCursorStore(CursorStore):
    """Stores one JSON state file per network."""

    def __init__(self, state_dir: str | Path):
        """Initialize file cursor store.

        Args:
            state_dir: Directory holding state files
        """
        self.state_dir = Path(state_dir)

    def _path(self, network: str) -> Path:
        return self.state_dir / f"{network}.json"

    async def load_state(self, network: str) -> PersistedState | None:
        path = self._path(network)
        if not path.exists():
            return None
        try:
            return PersistedState.model_validate_json(path.read_text(encoding="utf-8"))
        except Exception as e:
            raise PersistenceError(f"Failed to load state from {path}: {e}") from e

    async def save_state(self, state: PersistedState) -> None:
        path = self._path(state.network)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(state.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceError(f"Failed to save state to {path}: {e}") from e


class RedisCursorStore(CursorStore):
    """Stores one state key per network in Redis."""

    def __init__(self, redis_client: Any, key_prefix: str = "hapi_indexer:cursor:"):
        """Initialize redis cursor store.

        Args:
            redis_client: Async Redis client
            key_prefix: Key prefix, the network name is appended
        """
        self.redis_client = redis_client
        self.key_prefix = key_prefix

    def _key(self, network: str) -> str:
        return f"{self.key_prefix}{network}"

    async def load_state(self, network: str) -> PersistedState | None:
        try:
            data = await self.redis_client.get(self._key(network))
        except Exception as e:
            raise PersistenceError(f"Failed to load state from Redis: {e}") from e
        if not data:
            return None
        try:
            return PersistedState.model_validate_json(data)
        except Exception as e:
            raise PersistenceError(f"Invalid state in Redis for {network}: {e}") from e

    async def save_state(self, state: PersistedState) -> None:
        try:
            await self.redis_client.set(self._key(state.network), state.model_dump_json())
        except Exception as e:
            raise PersistenceError(f"Failed to save state to Redis: {e}") from e

    async def close(self) -> None:
        await self.redis_client.aclose()
