"""Indexer configuration management using pydantic-settings."""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NetworkKind(str, Enum):
    """Supported blockchain families."""

    EVM = "evm"
    SOLANA = "solana"
    NEAR = "near"


# Default page bounds: blocks for EVM/NEAR, signatures for Solana
EVM_PAGE_SIZE = 500
SOLANA_BATCH_SIZE = 500
NEAR_PAGE_SIZE = 600

DEFAULT_PAGE_SIZES = {
    NetworkKind.EVM: EVM_PAGE_SIZE,
    NetworkKind.SOLANA: SOLANA_BATCH_SIZE,
    NetworkKind.NEAR: NEAR_PAGE_SIZE,
}


class NetworkSettings(BaseModel):
    """Settings for one indexed network."""

    name: str = Field(..., min_length=1, description="Unique network identifier")
    kind: NetworkKind = Field(..., description="Blockchain family")
    rpc_url: str = Field(..., description="Primary RPC endpoint")
    backup_rpc_urls: list[str] = Field(
        default_factory=list, description="Failover RPC endpoints (EVM only)"
    )
    contract_address: str = Field(
        ..., description="Contract address, program id or NEAR account id"
    )
    page_size: int | None = Field(
        default=None, gt=0, description="Maximum blocks/signatures scanned per pass"
    )
    fetching_delay: float = Field(
        default=0.1, ge=0, description="Minimum seconds between per-unit RPC calls"
    )
    wait_interval: float = Field(
        default=5.0, ge=0, description="Idle seconds between indexing iterations"
    )
    start_block: int = Field(
        default=0, ge=0, description="First height scanned when no cursor is persisted"
    )
    confirmation_blocks: int = Field(
        default=0, ge=0, description="Safe-head lag in blocks (EVM only)"
    )

    @computed_field
    @property
    def effective_page_size(self) -> int:
        """Page size with the per-chain default applied."""
        return self.page_size or DEFAULT_PAGE_SIZES[self.kind]


class Settings(BaseSettings):
    """Indexer settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="hapi-indexer", description="Application name")
    environment: Literal["development", "testing", "staging", "production"] = Field(
        default="development", description="Runtime environment"
    )

    # Networks
    networks: list[NetworkSettings] = Field(
        default_factory=list, description="Networks to index (JSON list in env)"
    )

    # Push sink
    push_url: str = Field(
        default="http://localhost:3000/events", description="Event receiver endpoint"
    )
    push_timeout: float = Field(default=30.0, gt=0, description="Push request timeout")
    push_token: str | None = Field(
        default=None, description="Static bearer token for the push sink"
    )
    jwt_secret: str | None = Field(
        default=None, description="Secret used to mint push sink tokens"
    )
    jwt_expire_minutes: int = Field(
        default=60, gt=0, description="Minted token lifetime in minutes"
    )

    # Cursor persistence
    cursor_store: Literal["file", "redis"] = Field(
        default="file", description="Cursor store backend"
    )
    state_dir: Path = Field(
        default=Path("data/state"), description="Directory for file cursor store"
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0", description="Redis URL for redis cursor store"
    )

    # Retry policy
    fetch_max_attempts: int = Field(
        default=5, gt=0, description="Fetch attempts per iteration before giving up"
    )
    retry_base_delay: float = Field(default=1.0, ge=0, description="First retry delay")
    retry_max_delay: float = Field(default=60.0, ge=0, description="Retry delay cap")

    # Status API
    status_host: str = Field(default="0.0.0.0", description="Status API bind host")
    status_port: int = Field(default=8080, description="Status API bind port")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="json", description="Log output format"
    )

    @field_validator("networks")
    @classmethod
    def validate_unique_networks(
        cls, networks: list[NetworkSettings]
    ) -> list[NetworkSettings]:
        """Reject duplicate network names."""
        names = [network.name for network in networks]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate network names: {', '.join(duplicates)}")
        return networks

    def get_network(self, name: str) -> NetworkSettings:
        """Get settings for a configured network.

        Raises:
            KeyError: If the network is not configured
        """
        for network in self.networks:
            if network.name == name:
                return network
        raise KeyError(f"Network not configured: {name}")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
