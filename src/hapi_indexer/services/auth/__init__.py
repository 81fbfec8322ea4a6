"""Push sink authentication."""

from hapi_indexer.services.auth.token import (
    JwtTokenProvider,
    StaticTokenProvider,
    TokenProvider,
)

__all__ = ["JwtTokenProvider", "StaticTokenProvider", "TokenProvider"]
