"""Indexer process: status API and entry point."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, HTTPException

from hapi_indexer import __version__
from hapi_indexer.core.config import Settings, get_settings
from hapi_indexer.core.logging import configure_logging
from hapi_indexer.services.indexer.runner import IndexerRunner


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run indexers for the lifetime of the application."""
    # Startup
    runner: IndexerRunner = app.state.runner
    await runner.start()

    yield

    # Shutdown
    await runner.stop()


def create_app(
    settings: Settings | None = None, runner: IndexerRunner | None = None
) -> FastAPI:
    """Create and configure FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        description="HAPI multi-chain indexer",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.runner = runner or IndexerRunner(settings)

    register_routes(app)

    return app


def register_routes(app: FastAPI) -> None:
    """Register status routes."""

    @app.get("/health", tags=["System"])
    async def health_check():
        """Liveness endpoint for orchestrators."""
        return {
            "status": "healthy",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/status", tags=["System"])
    async def status():
        """Per-network indexing status."""
        return {"networks": app.state.runner.get_status()}

    @app.get("/status/{network}", tags=["System"])
    async def network_status(network: str):
        """Indexing status of one network."""
        try:
            return app.state.runner.get(network).get_sync_status()
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Network not indexed: {network}")


def run() -> None:
    """Process entry point."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    uvicorn.run(
        create_app(settings),
        host=settings.status_host,
        port=settings.status_port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
