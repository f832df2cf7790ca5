"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance with its LiveFeedHub on app.state. Lifespan starts the hub's
poll and ping loops at startup and stops them (closing every subscriber)
at shutdown.

A missing upstream URL is the one fatal error: start() raises
ConfigurationError and the server refuses to come up.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from livefeed import __version__
from livefeed.api import api_router
from livefeed.config import ConfigurationError, Settings, settings
from livefeed.hub import LiveFeedHub

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    hub: LiveFeedHub = app.state.hub
    logger.info(
        "livefeed.starting",
        version=__version__,
        environment=hub.config.environment,
        port=hub.config.port,
    )

    try:
        await hub.start()
    except ConfigurationError as e:
        logger.error("livefeed.misconfigured", error=str(e))
        raise

    yield

    logger.info("livefeed.shutdown")
    await hub.stop()


def create_app(config: Optional[Settings] = None, hub: Optional[LiveFeedHub] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    config = config or settings
    app = FastAPI(
        title="Livefeed Hub",
        description="Live sports feed — upstream polling with WebSocket fanout",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.hub = hub or LiveFeedHub(config)

    app.include_router(api_router)

    from livefeed.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: livefeed.main:app)
app = create_app()
