from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI

from mindmaze import __version__
from mindmaze.api.routes import router
from mindmaze.config import Settings, load_settings
from mindmaze.core.session import GameSession
from mindmaze.logging_config import configure_logging
from mindmaze.websocket_hub import EventWebSocketHub

logger = logging.getLogger(__name__)


def create_app(*, settings: Settings | None = None, redis_client: redis.Redis | None = None) -> FastAPI:
    """Build the HTTP/WebSocket surface around one GameSession.

    The session and the WebSocket hub are created on startup and live on `app.state`.
    """

    settings = settings or load_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        session = GameSession.create(settings=settings, r=redis_client)
        hub = EventWebSocketHub()
        hub.bind(session.bus)
        app.state.session = session
        app.state.hub = hub
        logger.info("MindMaze API started")
        try:
            yield
        finally:
            hub.unbind()
            session.close()
            app.state.session = None

    app = FastAPI(title="mindmaze", version=__version__, lifespan=lifespan)
    app.include_router(router)
    return app


app = create_app()
