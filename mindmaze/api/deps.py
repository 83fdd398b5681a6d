from __future__ import annotations

from fastapi import HTTPException, Request, status

from mindmaze.core.session import GameSession
from mindmaze.websocket_hub import EventWebSocketHub


def get_session(request: Request) -> GameSession:
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Game session not started")
    return session


def get_hub(request: Request) -> EventWebSocketHub:
    return request.app.state.hub
