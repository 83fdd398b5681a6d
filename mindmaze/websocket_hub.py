from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any

from fastapi import WebSocket

from mindmaze.core.events import EventBus, GameEvent, Subscription

logger = logging.getLogger(__name__)


class EventWebSocketHub:
    """Fans every event published on a session bus out to WebSocket clients.

    Contract:
      - `bind(bus)` subscribes to every event kind; events are queued as
        `{"type", "ts", "payload"}` dicts.
      - queued events are sent by `flush()`, which is also scheduled on the running
        loop whenever an event arrives (so countdown ticks go out on their own).

    Note: in-process only. Several API replicas would need Redis pub/sub instead.
    """

    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()
        self._pending: deque[dict[str, Any]] = deque()
        self._send_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()
        self._subscription: Subscription | None = None

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def bind(self, bus: EventBus) -> None:
        self.unbind()
        self._subscription = bus.subscribe_all(self._enqueue)

    def unbind(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._pending.clear()

    def _enqueue(self, event: GameEvent) -> None:
        if not self._connections:
            return
        self._pending.append(event.as_message())
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Published outside the loop; the next flush() picks it up.
            return
        task = loop.create_task(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        self._connections.discard(websocket)

    async def flush(self) -> None:
        async with self._send_lock:
            while self._pending:
                await self.broadcast(self._pending.popleft())

    async def broadcast(self, payload: dict[str, Any]) -> None:
        conns = list(self._connections)
        if not conns:
            return

        dead: list[WebSocket] = []
        for ws in conns:
            try:
                await ws.send_json(payload)
            except Exception:
                logger.debug("Dropping WebSocket client after failed send", exc_info=True)
                dead.append(ws)

        for ws in dead:
            self._connections.discard(ws)
