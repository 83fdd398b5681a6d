from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class Countdown:
    """Drives a tick callback on the running asyncio loop until it returns False.

    Without a running loop nothing is scheduled; callers can still drive ticks by
    hand (tests, or a UI frame loop).
    """

    def __init__(self, *, on_tick: Callable[[], bool], interval_ms: float):
        self._on_tick = on_tick
        self._interval_ms = interval_ms
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        self.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; countdown must be ticked manually")
            return False
        self._task = loop.create_task(self._run())
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_ms / 1000)
            if not self._on_tick():
                return

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        # A tick that ends the question cancels its own countdown; let it return instead.
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()
