"""Per-request ordered event channel between a research run and its consumer."""
from __future__ import annotations

import asyncio
from typing import AsyncIterator

from loguru import logger

from research_engine.models.events import SearchEvent

_CLOSED = object()


class EventBus:
    """Single-writer, single-reader ordered queue of ``SearchEvent``.

    Publishing a terminal event closes the bus. Anything published after the
    bus is closed is dropped, which makes the first terminal write win.
    """

    def __init__(self, run_id: str = ""):
        self.run_id = run_id
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False
        self._subscribed = False
        self._terminal: SearchEvent | None = None
        self._published = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def terminal_event(self) -> SearchEvent | None:
        return self._terminal

    @property
    def published_count(self) -> int:
        return self._published

    def publish(self, event: SearchEvent) -> bool:
        """Append ``event``. Returns False when the bus is already closed."""
        if self._closed:
            logger.debug(f"Bus {self.run_id} closed; dropping {event.event.value}")
            return False
        self._queue.put_nowait(event)
        self._published += 1
        if event.terminal:
            self._terminal = event
            self._close()
        return True

    def close(self) -> None:
        """Close without a terminal event. Idempotent."""
        if not self._closed:
            self._close()

    def _close(self) -> None:
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def subscribe(self) -> AsyncIterator[SearchEvent]:
        if self._subscribed:
            raise RuntimeError("EventBus supports a single subscriber")
        self._subscribed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[SearchEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item  # type: ignore[misc]
