"""Consumer-side helpers: stall watchdog and result collection."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, AsyncIterator

from loguru import logger

from research_engine.errors import StallTimeout
from research_engine.models.events import (
    ContentChunkEvent,
    EventTrace,
    EventType,
    FinalResult,
    FinalResultEvent,
    FoundEvent,
    SearchEvent,
    SourceCompleteEvent,
)
from research_engine.models.sources import Source
from research_engine.services import streaming

if TYPE_CHECKING:
    from research_engine.agents.orchestrator import ResearchRun


class StreamWatchdog:
    """Relays a run's events and finalizes it if streaming stalls.

    Once the first content chunk has arrived, a gap longer than
    ``idle_timeout`` publishes a partial final result built from the content
    received so far, then cancels the run. If the run published its own
    terminal event first, that one wins and the partial is dropped.
    """

    def __init__(self, run: "ResearchRun", idle_timeout: float):
        self.run = run
        self.idle_timeout = idle_timeout
        self.stalled = False
        self._chunks: list[str] = []
        self._found: list[Source] = []
        self._completed: dict[str, Source] = {}

    def _partial_sources(self) -> list[Source]:
        return [self._completed[s.url] for s in self._found if s.url in self._completed]

    def _observe(self, event: SearchEvent) -> None:
        if isinstance(event, ContentChunkEvent):
            self._chunks.append(event.chunk)
        elif isinstance(event, FoundEvent):
            self._found = list(event.sources)
        elif isinstance(event, SourceCompleteEvent):
            found = next((s for s in self._found if s.url == event.url), None)
            if found is not None:
                self._completed[event.url] = found.updated(
                    scraped=True,
                    summary=event.summary,
                    screenshot=event.screenshot or found.screenshot,
                )

    def _on_stall(self) -> None:
        error = StallTimeout(f"No event for {self.idle_timeout:.1f}s after streaming started")
        logger.warning(f"Run {self.run.run_id}: {error}; finalizing with partial content")
        self.stalled = True
        published = self.run.bus.publish(
            streaming.final_result("".join(self._chunks), self._partial_sources(), partial=True)
        )
        if not published:
            logger.info(f"Run {self.run.run_id}: terminal event already published, stall result dropped")
        self.run.cancel()

    async def events(self) -> AsyncIterator[SearchEvent]:
        iterator = self.run.events().__aiter__()

        async def _next() -> SearchEvent:
            return await iterator.__anext__()

        pending: asyncio.Task | None = None
        try:
            while True:
                if pending is None:
                    pending = asyncio.create_task(_next())
                if self._chunks and not self.stalled:
                    done, _ = await asyncio.wait({pending}, timeout=self.idle_timeout)
                    if not done:
                        self._on_stall()
                        continue
                try:
                    event = await pending
                except StopAsyncIteration:
                    return
                finally:
                    if pending.done():
                        pending = None
                self._observe(event)
                yield event
        finally:
            if pending is not None and not pending.done():
                pending.cancel()


@dataclass
class CollectedRun:
    """Outcome of consuming a run to completion."""

    result: FinalResult | None = None
    error: str | None = None
    error_type: str | None = None
    trace: EventTrace = field(default_factory=EventTrace)

    def to_dict(self) -> dict:
        if self.result is not None:
            return self.result.to_dict()
        return {"error": self.error or "Research ended without a result", "errorType": self.error_type or "unknown"}


async def collect(events: AsyncIterator[SearchEvent]) -> CollectedRun:
    collected = CollectedRun()
    async for event in events:
        collected.trace.record(event)
        if isinstance(event, FinalResultEvent):
            collected.result = event.result
        elif event.event == EventType.ERROR:
            collected.error = event.data.get("message")
            collected.error_type = event.data.get("errorType")
    return collected
