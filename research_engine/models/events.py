from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Iterable

from research_engine.models.sources import Source


class EventType(str, Enum):
    SEARCHING = "searching"
    FOUND = "found"
    SCRAPING = "scraping"
    SOURCE_PROCESSING = "source-processing"
    SCREENSHOT_CAPTURED = "screenshot-captured"
    SOURCE_COMPLETE = "source-complete"
    ANALYZING = "analyzing"
    CONTENT_CHUNK = "content-chunk"
    FINAL_RESULT = "final-result"
    ERROR = "error"
    DONE = "done"


TERMINAL_EVENT_TYPES = frozenset({EventType.FINAL_RESULT, EventType.ERROR, EventType.DONE})


class ProcessingStage(str, Enum):
    BROWSING = "browsing"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"


@dataclass(frozen=True)
class SearchEvent:
    """Base of the closed event union. Subclasses set ``event``."""

    event: ClassVar[EventType]

    @property
    def data(self) -> dict[str, Any]:
        return {}

    @property
    def terminal(self) -> bool:
        return self.event in TERMINAL_EVENT_TYPES

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.event.value, **self.data}

    def format(self) -> str:
        return f"event: {self.event.value}\ndata: {json.dumps(self.data)}\n\n"


@dataclass(frozen=True)
class SearchingEvent(SearchEvent):
    event: ClassVar[EventType] = EventType.SEARCHING
    query: str

    @property
    def data(self) -> dict[str, Any]:
        return {"query": self.query}


@dataclass(frozen=True)
class FoundEvent(SearchEvent):
    event: ClassVar[EventType] = EventType.FOUND
    sources: tuple[Source, ...]
    query: str
    provider: str = ""

    @property
    def data(self) -> dict[str, Any]:
        return {
            "sources": [s.to_dict() for s in self.sources],
            "query": self.query,
            "provider": self.provider,
        }


@dataclass(frozen=True)
class ScrapingEvent(SearchEvent):
    event: ClassVar[EventType] = EventType.SCRAPING
    url: str
    title: str
    index: int
    total: int
    stage: ProcessingStage = ProcessingStage.BROWSING

    @property
    def data(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "index": self.index,
            "total": self.total,
            "stage": ProcessingStage(self.stage).value,
        }


@dataclass(frozen=True)
class SourceProcessingEvent(ScrapingEvent):
    event: ClassVar[EventType] = EventType.SOURCE_PROCESSING


@dataclass(frozen=True)
class ScreenshotCapturedEvent(SearchEvent):
    event: ClassVar[EventType] = EventType.SCREENSHOT_CAPTURED
    url: str
    screenshot: str

    @property
    def data(self) -> dict[str, Any]:
        return {"url": self.url, "screenshot": self.screenshot}


@dataclass(frozen=True)
class SourceCompleteEvent(SearchEvent):
    event: ClassVar[EventType] = EventType.SOURCE_COMPLETE
    url: str
    summary: str
    screenshot: str | None = None

    @property
    def data(self) -> dict[str, Any]:
        data: dict[str, Any] = {"url": self.url, "summary": self.summary}
        if self.screenshot:
            data["screenshot"] = self.screenshot
        return data


@dataclass(frozen=True)
class AnalyzingEvent(SearchEvent):
    event: ClassVar[EventType] = EventType.ANALYZING
    source_count: int

    @property
    def data(self) -> dict[str, Any]:
        return {"sourceCount": self.source_count}


@dataclass(frozen=True)
class ContentChunkEvent(SearchEvent):
    event: ClassVar[EventType] = EventType.CONTENT_CHUNK
    chunk: str

    @property
    def data(self) -> dict[str, Any]:
        return {"chunk": self.chunk}


@dataclass(frozen=True)
class FinalResult:
    content: str
    sources: tuple[Source, ...] = ()
    follow_up_questions: tuple[str, ...] = ()
    partial: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "sources": [s.to_dict() for s in self.sources],
            "followUpQuestions": list(self.follow_up_questions),
            "partial": self.partial,
        }


@dataclass(frozen=True)
class FinalResultEvent(SearchEvent):
    event: ClassVar[EventType] = EventType.FINAL_RESULT
    result: FinalResult

    @property
    def data(self) -> dict[str, Any]:
        return self.result.to_dict()


@dataclass(frozen=True)
class ErrorEvent(SearchEvent):
    event: ClassVar[EventType] = EventType.ERROR
    message: str
    error_type: str = "unknown"

    @property
    def data(self) -> dict[str, Any]:
        return {"message": self.message, "errorType": self.error_type}


@dataclass(frozen=True)
class DoneEvent(SearchEvent):
    event: ClassVar[EventType] = EventType.DONE


@dataclass
class EventTrace:
    """Accumulates a run's events for persistence, minus streamed chunks."""

    events: list[dict[str, Any]] = field(default_factory=list)

    def record(self, event: SearchEvent) -> None:
        if event.event != EventType.CONTENT_CHUNK:
            self.events.append(event.to_dict())


def strip_content_chunks(events: Iterable[SearchEvent]) -> list[dict[str, Any]]:
    trace = EventTrace()
    for event in events:
        trace.record(event)
    return trace.events
