from __future__ import annotations

from typing import Iterable

from research_engine.models.events import (
    AnalyzingEvent,
    ContentChunkEvent,
    DoneEvent,
    ErrorEvent,
    FinalResult,
    FinalResultEvent,
    FoundEvent,
    ProcessingStage,
    ScrapingEvent,
    ScreenshotCapturedEvent,
    SearchingEvent,
    SourceCompleteEvent,
    SourceProcessingEvent,
)
from research_engine.models.sources import Source


def searching(query: str) -> SearchingEvent:
    return SearchingEvent(query=query)


def found(sources: Iterable[Source], query: str, provider: str = "") -> FoundEvent:
    return FoundEvent(sources=tuple(sources), query=query, provider=provider)


def scraping(source: Source, index: int, total: int) -> ScrapingEvent:
    return ScrapingEvent(url=source.url, title=source.title, index=index, total=total)


def source_processing(
    source: Source,
    index: int,
    total: int,
    stage: ProcessingStage = ProcessingStage.EXTRACTING,
) -> SourceProcessingEvent:
    return SourceProcessingEvent(
        url=source.url,
        title=source.title,
        index=index,
        total=total,
        stage=stage,
    )


def screenshot_captured(url: str, screenshot: str) -> ScreenshotCapturedEvent:
    return ScreenshotCapturedEvent(url=url, screenshot=screenshot)


def source_complete(source: Source) -> SourceCompleteEvent:
    return SourceCompleteEvent(url=source.url, summary=source.summary, screenshot=source.screenshot)


def analyzing(source_count: int) -> AnalyzingEvent:
    return AnalyzingEvent(source_count=source_count)


def content_chunk(chunk: str) -> ContentChunkEvent:
    return ContentChunkEvent(chunk=chunk)


def final_result(
    content: str,
    sources: Iterable[Source],
    follow_up_questions: Iterable[str] = (),
    *,
    partial: bool = False,
) -> FinalResultEvent:
    return FinalResultEvent(
        result=FinalResult(
            content=content,
            sources=tuple(sources),
            follow_up_questions=tuple(follow_up_questions),
            partial=partial,
        )
    )


def error(message: str, error_type: str = "unknown") -> ErrorEvent:
    return ErrorEvent(message=message, error_type=error_type)


def done() -> DoneEvent:
    return DoneEvent()
