"""Bounded concurrent retrieval, extraction and summarization of sources."""
from __future__ import annotations

import asyncio
import re
from typing import Protocol

from loguru import logger

from research_engine.config import ResearchConfig
from research_engine.errors import ProcessingError
from research_engine.llm_client import LLMClient
from research_engine.models.events import ProcessingStage
from research_engine.models.sources import Source
from research_engine.services import streaming
from research_engine.services.event_bus import EventBus
from research_engine.services.prompt_store import render_prompt
from research_engine.tools.scraper import ScrapedPage
from research_engine.tools.web_utils import clean_content, first_sentence, is_valid_url, truncate

SUMMARY_CHAR_LIMIT = 100
SUMMARY_INPUT_CHARS = 2000
RELEVANCE_PER_TERM = 0.2


class Scraper(Protocol):
    async def scrape(self, url: str) -> ScrapedPage: ...


def dedupe_sources(sources: list[Source], per_host_cap: int = 2) -> list[Source]:
    """Drop invalid URLs and duplicates, then cap sources per hostname.

    First occurrence wins, so relevance order is kept.
    """
    seen: set[str] = set()
    per_host: dict[str, int] = {}
    kept: list[Source] = []
    for source in sources:
        if not is_valid_url(source.url):
            continue
        key = source.key
        if key in seen:
            continue
        host = source.hostname
        if per_host.get(host, 0) >= per_host_cap:
            continue
        seen.add(key)
        per_host[host] = per_host.get(host, 0) + 1
        kept.append(source)
    return kept


def score_relevance(content: str, query: str) -> float:
    """0.2 per distinct query term found in ``content``, capped at 1.0."""
    terms = dict.fromkeys(re.findall(r"\w+", query.lower()))
    if not terms:
        return 0.0
    text = content.lower()
    hits = sum(1 for term in terms if term in text)
    return round(min(hits * RELEVANCE_PER_TERM, 1.0), 2)


def rank_by_relevance(sources: list[Source]) -> list[Source]:
    """Highest relevance first; ties keep their incoming order."""
    return sorted(sources, key=lambda s: s.relevance, reverse=True)


def failed(source: Source, note: str) -> Source:
    return source.updated(scraped=False, error=note)


class SourceProcessor:
    def __init__(
        self,
        config: ResearchConfig,
        *,
        scraper: Scraper,
        llm: LLMClient | None = None,
    ):
        self.config = config
        self.scraper = scraper
        self.llm = llm

    async def summarize(self, source: Source, content: str, query: str) -> str:
        """One-sentence summary. Falls back to the description on any failure."""
        fallback = first_sentence(source.description or content, SUMMARY_CHAR_LIMIT)
        if self.llm is None:
            return fallback
        try:
            response = await self.llm.complete(
                model=self.config.summary_model_id,
                system=render_prompt("summary.system"),
                messages=[
                    {
                        "role": "user",
                        "content": render_prompt(
                            "summary.user",
                            query=query,
                            max_chars=SUMMARY_CHAR_LIMIT,
                            title=source.title,
                            url=source.url,
                            content=content[:SUMMARY_INPUT_CHARS],
                        ),
                    }
                ],
                max_tokens=80,
                caller="source_summary",
            )
        except Exception as exc:
            logger.warning(f"Summary failed for {source.url}: {exc}")
            return fallback
        summary = first_sentence(response.text, SUMMARY_CHAR_LIMIT)
        return summary or fallback

    async def process(
        self,
        source: Source,
        index: int,
        total: int,
        *,
        query: str = "",
        bus: EventBus | None = None,
    ) -> Source:
        """Retrieve and analyze one source. Raises ProcessingError on failure."""

        def publish(event) -> None:
            if bus is not None:
                bus.publish(event)

        publish(streaming.scraping(source, index, total))

        title = source.title
        screenshot = source.screenshot
        favicon = source.favicon
        if len(source.markdown.strip()) >= self.config.min_content_length:
            content = source.markdown
        else:
            page = await self.scraper.scrape(source.url)
            content = page.markdown
            title = title or page.title
            screenshot = page.screenshot or screenshot
            favicon = favicon or page.favicon

        if len(content.strip()) < self.config.min_content_length:
            raise ProcessingError(
                f"Insufficient content ({len(content.strip())} chars)",
                url=source.url,
            )

        publish(streaming.source_processing(source, index, total, ProcessingStage.EXTRACTING))
        if screenshot:
            publish(streaming.screenshot_captured(source.url, screenshot))

        publish(streaming.source_processing(source, index, total, ProcessingStage.ANALYZING))
        summary = await self.summarize(source, content, query)

        result = source.updated(
            title=title or source.url,
            markdown=content,
            extracted_text=clean_content(content, max_length=self.config.synthesis_source_char_limit * 2),
            screenshot=screenshot,
            favicon=favicon,
            summary=summary,
            scraped=True,
            error=None,
            metadata={**source.metadata, "relevance": score_relevance(f"{title}\n{content}", query)},
        )
        publish(streaming.source_complete(result))
        return result

    async def _process_isolated(
        self,
        source: Source,
        index: int,
        total: int,
        *,
        query: str,
        bus: EventBus | None,
    ) -> Source:
        try:
            return await asyncio.wait_for(
                self.process(source, index, total, query=query, bus=bus),
                timeout=self.config.source_timeout,
            )
        except asyncio.TimeoutError:
            note = f"Timed out after {self.config.source_timeout:.0f}s"
        except ProcessingError as exc:
            note = str(exc)
        except Exception as exc:
            logger.exception(f"Unexpected failure processing {source.url}")
            note = truncate(f"Processing failed: {exc}", 200)
        logger.warning(f"Source {index}/{total} failed ({source.url}): {note}")
        return failed(source, note)

    async def process_all(
        self,
        sources: list[Source],
        *,
        query: str = "",
        bus: EventBus | None = None,
        cancelled: asyncio.Event | None = None,
    ) -> list[Source]:
        """Process sources with at most ``config.concurrency`` in flight.

        Results come back in input order; events are published as work
        completes. Sources whose slot opens after cancellation are skipped.
        """
        total = len(sources)
        semaphore = asyncio.Semaphore(self.config.concurrency)

        async def _run(index: int, source: Source) -> Source:
            async with semaphore:
                if cancelled is not None and cancelled.is_set():
                    return failed(source, "Cancelled before start")
                return await self._process_isolated(source, index, total, query=query, bus=bus)

        tasks = [_run(i, s) for i, s in enumerate(sources, start=1)]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        results: list[Source] = []
        for source, outcome in zip(sources, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error(f"Processing task crashed for {source.url}: {outcome!r}")
                results.append(failed(source, str(outcome)))
            else:
                results.append(outcome)
        return results
