"""Research orchestrator: search, process sources, synthesize, stream events.

Each call to ``ResearchOrchestrator.start`` creates an independent run with
its own event bus and asyncio task. The run walks the phase machine

    idle -> searching -> scraping -> analyzing -> complete | error

and publishes exactly one terminal event unless it is cancelled, in which case
the bus is closed silently.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, AsyncIterator
from uuid import uuid4

from loguru import logger

from research_engine.agents.synthesizer import AnswerSynthesizer
from research_engine.config import ProviderCredentials, ResearchConfig
from research_engine.errors import (
    CancellationError,
    PhaseTransitionError,
    ProviderError,
    SynthesisError,
    ValidationError,
)
from research_engine.llm_client import LLMClient, get_client
from research_engine.models.events import SearchEvent
from research_engine.models.sources import ConversationTurn, ResearchQuery, Source
from research_engine.services import streaming
from research_engine.services.event_bus import EventBus
from research_engine.services.logger import log_research_step
from research_engine.services.source_processor import SourceProcessor, dedupe_sources, rank_by_relevance
from research_engine.tools.scraper import ScrapeService
from research_engine.tools.search_provider import SearchProvider, build_providers, search_with_fallback
from research_engine.tools.web_utils import extract_urls_from_query, favicon_url


class SearchPhase(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    SCRAPING = "scraping"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"


ALLOWED_TRANSITIONS: dict[SearchPhase, frozenset[SearchPhase]] = {
    SearchPhase.IDLE: frozenset({SearchPhase.SEARCHING}),
    SearchPhase.SEARCHING: frozenset({SearchPhase.SCRAPING, SearchPhase.ANALYZING, SearchPhase.ERROR}),
    SearchPhase.SCRAPING: frozenset({SearchPhase.ANALYZING}),
    SearchPhase.ANALYZING: frozenset({SearchPhase.COMPLETE, SearchPhase.ERROR}),
    SearchPhase.COMPLETE: frozenset(),
    SearchPhase.ERROR: frozenset(),
}
TERMINAL_PHASES = frozenset({SearchPhase.COMPLETE, SearchPhase.ERROR})
UNEXPECTED_FAILURE_MESSAGE = "Research run failed unexpectedly."


class ResearchRun:
    """Handle to one in-flight research request."""

    def __init__(self, run_id: str, query: str, bus: EventBus):
        self.run_id = run_id
        self.query = query
        self.bus = bus
        self.phase = SearchPhase.IDLE
        self.phase_history: list[SearchPhase] = [SearchPhase.IDLE]
        self.cancelled = asyncio.Event()
        self.task: asyncio.Task | None = None

    def transition(self, phase: SearchPhase) -> None:
        if phase not in ALLOWED_TRANSITIONS[self.phase]:
            raise PhaseTransitionError(f"Illegal phase transition {self.phase.value} -> {phase.value}")
        log_research_step(self.run_id, "phase", phase.value, {"from": self.phase.value})
        self.phase = phase
        self.phase_history.append(phase)

    def fail(self) -> None:
        """Force the error phase after an unexpected exception."""
        if self.phase not in TERMINAL_PHASES:
            self.phase = SearchPhase.ERROR
            self.phase_history.append(SearchPhase.ERROR)

    @property
    def done(self) -> bool:
        return self.task is None or self.task.done()

    def events(self) -> AsyncIterator[SearchEvent]:
        return self.bus.subscribe()

    def cancel(self) -> None:
        """Stop publishing and close the bus.

        The task keeps running until its next checkpoint; whatever the
        current step returns is discarded there.
        """
        if self.cancelled.is_set():
            return
        logger.info(f"Run {self.run_id} cancelled in phase {self.phase.value}")
        self.cancelled.set()
        self.bus.close()

    async def wait(self) -> None:
        if self.task is not None:
            await asyncio.wait({self.task})


class ResearchOrchestrator:
    def __init__(
        self,
        config: ResearchConfig | None = None,
        credentials: ProviderCredentials | None = None,
        *,
        providers: list[SearchProvider] | None = None,
        processor: SourceProcessor | None = None,
        synthesizer: AnswerSynthesizer | None = None,
        llm: LLMClient | None = None,
    ):
        self.config = config or ResearchConfig.from_settings()
        self.credentials = credentials or ProviderCredentials.from_settings()
        if llm is None and (processor is None or synthesizer is None):
            llm = get_client(api_key=self.credentials.llm_api_key or None)
        self.providers = providers if providers is not None else build_providers(self.config, self.credentials)
        self.processor = processor or SourceProcessor(
            self.config,
            scraper=ScrapeService(
                firecrawl_api_key=self.credentials.firecrawl_api_key,
                firecrawl_base_url=self.config.firecrawl_base_url,
                timeout=self.config.source_timeout,
                capture_screenshots=self.config.capture_screenshots,
            ),
            llm=llm,
        )
        self.synthesizer = synthesizer or AnswerSynthesizer(self.config, llm)

    def validate(self, query: Any, context: Any = None) -> ResearchQuery:
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Query is required")
        if context is not None and not isinstance(context, (list, tuple)):
            raise ValidationError("Context must be a list of previous turns")
        turns: list[ConversationTurn] = []
        for item in context or []:
            if isinstance(item, ConversationTurn):
                turns.append(item)
            elif isinstance(item, dict) and isinstance(item.get("query", ""), str):
                turns.append(ConversationTurn(query=item.get("query", ""), response=str(item.get("response", ""))))
            else:
                raise ValidationError("Context entries need a query and a response")
        return ResearchQuery.build(
            query,
            turns,
            char_limit=self.config.context_char_limit,
            max_turns=self.config.max_context_turns,
        )

    def start(self, query: Any, context: Any = None) -> ResearchRun:
        """Begin a run. Must be called from inside a running event loop."""
        run_id = uuid4().hex[:12]
        bus = EventBus(run_id)
        run = ResearchRun(run_id, query if isinstance(query, str) else "", bus)
        try:
            research_query = self.validate(query, context)
        except ValidationError as exc:
            logger.info(f"Run {run_id} rejected: {exc}")
            bus.publish(streaming.error(str(exc), exc.error_type))
            return run
        run.task = asyncio.create_task(self._execute(run, research_query), name=f"research-{run_id}")
        return run

    async def research(self, query: Any, context: Any = None) -> AsyncIterator[SearchEvent]:
        """Start a run and yield its events until the bus closes."""
        run = self.start(query, context)
        try:
            async for event in run.events():
                yield event
        finally:
            if not run.bus.closed:
                run.cancel()

    def _checkpoint(self, run: ResearchRun) -> None:
        if run.cancelled.is_set():
            raise CancellationError(f"Run {run.run_id} cancelled")

    def _publish(self, run: ResearchRun, event: SearchEvent) -> bool:
        self._checkpoint(run)
        return run.bus.publish(event)

    async def _execute(self, run: ResearchRun, query: ResearchQuery) -> None:
        try:
            await self._orchestrate(run, query)
        except CancellationError:
            logger.info(f"Run {run.run_id} stopped at cancellation checkpoint")
        except asyncio.CancelledError:
            logger.info(f"Run {run.run_id} task cancelled")
            raise
        except Exception:
            logger.exception(f"Run {run.run_id} failed unexpectedly")
            run.fail()
            if not run.cancelled.is_set():
                run.bus.publish(streaming.error(UNEXPECTED_FAILURE_MESSAGE, "internal"))
        finally:
            if not run.bus.closed and not run.cancelled.is_set():
                logger.warning(f"Run {run.run_id} ended without a terminal event")
                run.bus.publish(streaming.done())

    async def _orchestrate(self, run: ResearchRun, query: ResearchQuery) -> None:
        run.transition(SearchPhase.SEARCHING)
        self._publish(run, streaming.searching(query.text))

        candidates = await self._gather_candidates(run, query)
        if candidates is None:
            return
        self._checkpoint(run)

        if candidates:
            run.transition(SearchPhase.SCRAPING)
            processed = await self.processor.process_all(
                candidates,
                query=query.text,
                bus=run.bus,
                cancelled=run.cancelled,
            )
            self._checkpoint(run)
            grounding = rank_by_relevance([s for s in processed if s.scraped])
            failures = len(processed) - len(grounding)
            if failures:
                logger.info(f"Run {run.run_id}: {failures}/{len(processed)} sources failed processing")
        else:
            grounding = []
        run.transition(SearchPhase.ANALYZING)
        self._publish(run, streaming.analyzing(len(grounding)))
        await self._synthesize(run, query, grounding)

    async def _gather_candidates(self, run: ResearchRun, query: ResearchQuery) -> list[Source] | None:
        explicit = [
            Source(url=url, title=url, favicon=favicon_url(url), metadata={"origin": "query"})
            for url in extract_urls_from_query(query.text)
        ]
        results: list[Source] = []
        provider = "query"
        try:
            response = await search_with_fallback(
                self.providers,
                query.text,
                limit=self.config.search_limit,
                want_scrape=True,
                timeout=self.config.search_timeout,
            )
            results = response.results
            provider = response.provider
            if response.fallback_from:
                logger.info(
                    f"Run {run.run_id}: search fell back from {response.fallback_from} "
                    f"to {response.provider} ({response.fallback_reason})"
                )
        except ProviderError as exc:
            if not explicit:
                logger.error(f"Run {run.run_id}: all search providers failed: {exc!r}")
                run.transition(SearchPhase.ERROR)
                self._publish(run, streaming.error(str(exc), exc.kind.value))
                return None
            logger.warning(f"Run {run.run_id}: search failed, using query URLs only: {exc!r}")

        self._checkpoint(run)
        candidates = dedupe_sources(explicit + results, self.config.per_host_cap)[: self.config.max_sources]
        self._publish(run, streaming.found(candidates, query.text, provider))
        return candidates

    async def _synthesize(self, run: ResearchRun, query: ResearchQuery, grounding: list[Source]) -> None:
        stream = self.synthesizer.synthesize(query.text, query.context, grounding)
        streamed: list[str] = []
        try:
            async for chunk in stream:
                self._checkpoint(run)
                streamed.append(chunk)
                self._publish(run, streaming.content_chunk(chunk))
            result = await stream.result()
        except SynthesisError as exc:
            self._checkpoint(run)
            partial = exc.partial_content or "".join(streamed)
            if partial:
                logger.warning(f"Run {run.run_id}: synthesis failed mid-stream, returning partial answer: {exc}")
                run.transition(SearchPhase.COMPLETE)
                self._publish(run, streaming.final_result(partial, grounding, partial=True))
                return
            logger.error(f"Run {run.run_id}: synthesis failed: {exc}")
            run.transition(SearchPhase.ERROR)
            self._publish(run, streaming.error(str(exc), exc.error_type))
            return

        self._checkpoint(run)
        run.transition(SearchPhase.COMPLETE)
        self._publish(
            run,
            streaming.final_result(result.content, grounding, result.follow_up_questions),
        )
