"""Streams a grounded, cited answer and produces follow-up questions."""
from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import AsyncIterator

from loguru import logger

from research_engine.config import ResearchConfig
from research_engine.errors import SynthesisError
from research_engine.llm_client import LLMClient
from research_engine.models.sources import ConversationTurn, Source
from research_engine.services.prompt_store import render_prompt
from research_engine.tools.web_utils import truncate

FOLLOW_UP_MAX_CHARS = 80
CONTEXT_RESPONSE_CHARS = 300
_LIST_PREFIX = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")


@dataclass
class SynthesisResult:
    content: str
    follow_up_questions: list[str] = field(default_factory=list)


def format_sources(sources: list[Source], char_limit: int) -> str:
    blocks = []
    for number, source in enumerate(sources, start=1):
        content = truncate(source.content, char_limit)
        blocks.append(f"[{number}] {source.title}\nURL: {source.url}\n{content}")
    return "\n\n".join(blocks)


def format_context(context: tuple[ConversationTurn, ...] | list[ConversationTurn]) -> str:
    if not context:
        return ""
    turns = "\n".join(
        f"User: {turn.query}\nAssistant: {truncate(turn.response, CONTEXT_RESPONSE_CHARS)}"
        for turn in context
    )
    return render_prompt("synthesis.context_header", turns=turns)


def parse_follow_ups(text: str, count: int) -> list[str]:
    questions: list[str] = []
    for line in text.splitlines():
        cleaned = _LIST_PREFIX.sub("", line).strip().strip('"')
        if not cleaned or len(cleaned) >= FOLLOW_UP_MAX_CHARS:
            continue
        if cleaned in questions:
            continue
        questions.append(cleaned)
        if len(questions) >= count:
            break
    return questions


class AnswerStream:
    """Single-use async iterator of answer increments.

    Iterate it to completion, then ``await result()`` for the full content
    and follow-up questions.
    """

    def __init__(
        self,
        synthesizer: "AnswerSynthesizer",
        query: str,
        context: tuple[ConversationTurn, ...],
        sources: list[Source],
    ):
        self._synthesizer = synthesizer
        self.query = query
        self.context = context
        self.sources = sources
        self._iterated = False
        self._content: str | None = None
        self._result: SynthesisResult | None = None

    def __aiter__(self) -> AsyncIterator[str]:
        if self._iterated:
            raise RuntimeError("AnswerStream can only be iterated once")
        self._iterated = True
        return self._generate()

    async def _generate(self) -> AsyncIterator[str]:
        synth = self._synthesizer
        config = synth.config
        system, user = synth.build_prompt(self.query, self.context, self.sources)
        messages = [{"role": "user", "content": user}]
        loop = asyncio.get_running_loop()
        deadline = loop.time() + config.synthesis_timeout
        parts: list[str] = []
        stream_error: Exception | None = None

        try:
            async with synth.llm.stream(
                model=config.model,
                system=system,
                messages=messages,
                caller="synthesizer",
            ) as stream:
                iterator = stream.text_stream.__aiter__()
                while True:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        raise SynthesisError("Answer generation exceeded its deadline")
                    try:
                        chunk = await asyncio.wait_for(
                            iterator.__anext__(),
                            timeout=min(config.synthesis_chunk_timeout, remaining),
                        )
                    except StopAsyncIteration:
                        break
                    parts.append(chunk)
                    yield chunk
        except Exception as exc:
            if parts:
                raise SynthesisError(
                    f"Answer stream failed: {exc}",
                    partial_content="".join(parts),
                ) from exc
            stream_error = exc

        if not parts:
            if stream_error is not None:
                logger.warning(f"Answer stream failed before any content, using blocking call: {stream_error}")
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise SynthesisError("Answer generation exceeded its deadline") from stream_error
            try:
                response = await asyncio.wait_for(
                    synth.llm.complete(
                        model=config.model,
                        system=system,
                        messages=messages,
                        max_tokens=4096,
                        caller="synthesizer_fallback",
                    ),
                    timeout=remaining,
                )
            except Exception as exc:
                raise SynthesisError(f"Answer generation failed: {exc}") from exc
            if not response.text:
                raise SynthesisError("Answer generation returned no content") from stream_error
            parts.append(response.text)
            yield response.text

        self._content = "".join(parts)

    async def result(self) -> SynthesisResult:
        if self._result is not None:
            return self._result
        if self._content is None:
            raise RuntimeError("AnswerStream must be fully consumed before result()")
        follow_ups = await self._synthesizer.follow_up_questions(self.query, self._content)
        self._result = SynthesisResult(content=self._content, follow_up_questions=follow_ups)
        return self._result


class AnswerSynthesizer:
    def __init__(self, config: ResearchConfig, llm: LLMClient):
        self.config = config
        self.llm = llm

    def build_prompt(
        self,
        query: str,
        context: tuple[ConversationTurn, ...],
        sources: list[Source],
    ) -> tuple[str, str]:
        if sources:
            source_block = format_sources(sources, self.config.synthesis_source_char_limit)
        else:
            source_block = render_prompt("synthesis.no_sources")
        system = render_prompt("synthesis.system")
        user = render_prompt(
            "synthesis.user",
            query=query,
            context=format_context(context),
            sources=source_block,
        )
        return system, user

    def synthesize(
        self,
        query: str,
        context: tuple[ConversationTurn, ...] | list[ConversationTurn],
        sources: list[Source],
    ) -> AnswerStream:
        return AnswerStream(self, query, tuple(context), list(sources))

    async def follow_up_questions(self, query: str, answer: str) -> list[str]:
        """Second, bounded model call. Any failure yields an empty list."""
        count = self.config.follow_up_count
        if count <= 0:
            return []
        try:
            response = await asyncio.wait_for(
                self.llm.complete(
                    model=self.config.follow_up_model_id,
                    system=render_prompt("follow_up.system"),
                    messages=[
                        {
                            "role": "user",
                            "content": render_prompt(
                                "follow_up.user",
                                query=query,
                                answer=truncate(answer, 2000),
                                count=count,
                            ),
                        }
                    ],
                    max_tokens=200,
                    caller="follow_up",
                ),
                timeout=self.config.synthesis_chunk_timeout,
            )
        except Exception as exc:
            logger.warning(f"Follow-up generation failed: {exc}")
            return []
        return parse_follow_ups(response.text, count)
