"""OpenRouter-compatible LLM client used for summaries, answers and follow-ups."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, AsyncIterator

from research_engine.config import settings
from research_engine.services.logger import log_llm_call


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class LLMResponse:
    text: str
    usage: Usage


def _temperature_for_model(model: str) -> float:
    # Some OpenAI GPT-5-compatible gateways reject anything but temperature=1.
    lowered = (model or "").lower()
    if "gpt-5" in lowered:
        return 1
    return 0.3


def _to_openai_messages(system: str, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    openai_messages: list[dict[str, Any]] = [{"role": "system", "content": system}]
    for message in messages:
        openai_messages.append({"role": message["role"], "content": str(message["content"])})
    return openai_messages


def _usage_from(payload: Any) -> Usage | None:
    usage = getattr(payload, "usage", None)
    if not usage:
        return None
    return Usage(
        input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        output_tokens=getattr(usage, "completion_tokens", 0) or 0,
    )


class LLMStream:
    """Async context manager over a streamed chat completion."""

    def __init__(self, stream_coro: Any, *, model: str, caller: str):
        self._stream_coro = stream_coro
        self._stream: Any | None = None
        self._started = time.monotonic()
        self.model = model
        self.caller = caller
        self.usage = Usage()
        self.finished = False

    async def __aenter__(self) -> "LLMStream":
        self._stream = await self._stream_coro
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._stream is not None:
            close = getattr(self._stream, "close", None)
            if close is not None:
                await close()
        log_llm_call(
            model=self.model,
            caller=self.caller,
            input_tokens=self.usage.input_tokens,
            output_tokens=self.usage.output_tokens,
            duration_ms=int((time.monotonic() - self._started) * 1000),
            status="error" if exc else "success",
            error=str(exc) if exc else None,
        )

    async def _iter_text(self) -> AsyncIterator[str]:
        if self._stream is None:
            return
        async for chunk in self._stream:
            usage = _usage_from(chunk)
            if usage:
                self.usage = usage
            choices = getattr(chunk, "choices", None) or []
            if not choices:
                continue
            delta = getattr(choices[0], "delta", None)
            if not delta:
                continue
            text = getattr(delta, "content", None)
            if text:
                yield text
        self.finished = True

    @property
    def text_stream(self) -> AsyncIterator[str]:
        return self._iter_text()


class LLMClient:
    def __init__(self, openai_client: Any):
        self._client = openai_client

    async def complete(
        self,
        *,
        model: str,
        system: str,
        messages: list[dict[str, Any]],
        max_tokens: int = 1024,
        caller: str = "llm",
    ) -> LLMResponse:
        started = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=_to_openai_messages(system, messages),
                max_tokens=max_tokens,
                temperature=_temperature_for_model(model),
            )
        except Exception as exc:
            log_llm_call(
                model=model,
                caller=caller,
                duration_ms=int((time.monotonic() - started) * 1000),
                status="error",
                error=str(exc),
            )
            raise

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        usage = _usage_from(response) or Usage()
        log_llm_call(
            model=model,
            caller=caller,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return LLMResponse(text=text.strip(), usage=usage)

    def stream(
        self,
        *,
        model: str,
        system: str,
        messages: list[dict[str, Any]],
        max_tokens: int = 4096,
        caller: str = "llm",
    ) -> LLMStream:
        stream = self._client.chat.completions.create(
            model=model,
            messages=_to_openai_messages(system, messages),
            max_tokens=max_tokens,
            temperature=_temperature_for_model(model),
            stream=True,
            stream_options={"include_usage": True},
        )
        return LLMStream(stream, model=model, caller=caller)


def get_client(api_key: str | None = None, base_url: str | None = None) -> LLMClient:
    """Build a client for an OpenAI-compatible gateway (OpenRouter by default)."""
    from openai import AsyncOpenAI

    resolved_url = (base_url or settings.openrouter_base_url).strip() or "https://openrouter.ai/api/v1"
    openai_client = AsyncOpenAI(
        api_key=api_key or settings.openrouter_api_key or "missing-key",
        base_url=resolved_url,
    )
    return LLMClient(openai_client)


def get_model() -> str:
    """Get the active default model id."""
    return settings.default_model


_client: LLMClient | None = None


def client() -> LLMClient:
    """Get or create the shared LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
