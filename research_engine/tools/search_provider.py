from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from loguru import logger

from research_engine.config import SEARCH_LIMIT_MAX, ProviderCredentials, ResearchConfig
from research_engine.errors import ProviderError, ProviderErrorKind
from research_engine.models.sources import Source


def clamp_limit(limit: int) -> int:
    return max(1, min(SEARCH_LIMIT_MAX, int(limit)))


class SearchProvider:
    """Adapter over one web search backend.

    ``search`` never raises anything but ``ProviderError``. A transient network
    failure is retried once after ``retry_delay`` seconds; nothing else is
    retried here.
    """

    name = "base"

    def __init__(
        self,
        api_key: str,
        *,
        retry_delay: float = 0.5,
        timeout: float = 30.0,
        capture_screenshots: bool = False,
    ):
        self.api_key = (api_key or "").strip()
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.capture_screenshots = capture_screenshots

    async def search(self, query: str, limit: int = 10, want_scrape: bool = False) -> list[Source]:
        if not self.api_key:
            raise ProviderError(
                f"{self.name} API key is not configured",
                kind=ProviderErrorKind.INVALID_KEY,
                provider=self.name,
            )
        limit = clamp_limit(limit)
        try:
            return await self._search(query, limit, want_scrape)
        except ProviderError as exc:
            if not exc.transient:
                raise
            logger.warning(f"{self.name} search network failure, retrying once: {exc}")
        await asyncio.sleep(self.retry_delay)
        return await self._search(query, limit, want_scrape)

    async def _search(self, query: str, limit: int, want_scrape: bool) -> list[Source]:
        try:
            results = await self._fetch(query, limit, want_scrape)
        except ProviderError:
            raise
        except Exception as exc:
            raise self._translate(exc) from exc
        # Backends may ignore the requested count.
        return results[:limit]

    async def _fetch(self, query: str, limit: int, want_scrape: bool) -> list[Source]:
        raise NotImplementedError

    def _translate(self, exc: Exception) -> ProviderError:
        return ProviderError.from_http_error(exc, self.name)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


@dataclass
class SearchResponse:
    results: list[Source]
    provider: str
    fallback_from: str | None = None
    fallback_reason: str | None = None


async def search_with_fallback(
    providers: list[SearchProvider],
    query: str,
    *,
    limit: int,
    want_scrape: bool = False,
    timeout: float = 30.0,
) -> SearchResponse:
    """Try providers in order.

    A rate-limited provider gets one retry with half the limit before the
    chain moves on. Zero results also move on to the next provider. Raises the
    last ``ProviderError`` when every provider failed.
    """
    if not providers:
        raise ProviderError("No search provider is configured", kind=ProviderErrorKind.INVALID_KEY)

    first = providers[0].name
    last_error: ProviderError | None = None
    empty_from: str | None = None

    for provider in providers:
        attempt_limit = clamp_limit(limit)
        for attempt in range(2):
            try:
                results = await asyncio.wait_for(
                    provider.search(query, attempt_limit, want_scrape),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                last_error = ProviderError(
                    f"{provider.name} search timed out after {timeout:.0f}s",
                    kind=ProviderErrorKind.NETWORK,
                    provider=provider.name,
                )
                break
            except ProviderError as exc:
                last_error = exc
                if exc.kind == ProviderErrorKind.RATE_LIMITED and attempt == 0 and attempt_limit > 1:
                    attempt_limit = max(1, attempt_limit // 2)
                    logger.warning(f"{provider.name} rate limited, retrying with limit={attempt_limit}")
                    continue
                break

            if results:
                fallback_from = first if provider.name != first else None
                reason = None
                if fallback_from:
                    reason = str(last_error) if last_error else f"{empty_from} returned zero results"
                return SearchResponse(
                    results=results,
                    provider=provider.name,
                    fallback_from=fallback_from,
                    fallback_reason=reason,
                )
            empty_from = empty_from or provider.name
            logger.info(f"{provider.name} returned zero results for query")
            break

        if last_error is not None:
            logger.warning(f"Search provider {provider.name} failed: {last_error!r}")

    if empty_from is not None:
        return SearchResponse(results=[], provider=empty_from)
    assert last_error is not None
    raise last_error


def build_providers(config: ResearchConfig, credentials: ProviderCredentials) -> list[SearchProvider]:
    """Instantiate configured providers in order, skipping those without a key."""
    from research_engine.tools.brave_search import BraveSearchProvider
    from research_engine.tools.firecrawl_search import FirecrawlSearchProvider
    from research_engine.tools.tavily_search import TavilySearchProvider

    registry: dict[str, type[SearchProvider]] = {
        "firecrawl": FirecrawlSearchProvider,
        "tavily": TavilySearchProvider,
        "brave": BraveSearchProvider,
    }
    providers: list[SearchProvider] = []
    for name in config.providers:
        cls = registry.get(name)
        if cls is None:
            logger.warning(f"Unknown search provider '{name}' ignored")
            continue
        key = credentials.key_for(name)
        if not key:
            continue
        extra: dict[str, Any] = {"base_url": config.firecrawl_base_url} if name == "firecrawl" else {}
        providers.append(
            cls(
                key,
                retry_delay=config.network_retry_delay,
                timeout=config.search_timeout,
                capture_screenshots=config.capture_screenshots,
                **extra,
            )
        )
    return providers
