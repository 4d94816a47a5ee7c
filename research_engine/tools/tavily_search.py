from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient
from tavily.errors import InvalidAPIKeyError, UsageLimitExceededError

from research_engine.errors import ProviderError, ProviderErrorKind
from research_engine.models.sources import Source
from research_engine.tools.search_provider import SearchProvider
from research_engine.tools.web_utils import favicon_url


class TavilySearchProvider(SearchProvider):
    name = "tavily"

    def __init__(self, api_key: str, *, search_depth: str = "basic", topic: str = "general", **kwargs: Any):
        super().__init__(api_key, **kwargs)
        self.search_depth = search_depth
        self.topic = topic

    async def _fetch(self, query: str, limit: int, want_scrape: bool) -> list[Source]:
        """Execute a Tavily web search and map results onto sources."""
        client = AsyncTavilyClient(api_key=self.api_key)
        response = await client.search(
            query=query,
            search_depth=self.search_depth,
            max_results=limit,
            topic=self.topic,
            include_raw_content=want_scrape,
        )
        return [
            Source(
                url=r.get("url", ""),
                title=r.get("title", "") or r.get("url", ""),
                description=r.get("content", "") or "",
                markdown=r.get("raw_content") or "",
                favicon=favicon_url(r.get("url", "")),
                metadata={"provider": "tavily", "score": r.get("score", 0.0)},
            )
            for r in response.get("results", [])
            if r.get("url")
        ]

    def _translate(self, exc: Exception) -> ProviderError:
        if isinstance(exc, InvalidAPIKeyError):
            return ProviderError(str(exc) or "Invalid Tavily API key", kind=ProviderErrorKind.INVALID_KEY, provider=self.name)
        if isinstance(exc, UsageLimitExceededError):
            return ProviderError(str(exc) or "Tavily usage limit exceeded", kind=ProviderErrorKind.RATE_LIMITED, provider=self.name)
        return super()._translate(exc)
