from __future__ import annotations

from typing import Any

import httpx

from research_engine.models.sources import Source
from research_engine.tools.search_provider import SearchProvider
from research_engine.tools.web_utils import favicon_url

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


class BraveSearchProvider(SearchProvider):
    """Brave web search. Snippets only; pages are always scraped afterwards."""

    name = "brave"

    async def _fetch(self, query: str, limit: int, want_scrape: bool) -> list[Source]:
        params: dict[str, Any] = {"q": query, "count": limit}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(
                BRAVE_SEARCH_URL,
                params=params,
                headers={
                    "Accept": "application/json",
                    "X-Subscription-Token": self.api_key,
                },
            )
            response.raise_for_status()
            payload = response.json()

        raw_results = payload.get("web", {}).get("results", [])
        mapped: list[Source] = []
        for idx, item in enumerate(raw_results):
            url = item.get("url", "")
            if not url:
                continue
            snippets = item.get("extra_snippets", []) or []
            description = (item.get("description", "") or "").strip() or " ".join(snippets).strip()
            mapped.append(
                Source(
                    url=url,
                    title=item.get("title", "") or url,
                    description=description,
                    favicon=(item.get("meta_url") or {}).get("favicon") or favicon_url(url),
                    metadata={"provider": "brave", "rank": idx},
                )
            )
        return mapped
