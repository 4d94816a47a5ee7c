from __future__ import annotations

from typing import Any

import httpx

from research_engine.config import FIRECRAWL_BASE_URL
from research_engine.models.sources import Source
from research_engine.tools.search_provider import SearchProvider
from research_engine.tools.web_utils import favicon_url


class FirecrawlSearchProvider(SearchProvider):
    """Firecrawl ``/v1/search``. Can return pages already scraped to markdown."""

    name = "firecrawl"

    def __init__(self, api_key: str, *, base_url: str = FIRECRAWL_BASE_URL, **kwargs: Any):
        super().__init__(api_key, **kwargs)
        self.base_url = (base_url or FIRECRAWL_BASE_URL).rstrip("/")

    async def _fetch(self, query: str, limit: int, want_scrape: bool) -> list[Source]:
        payload: dict[str, Any] = {"query": query, "limit": limit}
        if want_scrape:
            formats = ["markdown"]
            if self.capture_screenshots:
                formats.append("screenshot")
            payload["scrapeOptions"] = {"formats": formats}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/v1/search",
                json=payload,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
            )
            response.raise_for_status()
            body = response.json()

        items = body.get("data", []) if isinstance(body, dict) else []
        return [self._to_source(item) for item in items if isinstance(item, dict) and item.get("url")]

    @staticmethod
    def _to_source(item: dict[str, Any]) -> Source:
        metadata = item.get("metadata") if isinstance(item.get("metadata"), dict) else {}
        url = str(item.get("url", ""))
        return Source(
            url=url,
            title=str(item.get("title") or metadata.get("title") or url),
            description=str(item.get("description") or metadata.get("description") or ""),
            markdown=str(item.get("markdown") or ""),
            screenshot=item.get("screenshot") or None,
            favicon=metadata.get("favicon") or favicon_url(url),
            metadata={"provider": "firecrawl"},
        )
