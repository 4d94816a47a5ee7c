from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx
from loguru import logger

from research_engine.config import FIRECRAWL_BASE_URL
from research_engine.errors import ProcessingError
from research_engine.tools.content_extractor import extract_main_content

USER_AGENT = "ResearchEngineBot/1.0 (+https://example.local)"


@dataclass
class ScrapedPage:
    url: str
    title: str
    markdown: str
    screenshot: str | None = None
    favicon: str | None = None
    method: str = ""


class ScrapeService:
    """Fetch one page as markdown/text.

    Firecrawl ``/v1/scrape`` is tried first when a key is configured, then a
    direct httpx GET with local extraction.
    """

    def __init__(
        self,
        *,
        firecrawl_api_key: str = "",
        firecrawl_base_url: str = FIRECRAWL_BASE_URL,
        timeout: float = 15.0,
        capture_screenshots: bool = False,
        max_chars: int = 20000,
    ):
        self.firecrawl_api_key = (firecrawl_api_key or "").strip()
        self.firecrawl_base_url = (firecrawl_base_url or FIRECRAWL_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.capture_screenshots = capture_screenshots
        self.max_chars = max_chars

    async def scrape(self, url: str) -> ScrapedPage:
        attempts: list[Callable[[str], Awaitable[ScrapedPage]]] = []
        if self.firecrawl_api_key:
            attempts.append(self._fetch_with_firecrawl)
        attempts.append(self._fetch_with_httpx)

        last_error: Exception | None = None
        for fetch_fn in attempts:
            try:
                return await fetch_fn(url)
            except Exception as exc:
                logger.debug(f"Fetch attempt failed for {url}: {exc}")
                last_error = exc
        raise ProcessingError(f"Scrape failed for {url}: {last_error}", url=url) from last_error

    async def _fetch_with_firecrawl(self, url: str) -> ScrapedPage:
        formats = ["markdown"]
        if self.capture_screenshots:
            formats.append("screenshot")
        payload = {"url": url, "formats": formats, "onlyMainContent": True}
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.firecrawl_api_key}",
        }
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            response = await client.post(f"{self.firecrawl_base_url}/v1/scrape", json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()

        body = data.get("data", data) if isinstance(data, dict) else {}
        if not isinstance(body, dict):
            raise RuntimeError("Firecrawl response missing data")
        markdown = str(body.get("markdown") or "")
        if not markdown:
            raise RuntimeError("Firecrawl response missing markdown content")
        metadata = body.get("metadata") if isinstance(body.get("metadata"), dict) else {}
        return ScrapedPage(
            url=str(metadata.get("sourceURL") or url),
            title=str(metadata.get("title") or ""),
            markdown=markdown[: self.max_chars],
            screenshot=body.get("screenshot") or None,
            favicon=metadata.get("favicon") or None,
            method="firecrawl",
        )

    async def _fetch_with_httpx(self, url: str) -> ScrapedPage:
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            response = await client.get(url, headers={"User-Agent": USER_AGENT})
            response.raise_for_status()
            raw = response.text
            final_url = str(response.url)

        extracted = await asyncio.to_thread(extract_main_content, final_url, raw, max_chars=self.max_chars)
        return ScrapedPage(
            url=final_url,
            title=extracted.title,
            markdown=extracted.text,
            method=f"httpx+{extracted.method}",
        )
