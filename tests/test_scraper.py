from __future__ import annotations

import asyncio
import threading
import time
from unittest.mock import AsyncMock, patch

import pytest

from research_engine.errors import ProcessingError
from research_engine.tools.content_extractor import ExtractedContent
from research_engine.tools.scraper import ScrapedPage, ScrapeService


@pytest.mark.asyncio
async def test_firecrawl_scrape_maps_markdown_and_metadata():
    payload = {
        "data": {
            "markdown": "# Amber Room\n\nDetails",
            "screenshot": "https://img.example.com/shot.png",
            "metadata": {"title": "Amber Room", "sourceURL": "https://a.example.com/final", "favicon": "https://a.example.com/f.ico"},
        }
    }

    class FakeResponse:
        def raise_for_status(self):
            return None

        def json(self):
            return payload

    class FakeClient:
        def __init__(self):
            self.kwargs = None

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return None

        async def post(self, url, **kwargs):
            self.url = url
            self.kwargs = kwargs
            return FakeResponse()

    client = FakeClient()
    service = ScrapeService(firecrawl_api_key="fc", firecrawl_base_url="https://fc.example.com", capture_screenshots=True)
    with patch("research_engine.tools.scraper.httpx.AsyncClient", return_value=client):
        page = await service.scrape("https://a.example.com")

    assert client.url == "https://fc.example.com/v1/scrape"
    assert client.kwargs["json"] == {
        "url": "https://a.example.com",
        "formats": ["markdown", "screenshot"],
        "onlyMainContent": True,
    }
    assert page.url == "https://a.example.com/final"
    assert page.title == "Amber Room"
    assert page.screenshot == "https://img.example.com/shot.png"
    assert page.method == "firecrawl"


@pytest.mark.asyncio
async def test_firecrawl_failure_falls_back_to_direct_fetch():
    service = ScrapeService(firecrawl_api_key="fc")
    direct = ScrapedPage(url="https://a.example.com", title="A", markdown="text", method="httpx+raw")

    with (
        patch.object(service, "_fetch_with_firecrawl", new=AsyncMock(side_effect=RuntimeError("fc down"))),
        patch.object(service, "_fetch_with_httpx", new=AsyncMock(return_value=direct)) as fetch_direct,
    ):
        page = await service.scrape("https://a.example.com")

    assert page is direct
    fetch_direct.assert_awaited_once_with("https://a.example.com")


@pytest.mark.asyncio
async def test_direct_fetch_extracts_off_the_event_loop():
    class FakeResponse:
        text = "<html><body><p>Hello</p></body></html>"
        url = "https://a.example.com/final"

        def raise_for_status(self):
            return None

    class FakeClient:
        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return None

        async def get(self, url, **kwargs):
            return FakeResponse()

    extraction_threads = []

    def slow_extract(url, raw, *, max_chars):
        extraction_threads.append(threading.get_ident())
        time.sleep(0.3)
        return ExtractedContent(
            url=url, title="A", text="Hello", method="raw", fallback_used=False, raw_length=len(raw), extracted_length=5
        )

    ticks = 0

    async def ticker():
        nonlocal ticks
        while True:
            ticks += 1
            await asyncio.sleep(0.02)

    service = ScrapeService()
    ticking = asyncio.create_task(ticker())
    try:
        with (
            patch("research_engine.tools.scraper.httpx.AsyncClient", return_value=FakeClient()),
            patch("research_engine.tools.scraper.extract_main_content", side_effect=slow_extract),
        ):
            pages = await asyncio.gather(*(service.scrape(f"https://{i}.example.com") for i in range(3)))
    finally:
        ticking.cancel()

    assert [p.method for p in pages] == ["httpx+raw"] * 3
    assert threading.get_ident() not in extraction_threads
    assert ticks >= 5


@pytest.mark.asyncio
async def test_all_fetchers_failing_raises_processing_error():
    service = ScrapeService()

    with patch.object(service, "_fetch_with_httpx", new=AsyncMock(side_effect=RuntimeError("refused"))):
        with pytest.raises(ProcessingError) as exc_info:
            await service.scrape("https://a.example.com")

    assert exc_info.value.url == "https://a.example.com"
    assert "refused" in str(exc_info.value)
