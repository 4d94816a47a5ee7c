from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from fakes import FakeProvider, make_source, provider_error
from research_engine.config import ProviderCredentials, ResearchConfig
from research_engine.errors import ProviderError, ProviderErrorKind
from research_engine.tools.brave_search import BraveSearchProvider
from research_engine.tools.firecrawl_search import FirecrawlSearchProvider
from research_engine.tools.search_provider import build_providers, clamp_limit, search_with_fallback
from research_engine.tools.tavily_search import TavilySearchProvider


def _client_returning(payload=None, status: int = 200, capture: dict | None = None):
    class FakeResponse:
        status_code = status

        def raise_for_status(self):
            if status >= 400:
                request = httpx.Request("POST", "https://api.example.com")
                httpx.Response(status, request=request).raise_for_status()

        def json(self):
            return payload

    class FakeClient:
        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return None

        async def post(self, *args, **kwargs):
            if capture is not None:
                capture.update(kwargs)
            return FakeResponse()

        async def get(self, *args, **kwargs):
            if capture is not None:
                capture.update(kwargs)
            return FakeResponse()

    return FakeClient()


def test_clamp_limit():
    assert clamp_limit(50) == 20
    assert clamp_limit(0) == 1
    assert clamp_limit(7) == 7


@pytest.mark.asyncio
async def test_firecrawl_search_maps_inline_markdown_and_clamps_limit():
    payload = {
        "data": [
            {
                "url": "https://a.example.com",
                "title": "A",
                "description": "desc",
                "markdown": "# Page A",
                "metadata": {"favicon": "https://a.example.com/favicon.ico"},
            },
            {"title": "missing url"},
        ]
    }
    captured: dict = {}
    provider = FirecrawlSearchProvider("fc-key", base_url="https://fc.example.com", capture_screenshots=True)

    with patch(
        "research_engine.tools.firecrawl_search.httpx.AsyncClient",
        return_value=_client_returning(payload, capture=captured),
    ):
        results = await provider.search("amber", limit=99, want_scrape=True)

    assert captured["json"]["limit"] == 20
    assert captured["json"]["scrapeOptions"] == {"formats": ["markdown", "screenshot"]}
    assert captured["headers"]["Authorization"] == "Bearer fc-key"
    assert len(results) == 1
    assert results[0].markdown == "# Page A"
    assert results[0].favicon == "https://a.example.com/favicon.ico"
    assert results[0].scraped is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, kind",
    [
        (401, ProviderErrorKind.INVALID_KEY),
        (403, ProviderErrorKind.INVALID_KEY),
        (429, ProviderErrorKind.RATE_LIMITED),
        (500, ProviderErrorKind.UNKNOWN),
    ],
)
async def test_http_status_maps_to_provider_error_kind(status, kind):
    provider = FirecrawlSearchProvider("fc-key")

    with patch(
        "research_engine.tools.firecrawl_search.httpx.AsyncClient",
        return_value=_client_returning({}, status=status),
    ):
        with pytest.raises(ProviderError) as exc_info:
            await provider.search("q")

    assert exc_info.value.kind == kind
    assert exc_info.value.provider == "firecrawl"


@pytest.mark.asyncio
async def test_missing_key_raises_invalid_key_without_network():
    provider = BraveSearchProvider("")

    with patch("research_engine.tools.brave_search.httpx.AsyncClient") as client_cls:
        with pytest.raises(ProviderError) as exc_info:
            await provider.search("q")

    assert exc_info.value.kind == ProviderErrorKind.INVALID_KEY
    client_cls.assert_not_called()


@pytest.mark.asyncio
async def test_network_error_is_retried_once():
    provider = FakeProvider("fake", [provider_error("network"), [make_source("https://a.example.com")]])

    results = await provider.search("q")

    assert len(provider.calls) == 2
    assert results[0].url == "https://a.example.com"


@pytest.mark.asyncio
async def test_search_trims_oversized_backend_results():
    many = [make_source(f"https://s{i}.example.com") for i in range(25)]
    provider = FakeProvider("fake", [many])

    assert len(await provider.search("q", limit=50)) == 20
    assert len(await provider.search("q", limit=3)) == 3
    assert provider.calls[0][1] == 20


@pytest.mark.asyncio
async def test_retried_search_is_trimmed_too():
    many = [make_source(f"https://s{i}.example.com") for i in range(8)]
    provider = FakeProvider("fake", [provider_error("network"), many])

    results = await provider.search("q", limit=5)

    assert len(provider.calls) == 2
    assert [s.url for s in results] == [f"https://s{i}.example.com" for i in range(5)]


@pytest.mark.asyncio
async def test_network_error_retry_gives_up_after_one_attempt():
    provider = FakeProvider("fake", [provider_error("network")])

    with pytest.raises(ProviderError):
        await provider.search("q")

    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_brave_search_maps_response_shape():
    payload = {
        "web": {
            "results": [
                {"title": "Result 1", "url": "https://example.com/1", "description": "Desc 1"},
                {"title": "Result 2", "url": "https://example.com/2", "extra_snippets": ["Snippet 2a", "Snippet 2b"]},
            ]
        }
    }
    captured: dict = {}

    with patch(
        "research_engine.tools.brave_search.httpx.AsyncClient",
        return_value=_client_returning(payload, capture=captured),
    ):
        results = await BraveSearchProvider("brave-key").search("query", limit=2)

    assert captured["params"] == {"q": "query", "count": 2}
    assert captured["headers"]["X-Subscription-Token"] == "brave-key"
    assert [r.description for r in results] == ["Desc 1", "Snippet 2a Snippet 2b"]


@pytest.mark.asyncio
async def test_tavily_maps_raw_content_and_usage_errors():
    from tavily.errors import UsageLimitExceededError

    fake_client = AsyncMock()
    fake_client.search.return_value = {
        "results": [{"url": "https://t.example.com", "title": "T", "content": "snippet", "raw_content": "full text"}]
    }
    with patch("research_engine.tools.tavily_search.AsyncTavilyClient", return_value=fake_client):
        results = await TavilySearchProvider("tv-key").search("q", limit=3, want_scrape=True)

    assert fake_client.search.await_args.kwargs["include_raw_content"] is True
    assert fake_client.search.await_args.kwargs["max_results"] == 3
    assert results[0].markdown == "full text"

    fake_client.search.side_effect = UsageLimitExceededError("limit")
    with patch("research_engine.tools.tavily_search.AsyncTavilyClient", return_value=fake_client):
        with pytest.raises(ProviderError) as exc_info:
            await TavilySearchProvider("tv-key").search("q")
    assert exc_info.value.kind == ProviderErrorKind.RATE_LIMITED


@pytest.mark.asyncio
async def test_fallback_moves_past_empty_results():
    empty = FakeProvider("first", [[]])
    full = FakeProvider("second", [[make_source("https://a.example.com")]])

    response = await search_with_fallback([empty, full], "q", limit=5)

    assert response.provider == "second"
    assert response.fallback_from == "first"
    assert "zero results" in response.fallback_reason


@pytest.mark.asyncio
async def test_fallback_raises_last_error_when_all_fail():
    first = FakeProvider("first", [provider_error("invalid_key", "first")])
    second = FakeProvider("second", [provider_error("unknown", "second")])

    with pytest.raises(ProviderError) as exc_info:
        await search_with_fallback([first, second], "q", limit=5)

    assert exc_info.value.provider == "second"


def test_build_providers_skips_missing_credentials():
    config = ResearchConfig(providers=("firecrawl", "tavily", "brave", "unknown"))
    credentials = ProviderCredentials(tavily_api_key="tv", brave_api_key="br")

    providers = build_providers(config, credentials)

    assert [p.name for p in providers] == ["tavily", "brave"]


def test_build_providers_passes_firecrawl_base_url():
    config = ResearchConfig(providers=("firecrawl",), firecrawl_base_url="https://fc.internal.example.com/")
    credentials = ProviderCredentials(firecrawl_api_key="fc")

    [provider] = build_providers(config, credentials)

    assert isinstance(provider, FirecrawlSearchProvider)
    assert provider.base_url == "https://fc.internal.example.com"
