from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from pydantic_settings import BaseSettings

SEARCH_LIMIT_MAX = 20
FOLLOW_UP_MAX = 4
CONCURRENCY_MAX = 8
FIRECRAWL_BASE_URL = "https://api.firecrawl.dev"


class Settings(BaseSettings):
    # OpenRouter / OpenAI-compatible gateway
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "openai/gpt-4o-mini"
    summary_model: str = ""  # falls back to default_model
    follow_up_model: str = ""  # falls back to default_model

    # Search providers, tried in order
    search_providers: str = "firecrawl,tavily,brave"
    firecrawl_api_key: str = ""
    firecrawl_base_url: str = FIRECRAWL_BASE_URL
    tavily_api_key: str = ""
    brave_api_key: str = ""

    # Engine knobs
    search_limit: int = 10
    max_sources: int = 6
    per_host_cap: int = 2
    scrape_concurrency: int = 4
    follow_up_count: int = 3
    idle_timeout: float = 5.0
    search_timeout: float = 30.0
    source_timeout: float = 20.0
    synthesis_timeout: float = 120.0
    synthesis_chunk_timeout: float = 30.0
    min_content_length: int = 100
    synthesis_source_char_limit: int = 4000
    context_char_limit: int = 500
    max_context_turns: int = 5
    capture_screenshots: bool = False
    network_retry_delay: float = 0.5

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_to_file: bool = False

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    @property
    def provider_order(self) -> tuple[str, ...]:
        return tuple(p.strip().lower() for p in self.search_providers.split(",") if p.strip())


settings = Settings()


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


@dataclass(frozen=True)
class ResearchConfig:
    """Explicit per-engine configuration.

    Values are clamped to their documented bounds on construction, so a caller
    asking for 50 search results gets 20.
    """

    search_limit: int = 10
    max_sources: int = 6
    per_host_cap: int = 2
    concurrency: int = 4
    idle_timeout: float = 5.0
    follow_up_count: int = 3
    search_timeout: float = 30.0
    source_timeout: float = 20.0
    synthesis_timeout: float = 120.0
    synthesis_chunk_timeout: float = 30.0
    min_content_length: int = 100
    synthesis_source_char_limit: int = 4000
    context_char_limit: int = 500
    max_context_turns: int = 5
    capture_screenshots: bool = False
    network_retry_delay: float = 0.5
    providers: tuple[str, ...] = ("firecrawl", "tavily", "brave")
    firecrawl_base_url: str = FIRECRAWL_BASE_URL
    model: str = "openai/gpt-4o-mini"
    summary_model: str = ""
    follow_up_model: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "search_limit", _clamp(self.search_limit, 1, SEARCH_LIMIT_MAX))
        object.__setattr__(self, "max_sources", max(1, int(self.max_sources)))
        object.__setattr__(self, "per_host_cap", max(1, int(self.per_host_cap)))
        object.__setattr__(self, "concurrency", _clamp(self.concurrency, 1, CONCURRENCY_MAX))
        object.__setattr__(self, "follow_up_count", _clamp(self.follow_up_count, 0, FOLLOW_UP_MAX))
        object.__setattr__(self, "idle_timeout", max(0.01, float(self.idle_timeout)))
        object.__setattr__(self, "providers", tuple(self.providers))

    @property
    def summary_model_id(self) -> str:
        return self.summary_model or self.model

    @property
    def follow_up_model_id(self) -> str:
        return self.follow_up_model or self.model

    def with_overrides(self, **overrides: Any) -> "ResearchConfig":
        return replace(self, **overrides)

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "ResearchConfig":
        s = source or settings
        return cls(
            search_limit=s.search_limit,
            max_sources=s.max_sources,
            per_host_cap=s.per_host_cap,
            concurrency=s.scrape_concurrency,
            idle_timeout=s.idle_timeout,
            follow_up_count=s.follow_up_count,
            search_timeout=s.search_timeout,
            source_timeout=s.source_timeout,
            synthesis_timeout=s.synthesis_timeout,
            synthesis_chunk_timeout=s.synthesis_chunk_timeout,
            min_content_length=s.min_content_length,
            synthesis_source_char_limit=s.synthesis_source_char_limit,
            context_char_limit=s.context_char_limit,
            max_context_turns=s.max_context_turns,
            capture_screenshots=s.capture_screenshots,
            network_retry_delay=s.network_retry_delay,
            providers=s.provider_order,
            firecrawl_base_url=s.firecrawl_base_url,
            model=s.default_model,
            summary_model=s.summary_model,
            follow_up_model=s.follow_up_model,
        )


@dataclass(frozen=True)
class ProviderCredentials:
    """API keys for one request. Never read from global state by the engine."""

    firecrawl_api_key: str = ""
    tavily_api_key: str = ""
    brave_api_key: str = ""
    llm_api_key: str = ""
    extra: dict[str, str] = field(default_factory=dict)

    def key_for(self, provider: str) -> str:
        name = provider.lower().strip()
        if name == "firecrawl":
            return self.firecrawl_api_key
        if name == "tavily":
            return self.tavily_api_key
        if name == "brave":
            return self.brave_api_key
        return self.extra.get(name, "")

    def merged(self, overrides: dict[str, str] | None) -> "ProviderCredentials":
        """Overlay non-empty per-request keys (e.g. from a request body)."""
        if not overrides:
            return self
        known = {"firecrawl_api_key", "tavily_api_key", "brave_api_key", "llm_api_key"}
        updates = {k: v for k, v in overrides.items() if k in known and v}
        return replace(self, **updates)

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "ProviderCredentials":
        s = source or settings
        return cls(
            firecrawl_api_key=s.firecrawl_api_key,
            tavily_api_key=s.tavily_api_key,
            brave_api_key=s.brave_api_key,
            llm_api_key=s.openrouter_api_key,
        )
