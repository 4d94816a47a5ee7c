from __future__ import annotations

from research_engine.config import ProviderCredentials, ResearchConfig, Settings
from research_engine.models.sources import ConversationTurn, ResearchQuery


def test_research_config_clamps_bounds():
    config = ResearchConfig(search_limit=50, concurrency=0, follow_up_count=9, per_host_cap=0)

    assert config.search_limit == 20
    assert config.concurrency == 1
    assert config.follow_up_count == 4
    assert config.per_host_cap == 1


def test_research_config_from_settings():
    settings = Settings(
        _env_file=None,
        search_limit=8,
        scrape_concurrency=3,
        search_providers="Tavily, brave",
        default_model="openai/gpt-4.1",
        summary_model="",
        firecrawl_base_url="https://fc.internal.example.com",
    )

    config = ResearchConfig.from_settings(settings)

    assert config.search_limit == 8
    assert config.concurrency == 3
    assert config.providers == ("tavily", "brave")
    assert config.summary_model_id == "openai/gpt-4.1"
    assert config.firecrawl_base_url == "https://fc.internal.example.com"


def test_credentials_merge_request_overrides():
    base = ProviderCredentials(firecrawl_api_key="server-fc", tavily_api_key="server-tv")

    merged = base.merged({"tavily_api_key": "request-tv", "firecrawl_api_key": "", "bogus": "x"})

    assert merged.tavily_api_key == "request-tv"
    assert merged.firecrawl_api_key == "server-fc"
    assert merged.key_for("tavily") == "request-tv"
    assert base.merged(None) is base


def test_research_query_bounds_context():
    turns = [ConversationTurn(query=f"q{i}", response="r" * 1000) for i in range(7)]

    query = ResearchQuery.build("  now  ", turns, char_limit=100, max_turns=3)

    assert query.text == "now"
    assert [t.query for t in query.context] == ["q4", "q5", "q6"]
    assert all(len(t.response) <= 100 for t in query.context)
