from __future__ import annotations

import pytest

from research_engine.config import ResearchConfig


@pytest.fixture
def config() -> ResearchConfig:
    return ResearchConfig(
        search_timeout=2.0,
        source_timeout=1.0,
        synthesis_timeout=5.0,
        synthesis_chunk_timeout=2.0,
        idle_timeout=0.2,
        network_retry_delay=0,
        providers=("fake",),
    )
