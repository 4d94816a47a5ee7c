from __future__ import annotations

from research_engine.agents.orchestrator import ResearchOrchestrator
from research_engine.config import ProviderCredentials, ResearchConfig, settings
from research_engine.models.schemas import SearchRequest
from research_engine.services.conversation_store import InMemoryConversationStore

_conversation_store = InMemoryConversationStore()


def get_conversation_store() -> InMemoryConversationStore:
    return _conversation_store


def build_orchestrator(request: SearchRequest) -> ResearchOrchestrator:
    """Per-request orchestrator; request keys override the server's."""
    config = ResearchConfig.from_settings(settings)
    if request.model:
        config = config.with_overrides(model=request.model)
    credentials = ProviderCredentials.from_settings(settings).merged(request.credentials)
    return ResearchOrchestrator(config, credentials)
