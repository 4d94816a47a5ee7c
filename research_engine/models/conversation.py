from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from research_engine.models.events import SearchEvent, strip_content_chunks

TITLE_MAX_CHARS = 60


def _now() -> datetime:
    return datetime.now(timezone.utc)


def build_search_trace(events: list[SearchEvent]) -> list[dict[str, Any]]:
    """Wire form of a run's events with streamed content chunks removed."""
    return strip_content_chunks(events)


class ChatMessage(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=_now)
    sources: list[dict[str, Any]] = Field(default_factory=list)
    follow_up_questions: list[str] = Field(default_factory=list)
    search_events: list[dict[str, Any]] = Field(default_factory=list)

    @model_validator(mode="after")
    def _drop_content_chunks(self) -> "ChatMessage":
        self.search_events = [e for e in self.search_events if e.get("type") != "content-chunk"]
        return self


class ConversationRecord(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    title: str = ""
    messages: list[ChatMessage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @model_validator(mode="after")
    def _default_title(self) -> "ConversationRecord":
        if not self.title:
            first = next((m.content for m in self.messages if m.role == "user"), "")
            self.title = first[:TITLE_MAX_CHARS] if first else "New Chat"
        return self

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "messageCount": self.message_count,
        }
