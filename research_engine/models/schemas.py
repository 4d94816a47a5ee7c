from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


# --- Requests ---


class ContextTurn(BaseModel):
    query: str
    response: str = ""


class SearchRequest(BaseModel):
    # Left loose so a missing or non-string query is answered with a 400, not a 422.
    query: Any = None
    context: list[ContextTurn] | None = None
    credentials: dict[str, str] | None = None
    model: str | None = None
    conversation_id: str | None = Field(default=None, alias="conversationId")

    model_config = {"populate_by_name": True}


# --- Responses ---


class ErrorResponse(BaseModel):
    error: str


class ConversationSummary(BaseModel):
    id: str
    title: str
    createdAt: str
    updatedAt: str
    messageCount: int
