from __future__ import annotations

import pytest

from research_engine.models.conversation import ChatMessage, ConversationRecord, build_search_trace
from research_engine.models.sources import Source
from research_engine.services import streaming
from research_engine.services.conversation_store import InMemoryConversationStore


def test_title_defaults_to_first_user_message():
    record = ConversationRecord(messages=[ChatMessage(role="user", content="q" * 100)])
    assert record.title == "q" * 60
    assert ConversationRecord().title == "New Chat"


def test_message_drops_content_chunks_from_trace():
    events = [
        streaming.searching("q"),
        streaming.scraping(Source(url="https://a.example.com"), 1, 1),
        streaming.content_chunk("x"),
        streaming.final_result("x", []),
    ]
    raw = [e.to_dict() for e in events]

    message = ChatMessage(role="assistant", content="x", search_events=raw)

    assert [e["type"] for e in message.search_events] == ["searching", "scraping", "final-result"]
    assert build_search_trace(events) == message.search_events


@pytest.mark.asyncio
async def test_store_round_trip_and_ordering():
    store = InMemoryConversationStore()
    first = await store.save(ConversationRecord(id="c1", messages=[ChatMessage(role="user", content="first")]))
    second = await store.save(ConversationRecord(id="c2", messages=[ChatMessage(role="user", content="second")]))

    assert (await store.get("c1")).title == "first"
    assert [r.id for r in await store.list()] == ["c2", "c1"]
    assert second.updated_at >= first.updated_at

    fetched = await store.get("c1")
    fetched.messages.append(ChatMessage(role="assistant", content="not saved"))
    assert (await store.get("c1")).message_count == 1

    assert await store.delete("c1") is True
    assert await store.delete("c1") is False
    assert await store.get("c1") is None
