"""Tests for API routes."""
import json
from unittest.mock import patch

import pytest

from fakes import FakeProvider, build_orchestrator, make_source


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    import sse_starlette.sse as sse

    if hasattr(sse, "AppStatus"):
        sse.AppStatus.should_exit_event = None
    yield


@pytest.fixture
def app():
    from research_engine.main import app

    return app


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app)


@pytest.fixture
def fake_orchestrator(config):
    sources = [make_source("https://a.example.com"), make_source("https://b.example.com")]
    orchestrator = build_orchestrator(config, [FakeProvider("fake", [sources])])
    with patch("research_engine.api.deps.build_orchestrator", return_value=orchestrator):
        yield orchestrator


def parse_sse(body: str) -> list[tuple[str, dict]]:
    events = []
    current_event = None
    for raw_line in body.splitlines():
        line = raw_line.strip("\r")
        if line.startswith("event:"):
            current_event = line.split(":", 1)[1].strip()
        elif line.startswith("data:"):
            events.append((current_event, json.loads(line.split(":", 1)[1].strip())))
    return events


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "research-engine"


@pytest.mark.parametrize("body", [{}, {"query": ""}, {"query": "   "}, {"query": 42}])
def test_search_rejects_missing_or_invalid_query(client, fake_orchestrator, body):
    response = client.post("/api/search", json=body)

    assert response.status_code == 400
    assert response.json() == {"error": "Query is required"}


def test_collect_rejects_blank_query_with_error_body(client, fake_orchestrator):
    response = client.post("/api/search/collect", json={"query": "  "})

    assert response.status_code == 400
    assert response.json() == {"error": "Query is required"}


def test_search_streams_events_in_order(client, fake_orchestrator):
    response = client.post("/api/search", json={"query": "Amber Room history"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = parse_sse(response.text)
    names = [name for name, _ in events]
    assert names[0] == "searching"
    assert names[1] == "found"
    assert names.count("scraping") == 2
    assert names[-1] == "final-result"
    final = events[-1][1]
    assert len(final["sources"]) == 2
    assert final["partial"] is False
    assert "".join(d["chunk"] for n, d in events if n == "content-chunk") == final["content"]


def test_collect_returns_final_json(client, fake_orchestrator):
    response = client.post("/api/search/collect", json={"query": "Amber Room history"})

    assert response.status_code == 200
    data = response.json()
    assert data["content"] == "The answer cites [1] and [2]."
    assert len(data["followUpQuestions"]) == 3


def test_conversation_persisted_without_content_chunks(client, fake_orchestrator):
    response = client.post(
        "/api/search",
        json={"query": "Amber Room history", "conversationId": "conv-api-1"},
    )
    assert response.status_code == 200

    record = client.get("/api/conversations/conv-api-1").json()
    assert record["title"] == "Amber Room history"
    assert [m["role"] for m in record["messages"]] == ["user", "assistant"]
    trace_types = [e["type"] for e in record["messages"][1]["search_events"]]
    assert "content-chunk" not in trace_types
    assert "source-complete" in trace_types
    assert trace_types[-1] == "final-result"

    listed = client.get("/api/conversations").json()
    assert any(item["id"] == "conv-api-1" and item["messageCount"] == 2 for item in listed)

    assert client.delete("/api/conversations/conv-api-1").json() == {"deleted": True}
    assert client.get("/api/conversations/conv-api-1").status_code == 404
