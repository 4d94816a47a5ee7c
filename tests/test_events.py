from __future__ import annotations

import json

from research_engine.models.events import EventType, ProcessingStage, strip_content_chunks
from research_engine.models.sources import Source
from research_engine.services import streaming


def test_final_result_wire_shape_uses_camel_case():
    source = Source(url="https://a.example.com", title="A", scraped=True, summary="s")
    event = streaming.final_result("answer", [source], ["Why?"], partial=False)

    assert event.to_dict() == {
        "type": "final-result",
        "content": "answer",
        "sources": [
            {"url": "https://a.example.com", "title": "A", "description": "", "scraped": True, "summary": "s"}
        ],
        "followUpQuestions": ["Why?"],
        "partial": False,
    }


def test_format_produces_sse_frame():
    frame = streaming.content_chunk("hello").format()

    assert frame.startswith("event: content-chunk\n")
    payload = frame.split("data: ", 1)[1].strip()
    assert json.loads(payload) == {"chunk": "hello"}
    assert frame.endswith("\n\n")


def test_source_processing_event_carries_stage():
    source = Source(url="https://a.example.com", title="A")
    event = streaming.source_processing(source, 2, 5, ProcessingStage.ANALYZING)

    assert event.event == EventType.SOURCE_PROCESSING
    assert event.data == {"url": "https://a.example.com", "title": "A", "index": 2, "total": 5, "stage": "analyzing"}


def test_terminal_flags():
    assert streaming.done().terminal
    assert streaming.error("x").terminal
    assert not streaming.analyzing(0).terminal


def test_strip_content_chunks_keeps_progress_events():
    events = [
        streaming.searching("q"),
        streaming.content_chunk("a"),
        streaming.source_complete(Source(url="https://a.example.com", summary="sum")),
        streaming.content_chunk("b"),
        streaming.final_result("ab", []),
    ]

    trace = strip_content_chunks(events)

    assert [e["type"] for e in trace] == ["searching", "source-complete", "final-result"]
