from __future__ import annotations

import pytest

from research_engine.models.events import EventType
from research_engine.services import streaming
from research_engine.services.event_bus import EventBus


@pytest.mark.asyncio
async def test_events_delivered_in_publish_order_until_terminal():
    bus = EventBus("t1")
    assert bus.publish(streaming.searching("q"))
    assert bus.publish(streaming.content_chunk("a"))
    assert bus.publish(streaming.content_chunk("b"))
    assert bus.publish(streaming.final_result("ab", []))

    events = [event async for event in bus.subscribe()]

    assert [e.event for e in events] == [
        EventType.SEARCHING,
        EventType.CONTENT_CHUNK,
        EventType.CONTENT_CHUNK,
        EventType.FINAL_RESULT,
    ]
    assert bus.closed


@pytest.mark.asyncio
async def test_first_terminal_write_wins():
    bus = EventBus("t2")
    first = streaming.final_result("partial", [], partial=True)

    assert bus.publish(first) is True
    assert bus.publish(streaming.error("late failure")) is False
    assert bus.publish(streaming.content_chunk("late")) is False

    events = [event async for event in bus.subscribe()]
    assert events == [first]
    assert bus.terminal_event is first
    assert bus.published_count == 1


@pytest.mark.asyncio
async def test_close_without_terminal_is_idempotent():
    bus = EventBus("t3")
    bus.publish(streaming.searching("q"))
    bus.close()
    bus.close()

    events = [event async for event in bus.subscribe()]

    assert [e.event for e in events] == [EventType.SEARCHING]
    assert bus.terminal_event is None
    assert bus.publish(streaming.done()) is False


def test_second_subscription_is_rejected():
    bus = EventBus("t4")
    bus.subscribe()
    with pytest.raises(RuntimeError):
        bus.subscribe()
