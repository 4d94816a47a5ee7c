from __future__ import annotations

import json

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from loguru import logger
from sse_starlette.sse import EventSourceResponse

from research_engine.api import deps
from research_engine.errors import ValidationError
from research_engine.models.conversation import ChatMessage, ConversationRecord
from research_engine.models.events import EventTrace, FinalResult, FinalResultEvent
from research_engine.models.schemas import ErrorResponse, SearchRequest
from research_engine.services import logger as log_service
from research_engine.services import streaming
from research_engine.services.consumer import StreamWatchdog, collect

router = APIRouter(prefix="/api/search", tags=["search"])


async def _persist(conversation_id: str, query: str, result: FinalResult, trace: EventTrace) -> None:
    store = deps.get_conversation_store()
    record = await store.get(conversation_id) or ConversationRecord(id=conversation_id)
    record.messages.append(ChatMessage(role="user", content=query))
    record.messages.append(
        ChatMessage(
            role="assistant",
            content=result.content,
            sources=[s.to_dict() for s in result.sources],
            follow_up_questions=list(result.follow_up_questions),
            search_events=trace.events,
        )
    )
    if record.title == "New Chat":
        record.title = query[:60]
    await store.save(record)


def _context(request: SearchRequest) -> list[dict[str, str]] | None:
    if request.context is None:
        return None
    return [turn.model_dump() for turn in request.context]


@router.post("")
async def search(request: SearchRequest):
    """Stream research progress and the final answer as server-sent events."""
    orchestrator = deps.build_orchestrator(request)
    context = _context(request)
    try:
        orchestrator.validate(request.query, context)
    except ValidationError as exc:
        return JSONResponse(status_code=400, content=ErrorResponse(error=str(exc)).model_dump())

    query: str = request.query.strip()

    async def event_generator():
        log_service.log_event(
            event_type="search_started",
            message="Search started",
            model=orchestrator.config.model,
            query=query[:100],
        )
        run = orchestrator.start(query, context)
        watchdog = StreamWatchdog(run, orchestrator.config.idle_timeout)
        trace = EventTrace()
        final: FinalResult | None = None

        try:
            async for event in watchdog.events():
                trace.record(event)
                if isinstance(event, FinalResultEvent):
                    final = event.result
                yield {"event": event.event.value, "data": json.dumps(event.data)}
        except Exception:
            logger.exception(f"Search stream {run.run_id} failed")
            failure = streaming.error("Search stream failed unexpectedly.", "internal")
            yield {"event": failure.event.value, "data": json.dumps(failure.data)}
        finally:
            # Client disconnects land here with the bus still open.
            if not run.bus.closed:
                run.cancel()

        log_service.log_event(
            event_type="search_finished",
            message="Search finished",
            run_id=run.run_id,
            phase=run.phase.value,
            partial=bool(final and final.partial),
            stalled=watchdog.stalled,
        )
        if final is not None and request.conversation_id:
            await _persist(request.conversation_id, query, final, trace)

    return EventSourceResponse(event_generator())


@router.post("/collect")
async def search_collect(request: SearchRequest):
    """Run a search to completion and return only the final result."""
    orchestrator = deps.build_orchestrator(request)
    context = _context(request)
    try:
        orchestrator.validate(request.query, context)
    except ValidationError as exc:
        return JSONResponse(status_code=400, content=ErrorResponse(error=str(exc)).model_dump())

    run = orchestrator.start(request.query.strip(), context)
    watchdog = StreamWatchdog(run, orchestrator.config.idle_timeout)
    collected = await collect(watchdog.events())
    if collected.result is None:
        return JSONResponse(status_code=502, content=collected.to_dict())
    if request.conversation_id:
        await _persist(request.conversation_id, request.query.strip(), collected.result, collected.trace)
    return collected.to_dict()
