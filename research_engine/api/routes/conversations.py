from __future__ import annotations

from fastapi import APIRouter, HTTPException

from research_engine.api import deps
from research_engine.models.schemas import ConversationSummary

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


@router.get("", response_model=list[ConversationSummary])
async def list_conversations(limit: int = 50):
    records = await deps.get_conversation_store().list(limit=limit)
    return [record.summary() for record in records]


@router.get("/{conversation_id}")
async def get_conversation(conversation_id: str):
    record = await deps.get_conversation_store().get(conversation_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return record.model_dump(mode="json")


@router.delete("/{conversation_id}")
async def delete_conversation(conversation_id: str):
    deleted = await deps.get_conversation_store().delete(conversation_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"deleted": True}
