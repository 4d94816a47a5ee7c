from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Protocol

from loguru import logger

from research_engine.models.conversation import ConversationRecord


class ConversationStore(Protocol):
    async def save(self, record: ConversationRecord) -> ConversationRecord: ...

    async def get(self, conversation_id: str) -> ConversationRecord | None: ...

    async def list(self, limit: int = 50) -> list[ConversationRecord]: ...

    async def delete(self, conversation_id: str) -> bool: ...


class InMemoryConversationStore:
    """Process-local store for tests and single-instance deployments."""

    def __init__(self) -> None:
        self._records: dict[str, ConversationRecord] = {}
        self._order: dict[str, int] = {}
        self._counter = 0
        self._lock = asyncio.Lock()

    async def save(self, record: ConversationRecord) -> ConversationRecord:
        async with self._lock:
            stored = record.model_copy(deep=True)
            stored.updated_at = datetime.now(timezone.utc)
            self._records[stored.id] = stored
            self._counter += 1
            self._order[stored.id] = self._counter
        logger.debug(f"Saved conversation {stored.id} ({stored.message_count} messages)")
        return stored.model_copy(deep=True)

    async def get(self, conversation_id: str) -> ConversationRecord | None:
        record = self._records.get(conversation_id)
        return record.model_copy(deep=True) if record else None

    async def list(self, limit: int = 50) -> list[ConversationRecord]:
        records = sorted(self._records.values(), key=lambda r: (r.updated_at, self._order[r.id]), reverse=True)
        return [r.model_copy(deep=True) for r in records[:limit]]

    async def delete(self, conversation_id: str) -> bool:
        async with self._lock:
            self._order.pop(conversation_id, None)
            return self._records.pop(conversation_id, None) is not None
