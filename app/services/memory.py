"""
Conversation memory: last successful task context per conversation id
"""
import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from app.models.intent import ConversationContext
from app.services.cache import TTLCache
from app.utils.logging_config import get_logger

logger = get_logger(__name__)


class ConversationMemory:
    """In-process context store.

    Turns on the same conversation id must hold `lock_for(id)` across the
    read-route-write sequence; different ids never contend.
    """

    def __init__(self, ttl: float = 0, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._store: TTLCache[ConversationContext] = TTLCache(ttl=ttl, clock=clock)
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, conversation_id: Optional[str]) -> Optional[ConversationContext]:
        if not conversation_id:
            return None
        return self._store.get(conversation_id)

    def save(self, conversation_id: Optional[str], context: ConversationContext) -> None:
        if not conversation_id:
            return
        context.timestamp = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        self._store.set(conversation_id, context)
        logger.debug(
            f"Saved context for {conversation_id}: {context.last_action} with {len(context.candidates)} candidates",
            extra={"conversation_id": conversation_id},
        )

    def clear(self, conversation_id: Optional[str] = None) -> None:
        self._store.invalidate(conversation_id)
        # held locks stay until their turn ends
        ids = list(self._locks) if conversation_id is None else [conversation_id]
        for cid in ids:
            lock = self._locks.get(cid)
            if lock is not None and not lock.locked():
                del self._locks[cid]

    def lock_for(self, conversation_id: Optional[str]) -> asyncio.Lock:
        """Per-conversation lock; anonymous turns get a fresh, uncontended lock"""
        if not conversation_id:
            return asyncio.Lock()
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._store)
