"""
Chat history persistence (MongoDB via motor)
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING

from app.utils.exceptions import DatabaseError
from app.utils.logging_config import get_logger

logger = get_logger(__name__)

SENDER_USER = "user"
SENDER_AI = "ai"


def _clean(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(doc)
    if "_id" in doc:
        doc["_id"] = str(doc["_id"])
    if isinstance(doc.get("timestamp"), datetime):
        doc["timestamp"] = doc["timestamp"].isoformat()
    return doc


class ChatHistoryRepository:
    """One document per turn: {conversation_id, sender, message, timestamp, metadata}"""

    def __init__(self, collection):
        self.collection = collection

    async def save_turn(self, conversation_id: str, sender: str, message: str,
                        metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        doc = {
            "conversation_id": conversation_id,
            "sender": sender,
            "message": message or "",
            "timestamp": datetime.utcnow(),
            "metadata": metadata or {},
        }
        try:
            await self.collection.insert_one(doc)
        except Exception as e:
            raise DatabaseError(
                "Failed to save chat turn",
                operation="save_turn",
                collection="chat_history",
                cause=e,
            )
        logger.debug(f"Saved {sender} turn", extra={"conversation_id": conversation_id})
        return _clean(doc)

    async def recent(self, conversation_id: Optional[str], limit: int = 10) -> List[Dict[str, Any]]:
        """Last `limit` turns of a conversation, oldest first"""
        if not conversation_id:
            return []
        cursor = self.collection.find({"conversation_id": conversation_id}).sort("timestamp", DESCENDING).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [_clean(d) for d in reversed(docs)]

    async def get_conversation(self, conversation_id: str) -> List[Dict[str, Any]]:
        cursor = self.collection.find({"conversation_id": conversation_id}).sort("timestamp", ASCENDING)
        return [_clean(d) for d in await cursor.to_list(length=None)]

    async def list_conversations(self) -> List[Dict[str, Any]]:
        """All turns grouped by conversation, most recently active first"""
        cursor = self.collection.find({}).sort("timestamp", ASCENDING)
        docs = await cursor.to_list(length=None)

        grouped: Dict[str, Dict[str, Any]] = {}
        for doc in docs:
            doc = _clean(doc)
            conv = grouped.setdefault(doc.get("conversation_id") or "unknown", {
                "conversation_id": doc.get("conversation_id") or "unknown",
                "messages": [],
            })
            conv["messages"].append(doc)

        conversations = []
        for conv in grouped.values():
            conv["count"] = len(conv["messages"])
            conv["last_timestamp"] = conv["messages"][-1].get("timestamp")
            conversations.append(conv)
        conversations.sort(key=lambda c: c["last_timestamp"] or "", reverse=True)
        return conversations

    async def delete_conversation(self, conversation_id: str) -> int:
        result = await self.collection.delete_many({"conversation_id": conversation_id})
        logger.info(f"Deleted {result.deleted_count} turns", extra={"conversation_id": conversation_id})
        return result.deleted_count
