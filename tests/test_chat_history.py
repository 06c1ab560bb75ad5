import pytest
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

from app.services.chat_history import SENDER_AI, SENDER_USER, ChatHistoryRepository
from app.utils.exceptions import DatabaseError


def collection_with(docs):
    """Motor-like collection whose find() cursor yields `docs`"""
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=docs)
    coll = MagicMock()
    coll.find.return_value = cursor
    coll.insert_one = AsyncMock()
    coll.delete_many = AsyncMock(return_value=MagicMock(deleted_count=len(docs)))
    return coll


def turn(conversation_id, sender, message, hour):
    return {"_id": f"{conversation_id}-{hour}", "conversation_id": conversation_id, "sender": sender,
            "message": message, "timestamp": datetime(2024, 5, 1, hour), "metadata": {}}


class TestChatHistoryRepository:
    @pytest.mark.asyncio
    async def test_save_turn(self):
        coll = collection_with([])
        saved = await ChatHistoryRepository(coll).save_turn("conv-1", SENDER_USER, "Hola", {"action": "x"})

        doc = coll.insert_one.await_args.args[0]
        assert doc["conversation_id"] == "conv-1"
        assert doc["sender"] == "user"
        assert isinstance(saved["timestamp"], str)

    @pytest.mark.asyncio
    async def test_save_failure_is_wrapped(self):
        coll = collection_with([])
        coll.insert_one.side_effect = RuntimeError("connection refused")

        with pytest.raises(DatabaseError) as exc:
            await ChatHistoryRepository(coll).save_turn("conv-1", SENDER_AI, "ok")
        assert exc.value.details["operation"] == "save_turn"

    @pytest.mark.asyncio
    async def test_recent_is_oldest_first(self):
        """The cursor returns newest first; the repository flips it"""
        coll = collection_with([turn("c", "ai", "second", 11), turn("c", "user", "first", 10)])

        turns = await ChatHistoryRepository(coll).recent("c", limit=2)

        assert [t["message"] for t in turns] == ["first", "second"]
        coll.find.return_value.limit.assert_called_with(2)

    @pytest.mark.asyncio
    async def test_recent_without_conversation(self):
        coll = collection_with([turn("c", "user", "x", 10)])
        assert await ChatHistoryRepository(coll).recent(None) == []
        coll.find.assert_not_called()

    @pytest.mark.asyncio
    async def test_list_conversations_grouped_and_sorted(self):
        coll = collection_with([
            turn("a", "user", "hola", 9),
            turn("b", "user", "hi", 10),
            turn("a", "ai", "respuesta", 11),
        ])

        conversations = await ChatHistoryRepository(coll).list_conversations()

        assert [c["conversation_id"] for c in conversations] == ["a", "b"]
        assert conversations[0]["count"] == 2
        assert conversations[0]["last_timestamp"] == "2024-05-01T11:00:00"

    @pytest.mark.asyncio
    async def test_delete_returns_count(self):
        coll = collection_with([turn("a", "user", "hola", 9)])
        assert await ChatHistoryRepository(coll).delete_conversation("a") == 1
        coll.delete_many.assert_awaited_with({"conversation_id": "a"})
