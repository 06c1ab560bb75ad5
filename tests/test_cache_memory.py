import pytest

from app.models.intent import Action, ConversationContext
from app.services.cache import TTLCache
from app.services.memory import ConversationMemory
from tests.conftest import FakeClock


class TestTTLCache:
    def test_entry_expires(self):
        """Entries vanish once the window has passed"""
        clock = FakeClock()
        cache = TTLCache(ttl=10, clock=clock)
        cache.set("k", 1)

        clock.advance(9)
        assert cache.get("k") == 1
        clock.advance(1)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_zero_ttl_never_expires(self):
        clock = FakeClock()
        cache = TTLCache(ttl=0, clock=clock)
        cache.set("k", "v")
        clock.advance(10 ** 6)
        assert cache.get("k") == "v"

    def test_touch_restarts_window(self):
        clock = FakeClock()
        cache = TTLCache(ttl=10, clock=clock)
        cache.set("k", 1)
        clock.advance(8)
        cache.touch("k")
        clock.advance(8)
        assert cache.get("k") == 1

    def test_invalidate(self):
        """One key, or all of them"""
        cache = TTLCache(ttl=10)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate("a")
        assert cache.keys() == ["b"]
        cache.invalidate()
        assert cache.stats() == {"size": 0, "entries": []}


class TestConversationMemory:
    """Per-conversation context"""

    def test_save_and_get(self, candidates):
        memory = ConversationMemory()
        memory.save("conv-1", ConversationContext(last_action=Action.SHOW_CANDIDATES, candidates=candidates[:2]))

        context = memory.get("conv-1")
        assert context.last_action == Action.SHOW_CANDIDATES
        assert [c.name for c in context.candidates] == ["Carlos Gómez", "Carlos Ruiz"]
        assert memory.get("conv-2") is None

    def test_anonymous_turns_are_not_stored(self):
        memory = ConversationMemory()
        memory.save(None, ConversationContext())
        assert memory.get(None) is None
        assert len(memory) == 0

    def test_optional_ttl(self):
        """Contexts expire only when a ttl is configured"""
        clock = FakeClock()
        memory = ConversationMemory(ttl=60, clock=clock)
        memory.save("conv-1", ConversationContext())

        clock.advance(61)
        assert memory.get("conv-1") is None

    def test_clear_one_conversation(self):
        memory = ConversationMemory()
        memory.save("a", ConversationContext())
        memory.save("b", ConversationContext())

        memory.clear("a")
        assert memory.get("a") is None
        assert memory.get("b") is not None

    def test_lock_is_shared_per_conversation(self):
        """Same id returns the same lock; anonymous turns never share one"""
        memory = ConversationMemory()

        assert memory.lock_for("conv-1") is memory.lock_for("conv-1")
        assert memory.lock_for("conv-1") is not memory.lock_for("conv-2")
        assert memory.lock_for(None) is not memory.lock_for(None)

    @pytest.mark.asyncio
    async def test_lock_serializes_turns(self):
        memory = ConversationMemory()
        lock = memory.lock_for("conv-1")

        async with lock:
            assert memory.lock_for("conv-1").locked()
        assert not memory.lock_for("conv-1").locked()

    @pytest.mark.asyncio
    async def test_clear_keeps_a_held_lock(self):
        """A turn arriving after a clear still waits for the running one"""
        memory = ConversationMemory()
        memory.save("conv-1", ConversationContext())
        lock = memory.lock_for("conv-1")

        async with lock:
            memory.clear("conv-1")
            assert memory.get("conv-1") is None
            assert memory.lock_for("conv-1") is lock

        memory.clear()
        assert memory.lock_for("conv-1") is not lock
