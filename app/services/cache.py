"""
Small in-process TTL cache with an injectable clock
"""
import time
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

V = TypeVar("V")

Clock = Callable[[], float]


class TTLCache(Generic[V]):
    """Key/value store whose entries expire `ttl` seconds after being set.

    A ttl of 0 disables expiry.
    """

    def __init__(self, ttl: float, clock: Clock = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[float, V]] = {}

    def get(self, key: str) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self.ttl and self._clock() - stored_at >= self.ttl:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: V) -> None:
        self._entries[key] = (self._clock(), value)

    def touch(self, key: str) -> None:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries[key] = (self._clock(), entry[1])

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one key, or everything when no key is given"""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._entries.keys())

    def stats(self) -> Dict[str, Any]:
        return {"size": len(self._entries), "entries": self.keys()}

    def __len__(self) -> int:
        return len(self._entries)
