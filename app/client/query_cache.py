"""Keyed client-side cache with staleness marks.

Keys are tuples such as ("conversations",) or ("messages", conversation_id).
A stale key keeps its data until the next authoritative read replaces it.
"""
from typing import Any, Callable, Dict, Hashable, Optional, Set, Tuple

CacheKey = Tuple[Hashable, ...]

CONVERSATIONS_KEY: CacheKey = ("conversations",)


def messages_key(conversation_id: Optional[str]) -> CacheKey:
    return ("messages", conversation_id)


class QueryCache:
    def __init__(self) -> None:
        self._data: Dict[CacheKey, Any] = {}
        self._stale: Set[CacheKey] = set()

    def get(self, key: CacheKey, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: CacheKey, value: Any) -> None:
        self._data[key] = value
        self._stale.discard(key)

    def update(self, key: CacheKey, fn: Callable[[Any], Any]) -> Any:
        """Replace the entry with fn(current). Staleness is left as is."""
        value = fn(self._data.get(key))
        self._data[key] = value
        return value

    def invalidate(self, key: CacheKey) -> None:
        self._stale.add(key)

    def is_stale(self, key: CacheKey) -> bool:
        """True if the key was invalidated or was never loaded."""
        return key in self._stale or key not in self._data
