# Dune Query MCP Server
# File: cache.py
# Version: v1

"""In-process TTL cache for paginator sessions.

MCP tool calls are stateless, but a Paginator is only useful if its page
cache survives between calls. The tools layer keeps paginators here, keyed
by ``(execution_id, page_size)``:

- an entry expires ``ttl_seconds`` after it was last used,
- when ``max_entries`` is exceeded the least recently used entry goes,
- ``ttl_seconds=0`` or ``max_entries=0`` disables caching.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

V = TypeVar("V")


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0


class SessionCache(Generic[V]):
    """Sliding-expiry LRU mapping."""

    def __init__(
        self,
        ttl_seconds: int = 300,
        max_entries: int = 32,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = int(ttl_seconds)
        self.max_entries = int(max_entries)
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, V]]" = OrderedDict()
        self._stats = CacheStats()

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0 and self.max_entries > 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable) -> Optional[V]:
        """Return the live session for ``key`` and extend its lifetime."""
        entry = self._entries.get(key) if self.enabled else None
        if entry is None:
            self._stats.misses += 1
            return None

        last_used, value = entry
        now = self._clock()
        if now - last_used > self.ttl_seconds:
            del self._entries[key]
            self._stats.misses += 1
            self._stats.expirations += 1
            return None

        self._entries[key] = (now, value)
        self._entries.move_to_end(key)
        self._stats.hits += 1
        return value

    def put(self, key: Hashable, value: V) -> None:
        if not self.enabled:
            return

        self._entries[key] = (self._clock(), value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self._stats.evictions += 1

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "ttl_seconds": self.ttl_seconds,
            "max_entries": self.max_entries,
            "size": len(self._entries),
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "evictions": self._stats.evictions,
            "expirations": self._stats.expirations,
        }
