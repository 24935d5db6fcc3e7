"""
In-process TTL cache.

Read-through caches (trading constraints, prices) are instances of
``TTLCache`` handed to the components that use them. The owner of the
engine creates them at start-up and calls ``clear()`` on shutdown.
"""

import time
import logging
from collections import OrderedDict
from typing import Callable, Generic, Hashable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Bounded key-value cache whose entries expire after ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float = 60.0, max_size: int = 10000,
                 clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, V]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            self.misses += 1
            return None

        self._entries.move_to_end(key)
        self.hits += 1
        return value

    def set(self, key: Hashable, value: V) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = (self._clock() + self.ttl_seconds, value)

        # Evict least recently used entries
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted cache entry {evicted}")

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict:
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
        }
