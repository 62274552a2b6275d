"""
Benefit Service Read-Through Cache

Bounded TTL cache keyed by operation name + serialized parameters.
Entries are replaced, never mutated, so concurrent readers on the
event loop always see a complete value.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    inserted_at: float


class TTLCache:
    """In-process TTL cache for composite benefit lookups"""

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(operation: str, **params: Any) -> str:
        """Build a cache key; parameter order does not matter"""
        return f"{operation}:{json.dumps(params, sort_keys=True, default=str)}"

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at < self.ttl_seconds

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is not None:
            if self._is_fresh(entry, self._clock()):
                self.hits += 1
                return entry.value
            del self._entries[key]
        self.misses += 1
        return default

    def set(self, key: str, value: Any) -> None:
        now = self._clock()
        self._entries.pop(key, None)
        if len(self._entries) >= self.max_entries:
            self._purge_expired(now)
        if len(self._entries) >= self.max_entries:
            # Insertion order == age order since replaced keys are re-inserted
            oldest_key = next(iter(self._entries))
            del self._entries[oldest_key]
        self._entries[key] = CacheEntry(value=value, inserted_at=now)

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        """Return the cached value or await the loader and cache its result"""
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = await loader()
        self.set(key, value)
        return value

    def invalidate(self, operation: Optional[str] = None) -> int:
        """Drop every entry, or only those created for one operation"""
        if operation is None:
            return self.clear()
        prefix = f"{operation}:"
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cache entries for {operation}")
        return len(doomed)

    def clear(self) -> int:
        count = len(self._entries)
        self._entries = {}
        return count

    def _purge_expired(self, now: float) -> None:
        stale = [key for key, entry in self._entries.items() if not self._is_fresh(entry, now)]
        for key in stale:
            del self._entries[key]

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._is_fresh(entry, self._clock())

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            "size": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total if total > 0 else 0,
        }
