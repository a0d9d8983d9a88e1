"""
TTL Cache
Bounded key -> (items, timestamp) store for external source results.

One instance is created per process and handed to the aggregator; entries
leave only through expiry or size eviction. Tests build their own instance,
optionally with a fake clock.
"""
import threading
import time
from collections import OrderedDict
from typing import Callable, List, Optional

from .config import settings
from .logging_config import get_logger
from .models import CacheEntry, KnowledgeItem

log = get_logger("cache")


def make_cache_key(source: str, query: str) -> str:
    """Cache key for one source and one query, case and whitespace insensitive."""
    return f"{source}:{query.lower().strip()}"


class TTLCache:
    """
    Expiring cache evicting by write recency.

    ``get`` never returns an entry older than ``ttl_seconds``; stale entries
    stay in place until overwritten or evicted. ``set`` keeps at most
    ``max_entries`` entries, dropping the oldest writes first. Reads do not
    refresh an entry's position.
    """

    def __init__(
        self,
        ttl_seconds: float = None,
        max_entries: int = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = settings.cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.max_entries = settings.cache_max_entries if max_entries is None else max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[List[KnowledgeItem]]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp >= self.ttl_seconds:
            return None
        return entry.data

    def set(self, key: str, data: List[KnowledgeItem]) -> None:
        entry = CacheEntry(key=key, data=list(data), timestamp=self._clock())
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = entry
            evicted = 0
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                evicted += 1
        if evicted:
            log.debug(f"Evicted {evicted} cache entries (max={self.max_entries})")

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries
