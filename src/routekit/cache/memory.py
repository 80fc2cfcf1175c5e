"""In-process cache tier.

Entries carry their own TTL; the tier as a whole is bounded by entry count and
by total serialized size, evicting least recently used entries first. An entry
can therefore be evicted before its TTL elapses.
"""

from __future__ import annotations

import fnmatch
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

from cachetools import TLRUCache

from .serialization import size_of

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CacheEntry:
    key: str
    value: Any
    ttl: float
    created_at: float
    last_used_at: float
    use_count: int = 0
    size: int = 0


def _entry_expiry(key: str, entry: CacheEntry, now: float) -> float:
    return now + entry.ttl


def _entry_size(entry: CacheEntry) -> int:
    return max(1, entry.size)


class MemoryTier:
    """Thread-safe LRU map with per-entry expiry."""

    def __init__(
        self,
        max_items: int = 5000,
        max_bytes: int = 50 * 1024 * 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_items = max_items
        self.max_bytes = max_bytes
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: TLRUCache = TLRUCache(
            maxsize=max_bytes,
            ttu=_entry_expiry,
            timer=clock,
            getsizeof=_entry_size,
        )

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            entry.use_count += 1
            entry.last_used_at = self._clock()
            return entry.value

    def entry(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, value: Any, ttl: float) -> bool:
        """Store ``value`` for ``ttl`` seconds. Returns False when the value cannot fit at all."""
        now = self._clock()
        size = size_of(value)
        if size > self.max_bytes:
            logger.debug(f"Skipping in-process caching of {key}: {size} bytes exceeds tier capacity")
            with self._lock:
                self._entries.pop(key, None)
            return False
        entry = CacheEntry(key=key, value=value, ttl=float(ttl), created_at=now, last_used_at=now, size=size)
        with self._lock:
            self._entries[key] = entry
            while len(self._entries) > self.max_items:
                self._entries.popitem()
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_matching(self, pattern: str) -> list[str]:
        with self._lock:
            matched = [key for key in list(self._entries.keys()) if fnmatch.fnmatchcase(key, pattern)]
            for key in matched:
                self._entries.pop(key, None)
            return matched

    def keys(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._entries.keys()))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def memory_usage(self) -> int:
        with self._lock:
            self._entries.expire()
            return int(self._entries.currsize)

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)
