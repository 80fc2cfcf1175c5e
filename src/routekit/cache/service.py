"""Two-tier cache: in-process LRU tier in front of the shared Redis tier."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import asdict, dataclass
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

from ..config import settings
from .memory import MemoryTier
from .persistent import RedisTier
from .serialization import decode_payload, encode_payload

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class NamespacePolicy:
    ttl: int
    size_threshold: Optional[int] = None


@dataclass(slots=True)
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    hit_rate: float = 0.0
    memory_usage: int = 0
    memory_items: int = 0
    persistent_key_count: int = 0
    persistent_connected: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def namespace_of(key: str) -> str:
    return key.split(":", 1)[0]


def _as_glob(pattern: str) -> str:
    if any(char in pattern for char in "*?["):
        return pattern
    return f"{pattern}*"


class TwoTierCache:
    """Read-through cache over an in-process tier and an optional shared tier.

    Reads check the in-process tier first, then the shared tier; shared hits
    are copied into the in-process tier. Writes always land in-process and are
    forwarded to the shared tier on a best-effort basis. Without a shared tier
    the cache runs in-process only, which is also what tests use.
    """

    def __init__(
        self,
        memory: MemoryTier | None = None,
        persistent: RedisTier | None = None,
        *,
        default_ttl: int | None = None,
        compression_threshold: int | None = None,
    ) -> None:
        self.memory = memory if memory is not None else MemoryTier(
            max_items=settings.memory_max_items,
            max_bytes=settings.memory_max_bytes,
        )
        self.persistent = persistent
        self.default_ttl = default_ttl if default_ttl is not None else settings.default_ttl_seconds
        self.compression_threshold = (
            compression_threshold if compression_threshold is not None else settings.compression_threshold_bytes
        )
        self._namespaces: dict[str, NamespacePolicy] = {}
        self._stats = CacheStats()
        self._stats_lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None

    # -- configuration -------------------------------------------------

    def register_namespace(self, name: str, policy: NamespacePolicy) -> None:
        self._namespaces[name] = policy

    def namespace_policy(self, name: str) -> NamespacePolicy | None:
        return self._namespaces.get(name)

    def _resolve_ttl(self, key: str, ttl: Optional[int], namespace: Optional[str]) -> int:
        if ttl:
            return int(ttl)
        policy = self._namespaces.get(namespace or namespace_of(key))
        if policy is not None:
            return policy.ttl
        return self.default_ttl

    def _threshold_for(self, key: str, namespace: Optional[str]) -> int:
        policy = self._namespaces.get(namespace or namespace_of(key))
        if policy is not None and policy.size_threshold is not None:
            return policy.size_threshold
        return self.compression_threshold

    def _record(self, **deltas: int) -> None:
        with self._stats_lock:
            for name, delta in deltas.items():
                setattr(self._stats, name, getattr(self._stats, name) + delta)

    # -- reads ----------------------------------------------------------

    def _bounded_read(self, read: Callable[[], T], timeout: Optional[float], label: str, missed: T) -> T:
        """Run a shared-tier read, giving up after ``timeout`` seconds with ``missed``."""
        if timeout is None:
            return read()
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="cache-read")
        future = self._executor.submit(read)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.debug(f"Shared cache lookup for {label} exceeded {timeout}s, treating as miss")
            return missed

    def _persistent_get(self, key: str, timeout: Optional[float]) -> Optional[str]:
        if self.persistent is None:
            return None
        persistent = self.persistent
        return self._bounded_read(lambda: persistent.get(key), timeout, key, None)

    def _decode(self, key: str, payload: str) -> Any:
        try:
            return decode_payload(payload)
        except ValueError as exc:
            logger.warning(f"Discarding unreadable cache entry {key}: {exc}")
            return None

    def get(self, key: str, *, timeout: Optional[float] = None) -> Any:
        value = self.memory.get(key)
        if value is not None:
            self._record(hits=1)
            return value

        payload = self._persistent_get(key, timeout)
        if payload is None:
            self._record(misses=1)
            return None

        value = self._decode(key, payload)
        if value is None:
            self._record(misses=1)
            return None

        # Bounded staleness: the in-process copy lives at most default_ttl.
        self.memory.set(key, value, min(self.default_ttl, self._resolve_ttl(key, None, None)))
        self._record(hits=1)
        return value

    def mget(self, keys: Sequence[str], *, timeout: Optional[float] = None) -> list[Any]:
        results: list[Any] = [None] * len(keys)
        missing: list[int] = []
        for index, key in enumerate(keys):
            value = self.memory.get(key)
            if value is not None:
                results[index] = value
                self._record(hits=1)
            else:
                missing.append(index)

        if missing and self.persistent is not None:
            persistent = self.persistent
            wanted = [keys[index] for index in missing]
            payloads = self._bounded_read(
                lambda: persistent.mget(wanted), timeout, f"{len(wanted)} keys", [None] * len(wanted)
            )
            for index, payload in zip(missing, payloads):
                if payload is None:
                    continue
                value = self._decode(keys[index], payload)
                if value is None:
                    continue
                results[index] = value
                self.memory.set(keys[index], value, min(self.default_ttl, self._resolve_ttl(keys[index], None, None)))

        found = sum(1 for index in missing if results[index] is not None)
        self._record(hits=found, misses=len(missing) - found)
        return results

    # -- writes ---------------------------------------------------------

    def set(self, key: str, value: Any, ttl: Optional[int] = None, *, namespace: Optional[str] = None) -> None:
        resolved_ttl = self._resolve_ttl(key, ttl, namespace)
        self.memory.set(key, value, resolved_ttl)
        if self.persistent is not None:
            payload = encode_payload(value, self._threshold_for(key, namespace))
            self.persistent.set(key, payload, resolved_ttl)
        self._record(sets=1)

    def mset(
        self,
        entries: Iterable[tuple[str, Any, Optional[int]]],
        *,
        namespace: Optional[str] = None,
    ) -> None:
        prepared: list[tuple[str, str, int]] = []
        count = 0
        for key, value, ttl in entries:
            resolved_ttl = self._resolve_ttl(key, ttl, namespace)
            self.memory.set(key, value, resolved_ttl)
            if self.persistent is not None:
                prepared.append((key, encode_payload(value, self._threshold_for(key, namespace)), resolved_ttl))
            count += 1
        if prepared and self.persistent is not None:
            self.persistent.mset(prepared)
        self._record(sets=count)

    def delete(self, key: str) -> None:
        self.memory.delete(key)
        if self.persistent is not None:
            self.persistent.delete(key)
        self._record(deletes=1)

    def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern (a bare prefix matches ``prefix*``)."""
        glob = _as_glob(pattern)
        deleted = set(self.memory.delete_matching(glob))
        if self.persistent is not None:
            deleted.update(self.persistent.delete_pattern(glob))
        self._record(deletes=len(deleted))
        logger.debug(f"Deleted {len(deleted)} cache keys matching {glob}")
        return len(deleted)

    def flush(self) -> None:
        self.memory.clear()
        if self.persistent is not None:
            self.persistent.flush()
        with self._stats_lock:
            self._stats = CacheStats()

    # -- introspection --------------------------------------------------

    def get_stats(self) -> CacheStats:
        with self._stats_lock:
            snapshot = CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                sets=self._stats.sets,
                deletes=self._stats.deletes,
            )
        total = snapshot.hits + snapshot.misses
        snapshot.hit_rate = (snapshot.hits / total) * 100 if total else 0.0
        snapshot.memory_usage = self.memory.memory_usage
        snapshot.memory_items = len(self.memory)
        if self.persistent is not None:
            snapshot.persistent_key_count = self.persistent.key_count()
            snapshot.persistent_connected = self.persistent.connected
        return snapshot

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        if self.persistent is not None:
            self.persistent.close()
