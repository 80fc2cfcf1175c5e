"""Shared cache tier backed by Redis.

Every operation is best-effort: connection or command failures mark the tier
as disconnected, are logged once per outage and surface to callers as a miss
(or a no-op for writes). Reconnection is attempted lazily after
``reconnect_interval`` seconds.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

import redis
from redis.exceptions import RedisError

from ..errors import CacheUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RedisTier:
    def __init__(
        self,
        client: redis.Redis,
        *,
        reconnect_interval: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._reconnect_interval = reconnect_interval
        self._clock = clock
        self._connected = True
        self._down_since: Optional[float] = None
        self._last_attempt = 0.0
        self._lock = threading.Lock()

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        socket_timeout: float = 5.0,
        connect_timeout: float = 10.0,
        reconnect_interval: float = 30.0,
    ) -> "RedisTier":
        client = redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=connect_timeout,
            decode_responses=True,
            health_check_interval=30,
        )
        return cls(client, reconnect_interval=reconnect_interval)

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        """Verify the connection eagerly. Raises ``CacheUnavailableError`` when Redis is unreachable."""
        try:
            self._client.ping()
        except (RedisError, OSError) as exc:
            self._mark_unavailable(exc)
            raise CacheUnavailableError(f"Redis is not reachable: {exc}") from exc
        self._mark_available()

    def _mark_unavailable(self, exc: Exception) -> None:
        with self._lock:
            self._last_attempt = self._clock()
            if self._connected:
                self._connected = False
                self._down_since = self._last_attempt
                logger.warning(f"Shared cache tier unavailable, continuing with in-process cache only: {exc}")

    def _mark_available(self) -> None:
        with self._lock:
            if not self._connected:
                outage = self._clock() - (self._down_since or self._clock())
                logger.info(f"Shared cache tier reconnected after {outage:.1f}s")
            self._connected = True
            self._down_since = None

    def _ensure_connection(self) -> bool:
        if self._connected:
            return True
        if self._clock() - self._last_attempt < self._reconnect_interval:
            return False
        try:
            self._client.ping()
        except (RedisError, OSError) as exc:
            self._mark_unavailable(exc)
            return False
        self._mark_available()
        return True

    def _execute(self, operation: Callable[[redis.Redis], T], default: T) -> T:
        if not self._ensure_connection():
            return default
        try:
            return operation(self._client)
        except (RedisError, OSError) as exc:
            self._mark_unavailable(exc)
            return default

    def get(self, key: str) -> Optional[str]:
        return self._execute(lambda client: client.get(key), None)

    def mget(self, keys: Sequence[str]) -> list[Optional[str]]:
        if not keys:
            return []
        return self._execute(lambda client: list(client.mget(list(keys))), [None] * len(keys))

    def set(self, key: str, payload: str, ttl: Optional[int]) -> bool:
        def _write(client: redis.Redis) -> bool:
            if ttl:
                client.setex(key, int(ttl), payload)
            else:
                client.set(key, payload)
            return True

        return self._execute(_write, False)

    def mset(self, entries: Iterable[tuple[str, str, Optional[int]]]) -> bool:
        items = list(entries)
        if not items:
            return True

        def _write(client: redis.Redis) -> bool:
            pipeline = client.pipeline(transaction=False)
            for key, payload, ttl in items:
                if ttl:
                    pipeline.setex(key, int(ttl), payload)
                else:
                    pipeline.set(key, payload)
            pipeline.execute()
            return True

        return self._execute(_write, False)

    def delete(self, key: str) -> bool:
        return self._execute(lambda client: bool(client.delete(key)), False)

    def delete_pattern(self, pattern: str) -> list[str]:
        def _scan_and_delete(client: redis.Redis) -> list[str]:
            keys = list(client.scan_iter(match=pattern, count=500))
            for start in range(0, len(keys), 500):
                client.delete(*keys[start:start + 500])
            return keys

        return self._execute(_scan_and_delete, [])

    def key_count(self) -> int:
        return self._execute(lambda client: int(client.dbsize()), 0)

    def flush(self) -> None:
        self._execute(lambda client: client.flushdb(), None)

    def ping(self) -> bool:
        return self._execute(lambda client: bool(client.ping()), False)

    def close(self) -> None:
        try:
            self._client.close()
        except (RedisError, OSError) as exc:
            logger.debug(f"Ignoring error while closing Redis client: {exc}")


def build_redis_tier(url: Optional[str], **kwargs: Any) -> Optional[RedisTier]:
    """Create and ping a Redis tier, or return None when no URL is configured."""
    if not url:
        logger.info("Redis URL not configured; caching in-process only")
        return None
    tier = RedisTier.from_url(url, **kwargs)
    try:
        tier.connect()
    except CacheUnavailableError as exc:
        logger.warning(f"{exc}. Starting with in-process cache only; will retry in the background.")
    return tier
