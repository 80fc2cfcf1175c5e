"""Bounded most-used lists that drive cache warming priorities."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

from ..models.domain import FrequencyRecord

if TYPE_CHECKING:
    from .service import TwoTierCache

logger = logging.getLogger(__name__)


class FrequencyList:
    """Top-N usage counter persisted as a single cache entry.

    ``identify`` maps a subject dict to the identity used for de-duplication.
    Updates are read-modify-write against the cache and therefore last-write-wins
    across processes; the counts only steer warming, so that is acceptable.
    """

    def __init__(
        self,
        cache: "TwoTierCache",
        key: str,
        *,
        cap: int,
        ttl: int,
        identify: Callable[[dict[str, Any]], str],
    ) -> None:
        self.cache = cache
        self.key = key
        self.cap = cap
        self.ttl = ttl
        self.identify = identify
        self._lock = threading.Lock()

    def load(self) -> list[FrequencyRecord]:
        raw = self.cache.get(self.key)
        if not raw:
            return []
        records: list[FrequencyRecord] = []
        for item in raw:
            try:
                records.append(FrequencyRecord.from_dict(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.debug(f"Skipping malformed frequency record in {self.key}: {exc}")
        return records

    def record(self, subject: dict[str, Any]) -> None:
        identity = self.identify(subject)
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            records = self.load()
            for record in records:
                if self.identify(record.subject) == identity:
                    record.count += 1
                    record.last_used = now
                    break
            else:
                records.append(FrequencyRecord(subject=subject, count=1, last_used=now))
            records.sort(key=lambda item: item.count, reverse=True)
            self.cache.set(self.key, [item.to_dict() for item in records[: self.cap]], self.ttl)

    def top(self, limit: int | None = None) -> list[FrequencyRecord]:
        records = self.load()
        return records if limit is None else records[:limit]
