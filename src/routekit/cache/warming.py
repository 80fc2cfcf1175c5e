"""Single-flight guard and status bookkeeping for cache warming passes."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from .service import TwoTierCache

logger = logging.getLogger(__name__)

STATUS_IN_PROGRESS_TTL = 3600
STATUS_COMPLETED_TTL = 86400
STATUS_FAILED_TTL = 3600


@dataclass(slots=True)
class WarmingSummary:
    name: str
    candidates: int = 0
    already_cached: int = 0
    computed: int = 0
    failed: int = 0
    duration_s: float = 0.0
    sources: dict[str, int] = field(default_factory=dict)

    def add_source(self, source: str, count: int) -> None:
        self.sources[source] = self.sources.get(source, 0) + count

    def to_dict(self) -> dict:
        return asdict(self)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class WarmingGuard:
    """Runs one warming pass at a time and records its status in the cache.

    A pass requested while another one is running returns ``None`` immediately.
    """

    def __init__(self, cache: "TwoTierCache", status_key: str, name: str) -> None:
        self.cache = cache
        self.status_key = status_key
        self.name = name
        self.last_completed_at: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    def run(self, body: Callable[[WarmingSummary], None]) -> Optional[WarmingSummary]:
        if not self._lock.acquire(blocking=False):
            logger.info(f"{self.name} warming already in progress, skipping")
            return None
        try:
            started_at = _now_iso()
            started = time.monotonic()
            summary = WarmingSummary(name=self.name)
            self.cache.set(
                self.status_key,
                {"status": "in_progress", "started_at": started_at, "type": "scheduled"},
                STATUS_IN_PROGRESS_TTL,
            )
            logger.info(f"Starting {self.name} warming")
            try:
                body(summary)
            except Exception as exc:
                self.cache.set(
                    self.status_key,
                    {"status": "failed", "error": str(exc), "started_at": started_at, "type": "scheduled"},
                    STATUS_FAILED_TTL,
                )
                logger.exception(f"{self.name} warming failed: {exc}")
                raise

            summary.duration_s = round(time.monotonic() - started, 3)
            finished_at = _now_iso()
            self.cache.set(
                self.status_key,
                {
                    "status": "completed",
                    "started_at": started_at,
                    "finished_at": finished_at,
                    "last_completed_at": self.last_completed_at,
                    "summary": summary.to_dict(),
                    "type": "scheduled",
                },
                STATUS_COMPLETED_TTL,
            )
            self.last_completed_at = finished_at
            logger.info(
                f"{self.name} warming completed in {summary.duration_s:.2f}s: "
                f"{summary.computed} computed, {summary.already_cached} already cached, {summary.failed} failed"
            )
            return summary
        finally:
            self._lock.release()
