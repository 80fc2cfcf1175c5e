"""Background thread that triggers cache warming on a wall-clock schedule."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Literal, Optional, Sequence

from ..config import settings
from .manager import CacheManager

logger = logging.getLogger(__name__)

RunKind = Literal["interval", "peak"]


def next_run(now: datetime, interval_hours: int, peak_hours: Sequence[int]) -> tuple[datetime, RunKind]:
    """Next full hour that is a multiple of ``interval_hours`` or a peak hour.

    When both coincide the full ``interval`` pass wins since it covers the peak pass.
    """
    candidate = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    for _ in range(24 * 2):
        if candidate.hour % interval_hours == 0:
            return candidate, "interval"
        if candidate.hour in peak_hours:
            return candidate, "peak"
        candidate += timedelta(hours=1)
    return candidate, "interval"


class WarmingScheduler:
    def __init__(
        self,
        manager: CacheManager,
        *,
        interval_hours: int | None = None,
        peak_hours: Sequence[int] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.manager = manager
        self.interval_hours = interval_hours or settings.warming_interval_hours
        self.peak_hours = tuple(peak_hours if peak_hours is not None else settings.warming_peak_hours)
        self._clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="cache-warming", daemon=True)
        self._thread.start()
        logger.info(
            f"Cache warming scheduled every {self.interval_hours}h and at peak hours {list(self.peak_hours)}"
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self, kind: RunKind) -> None:
        try:
            if kind == "peak":
                logger.info("Running peak-time cache warming")
                self.manager.warm_peak()
            else:
                logger.info("Running scheduled cache warming")
                self.manager.warm_all()
        except Exception as exc:
            logger.exception(f"Scheduled {kind} warming crashed: {exc}")

    def _loop(self) -> None:
        while not self._stop.is_set():
            now = self._clock()
            due, kind = next_run(now, self.interval_hours, self.peak_hours)
            wait_seconds = max(0.0, (due - now).total_seconds())
            if self._stop.wait(wait_seconds):
                break
            self.run_once(kind)
