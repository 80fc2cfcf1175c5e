"""Rate-limited batch execution shared by warming and bulk operations."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(slots=True)
class BatchOutcome(Generic[T, R]):
    item: T
    value: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], R],
    *,
    batch_size: int = 5,
    delay_seconds: float = 0.1,
    sleep: Callable[[float], Any] = time.sleep,
    label: str = "batch",
) -> list[BatchOutcome[T, R]]:
    """Run ``worker`` over ``items`` in concurrent batches with a pause between batches.

    Outcomes keep the input order. A failing item is logged and reported in its
    outcome; it does not stop the rest of the batch and is not retried.
    """
    outcomes: list[BatchOutcome[T, R]] = []
    if not items:
        return outcomes

    size = max(1, batch_size)
    total_batches = (len(items) + size - 1) // size
    for batch_index, start in enumerate(range(0, len(items), size)):
        batch = list(items[start:start + size])
        with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix=label) as executor:
            futures = [executor.submit(worker, item) for item in batch]
            for item, future in zip(batch, futures):
                try:
                    outcomes.append(BatchOutcome(item=item, value=future.result()))
                except Exception as exc:
                    logger.warning(f"{label}: item failed and will be skipped: {exc}")
                    outcomes.append(BatchOutcome(item=item, error=exc))
        if batch_index < total_batches - 1 and delay_seconds > 0:
            sleep(delay_seconds)

    failed = sum(1 for outcome in outcomes if not outcome.ok)
    if failed:
        logger.info(f"{label}: {len(outcomes) - failed}/{len(outcomes)} items succeeded")
    return outcomes
