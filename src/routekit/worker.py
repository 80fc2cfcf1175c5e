"""Long-running process that keeps the caches warm."""

from __future__ import annotations

import logging
import signal
import threading

from .config import settings
from .main import create_services

logger = logging.getLogger(__name__)


def run() -> int:
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    services = create_services()
    stop = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info(f"Received signal {signum}, shutting down")
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    services.start()
    logger.info(f"{settings.app_name} warming worker started")
    try:
        stop.wait()
    finally:
        services.shutdown()
        logger.info("Warming worker stopped")
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
