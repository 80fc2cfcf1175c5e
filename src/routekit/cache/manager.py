"""Coordinates the cache services: warming passes, health, stats and flushing."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Literal, Optional

from .geocoding import GeocodingCache
from .keys import BOUNDARY_NAMESPACE, GEO_NAMESPACE, ROUTE_NAMESPACE
from .routes import RouteCache
from .service import TwoTierCache
from .warming import WarmingSummary

logger = logging.getLogger(__name__)

HEALTH_CHECK_KEY = "health:check"

CacheType = Literal["geocoding", "routes", "boundary"]

_FLUSH_PATTERNS: dict[str, str] = {
    "geocoding": f"{GEO_NAMESPACE}:*",
    "routes": f"{ROUTE_NAMESPACE}:*",
    "boundary": f"{BOUNDARY_NAMESPACE}:*",
}


class CacheManager:
    def __init__(self, cache: TwoTierCache, geocoding: GeocodingCache, routes: RouteCache) -> None:
        self.cache = cache
        self.geocoding = geocoding
        self.routes = routes
        self.initialized = False

    def initialize(self, warm: bool = True) -> dict[str, Optional[WarmingSummary] | Exception]:
        """Run the start-up warming pass once. Later calls are no-ops."""
        if self.initialized:
            logger.info("Cache manager already initialized")
            return {}
        results = self._run_all() if warm else {}
        self.initialized = True
        logger.info("Cache system initialized")
        return results

    def _run_all(self) -> dict[str, Optional[WarmingSummary] | Exception]:
        tasks: dict[str, Callable[[], Optional[WarmingSummary]]] = {
            "geocoding": self.geocoding.warm,
            "routes": self.routes.warm,
        }
        results: dict[str, Optional[WarmingSummary] | Exception] = {}
        with ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix="warm") as executor:
            futures = {name: executor.submit(task) for name, task in tasks.items()}
            for name, future in futures.items():
                try:
                    results[name] = future.result()
                except Exception as exc:
                    logger.error(f"{name} warming failed: {exc}")
                    results[name] = exc
        return results

    def warm_all(self) -> dict[str, Optional[WarmingSummary] | Exception]:
        started = time.monotonic()
        results = self._run_all()
        logger.info(f"All caches warmed in {time.monotonic() - started:.2f}s")
        return results

    def warm_peak(self) -> Optional[WarmingSummary]:
        """Peak-hour pass: refresh routes ahead of the morning and evening rush."""
        try:
            return self.routes.warm()
        except Exception as exc:
            logger.error(f"Peak-time route warming failed: {exc}")
            return None

    def health_check(self) -> dict:
        memory_ok = False
        try:
            self.cache.set(HEALTH_CHECK_KEY, {"ok": True}, 10)
            memory_ok = self.cache.get(HEALTH_CHECK_KEY) is not None
            self.cache.delete(HEALTH_CHECK_KEY)
        except Exception as exc:
            logger.exception(f"Cache health check failed: {exc}")

        persistent = self.cache.persistent
        persistent_ok = persistent.ping() if persistent is not None else None
        return {
            "healthy": memory_ok and persistent_ok is not False,
            "memory": memory_ok,
            "persistent": persistent_ok,
            "geocoding_warming": self.geocoding.warming_in_progress,
            "route_warming": self.routes.warming_in_progress,
        }

    def get_stats(self) -> dict:
        overall = self.cache.get_stats()
        return {
            "overall": overall.to_dict(),
            "geocoding": self.geocoding.get_stats(),
            "routes": self.routes.get_stats(),
            "performance": {
                "hit_rate": overall.hit_rate,
                "memory_usage": overall.memory_usage,
                "persistent_keys": overall.persistent_key_count,
            },
        }

    def flush_all(self) -> None:
        logger.info("Flushing all caches")
        self.cache.flush()

    def flush_cache(self, cache_type: CacheType) -> int:
        pattern = _FLUSH_PATTERNS.get(cache_type)
        if pattern is None:
            raise ValueError(f"Unknown cache type '{cache_type}'. Expected one of {sorted(_FLUSH_PATTERNS)}.")
        logger.info(f"Flushing {cache_type} cache")
        return self.cache.delete_pattern(pattern)

    def shutdown(self) -> None:
        self.cache.close()
        self.initialized = False
