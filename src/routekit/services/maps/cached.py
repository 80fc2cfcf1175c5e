"""Cache-first facade over the maps provider with per-call cost tracking."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Literal, Optional, Sequence, TypeVar

from ...cache.geocoding import GeocodingCache
from ...cache.routes import RouteCache
from ...errors import ProviderError
from ...models.domain import Address, DistanceMatrix, GeocodeResult, LatLng, Location, RouteResult, TravelMode
from .client import MapsClient

logger = logging.getLogger(__name__)

ApiType = Literal["geocoding", "routes", "matrix"]

# Cents per request.
API_COSTS: dict[str, float] = {"geocoding": 0.5, "routes": 1.0, "matrix": 1.0}
METRICS_WINDOW = 1000

T = TypeVar("T")


@dataclass(slots=True)
class CallMetric:
    api_type: str
    latency_ms: float
    cached: bool
    cost_cents: float
    error: Optional[str] = None


class CachedMapsService:
    """Answers from the caches when possible and writes provider results back.

    Without a configured provider client every cache miss raises ``ProviderError``
    so callers take their fallback path.
    """

    def __init__(self, client: MapsClient | None, geocoding: GeocodingCache, routes: RouteCache) -> None:
        self.client = client
        self.geocoding = geocoding
        self.routes = routes
        self._metrics: deque[CallMetric] = deque(maxlen=METRICS_WINDOW)
        self._metrics_lock = threading.Lock()

    def _require_client(self) -> MapsClient:
        if self.client is None:
            raise ProviderError("Maps provider is not configured", code="NOT_CONFIGURED")
        return self.client

    def _track(self, api_type: ApiType, operation: Callable[[], T], cached: bool = False) -> T:
        started = time.perf_counter()
        error: Optional[str] = None
        try:
            return operation()
        except Exception as exc:
            error = str(exc)
            raise
        finally:
            metric = CallMetric(
                api_type=api_type,
                latency_ms=(time.perf_counter() - started) * 1000,
                cached=cached,
                cost_cents=0.0 if cached else API_COSTS[api_type],
                error=error,
            )
            with self._metrics_lock:
                self._metrics.append(metric)

    def geocode(self, address: Address | str) -> Optional[GeocodeResult]:
        cached = self.geocoding.get(address)
        if cached is not None:
            return self._track("geocoding", lambda: cached, cached=True)
        result = self._track("geocoding", lambda: self._require_client().geocode(address))
        if result is not None:
            self.geocoding.set(address, result)
        return result

    def address_to_latlng(self, address: Address | str) -> Optional[LatLng]:
        result = self.geocode(address)
        return result.location if result is not None else None

    def compute_route(
        self,
        origin: Location,
        destination: Location,
        mode: TravelMode = TravelMode.DRIVING,
        *,
        waypoints: Sequence[Location] = (),
        departure_time: datetime | None = None,
    ) -> RouteResult:
        traffic = departure_time is not None
        cached = self.routes.get_route(origin, destination, mode, waypoints=waypoints, traffic=traffic)
        if cached is not None:
            return self._track("routes", lambda: cached, cached=True)
        route = self._track(
            "routes",
            lambda: self._require_client().compute_route(
                origin, destination, waypoints, mode, optimize=False, departure_time=departure_time
            ),
        )
        self.routes.set_route(origin, destination, mode, route, waypoints=waypoints, traffic=traffic)
        return route

    def optimize_waypoints(
        self,
        origin: Location,
        waypoints: Sequence[Location],
        destination: Location,
        mode: TravelMode = TravelMode.DRIVING,
        departure_time: datetime | None = None,
    ) -> RouteResult:
        """Provider-side waypoint ordering. Results are cached by the optimizer, not here."""
        return self._track(
            "routes",
            lambda: self._require_client().compute_route(
                origin, destination, waypoints, mode, optimize=True, departure_time=departure_time
            ),
        )

    def distance_matrix(
        self,
        origins: Sequence[Location],
        destinations: Sequence[Location],
        mode: TravelMode = TravelMode.DRIVING,
    ) -> DistanceMatrix:
        cached = self.routes.get_distance_matrix(origins, destinations, mode)
        if cached is not None:
            return self._track("matrix", lambda: cached, cached=True)
        matrix = self._track("matrix", lambda: self._require_client().distance_matrix(origins, destinations, mode))
        self.routes.set_distance_matrix(origins, destinations, mode, matrix)
        return matrix

    def driving_time_seconds(self, origin: Location, destination: Location) -> int:
        route = self.compute_route(origin, destination, TravelMode.DRIVING)
        if not route.legs:
            raise ProviderError("No route found", code="NO_ROUTE", status=404)
        return route.total_duration_s

    def get_performance_metrics(self) -> dict:
        with self._metrics_lock:
            metrics = list(self._metrics)
        total = len(metrics)
        cached = sum(1 for metric in metrics if metric.cached)
        latency: dict[str, float] = {}
        for api_type in API_COSTS:
            samples = [metric.latency_ms for metric in metrics if metric.api_type == api_type]
            latency[api_type] = round(sum(samples) / len(samples), 2) if samples else 0.0
        return {
            "total_requests": total,
            "cache_hit_rate": (cached / total) * 100 if total else 0.0,
            "average_latency_ms": latency,
            "errors": sum(1 for metric in metrics if metric.error),
            "total_cost_usd": round(sum(metric.cost_cents for metric in metrics) / 100, 4),
        }
