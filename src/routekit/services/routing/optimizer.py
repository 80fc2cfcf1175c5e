"""Daily stop ordering on top of provider waypoint optimization, with a geometric fallback."""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence

import httpx

from ...batching import run_in_batches
from ...config import settings
from ...errors import InvalidInputError, ProviderError, WaypointLimitError
from ...models.domain import LatLng, OptimizedRoute, RouteLeg, RouteResult, TravelMode
from .heuristics import distance_m, estimate_duration_min, naive_distance_m, nearest_neighbor_order, route_efficiency

if TYPE_CHECKING:
    from ...cache.routes import RouteCache
    from ..maps.cached import CachedMapsService

logger = logging.getLogger(__name__)

TRAFFIC_RESULT_TTL_SECONDS = 3600
TRAVEL_RATIO_THRESHOLD = 0.5
TRAFFIC_IMPACT_FACTOR = 1.2
LOW_EFFICIENCY_THRESHOLD = 70


@dataclass(slots=True)
class OptimizationRequest:
    origin: LatLng
    waypoints: list[LatLng]
    destination: LatLng
    mode: TravelMode = TravelMode.DRIVING
    departure_time: Optional[datetime] = None


@dataclass(slots=True)
class RouteConstraints:
    max_distance_m: Optional[int] = None
    max_duration_min: Optional[int] = None
    max_stops: Optional[int] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None


@dataclass(slots=True)
class StopPlan:
    duration_min: int
    travel_min: int


@dataclass(slots=True)
class TimeWindow:
    start: str
    end: str


@dataclass(slots=True)
class ConstraintReport:
    valid: bool
    violations: list[str] = field(default_factory=list)


def should_use_fallback(error: BaseException) -> bool:
    """True when a failure is about the provider or transport, not about the request itself."""
    if isinstance(error, InvalidInputError):
        return False
    return isinstance(error, (ProviderError, httpx.TransportError, ConnectionError, TimeoutError))


def parse_time(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


class RouteOptimizer:
    def __init__(
        self,
        maps: "CachedMapsService | None",
        route_cache: "RouteCache | None" = None,
        *,
        max_waypoints: int | None = None,
        batch_size: int | None = None,
        batch_delay_seconds: float | None = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self.maps = maps
        self.route_cache = route_cache
        self.max_waypoints = max_waypoints or settings.max_waypoints
        self.batch_size = batch_size or settings.warming_batch_size
        self.batch_delay_seconds = (
            batch_delay_seconds if batch_delay_seconds is not None else settings.warming_batch_delay_seconds
        )
        self._sleep = sleep
        self._metrics: Counter[str] = Counter()
        self._metrics_lock = threading.Lock()
        self.last_optimization_ms: Optional[float] = None

    def _record(self, name: str) -> None:
        with self._metrics_lock:
            self._metrics[name] += 1

    def get_performance_metrics(self) -> dict:
        with self._metrics_lock:
            metrics = dict(self._metrics)
        metrics["last_optimization_ms"] = self.last_optimization_ms
        return metrics

    def optimize_route(
        self,
        origin: LatLng,
        waypoints: Sequence[LatLng],
        destination: LatLng,
        mode: TravelMode = TravelMode.DRIVING,
        departure_time: datetime | None = None,
        *,
        timeout: float | None = None,
    ) -> OptimizedRoute:
        """Order ``waypoints`` between ``origin`` and ``destination``.

        Raises ``WaypointLimitError`` before touching the cache or the provider when
        there are too many stops. Provider failures produce a nearest-neighbour route
        flagged with ``fallback=True``; such routes are never cached.
        """
        if len(waypoints) > self.max_waypoints:
            raise WaypointLimitError(len(waypoints), self.max_waypoints)
        mode = TravelMode(mode)
        stops = list(waypoints)

        if self.route_cache is not None:
            cached = self.route_cache.get_optimized_route(origin, stops, destination, mode, timeout=timeout)
            if cached is not None:
                self._record("cache_hits")
                return cached

        started = time.perf_counter()
        try:
            if self.maps is None:
                raise ProviderError("Maps provider is not configured", code="NOT_CONFIGURED")
            response = self.maps.optimize_waypoints(origin, stops, destination, mode, departure_time)
            optimized = self._from_provider(response, origin, stops, destination)
        except Exception as exc:
            if not should_use_fallback(exc):
                raise
            logger.warning(f"Route optimization via provider failed ({exc}); using nearest-neighbour fallback")
            self._record("fallbacks")
            return self.fallback_optimization(origin, stops, destination, mode)

        self.last_optimization_ms = (time.perf_counter() - started) * 1000
        self._record("provider_optimizations")
        if self.route_cache is not None:
            has_traffic = any(leg.traffic_duration_s is not None for leg in optimized.legs)
            self.route_cache.set_optimized_route(
                origin,
                stops,
                destination,
                mode,
                optimized,
                ttl=TRAFFIC_RESULT_TTL_SECONDS if has_traffic else None,
            )
        return optimized

    def _from_provider(
        self,
        response: RouteResult,
        origin: LatLng,
        waypoints: list[LatLng],
        destination: LatLng,
    ) -> OptimizedRoute:
        order = response.optimized_order if response.optimized_order is not None else list(range(len(waypoints)))
        if sorted(order) != list(range(len(waypoints))):
            raise ProviderError(f"Provider returned an invalid waypoint order {order}", code="BAD_RESPONSE")
        ordered = [waypoints[index] for index in order]
        if len(response.legs) != len(ordered) + 1:
            raise ProviderError(
                f"Provider returned {len(response.legs)} legs for {len(ordered)} waypoints",
                code="BAD_RESPONSE",
            )

        stops = [origin, *ordered, destination]
        legs = [
            RouteLeg(
                origin=stops[index],
                destination=stops[index + 1],
                distance_m=leg.distance_m,
                duration_s=leg.duration_s,
                traffic_duration_s=leg.traffic_duration_s,
            )
            for index, leg in enumerate(response.legs)
        ]
        total_distance = sum(leg.distance_m for leg in legs)
        total_duration_min = round(sum(leg.duration_s for leg in legs) / 60)
        efficiency = route_efficiency(
            naive_distance_m(origin, waypoints, destination),
            total_distance,
            total_duration_min,
            len(ordered),
        )
        return OptimizedRoute(
            ordered_waypoints=ordered,
            legs=legs,
            total_distance_m=total_distance,
            total_duration_min=total_duration_min,
            efficiency=efficiency,
            polyline=response.polyline,
        )

    def fallback_optimization(
        self,
        origin: LatLng,
        waypoints: Sequence[LatLng],
        destination: LatLng,
        mode: TravelMode = TravelMode.DRIVING,
    ) -> OptimizedRoute:
        """Nearest-neighbour ordering over straight-line distances with speed-table durations."""
        ordered = [waypoints[index] for index in nearest_neighbor_order(origin, waypoints)]
        stops = [origin, *ordered, destination]
        legs: list[RouteLeg] = []
        total_distance = 0.0
        total_duration = 0
        for start, end in zip(stops, stops[1:]):
            leg_distance = distance_m(start, end)
            leg_minutes = estimate_duration_min(leg_distance, mode)
            legs.append(
                RouteLeg(
                    origin=start,
                    destination=end,
                    distance_m=round(leg_distance),
                    duration_s=leg_minutes * 60,
                )
            )
            total_distance += leg_distance
            total_duration += leg_minutes
        return OptimizedRoute(
            ordered_waypoints=ordered,
            legs=legs,
            total_distance_m=round(total_distance),
            total_duration_min=total_duration,
            efficiency=settings.fallback_efficiency,
            fallback=True,
        )

    def batch_optimize_routes(self, requests: Sequence[OptimizationRequest]) -> list[Optional[OptimizedRoute]]:
        """Optimize many routes in rate-limited batches; a failed request yields None at its position."""
        outcomes = run_in_batches(
            requests,
            lambda request: self.optimize_route(
                request.origin,
                request.waypoints,
                request.destination,
                request.mode,
                request.departure_time,
            ),
            batch_size=self.batch_size,
            delay_seconds=self.batch_delay_seconds,
            sleep=self._sleep,
            label="optimize-batch",
        )
        return [outcome.value if outcome.ok else None for outcome in outcomes]

    def calculate_time_windows(
        self,
        appointments: Sequence[StopPlan],
        start_time: str,
        buffer_minutes: int = 15,
    ) -> list[TimeWindow]:
        """Back-to-back windows: each stop starts after the previous one plus travel and buffer."""
        windows: list[TimeWindow] = []
        current = parse_time(start_time)
        for appointment in appointments:
            start = current
            current += appointment.duration_min
            windows.append(TimeWindow(start=format_time(start), end=format_time(current)))
            current += appointment.travel_min + buffer_minutes
        return windows

    def validate_route_constraints(self, route: OptimizedRoute, constraints: RouteConstraints) -> ConstraintReport:
        violations: list[str] = []
        if constraints.max_distance_m and route.total_distance_m > constraints.max_distance_m:
            violations.append(f"Distance {route.total_distance_m}m exceeds limit {constraints.max_distance_m}m")
        if constraints.max_duration_min and route.total_duration_min > constraints.max_duration_min:
            violations.append(
                f"Duration {route.total_duration_min}min exceeds limit {constraints.max_duration_min}min"
            )
        if constraints.max_stops and len(route.ordered_waypoints) > constraints.max_stops:
            violations.append(f"Stops {len(route.ordered_waypoints)} exceeds limit {constraints.max_stops}")
        if constraints.start_time and constraints.end_time:
            finish = parse_time(constraints.start_time) + route.total_duration_min
            if finish > parse_time(constraints.end_time):
                violations.append(f"Route ends at {format_time(finish)}, after {constraints.end_time}")
        return ConstraintReport(valid=not violations, violations=violations)

    def get_optimization_suggestions(self, route: OptimizedRoute) -> list[str]:
        suggestions: list[str] = []
        stops = len(route.ordered_waypoints)
        if stops and route.total_duration_min / (stops * 60) > TRAVEL_RATIO_THRESHOLD:
            suggestions.append("Consider grouping appointments by geographic area to reduce travel time")
        if any(
            leg.traffic_duration_s is not None and leg.traffic_duration_s > leg.duration_s * TRAFFIC_IMPACT_FACTOR
            for leg in route.legs
        ):
            suggestions.append("Consider adjusting departure times to avoid traffic congestion")
        if route.efficiency < LOW_EFFICIENCY_THRESHOLD:
            suggestions.append("Route efficiency is low - consider reorganizing appointments")
        return suggestions

