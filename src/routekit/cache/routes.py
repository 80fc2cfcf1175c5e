"""Route cache: provider routes, optimized routes, distance matrices and day clusters."""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence

from ..batching import run_in_batches
from ..config import settings
from ..models.domain import (
    Appointment,
    DistanceMatrix,
    LatLng,
    Location,
    OptimizedRoute,
    RouteCluster,
    RouteResult,
    TravelMode,
    location_from_dict,
    location_to_dict,
)
from ..services.geospatial import haversine_km
from .frequency import FrequencyList
from .keys import (
    ROUTE_FREQUENT_KEY,
    ROUTE_NAMESPACE,
    ROUTE_WARMING_STATUS_KEY,
    cluster_key,
    matrix_key,
    optimized_route_key,
    route_key,
    service_area_routes_key,
)
from .service import NamespacePolicy, TwoTierCache
from .warming import WarmingGuard, WarmingSummary

if TYPE_CHECKING:
    from ..data.repository import SupabaseRepository

logger = logging.getLogger(__name__)

ROUTE_TTL_SECONDS = 24 * 60 * 60
TRAFFIC_ROUTE_TTL_SECONDS = 60 * 60
MATRIX_TTL_SECONDS = 7 * 24 * 60 * 60
ROUTE_COMPRESSION_THRESHOLD = 2048
FREQUENT_ROUTE_LIMIT = 100
FREQUENT_ROUTE_TTL = 30 * 24 * 60 * 60
ROUTE_USAGE_LIMIT = 1000
FREQUENT_ROUTES_TO_WARM = 50
DESTINATIONS_PER_AREA = 20
CLUSTERS_TO_WARM = 10
POPULAR_AREA_LIMIT = 10
POPULAR_AREA_ORIGINS = 5
POPULAR_AREA_DAYS = 30

RouteCalculator = Callable[[Location, Location, TravelMode], RouteResult]
MatrixCalculator = Callable[[Sequence[Location], Sequence[Location], TravelMode], DistanceMatrix]
ClusterOptimizer = Callable[[RouteCluster], OptimizedRoute]


def _route_identity(subject: dict[str, Any]) -> str:
    return route_key(
        location_from_dict(subject["origin"]),
        location_from_dict(subject["destination"]),
        subject.get("mode", TravelMode.DRIVING.value),
    )


class RouteCache:
    def __init__(
        self,
        cache: TwoTierCache,
        repository: "SupabaseRepository | None" = None,
        *,
        route_calculator: RouteCalculator | None = None,
        matrix_calculator: MatrixCalculator | None = None,
        cluster_optimizer: ClusterOptimizer | None = None,
        service_areas: dict[str, tuple[float, float]] | None = None,
        lookahead_days: int | None = None,
        cluster_lookahead_days: int | None = None,
        batch_size: int | None = None,
        batch_delay_seconds: float | None = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self.cache = cache
        self.repository = repository
        self.route_calculator = route_calculator
        self.matrix_calculator = matrix_calculator
        self.cluster_optimizer = cluster_optimizer
        self.service_areas = service_areas if service_areas is not None else dict(settings.service_area_centroids)
        self.lookahead_days = lookahead_days or settings.warming_lookahead_days
        self.cluster_lookahead_days = cluster_lookahead_days or settings.cluster_lookahead_days
        self.batch_size = batch_size or settings.warming_batch_size
        self.batch_delay_seconds = (
            batch_delay_seconds if batch_delay_seconds is not None else settings.warming_batch_delay_seconds
        )
        self._sleep = sleep
        self.frequent = FrequencyList(
            cache,
            ROUTE_FREQUENT_KEY,
            cap=FREQUENT_ROUTE_LIMIT,
            ttl=FREQUENT_ROUTE_TTL,
            identify=_route_identity,
        )
        self.usage_limit = ROUTE_USAGE_LIMIT
        self._usage: Counter[str] = Counter()
        self._usage_lock = threading.Lock()
        self._guard = WarmingGuard(cache, ROUTE_WARMING_STATUS_KEY, "route")

        cache.register_namespace(
            ROUTE_NAMESPACE,
            NamespacePolicy(ttl=ROUTE_TTL_SECONDS, size_threshold=ROUTE_COMPRESSION_THRESHOLD),
        )

    @property
    def warming_in_progress(self) -> bool:
        return self._guard.in_progress

    def _track(self, key: str) -> None:
        with self._usage_lock:
            self._usage[key] += 1
            if len(self._usage) > self.usage_limit:
                # Trim to the busier half.
                self._usage = Counter(dict(self._usage.most_common(self.usage_limit // 2)))

    def route_usage(self) -> dict[str, int]:
        with self._usage_lock:
            return dict(self._usage)

    # -- single routes --------------------------------------------------

    def get_route(
        self,
        origin: Location,
        destination: Location,
        mode: TravelMode = TravelMode.DRIVING,
        *,
        waypoints: Sequence[Location] = (),
        traffic: bool = False,
        timeout: float | None = None,
    ) -> Optional[RouteResult]:
        key = route_key(origin, destination, mode, waypoints, traffic)
        raw = self.cache.get(key, timeout=timeout)
        if raw is None:
            return None
        self._track(key)
        return RouteResult.from_dict(raw)

    def set_route(
        self,
        origin: Location,
        destination: Location,
        mode: TravelMode,
        route: RouteResult,
        *,
        waypoints: Sequence[Location] = (),
        traffic: bool = False,
        ttl: int | None = None,
    ) -> None:
        self._store_route(origin, destination, mode, route, waypoints=waypoints, traffic=traffic, ttl=ttl)
        self.frequent.record(
            {
                "origin": location_to_dict(origin),
                "destination": location_to_dict(destination),
                "mode": TravelMode(mode).value,
            }
        )

    def _store_route(
        self,
        origin: Location,
        destination: Location,
        mode: TravelMode,
        route: RouteResult,
        *,
        waypoints: Sequence[Location] = (),
        traffic: bool = False,
        ttl: int | None = None,
    ) -> None:
        resolved_ttl = ttl or (TRAFFIC_ROUTE_TTL_SECONDS if traffic else ROUTE_TTL_SECONDS)
        key = route_key(origin, destination, mode, waypoints, traffic)
        self.cache.set(key, route.to_dict(), resolved_ttl, namespace=ROUTE_NAMESPACE)

    # -- optimized routes and matrices ----------------------------------

    def get_optimized_route(
        self,
        origin: Location,
        waypoints: Sequence[Location],
        destination: Location,
        mode: TravelMode = TravelMode.DRIVING,
        *,
        timeout: float | None = None,
    ) -> Optional[OptimizedRoute]:
        key = optimized_route_key(origin, waypoints, destination, mode)
        raw = self.cache.get(key, timeout=timeout)
        if raw is None:
            return None
        self._track(key)
        return OptimizedRoute.from_dict(raw)

    def set_optimized_route(
        self,
        origin: Location,
        waypoints: Sequence[Location],
        destination: Location,
        mode: TravelMode,
        route: OptimizedRoute,
        ttl: int | None = None,
    ) -> None:
        key = optimized_route_key(origin, waypoints, destination, mode)
        self.cache.set(key, route.to_dict(), ttl or ROUTE_TTL_SECONDS, namespace=ROUTE_NAMESPACE)

    def get_distance_matrix(
        self,
        origins: Sequence[Location],
        destinations: Sequence[Location],
        mode: TravelMode = TravelMode.DRIVING,
    ) -> Optional[DistanceMatrix]:
        raw = self.cache.get(matrix_key(origins, destinations, mode))
        return DistanceMatrix.from_dict(raw) if raw is not None else None

    def set_distance_matrix(
        self,
        origins: Sequence[Location],
        destinations: Sequence[Location],
        mode: TravelMode,
        matrix: DistanceMatrix,
        ttl: int | None = None,
    ) -> None:
        key = matrix_key(origins, destinations, mode)
        self.cache.set(key, matrix.to_dict(), ttl or MATRIX_TTL_SECONDS, namespace=ROUTE_NAMESPACE)

    # -- clusters and service areas ---------------------------------------

    def get_route_cluster(self, cluster_id: str) -> Optional[dict]:
        return self.cache.get(cluster_key(cluster_id))

    def set_route_cluster(self, cluster_id: str, data: dict, ttl: int | None = None) -> None:
        self.cache.set(cluster_key(cluster_id), data, ttl or ROUTE_TTL_SECONDS, namespace=ROUTE_NAMESPACE)

    def get_service_area_routes(self, area_id: str, day: str) -> Optional[dict]:
        return self.cache.get(service_area_routes_key(area_id, day))

    def set_service_area_routes(self, area_id: str, day: str, data: dict) -> None:
        self.cache.set(service_area_routes_key(area_id, day), data, ROUTE_TTL_SECONDS, namespace=ROUTE_NAMESPACE)

    def invalidate_service_area_routes(self, area_id: str | None = None) -> int:
        """Drop cached day routes for one service area, or for all areas."""
        pattern = service_area_routes_key(area_id) if area_id else f"{ROUTE_NAMESPACE}:service:*"
        removed = self.cache.delete_pattern(pattern)
        logger.info(f"Invalidated {removed} service-area route entries ({pattern})")
        return removed

    def get_stats(self) -> dict:
        stats = self.cache.get_stats()
        route_types = {"standard": 0, "optimized": 0, "matrix": 0, "cluster": 0, "service": 0}
        for key in self.cache.memory.keys():
            if not key.startswith(f"{ROUTE_NAMESPACE}:"):
                continue
            kind = key.split(":", 2)[1]
            if kind in route_types:
                route_types[kind] += 1
            elif kind in TravelMode.__members__:
                route_types["standard"] += 1
        return {
            "total_cached": stats.persistent_key_count,
            "frequent_routes": len(self.frequent.load()),
            "warming_status": self.cache.get(ROUTE_WARMING_STATUS_KEY),
            "warming_in_progress": self.warming_in_progress,
            "route_types": route_types,
            "tracked_routes": len(self.route_usage()),
            "cache_stats": stats.to_dict(),
        }

    # -- warming --------------------------------------------------------

    def warm(self) -> Optional[WarmingSummary]:
        """Pre-compute routes and matrices for upcoming work. No-op while a pass is running."""
        return self._guard.run(self._warm)

    def _warm(self, summary: WarmingSummary) -> None:
        self._warm_frequent_routes(summary)
        if self.repository is None:
            return
        self._warm_service_area_matrices(summary)
        self._warm_route_clusters(summary)
        self._warm_popular_area_matrix(summary)

    def _run(self, jobs: Sequence[Any], worker: Callable[[Any], Any], label: str, summary: WarmingSummary) -> None:
        outcomes = run_in_batches(
            jobs,
            worker,
            batch_size=self.batch_size,
            delay_seconds=self.batch_delay_seconds,
            sleep=self._sleep,
            label=label,
        )
        summary.computed += sum(1 for outcome in outcomes if outcome.ok)
        summary.failed += sum(1 for outcome in outcomes if not outcome.ok)

    def _warm_frequent_routes(self, summary: WarmingSummary) -> None:
        records = self.frequent.top(FREQUENT_ROUTES_TO_WARM)
        summary.add_source("frequent_routes", len(records))
        missing: list[tuple[Location, Location, TravelMode]] = []
        for record in records:
            origin = location_from_dict(record.subject["origin"])
            destination = location_from_dict(record.subject["destination"])
            mode = TravelMode(record.subject.get("mode", TravelMode.DRIVING.value))
            summary.candidates += 1
            if self.cache.get(route_key(origin, destination, mode)) is None:
                missing.append((origin, destination, mode))
            else:
                summary.already_cached += 1
        if not missing or self.route_calculator is None:
            return

        def _compute(job: tuple[Location, Location, TravelMode]) -> None:
            origin, destination, mode = job
            self._store_route(origin, destination, mode, self.route_calculator(origin, destination, mode))

        self._run(missing, _compute, "route-warm", summary)

    def _nearest_area(self, point: LatLng) -> str:
        return min(
            self.service_areas,
            key=lambda name: haversine_km(point.lat, point.lng, *self.service_areas[name]),
        )

    def _warm_service_area_matrices(self, summary: WarmingSummary) -> None:
        if not self.service_areas:
            return
        appointments: list[Appointment] = self.repository.upcoming_appointments(days=self.lookahead_days)
        destinations: dict[str, list[LatLng]] = {name: [] for name in self.service_areas}
        for apt in appointments:
            if apt.location is None:
                continue
            area = apt.service_area_id if apt.service_area_id in destinations else self._nearest_area(apt.location)
            if len(destinations[area]) < DESTINATIONS_PER_AREA:
                destinations[area].append(apt.location)

        jobs: list[tuple[list[LatLng], list[LatLng]]] = []
        for name, points in destinations.items():
            if not points:
                continue
            origins = [LatLng(*self.service_areas[name])]
            summary.candidates += 1
            if self.get_distance_matrix(origins, points) is not None:
                summary.already_cached += 1
            else:
                jobs.append((origins, points))
        summary.add_source("service_areas", len(jobs))
        self._compute_matrices(jobs, "area-matrix-warm", summary)

    def _compute_matrices(
        self,
        jobs: Sequence[tuple[list[LatLng], list[LatLng]]],
        label: str,
        summary: WarmingSummary,
    ) -> None:
        if not jobs or self.matrix_calculator is None:
            return

        def _compute(job: tuple[list[LatLng], list[LatLng]]) -> None:
            origins, points = job
            matrix = self.matrix_calculator(origins, points, TravelMode.DRIVING)
            self.set_distance_matrix(origins, points, TravelMode.DRIVING, matrix)

        self._run(jobs, _compute, label, summary)

    def _warm_route_clusters(self, summary: WarmingSummary) -> None:
        clusters = self.repository.route_clusters(days=self.cluster_lookahead_days, limit=CLUSTERS_TO_WARM)
        summary.add_source("clusters", len(clusters))
        missing: list[RouteCluster] = []
        for cluster in clusters:
            summary.candidates += 1
            if self.get_route_cluster(cluster.cluster_id) is not None:
                summary.already_cached += 1
            elif len(cluster.waypoints()) > 1:
                missing.append(cluster)
        if not missing or self.cluster_optimizer is None:
            return

        def _compute(cluster: RouteCluster) -> None:
            route = self.cluster_optimizer(cluster)
            self.set_route_cluster(
                cluster.cluster_id,
                {
                    "cluster_id": cluster.cluster_id,
                    "day": cluster.day.isoformat(),
                    "appointment_ids": [apt.appointment_id for apt in cluster.appointments],
                    "route": route.to_dict(),
                },
            )

        self._run(missing, _compute, "cluster-warm", summary)

    def _warm_popular_area_matrix(self, summary: WarmingSummary) -> None:
        areas = self.repository.popular_postal_areas(days=POPULAR_AREA_DAYS, limit=POPULAR_AREA_LIMIT)
        centroids = [area.centroid for area in areas if area.centroid is not None]
        summary.add_source("popular_areas", len(centroids))
        if len(centroids) < 2:
            return
        origins = centroids[:POPULAR_AREA_ORIGINS]
        summary.candidates += 1
        if self.get_distance_matrix(origins, centroids) is not None:
            summary.already_cached += 1
            return
        self._compute_matrices([(origins, centroids)], "popular-matrix-warm", summary)
