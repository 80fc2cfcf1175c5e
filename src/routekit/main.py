"""Composition root: builds the cache, provider and routing services and wires them together."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence

from .cache import CacheManager, GeocodingCache, RouteCache, TwoTierCache, WarmingScheduler, build_redis_tier
from .config import settings
from .data.repository import SupabaseRepository
from .models.domain import Address, LatLng, OptimizedRoute, RouteCluster, TravelMode, ValidationResult
from .schemas.boundary import AddressRequest
from .schemas.routing import OptimizeRouteRequest
from .services.availability.slots import SlotContext, SlotContextBuilder
from .services.boundary.validator import BoundaryValidator
from .services.maps.cached import CachedMapsService
from .services.maps.client import MapsClient
from .services.routing.optimizer import RouteOptimizer

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RoutingServices:
    """Everything the booking workflow talks to, already wired."""

    cache: TwoTierCache
    manager: CacheManager
    scheduler: WarmingScheduler
    maps: CachedMapsService
    optimizer: RouteOptimizer
    validator: BoundaryValidator
    slots: SlotContextBuilder

    def validate_address(
        self, address: Address | AddressRequest | dict, *, timeout: float | None = None
    ) -> ValidationResult:
        if isinstance(address, dict):
            address = AddressRequest.model_validate(address)
        if isinstance(address, AddressRequest):
            address = address.to_domain()
        return self.validator.validate_address(address, timeout=timeout)

    def get_available_slots_context(
        self,
        day: date,
        customer_location: Optional[LatLng] = None,
        service_duration: int = 120,
    ) -> SlotContext:
        return self.slots.build(day, customer_location, service_duration)

    def optimize_route(
        self,
        origin: LatLng,
        waypoints: Sequence[LatLng],
        destination: Optional[LatLng] = None,
        mode: TravelMode = TravelMode.DRIVING,
        *,
        timeout: float | None = None,
    ) -> OptimizedRoute:
        return self.optimizer.optimize_route(origin, waypoints, destination or origin, mode, timeout=timeout)

    def optimize_request(self, request: OptimizeRouteRequest | dict) -> OptimizedRoute:
        if isinstance(request, dict):
            request = OptimizeRouteRequest.model_validate(request)
        origin = request.origin.to_domain()
        return self.optimizer.optimize_route(
            origin,
            [point.to_domain() for point in request.waypoints],
            request.destination.to_domain() if request.destination else origin,
            request.mode,
            request.departure_time,
        )

    def start(self, warm: bool | None = None) -> None:
        """Initial warming pass (if enabled) and background scheduling."""
        self.manager.initialize(warm=settings.warm_on_startup if warm is None else warm)
        self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.stop()
        self.manager.shutdown()


def _build_maps_client() -> Optional[MapsClient]:
    if not settings.google_maps_api_key:
        logger.warning("Google Maps API key not configured; routing falls back to straight-line estimates")
        return None
    return MapsClient()


def create_services(
    cache: TwoTierCache | None = None,
    repository: SupabaseRepository | None = None,
    client: MapsClient | None = None,
) -> RoutingServices:
    """Build the service graph. Missing collaborators are created from settings."""
    if cache is None:
        persistent = build_redis_tier(
            settings.redis_url,
            socket_timeout=settings.redis_socket_timeout,
            connect_timeout=settings.redis_connect_timeout,
            reconnect_interval=settings.redis_reconnect_interval_seconds,
        )
        cache = TwoTierCache(persistent=persistent)
    repository = repository if repository is not None else SupabaseRepository()
    client = client if client is not None else _build_maps_client()

    geocoding = GeocodingCache(cache, repository, geocoder=client.geocode if client else None)
    routes = RouteCache(
        cache,
        repository,
        route_calculator=(
            (lambda origin, destination, mode: client.compute_route(origin, destination, (), mode)) if client else None
        ),
        matrix_calculator=client.distance_matrix if client else None,
    )
    maps = CachedMapsService(client, geocoding, routes)
    optimizer = RouteOptimizer(maps, routes)

    def _optimize_cluster(cluster: RouteCluster) -> OptimizedRoute:
        stops = cluster.waypoints()
        return optimizer.optimize_route(stops[0], stops[1:-1], stops[-1])

    routes.cluster_optimizer = _optimize_cluster

    manager = CacheManager(cache, geocoding, routes)
    return RoutingServices(
        cache=cache,
        manager=manager,
        scheduler=WarmingScheduler(manager),
        maps=maps,
        optimizer=optimizer,
        validator=BoundaryValidator(cache, maps, repository),
        slots=SlotContextBuilder(repository, routes),
    )
