"""Geometric routing heuristics used when the maps provider is unavailable."""

from __future__ import annotations

from typing import Sequence

from ...config import settings
from ...models.domain import LatLng, TravelMode
from ..geospatial import haversine_km


def speed_table() -> dict[TravelMode, float]:
    """Average travel speed per mode in km/h."""
    return {
        TravelMode.DRIVING: settings.speed_driving_kmh,
        TravelMode.BICYCLING: settings.speed_bicycling_kmh,
        TravelMode.WALKING: settings.speed_walking_kmh,
        TravelMode.TRANSIT: settings.speed_transit_kmh,
        TravelMode.TWO_WHEELER: settings.speed_two_wheeler_kmh,
    }


def distance_m(a: LatLng, b: LatLng) -> float:
    return haversine_km(a.lat, a.lng, b.lat, b.lng) * 1000.0


def estimate_duration_min(distance_meters: float, mode: TravelMode = TravelMode.DRIVING) -> int:
    speeds = speed_table()
    speed = speeds.get(TravelMode(mode), speeds[TravelMode.DRIVING])
    return round((distance_meters / 1000.0) / speed * 60)


def nearest_neighbor_order(origin: LatLng, waypoints: Sequence[LatLng]) -> list[int]:
    """Greedy visiting order: always move to the closest unvisited waypoint.

    Ties resolve to the lowest original index, so the order is deterministic.
    """
    unvisited = list(range(len(waypoints)))
    order: list[int] = []
    current = origin
    while unvisited:
        nearest = min(unvisited, key=lambda index: (distance_m(current, waypoints[index]), index))
        unvisited.remove(nearest)
        order.append(nearest)
        current = waypoints[nearest]
    return order


def tour_distance_m(origin: LatLng, ordered: Sequence[LatLng], destination: LatLng) -> float:
    """Straight-line length of origin -> ordered stops -> destination."""
    distance = 0.0
    current = origin
    for point in ordered:
        distance += distance_m(current, point)
        current = point
    return distance + distance_m(current, destination)


def naive_distance_m(origin: LatLng, waypoints: Sequence[LatLng], destination: LatLng) -> float:
    """Baseline distance when visiting the waypoints in the order given."""
    return tour_distance_m(origin, waypoints, destination)


def route_efficiency(
    naive_distance: float,
    total_distance: float,
    total_duration_min: float,
    stops: int,
    service_minutes_per_stop: int | None = None,
) -> int:
    """Score 0-100 mixing distance saved vs the naive order (60%) and time spent on site (40%)."""
    service_minutes = (
        service_minutes_per_stop if service_minutes_per_stop is not None else settings.service_minutes_per_stop
    )
    savings = 100.0
    if naive_distance > 0:
        savings = max(0.0, min(100.0, (naive_distance - total_distance) / naive_distance * 100))

    service_time = stops * service_minutes
    busy_time = total_duration_min + service_time
    utilisation = service_time / busy_time if busy_time > 0 else 0.0
    return round(savings * 0.6 + utilisation * 100 * 0.4)
