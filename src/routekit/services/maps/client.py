"""HTTP client for the Google Maps Platform web services."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, Optional, Sequence, TypeVar

import httpx

from ...config import settings
from ...errors import ProviderError, QuotaExceededError, RateLimitError
from ...models.domain import (
    Address,
    DistanceMatrix,
    GeocodeResult,
    LatLng,
    Location,
    RouteLeg,
    RouteResult,
    TravelMode,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# The Directions and Distance Matrix services have no two-wheeler profile.
_MODE_PARAMS = {
    TravelMode.DRIVING: "driving",
    TravelMode.WALKING: "walking",
    TravelMode.BICYCLING: "bicycling",
    TravelMode.TRANSIT: "transit",
    TravelMode.TWO_WHEELER: "driving",
}


def format_location(location: Location) -> str:
    if isinstance(location, LatLng):
        return f"{location.lat},{location.lng}"
    if isinstance(location, Address):
        return location.one_line()
    return str(location)


def _latlng(data: dict) -> LatLng:
    return LatLng(float(data["lat"]), float(data["lng"]))


def _coordinates(points: Sequence[Location]) -> list[LatLng]:
    """Coordinates of the matrix axes; empty when an axis was given as addresses."""
    if all(isinstance(point, LatLng) for point in points):
        return [point for point in points if isinstance(point, LatLng)]
    return []


def _parse_response(service: str, parse: Callable[[dict], T], payload: dict) -> T:
    """Run ``parse`` on a response body; a body of the wrong shape is a provider fault."""
    try:
        return parse(payload)
    except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Maps {service} response could not be parsed: {e!r}")
        raise ProviderError(f"Maps {service} returned a malformed response: {e!r}", code="BAD_RESPONSE") from e


def _geocode_result(payload: dict) -> Optional[GeocodeResult]:
    results = payload.get("results") or []
    if not results:
        return None
    best = results[0]
    geometry = best.get("geometry") or {}
    return GeocodeResult(
        location=_latlng(geometry["location"]),
        place_id=str(best.get("place_id") or ""),
        formatted_address=str(best.get("formatted_address") or ""),
        accuracy=str(geometry.get("location_type") or "APPROXIMATE"),
    )


def _route_result(payload: dict) -> RouteResult:
    route = payload["routes"][0]
    legs = [
        RouteLeg(
            origin=_latlng(leg["start_location"]),
            destination=_latlng(leg["end_location"]),
            distance_m=int((leg.get("distance") or {}).get("value", 0)),
            duration_s=int((leg.get("duration") or {}).get("value", 0)),
            traffic_duration_s=int(leg["duration_in_traffic"]["value"]) if "duration_in_traffic" in leg else None,
        )
        for leg in route.get("legs") or []
    ]
    order = route.get("waypoint_order")
    return RouteResult(
        legs=legs,
        polyline=(route.get("overview_polyline") or {}).get("points"),
        optimized_order=[int(index) for index in order] if order is not None else None,
    )


def _matrix_rows(payload: dict) -> tuple[list[list[Optional[int]]], list[list[Optional[int]]]]:
    distances: list[list[Optional[int]]] = []
    durations: list[list[Optional[int]]] = []
    for row in payload.get("rows") or []:
        distance_row: list[Optional[int]] = []
        duration_row: list[Optional[int]] = []
        for element in row.get("elements") or []:
            if element.get("status") == "OK":
                distance_row.append(int(element["distance"]["value"]))
                duration_row.append(int(element["duration"]["value"]))
            else:
                distance_row.append(None)
                duration_row.append(None)
        distances.append(distance_row)
        durations.append(duration_row)
    return distances, durations


def _raise_for_status(payload: dict, *, allow_zero_results: bool = False) -> None:
    """Translate the ``status`` field of a web-service response into provider errors."""
    status = payload.get("status", "UNKNOWN_ERROR")
    if status == "OK" or (allow_zero_results and status == "ZERO_RESULTS"):
        return
    message = payload.get("error_message") or status
    if status == "OVER_QUERY_LIMIT":
        raise RateLimitError()
    if status == "OVER_DAILY_LIMIT" or (status == "REQUEST_DENIED" and "quota" in message.lower()):
        raise QuotaExceededError(message)
    if status == "REQUEST_DENIED":
        raise ProviderError(message, code="REQUEST_DENIED", status=403)
    if status in {"NOT_FOUND", "ZERO_RESULTS"}:
        raise ProviderError(message, code="NOT_FOUND", status=404)
    if status in {"INVALID_REQUEST", "MAX_WAYPOINTS_EXCEEDED", "MAX_ROUTE_LENGTH_EXCEEDED"}:
        raise ProviderError(message, code=status, status=400)
    raise ProviderError(message, code=status)


class MapsClient:
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key or settings.google_maps_api_key
        if not self.api_key:
            raise ValueError("Google Maps API key is not configured.")
        self.base_url = (base_url or settings.google_maps_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.maps_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.maps_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.maps_backoff_seconds
        self._transport = transport

    def _get_client(self) -> httpx.Client:
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
            transport=self._transport,
        )

    def _request(self, service: str, params: dict[str, Any]) -> dict:
        url = f"{self.base_url}/{service}/json"
        query = {**params, "key": self.api_key}
        client = self._get_client()
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(url, params=query)
                    if response.status_code == 429:
                        retry_after = float(response.headers.get("Retry-After", 60))
                        raise RateLimitError(retry_after=retry_after)
                    if response.status_code == 403:
                        raise QuotaExceededError(f"Maps {service} request forbidden (HTTP 403)")
                    response.raise_for_status()
                    payload = response.json()
                    if not isinstance(payload, dict):
                        raise ProviderError(f"Maps {service} returned a non-object response", code="BAD_RESPONSE")
                    return payload
                except httpx.HTTPStatusError as e:
                    attempt += 1
                    if e.response.status_code < 500 or attempt > self.max_retries:
                        raise ProviderError(
                            f"Maps {service} request failed with HTTP {e.response.status_code}",
                            code="HTTP_ERROR",
                            status=e.response.status_code,
                        ) from e
                    time.sleep(self.backoff_seconds * attempt)
                except httpx.TimeoutException as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning(f"Maps {service} request timed out after {self.max_retries} retries: {e}")
                        raise ProviderError(f"Maps {service} request timed out", code="TIMEOUT") from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"Maps {service} timeout, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                    time.sleep(wait_time)
                except (httpx.TransportError, OSError) as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise ProviderError(
                            f"Failed to connect to Maps service at {self.base_url}: {e}",
                            code="NETWORK_ERROR",
                        ) from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"Maps network error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {e}")
                    time.sleep(wait_time)
                except ValueError as e:
                    raise ProviderError(f"Maps {service} returned an unreadable response: {e}", code="BAD_RESPONSE") from e
        finally:
            client.close()

    def geocode(self, address: Address | str) -> Optional[GeocodeResult]:
        """Geocode an address; returns None when the provider finds nothing."""
        params: dict[str, Any] = {
            "address": format_location(address),
            "language": settings.google_maps_language,
            "region": settings.google_maps_region,
        }
        components = [f"country:{settings.google_maps_country}"]
        if isinstance(address, Address) and address.postal_code.strip():
            components.append(f"postal_code:{''.join(address.postal_code.split())}")
        params["components"] = "|".join(components)

        payload = self._request("geocode", params)
        _raise_for_status(payload, allow_zero_results=True)
        return _parse_response("geocode", _geocode_result, payload)

    def compute_route(
        self,
        origin: Location,
        destination: Location,
        waypoints: Sequence[Location] = (),
        mode: TravelMode = TravelMode.DRIVING,
        optimize: bool = False,
        departure_time: datetime | None = None,
    ) -> RouteResult:
        params: dict[str, Any] = {
            "origin": format_location(origin),
            "destination": format_location(destination),
            "mode": _MODE_PARAMS[TravelMode(mode)],
            "language": settings.google_maps_language,
            "region": settings.google_maps_region,
            "units": "metric",
        }
        if waypoints:
            stops = "|".join(format_location(point) for point in waypoints)
            params["waypoints"] = f"optimize:true|{stops}" if optimize else stops
        if departure_time is not None:
            params["departure_time"] = int(departure_time.timestamp())

        payload = self._request("directions", params)
        _raise_for_status(payload)
        if not payload.get("routes"):
            raise ProviderError("Directions response contained no routes", code="NOT_FOUND", status=404)
        return _parse_response("directions", _route_result, payload)

    def distance_matrix(
        self,
        origins: Sequence[Location],
        destinations: Sequence[Location],
        mode: TravelMode = TravelMode.DRIVING,
    ) -> DistanceMatrix:
        if not origins or not destinations:
            raise ValueError("At least one origin and one destination are required for a distance matrix.")
        payload = self._request(
            "distancematrix",
            {
                "origins": "|".join(format_location(point) for point in origins),
                "destinations": "|".join(format_location(point) for point in destinations),
                "mode": _MODE_PARAMS[TravelMode(mode)],
                "language": settings.google_maps_language,
                "region": settings.google_maps_region,
                "units": "metric",
            },
        )
        _raise_for_status(payload)
        distances, durations = _parse_response("distancematrix", _matrix_rows, payload)
        return DistanceMatrix(
            origins=_coordinates(origins),
            destinations=_coordinates(destinations),
            distances_m=distances,
            durations_s=durations,
        )

    def check_health(self) -> bool:
        """Cheap connectivity check: geocode a well-known postal code."""
        try:
            return self.geocode("1012 JS Amsterdam") is not None
        except ProviderError as e:
            logger.warning(f"Maps health check failed: {e}")
            return False
