"""Cache key construction for the geocoding, route and boundary namespaces."""

from __future__ import annotations

import hashlib
import json
import re
from typing import Sequence

from ..models.domain import Address, LatLng, Location, TravelMode

GEO_NAMESPACE = "geo"
ROUTE_NAMESPACE = "route"
BOUNDARY_NAMESPACE = "boundary"

GEO_FREQUENT_KEY = "geo:frequent:addresses"
GEO_WARMING_STATUS_KEY = "geo:warming:status"
ROUTE_FREQUENT_KEY = "route:frequent:routes"
ROUTE_WARMING_STATUS_KEY = "route:warming:status"

_WHITESPACE = re.compile(r"\s+")
_SEPARATORS = re.compile(r"[\s,]+")


def _clean(value: str | None) -> str:
    return _WHITESPACE.sub(" ", (value or "").strip().lower())


def normalize_postal_code(postal_code: str | None) -> str:
    return "".join((postal_code or "").split()).upper()


def normalize_address(address: Address | str) -> str:
    """Deterministic string form of an address; equal addresses normalise equally."""
    if isinstance(address, Address):
        number = f"{address.house_number}{address.house_number_ext or ''}"
        parts = [
            _clean(address.street),
            _clean(number).replace(" ", ""),
            normalize_postal_code(address.postal_code).lower(),
            _clean(address.city),
        ]
        return ":".join(parts)
    return _SEPARATORS.sub(":", str(address).strip().lower()).strip(":")


def address_key(address: Address | str) -> str:
    return f"{GEO_NAMESPACE}:addr:{normalize_address(address)}"


def place_key(place_id: str) -> str:
    return f"{GEO_NAMESPACE}:place:{place_id}"


def postal_key(postal_code: str) -> str:
    return f"{GEO_NAMESPACE}:postal:{normalize_postal_code(postal_code)}"


def _md5(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def hash_location(location: Location) -> str:
    """Short stable fingerprint; coordinates are rounded to 4 decimals (about 11 m)."""
    if isinstance(location, LatLng):
        fragment = f"{location.lat:.4f},{location.lng:.4f}"
    elif isinstance(location, Address):
        fragment = normalize_address(location)
    else:
        fragment = "".join(str(location).lower().split())
    return _md5(fragment)[:8]


def _mode_value(mode: TravelMode | str) -> str:
    return mode.value if isinstance(mode, TravelMode) else str(mode).upper()


def route_key(
    origin: Location,
    destination: Location,
    mode: TravelMode | str = TravelMode.DRIVING,
    waypoints: Sequence[Location] = (),
    traffic: bool = False,
) -> str:
    key = f"{ROUTE_NAMESPACE}:{_mode_value(mode)}:{hash_location(origin)}:{hash_location(destination)}"
    if waypoints:
        key += f":w{_md5('|'.join(hash_location(point) for point in waypoints))[:8]}"
    if traffic:
        key += ":t"
    return key


def optimized_route_key(
    origin: Location,
    waypoints: Sequence[Location],
    destination: Location,
    mode: TravelMode | str = TravelMode.DRIVING,
) -> str:
    descriptor = json.dumps(
        {
            "o": hash_location(origin),
            "w": sorted(hash_location(point) for point in waypoints),
            "d": hash_location(destination),
        },
        sort_keys=True,
    )
    return f"{ROUTE_NAMESPACE}:optimized:{_mode_value(mode)}:{_md5(descriptor)}"


def matrix_key(
    origins: Sequence[Location],
    destinations: Sequence[Location],
    mode: TravelMode | str = TravelMode.DRIVING,
) -> str:
    descriptor = "|".join(hash_location(point) for point in origins)
    descriptor += "->" + "|".join(hash_location(point) for point in destinations)
    return f"{ROUTE_NAMESPACE}:matrix:{_mode_value(mode)}:{_md5(descriptor)}"


def cluster_key(cluster_id: str) -> str:
    return f"{ROUTE_NAMESPACE}:cluster:{cluster_id}"


def service_area_routes_key(area_id: str, day: str | None = None) -> str:
    """Key (or pattern, when ``day`` is omitted) for routes inside one service area."""
    if day is None:
        return f"{ROUTE_NAMESPACE}:service:{area_id}:*"
    return f"{ROUTE_NAMESPACE}:service:{area_id}:{day}"


def boundary_key(postal_code: str, city: str | None) -> str:
    return f"{BOUNDARY_NAMESPACE}:{normalize_postal_code(postal_code)}:{_clean(city)}"
