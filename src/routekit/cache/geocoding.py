"""Geocoding cache: address and place-id lookups plus demand-driven warming."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence

from ..batching import run_in_batches
from ..config import settings
from ..models.domain import Address, GeocodeResult, LatLng, Location, location_from_dict, location_to_dict
from .frequency import FrequencyList
from .keys import (
    GEO_FREQUENT_KEY,
    GEO_NAMESPACE,
    GEO_WARMING_STATUS_KEY,
    address_key,
    normalize_postal_code,
    place_key,
    postal_key,
)
from .service import NamespacePolicy, TwoTierCache
from .warming import WarmingGuard, WarmingSummary

if TYPE_CHECKING:
    from ..data.repository import SupabaseRepository

logger = logging.getLogger(__name__)

GEO_TTL_SECONDS = 30 * 24 * 60 * 60
PLACE_ID_TTL_SECONDS = 365 * 24 * 60 * 60
GEO_COMPRESSION_THRESHOLD = 512
FREQUENT_ADDRESS_LIMIT = 1000
FREQUENT_ADDRESS_TTL = 30 * 24 * 60 * 60
RECENT_LEAD_DAYS = 7
RECENT_LEAD_LIMIT = 500
POSTAL_AREA_DAYS = 30
POSTAL_AREA_LIMIT = 100

Geocoder = Callable[[Address | str], Optional[GeocodeResult]]
AddressLike = Address | str


def _decode(raw: Any) -> Optional[GeocodeResult]:
    if raw is None:
        return None
    try:
        return GeocodeResult.from_dict(raw)
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning(f"Ignoring malformed geocoding cache entry: {exc}")
        return None


def _identify(subject: dict[str, Any]) -> str:
    location = location_from_dict(subject)
    if isinstance(location, LatLng):
        return f"{location.lat:.4f},{location.lng:.4f}"
    return address_key(location)


class GeocodingCache:
    def __init__(
        self,
        cache: TwoTierCache,
        repository: "SupabaseRepository | None" = None,
        geocoder: Geocoder | None = None,
        *,
        lookahead_days: int | None = None,
        batch_size: int | None = None,
        batch_delay_seconds: float | None = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self.cache = cache
        self.repository = repository
        self.geocoder = geocoder
        self.lookahead_days = lookahead_days or settings.warming_lookahead_days
        self.batch_size = batch_size or settings.warming_batch_size
        self.batch_delay_seconds = (
            batch_delay_seconds if batch_delay_seconds is not None else settings.warming_batch_delay_seconds
        )
        self._sleep = sleep
        self.frequent = FrequencyList(
            cache,
            GEO_FREQUENT_KEY,
            cap=FREQUENT_ADDRESS_LIMIT,
            ttl=FREQUENT_ADDRESS_TTL,
            identify=_identify,
        )
        self._guard = WarmingGuard(cache, GEO_WARMING_STATUS_KEY, "geocoding")

        cache.register_namespace(
            GEO_NAMESPACE,
            NamespacePolicy(ttl=GEO_TTL_SECONDS, size_threshold=GEO_COMPRESSION_THRESHOLD),
        )

    @property
    def warming_in_progress(self) -> bool:
        return self._guard.in_progress

    def get(self, address: AddressLike, *, timeout: float | None = None) -> Optional[GeocodeResult]:
        return _decode(self.cache.get(address_key(address), timeout=timeout))

    def set(self, address: AddressLike, result: GeocodeResult, ttl: int | None = None) -> None:
        self.cache.set(address_key(address), result.to_dict(), ttl or GEO_TTL_SECONDS, namespace=GEO_NAMESPACE)
        if result.place_id:
            self.cache.set(place_key(result.place_id), result.to_dict(), PLACE_ID_TTL_SECONDS, namespace=GEO_NAMESPACE)
        self.frequent.record(location_to_dict(address))

    def get_by_place_id(self, place_id: str) -> Optional[GeocodeResult]:
        return _decode(self.cache.get(place_key(place_id)))

    def get_postal_area(self, postal_code: str) -> Optional[GeocodeResult]:
        return _decode(self.cache.get(postal_key(postal_code)))

    def batch_get(
        self, addresses: Sequence[AddressLike], *, timeout: float | None = None
    ) -> list[Optional[GeocodeResult]]:
        keys = [address_key(address) for address in addresses]
        return [_decode(raw) for raw in self.cache.mget(keys, timeout=timeout)]

    def batch_set(self, entries: Sequence[tuple[AddressLike, GeocodeResult]]) -> None:
        """Store many results at once. Unlike ``set`` this does not count as usage."""
        self.cache.mset(
            [(address_key(address), result.to_dict(), GEO_TTL_SECONDS) for address, result in entries],
            namespace=GEO_NAMESPACE,
        )
        by_place = [
            (place_key(result.place_id), result.to_dict(), PLACE_ID_TTL_SECONDS)
            for _, result in entries
            if result.place_id
        ]
        if by_place:
            self.cache.mset(by_place, namespace=GEO_NAMESPACE)

    def invalidate(self, address: AddressLike) -> None:
        self.cache.delete(address_key(address))

    def frequent_addresses(self, limit: int | None = None) -> list[Location]:
        return [location_from_dict(record.subject) for record in self.frequent.top(limit)]

    def get_stats(self) -> dict:
        stats = self.cache.get_stats()
        return {
            "total_cached": stats.persistent_key_count,
            "frequent_addresses": len(self.frequent.load()),
            "warming_status": self.cache.get(GEO_WARMING_STATUS_KEY),
            "warming_in_progress": self.warming_in_progress,
            "cache_stats": stats.to_dict(),
        }

    # -- warming --------------------------------------------------------

    def warm(self) -> Optional[WarmingSummary]:
        """Geocode addresses likely to be requested soon. No-op while a pass is running."""
        return self._guard.run(self._warm)

    def _warm(self, summary: WarmingSummary) -> None:
        candidates: dict[str, AddressLike] = {}

        def _collect(source: str, addresses: Sequence[AddressLike]) -> None:
            before = len(candidates)
            for address in addresses:
                candidates.setdefault(address_key(address), address)
            summary.add_source(source, len(candidates) - before)

        if self.repository is not None:
            appointments = self.repository.upcoming_appointments(days=self.lookahead_days)
            _collect("appointments", [apt.address for apt in appointments if apt.address is not None])

        _collect(
            "frequent",
            [address for address in self.frequent_addresses() if isinstance(address, (Address, str))],
        )

        if self.repository is not None:
            _collect("recent_leads", self.repository.ungeocoded_leads(days=RECENT_LEAD_DAYS, limit=RECENT_LEAD_LIMIT))

        addresses = list(candidates.values())
        cached = self.batch_get(addresses)
        missing = [address for address, hit in zip(addresses, cached) if hit is None]
        summary.candidates += len(addresses)
        summary.already_cached += len(addresses) - len(missing)
        self._geocode_missing(missing, summary)

        if self.repository is not None:
            self._warm_postal_areas(summary)

    def _geocode_missing(self, addresses: Sequence[AddressLike], summary: WarmingSummary) -> None:
        if not addresses:
            return
        if self.geocoder is None:
            logger.info(f"{len(addresses)} addresses need geocoding but no geocoder is configured")
            return
        logger.info(f"Geocoding {len(addresses)} uncached addresses")
        outcomes = run_in_batches(
            addresses,
            self.geocoder,
            batch_size=self.batch_size,
            delay_seconds=self.batch_delay_seconds,
            sleep=self._sleep,
            label="geocode-warm",
        )
        resolved = [(outcome.item, outcome.value) for outcome in outcomes if outcome.ok and outcome.value is not None]
        if resolved:
            self.batch_set(resolved)
        summary.computed += len(resolved)
        summary.failed += sum(1 for outcome in outcomes if not outcome.ok)

    def _warm_postal_areas(self, summary: WarmingSummary) -> None:
        areas = self.repository.popular_postal_areas(days=POSTAL_AREA_DAYS, limit=POSTAL_AREA_LIMIT)
        summary.add_source("postal_areas", len(areas))
        if not areas:
            return
        cached = self.cache.mget([postal_key(area.prefix) for area in areas])
        missing = [area for area, hit in zip(areas, cached) if hit is None]
        summary.candidates += len(areas)
        summary.already_cached += len(areas) - len(missing)

        entries: list[tuple[str, dict, int]] = []
        to_geocode = []
        for area in missing:
            if area.centroid is not None:
                result = GeocodeResult(
                    location=area.centroid,
                    place_id="",
                    formatted_address=normalize_postal_code(area.prefix),
                    accuracy="APPROXIMATE",
                )
                entries.append((postal_key(area.prefix), result.to_dict(), GEO_TTL_SECONDS))
            else:
                to_geocode.append(area)

        if to_geocode and self.geocoder is not None:
            outcomes = run_in_batches(
                to_geocode,
                lambda area: self.geocoder(f"{normalize_postal_code(area.prefix)}, {settings.google_maps_country}"),
                batch_size=self.batch_size,
                delay_seconds=self.batch_delay_seconds,
                sleep=self._sleep,
                label="postal-warm",
            )
            for outcome in outcomes:
                if outcome.ok and outcome.value is not None:
                    entries.append((postal_key(outcome.item.prefix), outcome.value.to_dict(), GEO_TTL_SECONDS))
                elif not outcome.ok:
                    summary.failed += 1

        if entries:
            self.cache.mset(entries, namespace=GEO_NAMESPACE)
        summary.computed += len(entries)
