"""Service-area validation combining a postal-range check with a geocoded check."""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence

from ...batching import run_in_batches
from ...cache.keys import BOUNDARY_NAMESPACE, boundary_key, normalize_postal_code
from ...cache.service import NamespacePolicy, TwoTierCache
from ...config import settings
from ...errors import ContractViolation, ProviderError
from ...models.domain import Address, ServiceArea, ValidationResult
from ..geospatial import point_in_polygon

if TYPE_CHECKING:
    from ...data.repository import SupabaseRepository
    from ..maps.cached import CachedMapsService

logger = logging.getLogger(__name__)

POSTAL_METHOD = "postal_code"
GEOCODING_METHOD = "geocoding"
CACHE_METHOD = "cache"

MSG_POSTAL_INSIDE = "Postcode {postal} is binnen {name} servicegebied"
MSG_POSTAL_OUTSIDE = "Postcode {postal} ligt buiten het servicegebied"
MSG_POSTAL_ERROR = "Fout bij postcode validatie"
MSG_ADDRESS_INSIDE = "Adres bevestigd in {name}"
MSG_ADDRESS_OUTSIDE = "Adres ligt buiten het servicegebied"
MSG_ADDRESS_NOT_FOUND = "Adres kon niet worden gevonden"
MSG_ADDRESS_ERROR = "Fout bij adres validatie"
SUFFIX_CONFIRMED = " (bevestigd)"
SUFFIX_DISAGREEMENT = " (postcode check afwijkend)"

_POSTAL_PREFIX = re.compile(r"^(\d{4})")


@dataclass(frozen=True, slots=True)
class ConfidencePolicy:
    postal: int = 85
    text_match: int = 85
    geometric: int = 95
    high_threshold: int = 90
    confirmed: int = 100
    disagreement: int = 75

    @classmethod
    def from_settings(cls) -> "ConfidencePolicy":
        return cls(
            postal=settings.boundary_postal_confidence,
            text_match=settings.boundary_text_match_confidence,
            geometric=settings.boundary_geometric_confidence,
            high_threshold=settings.boundary_high_confidence_threshold,
            confirmed=settings.boundary_confirmed_confidence,
            disagreement=settings.boundary_disagreement_confidence,
        )


def merge_validation_results(
    postal: ValidationResult,
    geo: ValidationResult,
    policy: ConfidencePolicy | None = None,
) -> ValidationResult:
    """Combine the postal and geocoding verdicts into one result.

    A confident geocoding verdict wins: confirmed when both agree, lowered to the
    disagreement confidence when they do not. A failed geocoding check (confidence
    0) leaves the postal verdict untouched. Below the threshold, disagreement is
    treated the same way and agreement averages the two confidences.
    """
    policy = policy or ConfidencePolicy.from_settings()
    if postal.method != POSTAL_METHOD or geo.method != GEOCODING_METHOD:
        logger.error(f"Cannot merge validation results with methods {postal.method!r} and {geo.method!r}")
        raise ContractViolation(
            f"merge_validation_results expects ({POSTAL_METHOD!r}, {GEOCODING_METHOD!r}), "
            f"got ({postal.method!r}, {geo.method!r})"
        )

    agree = postal.is_valid == geo.is_valid
    if geo.confidence >= policy.high_threshold:
        if agree:
            return replace(geo, confidence=policy.confirmed, message=geo.message + SUFFIX_CONFIRMED)
        return replace(geo, confidence=policy.disagreement, message=geo.message + SUFFIX_DISAGREEMENT)

    if geo.confidence == 0:
        return postal

    if not agree:
        return replace(geo, confidence=policy.disagreement, message=geo.message + SUFFIX_DISAGREEMENT)

    average = round((postal.confidence + geo.confidence) / 2)
    if postal.is_valid and geo.is_valid:
        return replace(geo, confidence=average)
    return replace(geo, is_valid=False, confidence=average, message=MSG_ADDRESS_OUTSIDE)


def postal_prefix(postal_code: str) -> Optional[int]:
    """Numeric 4-digit prefix of a Dutch postal code, or None when malformed."""
    match = _POSTAL_PREFIX.match(normalize_postal_code(postal_code))
    return int(match.group(1)) if match else None


class BoundaryValidator:
    """Answers "is this address inside one of our service areas"."""

    def __init__(
        self,
        cache: TwoTierCache,
        maps: "CachedMapsService | None" = None,
        repository: "SupabaseRepository | None" = None,
        *,
        service_areas: Sequence[ServiceArea] | None = None,
        policy: ConfidencePolicy | None = None,
        cache_ttl: int | None = None,
        batch_size: int | None = None,
        batch_delay_seconds: float | None = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self.cache = cache
        self.maps = maps
        self.repository = repository
        self.policy = policy or ConfidencePolicy.from_settings()
        self.cache_ttl = cache_ttl or settings.boundary_cache_ttl_seconds
        self.batch_size = batch_size or settings.warming_batch_size
        self.batch_delay_seconds = (
            batch_delay_seconds if batch_delay_seconds is not None else settings.warming_batch_delay_seconds
        )
        self._sleep = sleep
        self._areas: Optional[list[ServiceArea]] = list(service_areas) if service_areas is not None else None
        self._areas_lock = threading.Lock()
        cache.register_namespace(BOUNDARY_NAMESPACE, NamespacePolicy(ttl=self.cache_ttl))

    def _service_areas(self) -> list[ServiceArea]:
        with self._areas_lock:
            if self._areas is None:
                self._areas = self.repository.service_areas() if self.repository is not None else []
                logger.info(f"Loaded {len(self._areas)} service areas for boundary validation")
            return self._areas

    def reload(self) -> int:
        """Drop the loaded service areas; they are read again on next use."""
        with self._areas_lock:
            if self.repository is not None:
                self._areas = None
        return len(self._service_areas())

    def get_service_area(self, area_id: str) -> Optional[ServiceArea]:
        return next((area for area in self._service_areas() if area.area_id == area_id), None)

    def get_all_service_areas(self) -> list[ServiceArea]:
        return list(self._service_areas())

    def validate_address(self, address: Address, *, timeout: float | None = None) -> ValidationResult:
        """Boundary check for one address. A cache read slower than ``timeout`` counts as a miss."""
        key = boundary_key(address.postal_code, address.city)
        cached = self.cache.get(key, timeout=timeout)
        if cached is not None:
            try:
                return replace(ValidationResult.from_dict(cached), method=CACHE_METHOD)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning(f"Ignoring malformed boundary cache entry {key}: {exc}")

        result = self.check_postal_code(address.postal_code)
        if result.confidence < self.policy.high_threshold:
            geo = self.check_geocoded(address)
            result = merge_validation_results(result, geo, self.policy)

        self.cache.set(key, result.to_dict(), self.cache_ttl, namespace=BOUNDARY_NAMESPACE)
        return result

    def check_postal_code(self, postal_code: str) -> ValidationResult:
        numeric = postal_prefix(postal_code)
        if numeric is None:
            return ValidationResult(is_valid=False, confidence=0, method=POSTAL_METHOD, message=MSG_POSTAL_ERROR)

        normalized = normalize_postal_code(postal_code)
        for area in self._service_areas():
            if any(postal_range.contains(numeric, normalized) for postal_range in area.postal_ranges):
                return ValidationResult(
                    is_valid=True,
                    confidence=self.policy.postal,
                    method=POSTAL_METHOD,
                    message=MSG_POSTAL_INSIDE.format(postal=normalized, name=area.name),
                    service_area_id=area.area_id,
                    service_area_name=area.name,
                    province=area.province,
                )
        return ValidationResult(
            is_valid=False,
            confidence=self.policy.postal,
            method=POSTAL_METHOD,
            message=MSG_POSTAL_OUTSIDE.format(postal=normalized),
        )

    def check_geocoded(self, address: Address) -> ValidationResult:
        if self.maps is None:
            return ValidationResult(is_valid=False, confidence=0, method=GEOCODING_METHOD, message=MSG_ADDRESS_ERROR)
        try:
            geocoded = self.maps.geocode(address)
        except ProviderError as exc:
            logger.warning(f"Geocoding for boundary check failed for {address.one_line()}: {exc}")
            return ValidationResult(is_valid=False, confidence=0, method=GEOCODING_METHOD, message=MSG_ADDRESS_ERROR)
        if geocoded is None:
            return ValidationResult(
                is_valid=False, confidence=0, method=GEOCODING_METHOD, message=MSG_ADDRESS_NOT_FOUND
            )

        areas = self._service_areas()
        point = geocoded.location
        for area in areas:
            if area.polygon and point_in_polygon(point.lat, point.lng, area.polygon):
                return self._inside(area, self.policy.geometric)

        formatted = geocoded.formatted_address.lower()
        for area in areas:
            if not area.polygon and area.province and area.province.lower() in formatted:
                return self._inside(area, self.policy.text_match)

        has_text_areas = any(not area.polygon for area in areas)
        return ValidationResult(
            is_valid=False,
            confidence=self.policy.text_match if has_text_areas or not areas else self.policy.geometric,
            method=GEOCODING_METHOD,
            message=MSG_ADDRESS_OUTSIDE,
        )

    def _inside(self, area: ServiceArea, confidence: int) -> ValidationResult:
        return ValidationResult(
            is_valid=True,
            confidence=confidence,
            method=GEOCODING_METHOD,
            message=MSG_ADDRESS_INSIDE.format(name=area.name),
            service_area_id=area.area_id,
            service_area_name=area.name,
            province=area.province,
        )

    def batch_validate_addresses(self, addresses: Sequence[Address]) -> list[ValidationResult]:
        outcomes = run_in_batches(
            addresses,
            self.validate_address,
            batch_size=self.batch_size,
            delay_seconds=self.batch_delay_seconds,
            sleep=self._sleep,
            label="boundary-batch",
        )
        return [
            outcome.value
            if outcome.ok
            else ValidationResult(is_valid=False, confidence=0, method=POSTAL_METHOD, message=MSG_POSTAL_ERROR)
            for outcome in outcomes
        ]

    def is_likely_in_postal_range(self, postal_code: str) -> bool:
        """Cheap pre-check against the configured postal range, no lookups."""
        numeric = postal_prefix(postal_code)
        if numeric is None:
            return False
        low, high = settings.quick_check_postal_range
        return low <= numeric <= high

    def clear_cache(self) -> int:
        removed = self.cache.delete_pattern(f"{BOUNDARY_NAMESPACE}:*")
        logger.info(f"Cleared {removed} boundary validation entries")
        return removed
