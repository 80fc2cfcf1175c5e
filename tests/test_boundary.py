import pytest
from conftest import DummyRepository, make_address

from routekit.errors import ContractViolation, ProviderError
from routekit.models.domain import GeocodeResult, LatLng, PostalCodeRange, ServiceArea, ValidationResult
from routekit.services.boundary.validator import (
    BoundaryValidator,
    merge_validation_results,
    postal_prefix,
)

MAASTRICHT = LatLng(50.85, 5.69)
AMSTERDAM = LatLng(52.37, 4.90)

# Rough box around Maastricht, as (lat, lng) pairs.
MAASTRICHT_BOX = [(50.80, 5.60), (50.80, 5.80), (50.90, 5.80), (50.90, 5.60)]


def _limburg(polygon=None, excluded=()):
    return ServiceArea(
        area_id="limburg",
        name="Limburg",
        province="Limburg",
        postal_ranges=[PostalCodeRange(5800, 6999, excluded)],
        polygon=polygon,
    )


class DummyMaps:
    def __init__(self, location=MAASTRICHT, formatted="Kerkstraat 12, 6221 AB Maastricht, Limburg", error=None):
        self.location = location
        self.formatted = formatted
        self.error = error
        self.calls = []

    def geocode(self, address):
        self.calls.append(address)
        if self.error is not None:
            raise self.error
        if self.location is None:
            return None
        return GeocodeResult(location=self.location, place_id="p1", formatted_address=self.formatted)


def _postal(valid, confidence=85):
    return ValidationResult(is_valid=valid, confidence=confidence, method="postal_code", message="postcode")


def _geo(valid, confidence):
    return ValidationResult(is_valid=valid, confidence=confidence, method="geocoding", message="adres")


def test_merge_confident_agreement_is_confirmed():
    merged = merge_validation_results(_postal(True), _geo(True, 95))

    assert merged.is_valid is True
    assert merged.confidence == 100
    assert merged.message == "adres (bevestigd)"
    assert merged.method == "geocoding"


def test_merge_confident_disagreement_trusts_geocoding():
    merged = merge_validation_results(_postal(True), _geo(False, 95))

    assert merged.is_valid is False
    assert merged.confidence == 75
    assert merged.message.endswith("(postcode check afwijkend)")


def test_merge_keeps_postal_when_geocoding_failed():
    postal = _postal(True)

    assert merge_validation_results(postal, _geo(False, 0)) is postal


def test_merge_low_confidence_agreement_averages():
    merged = merge_validation_results(_postal(True), _geo(True, 75))

    assert merged.is_valid is True
    assert merged.confidence == 80


def test_merge_rejects_swapped_inputs():
    with pytest.raises(ContractViolation):
        merge_validation_results(_geo(True, 95), _postal(True))


@pytest.mark.parametrize("code, expected", [("6221 AB", 6221), ("6221ab", 6221), ("AB12", None), ("", None)])
def test_postal_prefix(code, expected):
    assert postal_prefix(code) == expected


def test_postal_match_without_provider_keeps_postal_verdict(cache):
    validator = BoundaryValidator(cache, service_areas=[_limburg()])

    result = validator.validate_address(make_address(postal_code="6221 AB"))

    assert result.is_valid is True
    assert result.confidence == 85
    assert result.method == "postal_code"
    assert result.service_area_id == "limburg"
    assert result.message == "Postcode 6221AB is binnen Limburg servicegebied"


def test_second_lookup_is_served_from_cache(cache):
    maps = DummyMaps()
    validator = BoundaryValidator(cache, maps, service_areas=[_limburg(MAASTRICHT_BOX)])

    first = validator.validate_address(make_address())
    second = validator.validate_address(make_address(postal_code="6221ab"))

    assert first.method == "geocoding"
    assert second.method == "cache"
    assert second.confidence == first.confidence
    assert len(maps.calls) == 1


def test_polygon_hit_confirms_postal_match(cache):
    validator = BoundaryValidator(cache, DummyMaps(), service_areas=[_limburg(MAASTRICHT_BOX)])

    result = validator.validate_address(make_address())

    assert result.is_valid is True
    assert result.confidence == 100
    assert result.message == "Adres bevestigd in Limburg (bevestigd)"


def test_polygon_miss_overrides_postal_match(cache):
    maps = DummyMaps(location=AMSTERDAM, formatted="Dam 1, Amsterdam")
    validator = BoundaryValidator(cache, maps, service_areas=[_limburg(MAASTRICHT_BOX)])

    result = validator.validate_address(make_address())

    assert result.is_valid is False
    assert result.confidence == 75


def test_province_text_match_when_area_has_no_polygon(cache):
    validator = BoundaryValidator(cache, DummyMaps(), service_areas=[_limburg()])

    geo = validator.check_geocoded(make_address())
    merged = validator.validate_address(make_address(postal_code="1012 AB", city="Amsterdam"))

    assert geo.is_valid is True
    assert geo.confidence == 85
    assert merged.is_valid is True
    assert merged.confidence == 75
    assert merged.message.endswith("(postcode check afwijkend)")


def test_geocoding_errors_and_misses_have_zero_confidence(cache):
    failing = BoundaryValidator(cache, DummyMaps(error=ProviderError("down")), service_areas=[_limburg()])
    missing = BoundaryValidator(cache, DummyMaps(location=None), service_areas=[_limburg()])

    assert failing.check_geocoded(make_address()).confidence == 0
    not_found = missing.check_geocoded(make_address())
    assert not_found.confidence == 0
    assert not_found.message == "Adres kon niet worden gevonden"


def test_malformed_and_excluded_postal_codes(cache):
    validator = BoundaryValidator(cache, service_areas=[_limburg(excluded=("6221AB",))])

    malformed = validator.check_postal_code("ABCD")
    excluded = validator.check_postal_code("6221 AB")

    assert (malformed.is_valid, malformed.confidence) == (False, 0)
    assert malformed.message == "Fout bij postcode validatie"
    assert excluded.is_valid is False
    assert excluded.confidence == 85
    assert validator.check_postal_code("6222 CD").is_valid is True


def test_batch_validation_reports_failures_as_invalid(cache):
    class BrokenMaps(DummyMaps):
        def geocode(self, address):
            if address.city == "Kapot":
                raise RuntimeError("unexpected")
            return super().geocode(address)

    validator = BoundaryValidator(
        cache,
        BrokenMaps(),
        service_areas=[_limburg(MAASTRICHT_BOX)],
        batch_delay_seconds=0,
        sleep=lambda _: None,
    )

    results = validator.batch_validate_addresses([make_address(), make_address(city="Kapot")])

    assert results[0].confidence == 100
    assert (results[1].is_valid, results[1].confidence) == (False, 0)


def test_quick_postal_range_check(cache):
    validator = BoundaryValidator(cache, service_areas=[])

    assert validator.is_likely_in_postal_range("6221 AB") is True
    assert validator.is_likely_in_postal_range("1012 AB") is False
    assert validator.is_likely_in_postal_range("??") is False


def test_clear_cache_removes_boundary_entries_only(cache):
    validator = BoundaryValidator(cache, service_areas=[_limburg()])
    validator.validate_address(make_address())
    validator.validate_address(make_address(postal_code="6411 AA", city="Heerlen"))
    cache.set("geo:addr:x", {}, 60)

    assert validator.clear_cache() == 2
    assert cache.get("geo:addr:x") == {}


def test_service_areas_load_lazily_and_reload(cache):
    repository = DummyRepository(service_areas=[_limburg()])
    validator = BoundaryValidator(cache, repository=repository)

    assert repository.service_area_calls == 0
    assert validator.get_service_area("limburg").name == "Limburg"
    assert validator.get_service_area("brabant") is None
    assert repository.service_area_calls == 1

    assert validator.reload() == 1
    assert repository.service_area_calls == 2
    assert len(validator.get_all_service_areas()) == 1


def test_slow_cached_verdict_is_recomputed_within_timeout(slow_cache):
    maps = DummyMaps()
    validator = BoundaryValidator(slow_cache, maps, service_areas=[_limburg(MAASTRICHT_BOX)])
    validator.validate_address(make_address())
    slow_cache.memory.clear()

    result = validator.validate_address(make_address(), timeout=0.05)

    assert result.method == "geocoding"
    assert result.confidence == 100
    assert len(maps.calls) == 2
