import pytest
from conftest import make_address

from routekit.cache.geocoding import GeocodingCache
from routekit.cache.routes import RouteCache
from routekit.errors import ProviderError
from routekit.models.domain import DistanceMatrix, GeocodeResult, LatLng, RouteLeg, RouteResult, TravelMode
from routekit.services.maps.cached import CachedMapsService

MAASTRICHT = LatLng(50.85, 5.69)
HEERLEN = LatLng(50.89, 5.98)


class DummyClient:
    def __init__(self):
        self.calls = []

    def geocode(self, address):
        self.calls.append(("geocode", address))
        return GeocodeResult(location=MAASTRICHT, place_id="p1", formatted_address="Maastricht")

    def compute_route(self, origin, destination, waypoints=(), mode=TravelMode.DRIVING, optimize=False, departure_time=None):
        self.calls.append(("route", optimize))
        return RouteResult(legs=[RouteLeg(origin, destination, 25000, 1500)])

    def distance_matrix(self, origins, destinations, mode=TravelMode.DRIVING):
        self.calls.append(("matrix",))
        return DistanceMatrix(list(origins), list(destinations), [[25000]], [[1500]])


@pytest.fixture
def service(cache):
    return CachedMapsService(DummyClient(), GeocodingCache(cache), RouteCache(cache))


def test_geocode_calls_provider_once_per_address(service):
    address = make_address()

    first = service.geocode(address)
    second = service.geocode(make_address(postal_code="6221ab"))

    assert first == second
    assert service.client.calls == [("geocode", address)]
    assert service.address_to_latlng(address) == MAASTRICHT


def test_routes_and_matrices_are_cached(service):
    service.compute_route(MAASTRICHT, HEERLEN)
    service.compute_route(MAASTRICHT, HEERLEN)
    service.distance_matrix([MAASTRICHT], [HEERLEN])
    service.distance_matrix([MAASTRICHT], [HEERLEN])

    assert service.client.calls == [("route", False), ("matrix",)]
    assert service.driving_time_seconds(MAASTRICHT, HEERLEN) == 1500


def test_waypoint_optimization_always_asks_the_provider(service):
    service.optimize_waypoints(MAASTRICHT, [HEERLEN], MAASTRICHT)
    service.optimize_waypoints(MAASTRICHT, [HEERLEN], MAASTRICHT)

    assert service.client.calls == [("route", True), ("route", True)]


def test_performance_metrics_track_hits_and_cost(service):
    service.geocode("Kerkstraat 12, Maastricht")
    service.geocode("Kerkstraat 12, Maastricht")
    service.compute_route(MAASTRICHT, HEERLEN)

    metrics = service.get_performance_metrics()

    assert metrics["total_requests"] == 3
    assert metrics["cache_hit_rate"] == pytest.approx(100 / 3)
    assert metrics["total_cost_usd"] == pytest.approx(0.015)
    assert metrics["errors"] == 0


def test_without_client_cache_misses_raise_provider_error(cache):
    geocoding = GeocodingCache(cache)
    service = CachedMapsService(None, geocoding, RouteCache(cache))
    geocoding.set("Markt 1, Maastricht", GeocodeResult(location=MAASTRICHT, place_id="", formatted_address="Markt"))

    assert service.geocode("Markt 1, Maastricht").location == MAASTRICHT
    with pytest.raises(ProviderError) as excinfo:
        service.geocode("Vrijthof 2, Maastricht")
    assert excinfo.value.code == "NOT_CONFIGURED"
    assert service.get_performance_metrics()["errors"] == 1
