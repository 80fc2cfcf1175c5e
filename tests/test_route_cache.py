from datetime import date

from conftest import DummyRepository, make_appointment

from routekit.cache.keys import cluster_key, route_key
from routekit.cache.routes import MATRIX_TTL_SECONDS, ROUTE_TTL_SECONDS, TRAFFIC_ROUTE_TTL_SECONDS, RouteCache
from routekit.models.domain import (
    DistanceMatrix,
    LatLng,
    OptimizedRoute,
    PostalArea,
    RouteCluster,
    RouteLeg,
    RouteResult,
    TravelMode,
)

MAASTRICHT = LatLng(50.8514, 5.6910)
HEERLEN = LatLng(50.8882, 5.9795)
VENLO = LatLng(51.3704, 6.1724)


def _route(origin=MAASTRICHT, destination=HEERLEN, seconds=1500):
    return RouteResult(legs=[RouteLeg(origin, destination, 25000, seconds)], polyline="abc")


def _matrix(origins, destinations):
    return DistanceMatrix(
        origins=list(origins),
        destinations=list(destinations),
        distances_m=[[1000] * len(destinations) for _ in origins],
        durations_s=[[120] * len(destinations) for _ in origins],
    )


def test_route_round_trip_and_usage_tracking(cache):
    routes = RouteCache(cache)
    routes.set_route(MAASTRICHT, HEERLEN, TravelMode.DRIVING, _route())

    assert routes.get_route(MAASTRICHT, HEERLEN) == _route()
    assert routes.get_route(HEERLEN, MAASTRICHT) is None
    key = route_key(MAASTRICHT, HEERLEN, TravelMode.DRIVING)
    assert routes.route_usage() == {key: 1}
    assert cache.memory.entry(key).ttl == ROUTE_TTL_SECONDS
    assert routes.frequent.top()[0].count == 1


def test_traffic_routes_expire_sooner(cache):
    routes = RouteCache(cache)
    routes.set_route(MAASTRICHT, HEERLEN, TravelMode.DRIVING, _route(seconds=1900), traffic=True)

    key = route_key(MAASTRICHT, HEERLEN, TravelMode.DRIVING, traffic=True)
    assert cache.memory.entry(key).ttl == TRAFFIC_ROUTE_TTL_SECONDS
    assert routes.get_route(MAASTRICHT, HEERLEN) is None
    assert routes.get_route(MAASTRICHT, HEERLEN, traffic=True).total_duration_s == 1900


def test_optimized_route_is_found_regardless_of_waypoint_order(cache):
    routes = RouteCache(cache)
    stops = [HEERLEN, VENLO]
    optimized = OptimizedRoute(
        ordered_waypoints=stops,
        legs=[RouteLeg(MAASTRICHT, HEERLEN, 1, 60)],
        total_distance_m=1,
        total_duration_min=1,
        efficiency=80,
    )
    routes.set_optimized_route(MAASTRICHT, stops, MAASTRICHT, TravelMode.DRIVING, optimized)

    assert routes.get_optimized_route(MAASTRICHT, [VENLO, HEERLEN], MAASTRICHT) == optimized


def test_distance_matrix_round_trip(cache):
    routes = RouteCache(cache)
    matrix = _matrix([MAASTRICHT], [HEERLEN, VENLO])
    routes.set_distance_matrix([MAASTRICHT], [HEERLEN, VENLO], TravelMode.DRIVING, matrix)

    assert routes.get_distance_matrix([MAASTRICHT], [HEERLEN, VENLO]) == matrix
    assert routes.get_distance_matrix([HEERLEN, VENLO], [MAASTRICHT]) is None
    key = next(key for key in cache.memory.keys() if key.startswith("route:matrix:"))
    assert cache.memory.entry(key).ttl == MATRIX_TTL_SECONDS


def test_invalidate_service_area_routes(cache):
    routes = RouteCache(cache)
    routes.set_service_area_routes("north", "2026-10-20", {"routes": []})
    routes.set_service_area_routes("north", "2026-10-21", {"routes": []})
    routes.set_service_area_routes("south", "2026-10-20", {"routes": []})

    assert routes.invalidate_service_area_routes("north") == 2
    assert routes.get_service_area_routes("south", "2026-10-20") == {"routes": []}
    assert routes.invalidate_service_area_routes() == 1


def test_stats_count_route_types(cache):
    routes = RouteCache(cache)
    routes.set_route(MAASTRICHT, HEERLEN, TravelMode.DRIVING, _route())
    routes.set_distance_matrix([MAASTRICHT], [HEERLEN], TravelMode.DRIVING, _matrix([MAASTRICHT], [HEERLEN]))
    routes.set_route_cluster("c1", {"cluster_id": "c1"})

    stats = routes.get_stats()

    assert stats["route_types"]["standard"] == 1
    assert stats["route_types"]["matrix"] == 1
    assert stats["route_types"]["cluster"] == 1
    assert stats["frequent_routes"] == 1


def test_warm_recomputes_frequent_routes_that_expired(cache, clock):
    calls = []

    def calculator(origin, destination, mode):
        calls.append((origin, destination, mode))
        return _route(origin, destination)

    routes = RouteCache(cache, route_calculator=calculator, sleep=lambda _: None)
    routes.set_route(MAASTRICHT, HEERLEN, TravelMode.DRIVING, _route())
    routes.set_route(HEERLEN, VENLO, TravelMode.DRIVING, _route(HEERLEN, VENLO), ttl=60)
    clock.advance(120)

    summary = routes.warm()

    assert calls == [(HEERLEN, VENLO, TravelMode.DRIVING)]
    assert summary.already_cached == 1
    assert summary.computed == 1
    assert routes.get_route(HEERLEN, VENLO) is not None


def test_warm_builds_matrix_per_service_area_from_nearest_centroid(cache):
    repository = DummyRepository(
        appointments=[
            make_appointment("a1", location=LatLng(50.86, 5.70)),
            make_appointment("a2", location=LatLng(51.36, 6.16)),
            make_appointment("a3", location=LatLng(51.0, 6.0), service_area_id="venlo"),
            make_appointment("a4"),
        ]
    )
    calls = []

    def matrix_calculator(origins, destinations, mode):
        calls.append((list(origins), list(destinations)))
        return _matrix(origins, destinations)

    routes = RouteCache(
        cache,
        repository,
        matrix_calculator=matrix_calculator,
        service_areas={"maastricht": MAASTRICHT.as_tuple(), "venlo": VENLO.as_tuple()},
        sleep=lambda _: None,
    )

    routes.warm()

    by_origin = {tuple(origins[0].as_tuple()): destinations for origins, destinations in calls}
    assert by_origin[MAASTRICHT.as_tuple()] == [LatLng(50.86, 5.70)]
    assert by_origin[VENLO.as_tuple()] == [LatLng(51.36, 6.16), LatLng(51.0, 6.0)]
    assert routes.get_distance_matrix([VENLO], [LatLng(51.36, 6.16), LatLng(51.0, 6.0)]) is not None


def test_warm_stores_optimized_clusters(cache):
    cluster = RouteCluster(
        cluster_id="c1",
        day=date(2026, 10, 20),
        appointments=[
            make_appointment("a1", location=MAASTRICHT),
            make_appointment("a2", location=HEERLEN),
        ],
    )
    single = RouteCluster(cluster_id="c2", day=date(2026, 10, 20), appointments=[make_appointment("a3")])
    optimized = OptimizedRoute(
        ordered_waypoints=[],
        legs=[RouteLeg(MAASTRICHT, HEERLEN, 30000, 1800)],
        total_distance_m=30000,
        total_duration_min=30,
        efficiency=90,
    )
    seen = []

    def optimizer(item):
        seen.append(item.cluster_id)
        return optimized

    routes = RouteCache(
        cache,
        DummyRepository(clusters=[cluster, single]),
        cluster_optimizer=optimizer,
        service_areas={},
        sleep=lambda _: None,
    )

    routes.warm()

    assert seen == ["c1"]
    stored = cache.get(cluster_key("c1"))
    assert stored["appointment_ids"] == ["a1", "a2"]
    assert stored["day"] == "2026-10-20"
    assert OptimizedRoute.from_dict(stored["route"]) == optimized


def test_warm_popular_area_matrix_needs_two_centroids(cache):
    calls = []

    def matrix_calculator(origins, destinations, mode):
        calls.append((list(origins), list(destinations)))
        return _matrix(origins, destinations)

    areas = [PostalArea(prefix="6221", count=5, centroid=MAASTRICHT), PostalArea(prefix="6411", count=3, centroid=HEERLEN)]
    routes = RouteCache(
        cache,
        DummyRepository(postal_areas=areas),
        matrix_calculator=matrix_calculator,
        service_areas={},
        sleep=lambda _: None,
    )

    routes.warm()
    assert calls == [([MAASTRICHT, HEERLEN], [MAASTRICHT, HEERLEN])]

    summary = routes.warm()
    assert len(calls) == 1
    assert summary.already_cached == 1


def test_lookups_with_timeout_miss_on_slow_shared_tier(slow_cache):
    routes = RouteCache(slow_cache)
    optimized = OptimizedRoute(
        ordered_waypoints=[HEERLEN],
        legs=[RouteLeg(MAASTRICHT, HEERLEN, 1, 60), RouteLeg(HEERLEN, MAASTRICHT, 1, 60)],
        total_distance_m=2,
        total_duration_min=2,
        efficiency=80,
    )
    routes.set_route(MAASTRICHT, HEERLEN, TravelMode.DRIVING, _route())
    routes.set_optimized_route(MAASTRICHT, [HEERLEN], MAASTRICHT, TravelMode.DRIVING, optimized)
    slow_cache.memory.clear()

    assert routes.get_route(MAASTRICHT, HEERLEN, timeout=0.05) is None
    assert routes.get_optimized_route(MAASTRICHT, [HEERLEN], MAASTRICHT, timeout=0.05) is None
    assert routes.route_usage() == {}


def test_usage_tracking_keeps_busiest_routes_within_limit(cache):
    routes = RouteCache(cache)
    routes.usage_limit = 4
    destinations = [LatLng(51.0 + index * 0.01, 6.0) for index in range(6)]
    for destination in destinations:
        routes.set_route(MAASTRICHT, destination, TravelMode.DRIVING, _route(destination=destination))

    routes.get_route(MAASTRICHT, destinations[0])
    for destination in destinations:
        routes.get_route(MAASTRICHT, destination)

    usage = routes.route_usage()
    assert len(usage) <= 4
    assert usage[route_key(MAASTRICHT, destinations[0], TravelMode.DRIVING)] == 2
