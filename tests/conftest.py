import fnmatch
import time
from datetime import date
from typing import Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from routekit.cache.memory import MemoryTier
from routekit.cache.persistent import RedisTier
from routekit.cache.service import TwoTierCache
from routekit.models.domain import Address, Appointment, LatLng, PostalArea, RouteCluster, ServiceArea


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """Just enough of redis.Redis for the shared tier."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, Optional[int]] = {}

    def ping(self) -> bool:
        return True

    def get(self, key):
        return self.store.get(key)

    def mget(self, keys):
        return [self.store.get(key) for key in keys]

    def set(self, key, value):
        self.store[key] = value
        self.ttls[key] = None

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def scan_iter(self, match="*", count=None):
        return [key for key in list(self.store) if fnmatch.fnmatchcase(key, match)]

    def dbsize(self):
        return len(self.store)

    def flushdb(self):
        self.store.clear()
        self.ttls.clear()

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def close(self):
        pass


class FakePipeline:
    def __init__(self, client: FakeRedis) -> None:
        self.client = client
        self.commands = []

    def set(self, key, value):
        self.commands.append(("set", key, value))

    def setex(self, key, ttl, value):
        self.commands.append(("setex", key, ttl, value))

    def execute(self):
        for command in self.commands:
            if command[0] == "set":
                self.client.set(command[1], command[2])
            else:
                self.client.setex(command[1], command[2], command[3])
        self.commands = []


class SlowRedis(FakeRedis):
    """Reads stall well past any request timeout."""

    delay = 0.5

    def get(self, key):
        time.sleep(self.delay)
        return super().get(key)

    def mget(self, keys):
        time.sleep(self.delay)
        return super().mget(keys)


class FailingRedis:
    """Every command fails as if the server went away."""

    def __init__(self) -> None:
        self.calls = 0

    def __getattr__(self, name):
        def _fail(*args, **kwargs):
            self.calls += 1
            raise RedisConnectionError("Connection refused")

        return _fail


class DummyRepository:
    def __init__(
        self,
        appointments=None,
        leads=None,
        postal_areas=None,
        clusters=None,
        service_areas=None,
    ) -> None:
        self.appointments: list[Appointment] = appointments or []
        self.leads: list[Address] = leads or []
        self.postal_areas: list[PostalArea] = postal_areas or []
        self.clusters: list[RouteCluster] = clusters or []
        self.areas: list[ServiceArea] = service_areas or []
        self.service_area_calls = 0

    def upcoming_appointments(self, days: int = 7):
        return list(self.appointments)

    def appointments_for_date(self, day: date):
        return sorted((apt for apt in self.appointments if apt.day == day), key=lambda apt: apt.start_time)

    def ungeocoded_leads(self, days: int = 7, limit: int = 500):
        return list(self.leads)

    def popular_postal_areas(self, days: int = 30, limit: int = 100):
        return list(self.postal_areas)

    def route_clusters(self, days: int = 3, limit: int = 10):
        return list(self.clusters)

    def service_areas(self):
        self.service_area_calls += 1
        return list(self.areas)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> TwoTierCache:
    return TwoTierCache(MemoryTier(max_items=1000, max_bytes=10 * 1024 * 1024, clock=clock), default_ttl=300)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def shared_cache(clock, fake_redis) -> TwoTierCache:
    return TwoTierCache(
        MemoryTier(max_items=1000, max_bytes=10 * 1024 * 1024, clock=clock),
        RedisTier(fake_redis),
        default_ttl=300,
    )


def make_address(street="Kerkstraat", number="12", postal_code="6221 AB", city="Maastricht") -> Address:
    return Address(street=street, house_number=number, postal_code=postal_code, city=city)


def make_appointment(
    appointment_id: str,
    start_time: str = "09:00",
    duration_min: int = 120,
    location: Optional[LatLng] = None,
    day: date = date(2026, 10, 20),
    **kwargs,
) -> Appointment:
    return Appointment(
        appointment_id=appointment_id,
        day=day,
        start_time=start_time,
        duration_min=duration_min,
        location=location,
        **kwargs,
    )


@pytest.fixture
def slow_cache(clock):
    """Shared-tier cache whose reads are slow; seed it, then clear ``memory`` to force shared reads."""
    cache = TwoTierCache(
        MemoryTier(max_items=1000, max_bytes=10 * 1024 * 1024, clock=clock),
        RedisTier(SlowRedis()),
        default_ttl=300,
    )
    yield cache
    cache.close()
