import time

from conftest import FailingRedis, FakeRedis

from routekit.cache.memory import MemoryTier
from routekit.cache.persistent import RedisTier
from routekit.cache.serialization import COMPRESSED_MARKER, decode_payload
from routekit.cache.service import NamespacePolicy, TwoTierCache


def test_set_then_get_before_ttl_and_miss_after(cache, clock):
    cache.set("geo:addr:a", {"lat": 1.0}, 60)

    clock.advance(59)
    assert cache.get("geo:addr:a") == {"lat": 1.0}

    clock.advance(5)
    assert cache.get("geo:addr:a") is None

    stats = cache.get_stats()
    assert stats.hits == 1
    assert stats.misses == 1
    assert stats.hit_rate == 50.0


def test_namespace_policy_supplies_default_ttl(cache):
    cache.register_namespace("geo", NamespacePolicy(ttl=3600))

    cache.set("geo:addr:a", {"v": 1})
    cache.set("other:thing", {"v": 2})

    assert cache.memory.entry("geo:addr:a").ttl == 3600
    assert cache.memory.entry("other:thing").ttl == 300


def test_disconnected_shared_tier_degrades_to_memory_only(clock):
    failing = FailingRedis()
    tier = RedisTier(failing, reconnect_interval=30, clock=clock)
    cache = TwoTierCache(MemoryTier(clock=clock), tier, default_ttl=300)

    assert cache.get("route:DRIVING:a:b") is None
    assert tier.connected is False

    cache.set("route:DRIVING:a:b", {"legs": []}, 120)
    assert cache.get("route:DRIVING:a:b") == {"legs": []}

    # Inside the reconnect interval the shared tier is not even tried.
    calls = failing.calls
    cache.get("route:DRIVING:x:y")
    assert failing.calls == calls


def test_shared_hit_is_copied_into_memory_with_bounded_ttl(clock, fake_redis):
    writer = TwoTierCache(MemoryTier(clock=clock), RedisTier(fake_redis), default_ttl=300)
    reader = TwoTierCache(MemoryTier(clock=clock), RedisTier(fake_redis), default_ttl=300)
    reader.register_namespace("geo", NamespacePolicy(ttl=30 * 24 * 3600))

    writer.set("geo:addr:a", {"lat": 52.0}, 30 * 24 * 3600)
    assert fake_redis.ttls["geo:addr:a"] == 30 * 24 * 3600

    assert reader.memory.get("geo:addr:a") is None
    assert reader.get("geo:addr:a") == {"lat": 52.0}
    assert reader.memory.entry("geo:addr:a").ttl == 300


def test_large_values_are_compressed_in_shared_tier(shared_cache, fake_redis):
    shared_cache.register_namespace("route", NamespacePolicy(ttl=60, size_threshold=100))
    value = {"polyline": "x" * 500}

    shared_cache.set("route:matrix:DRIVING:abc", value)
    shared_cache.set("route:small", {"a": 1})

    assert fake_redis.store["route:matrix:DRIVING:abc"].startswith(COMPRESSED_MARKER)
    assert decode_payload(fake_redis.store["route:matrix:DRIVING:abc"]) == value
    assert not fake_redis.store["route:small"].startswith(COMPRESSED_MARKER)


def test_unreadable_shared_entry_is_a_miss(shared_cache, fake_redis):
    fake_redis.store["geo:addr:broken"] = COMPRESSED_MARKER + "not-base64!"

    assert shared_cache.get("geo:addr:broken") is None


def test_mget_mixes_tiers(shared_cache, fake_redis):
    shared_cache.set("geo:addr:a", {"n": 1}, 60)
    fake_redis.store["geo:addr:b"] = '{"n": 2}'

    assert shared_cache.mget(["geo:addr:a", "geo:addr:b", "geo:addr:c"]) == [{"n": 1}, {"n": 2}, None]


def test_mset_writes_both_tiers(shared_cache, fake_redis):
    shared_cache.mset([("geo:addr:a", {"n": 1}, 60), ("geo:addr:b", {"n": 2}, None)])

    assert shared_cache.memory.get("geo:addr:b") == {"n": 2}
    assert set(fake_redis.store) == {"geo:addr:a", "geo:addr:b"}
    assert fake_redis.ttls["geo:addr:b"] == 300


def test_delete_pattern_counts_each_key_once(shared_cache, fake_redis):
    shared_cache.set("boundary:6221AB:maastricht", {"v": 1}, 60)
    shared_cache.set("boundary:1012JS:amsterdam", {"v": 2}, 60)
    fake_redis.store["boundary:5911AA:venlo"] = '{"v": 3}'
    shared_cache.set("geo:addr:a", {"v": 4}, 60)

    assert shared_cache.delete_pattern("boundary:*") == 3
    assert shared_cache.get("geo:addr:a") == {"v": 4}
    assert not any(key.startswith("boundary:") for key in fake_redis.store)


def test_bare_prefix_pattern_matches_prefix(cache):
    cache.set("route:service:north:2026-10-20", {}, 60)
    cache.set("route:service:south:2026-10-20", {}, 60)

    assert cache.delete_pattern("route:service:north") == 1


def test_flush_clears_tiers_and_stats(shared_cache, fake_redis):
    shared_cache.set("geo:addr:a", {"v": 1}, 60)
    shared_cache.get("geo:addr:a")

    shared_cache.flush()

    assert fake_redis.store == {}
    stats = shared_cache.get_stats()
    assert stats.hits == 0
    assert stats.sets == 0
    assert stats.memory_items == 0


def test_get_with_timeout_treats_slow_shared_tier_as_miss(clock):
    class SlowTier:
        connected = True

        def get(self, key):
            time.sleep(0.5)
            return '{"late": true}'

        def close(self):
            pass

    cache = TwoTierCache(MemoryTier(clock=clock), SlowTier(), default_ttl=300)
    try:
        assert cache.get("geo:addr:a", timeout=0.05) is None
    finally:
        cache.close()


def test_injected_memory_tier_is_kept_and_follows_its_clock(clock):
    tier = MemoryTier(clock=clock)
    cache = TwoTierCache(tier, default_ttl=300)

    cache.set("geo:addr:a", {"lat": 1.0}, 60)

    assert cache.memory is tier
    assert tier.entry("geo:addr:a") is not None
    clock.advance(61)
    assert cache.get("geo:addr:a") is None


def test_mget_with_timeout_treats_slow_shared_tier_as_miss(slow_cache):
    slow_cache.set("geo:addr:a", {"v": 1}, 60)
    slow_cache.memory.clear()

    assert slow_cache.mget(["geo:addr:a"], timeout=0.05) == [None]
    assert slow_cache.memory.get("geo:addr:a") is None
    assert slow_cache.get_stats().misses == 1


def test_mget_without_timeout_waits_for_shared_tier(slow_cache):
    slow_cache.set("geo:addr:a", {"v": 1}, 60)
    slow_cache.memory.clear()

    assert slow_cache.mget(["geo:addr:a", "geo:addr:b"]) == [{"v": 1}, None]


def test_memory_tier_evicts_least_recently_used(clock):
    tier = MemoryTier(max_items=2, clock=clock)
    tier.set("a", 1, 60)
    tier.set("b", 2, 60)
    tier.get("a")
    tier.set("c", 3, 60)

    assert tier.get("a") == 1
    assert tier.get("b") is None
    assert tier.get("c") == 3
    assert len(tier) == 2


def test_memory_tier_rejects_values_larger_than_capacity(clock):
    tier = MemoryTier(max_items=10, max_bytes=1024, clock=clock)

    assert tier.set("big", "x" * 5000, 60) is False
    assert tier.get("big") is None


def test_shared_tier_reconnects_after_interval(clock):
    healthy = FakeRedis()

    class FlakyRedis(FakeRedis):
        down = True

        def ping(self):
            if self.down:
                raise OSError("down")
            return True

        def get(self, key):
            if self.down:
                raise OSError("down")
            return healthy.get(key)

    client = FlakyRedis()
    tier = RedisTier(client, reconnect_interval=30, clock=clock)
    assert tier.get("k") is None
    assert tier.connected is False

    client.down = False
    healthy.store["k"] = '"v"'
    assert tier.get("k") is None

    clock.advance(31)
    assert tier.get("k") == '"v"'
    assert tier.connected is True
