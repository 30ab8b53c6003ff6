"""Test the TTL cache and its key helpers."""

import pytest

from assethub.utils.cache import (
    MemoryCache,
    RedisCache,
    asset_key,
    asset_prefix,
    filter_signature,
    list_key,
    list_prefix,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_keys():
    assert asset_key("a1", "c1") == "asset:a1:c1"
    assert asset_key("a1") == "asset:a1:any"
    assert asset_key("a1", "c1").startswith(asset_prefix("a1"))
    assert list_key("c1", {"limit": 20}).startswith(list_prefix("c1"))


def test_filter_signature_is_order_independent():
    one = filter_signature({"tags": ["b", "a"], "limit": 20, "searchTerm": None})
    two = filter_signature({"limit": 20, "tags": ["a", "b"]})
    assert one == two
    assert one != filter_signature({"limit": 21, "tags": ["a", "b"]})


@pytest.mark.asyncio
async def test_get_set_and_expiry():
    clock = FakeClock()
    cache = MemoryCache(ttl_seconds=300, clock=clock)

    assert await cache.get("k") == (None, False)
    await cache.set("k", {"v": 1})
    assert await cache.get("k") == ({"v": 1}, True)

    clock.now += 299
    assert (await cache.get("k"))[1] is True
    clock.now += 2
    assert await cache.get("k") == (None, False)


@pytest.mark.asyncio
async def test_cached_none_is_a_hit():
    cache = MemoryCache()
    await cache.set("k", None)
    assert await cache.get("k") == (None, True)


@pytest.mark.asyncio
async def test_invalidate_pattern_is_prefix_scoped():
    cache = MemoryCache()
    await cache.set("assets:c1:abc", 1)
    await cache.set("assets:c1:def", 2)
    await cache.set("assets:c2:abc", 3)

    removed = await cache.invalidate_pattern(list_prefix("c1"))

    assert removed == 2
    assert (await cache.get("assets:c1:abc"))[1] is False
    assert await cache.get("assets:c2:abc") == (3, True)


@pytest.mark.asyncio
async def test_invalidate_single_key():
    cache = MemoryCache()
    await cache.set("asset:a1:any", 1)
    await cache.invalidate("asset:a1:any")
    assert (await cache.get("asset:a1:any"))[1] is False


@pytest.mark.asyncio
async def test_stale_fence_drops_populate():
    cache = MemoryCache()
    fence = await cache.fence(asset_prefix("a1"))

    # A mutation lands between the read and the populate.
    await cache.invalidate_pattern(asset_prefix("a1"))

    stored = await cache.set(asset_key("a1"), {"name": "old"}, fence=fence)
    assert stored is False
    assert (await cache.get(asset_key("a1")))[1] is False

    fresh = await cache.fence(asset_prefix("a1"))
    assert await cache.set(asset_key("a1"), {"name": "new"}, fence=fresh) is True


@pytest.mark.asyncio
async def test_fence_taken_before_invalidation_stays_stale():
    cache = MemoryCache()
    fence = await cache.fence(list_prefix("c1"))
    await cache.invalidate_pattern(list_prefix("c2"))

    # Other prefixes moving on does not spoil this fence.
    assert await cache.set(list_key("c1", {}), [1], fence=fence) is True

    await cache.invalidate_pattern(list_prefix("c1"))
    assert await cache.set(list_key("c1", {}), [0], fence=fence) is False


@pytest.mark.asyncio
async def test_generation_map_is_bounded_by_ttl():
    clock = FakeClock()
    cache = MemoryCache(ttl_seconds=60, clock=clock)
    old_fence = await cache.fence(asset_prefix("a0"))

    for i in range(500):
        await cache.invalidate_pattern(asset_prefix(f"a{i}"))
    assert len(cache._generations) == 500

    clock.now += 61
    await cache.invalidate_pattern(list_prefix("c1"))

    assert list(cache._generations) == [list_prefix("c1")]
    # The forgotten bump still rejects a populate fenced before it.
    assert await cache.set(asset_key("a0"), {"name": "old"}, fence=old_fence) is False
    fresh = await cache.fence(asset_prefix("a0"))
    assert await cache.set(asset_key("a0"), {"name": "new"}, fence=fresh) is True


@pytest.mark.asyncio
async def test_rebumped_prefix_moves_to_the_back():
    clock = FakeClock()
    cache = MemoryCache(ttl_seconds=60, clock=clock)

    await cache.invalidate_pattern("p1:")
    clock.now += 30
    await cache.invalidate_pattern("p2:")
    await cache.invalidate_pattern("p1:")
    clock.now += 31
    await cache.invalidate_pattern("p3:")

    assert list(cache._generations) == ["p2:", "p1:", "p3:"]
    clock.now += 30
    await cache.invalidate_pattern("p3:")
    assert list(cache._generations) == ["p3:"]


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for the cache, including the fenced-set script."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def incr(self, key):
        self.data[key] = str(int(self.data.get(key, 0)) + 1)
        return int(self.data[key])

    async def scan_iter(self, match):
        prefix = match.rstrip("*")
        for key in list(self.data):
            if key.startswith(prefix):
                yield key

    async def eval(self, script, numkeys, fence_key, key, generation, ttl, payload):
        assert numkeys == 2 and "SETEX" in script
        if int(self.data.get(fence_key) or 0) != int(generation):
            return 0
        await self.setex(key, ttl, payload)
        return 1

    async def close(self):
        self.closed = True


@pytest.fixture
def redis_cache():
    return RedisCache(ttl_seconds=120, client=FakeRedis())


@pytest.mark.asyncio
async def test_redis_get_set_json(redis_cache):
    assert await redis_cache.get("k") == (None, False)

    assert await redis_cache.set("k", {"tags": ["a"], "n": 1}) is True

    assert await redis_cache.get("k") == ({"tags": ["a"], "n": 1}, True)
    assert redis_cache.redis.ttls["k"] == 120


@pytest.mark.asyncio
async def test_redis_invalidate_pattern_bumps_fence_and_scopes_prefix(redis_cache):
    await redis_cache.set("assets:c1:abc", 1)
    await redis_cache.set("assets:c1:def", 2)
    await redis_cache.set("assets:c2:abc", 3)
    before = await redis_cache.fence(list_prefix("c1"))

    removed = await redis_cache.invalidate_pattern(list_prefix("c1"))

    assert removed == 2
    assert (await redis_cache.get("assets:c1:abc"))[1] is False
    assert await redis_cache.get("assets:c2:abc") == (3, True)
    assert (await redis_cache.fence(list_prefix("c1"))).generation == before.generation + 1


@pytest.mark.asyncio
async def test_redis_fenced_set_goes_through_one_script_call(redis_cache):
    calls = []
    real_eval = redis_cache.redis.eval

    async def counting_eval(*args):
        calls.append(args[2:4])
        return await real_eval(*args)

    redis_cache.redis.eval = counting_eval
    fence = await redis_cache.fence(asset_prefix("a1"))

    assert await redis_cache.set(asset_key("a1"), {"name": "fresh"}, fence=fence) is True
    assert calls == [("cachefence:" + asset_prefix("a1"), asset_key("a1"))]


@pytest.mark.asyncio
async def test_redis_stale_fence_drops_populate(redis_cache):
    fence = await redis_cache.fence(asset_prefix("a1"))
    await redis_cache.invalidate_pattern(asset_prefix("a1"))

    assert await redis_cache.set(asset_key("a1"), {"name": "old"}, fence=fence) is False
    assert (await redis_cache.get(asset_key("a1")))[1] is False


@pytest.mark.asyncio
async def test_redis_close(redis_cache):
    await redis_cache.close()
    assert redis_cache.redis.closed is True
