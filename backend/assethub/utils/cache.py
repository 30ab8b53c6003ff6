"""TTL read cache in front of the asset query engine.

Two key spaces are used:

* ``asset:{asset_id}:{client_id|any}`` for single-record lookups
* ``assets:{client_id}:{filter_signature}`` for list queries

Mutations invalidate by prefix (``asset:{id}:`` and ``assets:{client_id}:``).
Readers take a fence on the prefix before hitting the database and pass it to
``set``; an invalidation in between bumps the generation and the populate is
dropped, so a slow read can never put pre-mutation data back into the cache.
"""
import asyncio
import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from redis import asyncio as aioredis

from assethub.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Fence:
    prefix: str
    generation: int


def asset_key(asset_id: str, client_id: str | None = None) -> str:
    return f"asset:{asset_id}:{client_id or 'any'}"


def asset_prefix(asset_id: str) -> str:
    return f"asset:{asset_id}:"


def list_prefix(client_id: str) -> str:
    return f"assets:{client_id}:"


def list_key(client_id: str, filters: dict[str, Any]) -> str:
    return f"{list_prefix(client_id)}{filter_signature(filters)}"


def filter_signature(filters: dict[str, Any]) -> str:
    """Canonical, order-independent hash of a filter set."""
    canonical = {}
    for key, value in filters.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, frozenset)):
            value = sorted(str(v) for v in value)
        canonical[key] = value
    payload = json.dumps(canonical, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]


class CacheBackend(ABC):
    """Keyed TTL cache contract."""

    def __init__(self, ttl_seconds: int | None = None):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.cache_ttl_seconds

    @abstractmethod
    async def get(self, key: str) -> tuple[Any, bool]:
        """Return ``(value, found)``. Expired entries are never returned."""

    @abstractmethod
    async def set(self, key: str, value: Any, fence: Fence | None = None, ttl: int | None = None) -> bool:
        """Store a value. Returns False when the fence is stale and nothing was stored."""

    @abstractmethod
    async def invalidate(self, key: str) -> None:
        """Remove a single entry."""

    @abstractmethod
    async def invalidate_pattern(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``; returns the count."""

    @abstractmethod
    async def fence(self, prefix: str) -> Fence:
        """Current generation of a prefix, for a later fenced ``set``."""

    async def close(self) -> None:
        pass


class MemoryCache(CacheBackend):
    """In-process cache. Safe for concurrent coroutines; invalidation is a write barrier.

    Generations come from one process-wide counter. A fence records the counter
    value at read time and a populate is dropped if its prefix was bumped past
    it. Bump records older than the TTL are folded into ``_floor`` so the map
    stays bounded by the number of prefixes invalidated within one TTL window.
    """

    def __init__(self, ttl_seconds: int | None = None, clock=time.monotonic):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        # prefix -> (generation, bumped_at), oldest bump first
        self._generations: dict[str, tuple[int, float]] = {}
        self._counter = 0
        self._floor = 0
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> tuple[Any, bool]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None, False
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None, False
            return value, True

    async def set(self, key: str, value: Any, fence: Fence | None = None, ttl: int | None = None) -> bool:
        ttl = self.ttl_seconds if ttl is None else ttl
        async with self._lock:
            if fence is not None and self._last_bump(fence.prefix) > fence.generation:
                logger.debug("Dropping stale cache populate for %s", key)
                return False
            self._entries[key] = (self._clock() + ttl, value)
            return True

    async def invalidate(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def invalidate_pattern(self, prefix: str) -> int:
        async with self._lock:
            now = self._clock()
            self._counter += 1
            self._generations.pop(prefix, None)
            self._generations[prefix] = (self._counter, now)
            self._forget_old_bumps(now)
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
            return len(doomed)

    async def fence(self, prefix: str) -> Fence:
        async with self._lock:
            return Fence(prefix, self._counter)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
            self._generations.clear()
            self._floor = self._counter

    def _last_bump(self, prefix: str) -> int:
        bump = self._generations.get(prefix)
        return bump[0] if bump is not None else self._floor

    def _forget_old_bumps(self, now: float) -> None:
        while self._generations:
            prefix, (generation, bumped_at) = next(iter(self._generations.items()))
            if bumped_at + self.ttl_seconds > now:
                break
            del self._generations[prefix]
            self._floor = max(self._floor, generation)


class RedisCache(CacheBackend):
    """Redis-backed cache shared between API processes. Values are stored as JSON."""

    fence_namespace = "cachefence:"
    fenced_set_script = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current ~= tonumber(ARGV[1]) then
    return 0
end
redis.call('SETEX', KEYS[2], ARGV[2], ARGV[3])
return 1
"""

    def __init__(self, url: str | None = None, ttl_seconds: int | None = None, client=None):
        super().__init__(ttl_seconds)
        self.redis = client or aioredis.from_url(
            url or settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )

    async def get(self, key: str) -> tuple[Any, bool]:
        raw = await self.redis.get(key)
        if raw is None:
            return None, False
        return json.loads(raw), True

    async def set(self, key: str, value: Any, fence: Fence | None = None, ttl: int | None = None) -> bool:
        ttl = self.ttl_seconds if ttl is None else ttl
        payload = json.dumps(value, default=str)
        if fence is None:
            await self.redis.setex(key, ttl, payload)
            return True
        # Check and write in one server-side step so an INCR cannot land in between.
        stored = await self.redis.eval(
            self.fenced_set_script,
            2,
            self.fence_namespace + fence.prefix,
            key,
            fence.generation,
            ttl,
            payload,
        )
        if not int(stored):
            logger.debug("Dropping stale cache populate for %s", key)
            return False
        return True

    async def invalidate(self, key: str) -> None:
        await self.redis.delete(key)

    async def invalidate_pattern(self, prefix: str) -> int:
        await self.redis.incr(self.fence_namespace + prefix)
        keys = [key async for key in self.redis.scan_iter(match=f"{prefix}*")]
        if not keys:
            return 0
        return await self.redis.delete(*keys)

    async def fence(self, prefix: str) -> Fence:
        current = await self.redis.get(self.fence_namespace + prefix)
        return Fence(prefix, int(current or 0))

    async def close(self) -> None:
        await self.redis.close()


def build_cache() -> CacheBackend:
    """A new backend of the configured kind (workers build one per task loop)."""
    if settings.cache_backend == "redis":
        return RedisCache()
    return MemoryCache()


_cache: CacheBackend | None = None


def get_cache() -> CacheBackend:
    """Process-wide cache instance (FastAPI dependency)."""
    global _cache
    if _cache is None:
        _cache = build_cache()
    return _cache
