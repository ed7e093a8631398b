import asyncio
import json
from typing import Any, Awaitable, Callable, Optional

from cachetools import TTLCache
from redis.asyncio import Redis, RedisError
from redis.exceptions import WatchError

from crudhub.core.config import FeatureFlags, Settings, cache_allowed
from crudhub.core.logging_config import get_logger
from crudhub.core.metrics import MetricsRegistry

logger = get_logger(__name__, target="redis")

# Store-side failures; all of them degrade to a cache miss
CACHE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)

# Bumped by every invalidation; a load that overlaps one is not stored
GENERATION_KEY = "__generation__"
_UNKNOWN = object()


class CacheLayer:
    """
    Cache-aside in front of the database, backed by Redis.

    Features:
    - Feature flag checked on every call against an immutable snapshot
    - Graceful degradation when Redis is unavailable (loader is always called)
    - Stampede protection with per-key locks
    - Pattern invalidation for write paths; loads that overlap an
      invalidation are not written back
    - Automatic key namespacing
    """

    def __init__(
        self,
        settings: Settings,
        flags: FeatureFlags,
        metrics: MetricsRegistry | None = None,
        redis: Redis | None = None,
    ):
        self._settings = settings
        self._flags = flags
        self._metrics = metrics
        self._redis: Redis | None = redis
        self._initialized = redis is not None
        # Per-key locks for stampede protection; the TTL outlives any query
        self._locks: TTLCache = TTLCache(maxsize=10_000, ttl=300)

    @property
    def enabled(self) -> bool:
        return cache_allowed(self._flags) and self._redis is not None

    async def reload_flags(self, flags: FeatureFlags) -> None:
        """Swap the flag snapshot, connecting first if the cache was just turned on."""
        self._flags = flags
        if cache_allowed(flags) and not self._initialized:
            await self.init_cache()

    async def init_cache(self):
        """Connect to Redis if the cache flag is on; degrade on failure."""
        if not cache_allowed(self._flags):
            logger.info("Redis feature flag: disabled")
            return
        if self._initialized:
            return

        settings = self._settings
        try:
            self._redis = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=settings.redis_pool_size,
                socket_connect_timeout=settings.redis_socket_timeout,
                socket_timeout=settings.redis_socket_timeout,
                socket_keepalive=True,
                health_check_interval=30,
            )
            await self._redis.ping()
            self._initialized = True
            logger.info(
                "Redis connected", host=settings.redis_host, port=settings.redis_port
            )
        except CACHE_ERRORS as e:
            logger.error("Redis connection failed", error=str(e))
            # Allow degraded operation (loader only)
            await self._discard_client()

    def _key(self, key: str) -> str:
        """Build namespaced cache key."""
        return f"{self._settings.cache_namespace}{key}"

    def _serialize(self, value: Any) -> str:
        return json.dumps(value, default=str)

    def _deserialize(self, raw: str) -> Any:
        return json.loads(raw)

    def _count(self, result: str) -> None:
        if self._metrics is not None:
            self._metrics.count_cache(result)

    async def _read(self, key: str) -> tuple[bool, Any]:
        try:
            raw = await self._redis.get(self._key(key))
            if raw is None:
                return False, None
            return True, self._deserialize(raw)
        except CACHE_ERRORS + (ValueError,) as e:
            logger.info("Redis GET error", key=key, error=str(e))
            self._count("error")
            return False, None

    async def _generation(self) -> Any:
        """Current invalidation generation, or _UNKNOWN when Redis cannot be read."""
        try:
            return await self._redis.get(self._key(GENERATION_KEY))
        except CACHE_ERRORS as e:
            logger.info("Redis GET error", key=GENERATION_KEY, error=str(e))
            self._count("error")
            return _UNKNOWN

    async def _write(
        self, key: str, value: Any, ttl: int, generation: Optional[str]
    ) -> bool:
        """Store value unless an invalidation ran since ``generation`` was read."""
        marker = self._key(GENERATION_KEY)
        try:
            payload = self._serialize(value)
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(marker)
                if await pipe.get(marker) != generation:
                    logger.info("Skipping write after invalidation", key=key)
                    return False
                pipe.multi()
                pipe.set(self._key(key), payload, ex=ttl)
                await pipe.execute()
            return True
        except WatchError:
            logger.info("Skipping write after invalidation", key=key)
            return False
        except CACHE_ERRORS + (TypeError, ValueError) as e:
            logger.info("Redis SET error", key=key, error=str(e))
            self._count("error")
            return False

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> tuple[Any, bool]:
        """
        Return ``(value, cached)``.

        On a hit the stored value is returned and the loader is not called.
        On a miss, or with the cache disabled or unreachable, the loader's
        value is returned with ``cached=False``; a non-None value is stored
        for ``ttl`` seconds on a best-effort basis. A value is not stored
        when an invalidation ran while the loader was in flight, since it
        may predate the write that triggered it. Loader exceptions are not
        caught here.
        """
        if not self.enabled:
            return await loader(), False

        hit, value = await self._read(key)
        if hit:
            self._count("hit")
            logger.debug("Cache hit", key=key)
            return value, True

        # Acquire per-key lock for stampede protection
        lock = self._lock_for(key)
        async with lock:
            # Double-check after acquiring lock
            hit, value = await self._read(key)
            if hit:
                self._count("hit")
                return value, True

            self._count("miss")
            generation = await self._generation()
            logger.debug("Loading from source", key=key)
            value = await loader()
            if value is not None and generation is not _UNKNOWN:
                await self._write(
                    key, value, ttl or self._settings.redis_ttl, generation
                )
            return value, False

    async def discard(self, key: str, error: str) -> None:
        """Drop an entry the caller could not use; counted as a cache error."""
        logger.info("Discarding unreadable cache entry", key=key, error=error)
        self._count("error")
        if not self.enabled:
            return
        try:
            await self._redis.delete(self._key(key))
        except CACHE_ERRORS as e:
            logger.info("Redis DEL error", key=key, error=str(e))

    async def invalidate(self, pattern: str) -> int:
        """
        Delete every key matching ``pattern`` (glob style, e.g. ``users:*``).

        Bumps the invalidation generation first so in-flight loads are not
        written back. Returns the number of deleted keys; 0 when disabled or
        on error.
        """
        if not self.enabled:
            return 0

        deleted_count = 0
        try:
            await self._redis.incr(self._key(GENERATION_KEY))
            cursor = 0
            while True:
                cursor, keys = await self._redis.scan(
                    cursor, match=self._key(pattern), count=100
                )
                if keys:
                    deleted_count += await self._redis.delete(*keys)
                if cursor == 0:
                    break
            logger.info("Pattern delete completed", pattern=pattern, deleted=deleted_count)
        except CACHE_ERRORS as e:
            logger.info("Pattern delete error", pattern=pattern, error=str(e))
            self._count("error")
        return deleted_count

    async def health(self) -> bool:
        if not self.enabled:
            return False
        try:
            return bool(await self._redis.ping())
        except CACHE_ERRORS:
            return False

    def _lock_for(self, key: str) -> asyncio.Lock:
        """Get or create the lock shared by all concurrent callers for key."""
        return self._locks.setdefault(key, asyncio.Lock())

    async def _discard_client(self):
        client, self._redis = self._redis, None
        if client is not None:
            try:
                await client.aclose()
            except CACHE_ERRORS as e:
                logger.info("Error closing Redis", error=str(e))

    async def close(self):
        """Graceful shutdown of cache connections."""
        if self._redis is not None:
            await self._discard_client()
            self._initialized = False
            logger.warning("Redis connection closed")

