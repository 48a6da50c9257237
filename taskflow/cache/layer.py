import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

from cachetools import TTLCache
from redis.asyncio import RedisError

from taskflow.cache.store import KeyStore
from taskflow.core.errors import (
    ERROR_MESSAGES,
    CacheClearError,
    CacheDeleteError,
    CacheReadError,
    CacheStatsError,
    CacheWriteError,
    InvalidCacheKeyError,
)

logger = logging.getLogger(__name__)

_MSG = ERROR_MESSAGES["CACHE"]

# RuntimeError: the KeyStore was never connected, or has been closed
_STORE_ERRORS = (RedisError, RuntimeError)


@dataclass(frozen=True)
class CacheItem:
    key: str
    value: Any
    ttl: int | None = None


@dataclass(frozen=True)
class CacheStats:
    key_count: int
    memory_usage_bytes: int


def _validate_key(key: Any) -> None:
    if not key or not isinstance(key, str):
        raise InvalidCacheKeyError()


class CacheLayer:
    """
    Namespaced JSON cache on top of the shared KeyStore.

    Every key is stored as "{namespace}:{key}"; callers never see the prefix.
    Values are written together with their expiry (SET ... EX), so no entry
    outlives its TTL.

    Features:
    - Key validation before any I/O
    - Store and (de)serialization failures wrapped in CacheError subclasses
    - Atomic bulk writes through a single transactional pipeline
    - Cache-aside loading with per-key stampede protection
    """

    def __init__(self, store: KeyStore, namespace: str, default_ttl: int = 300):
        if not namespace:
            raise ValueError("Cache namespace must not be empty")
        self.store = store
        self.namespace = namespace
        self.default_ttl = default_ttl

    def _key(self, key: str) -> str:
        """Build namespaced cache key."""
        return f"{self.namespace}:{key}"

    def _ttl(self, ttl: Optional[int]) -> int:
        return self.default_ttl if ttl is None else ttl

    def _serialize(self, value: Any) -> str:
        return json.dumps(value, default=str)

    def _deserialize(self, raw: str) -> Any:
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """
        Store a value with an expiry.

        Args:
            key: Cache key (namespaced automatically)
            value: JSON-serializable value
            ttl: Seconds to live, the configured default when None
        """
        _validate_key(key)
        namespaced = self._key(key)
        ttl = self._ttl(ttl)
        try:
            data = self._serialize(value)
            await self.store.set(namespaced, data, ex=ttl)
        except (TypeError, ValueError, *_STORE_ERRORS) as e:
            logger.error(f"Failed to set cache for {namespaced}: {e}")
            raise CacheWriteError(_MSG["WRITE_FAILED"].format(cause=e)) from e
        logger.debug(f"Cache set: {namespaced} (TTL: {ttl}s)")

    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None on a miss."""
        _validate_key(key)
        namespaced = self._key(key)
        try:
            raw = await self.store.get(namespaced)
            if raw is None:
                logger.debug(f"Cache miss: {namespaced}")
                return None
            value = self._deserialize(raw)
        except (ValueError, *_STORE_ERRORS) as e:
            logger.error(f"Failed to get cache for {namespaced}: {e}")
            raise CacheReadError(_MSG["READ_FAILED"].format(cause=e)) from e
        logger.debug(f"Cache hit: {namespaced}")
        return value

    async def delete(self, key: str) -> bool:
        """Delete a key. Returns whether something was actually removed."""
        _validate_key(key)
        namespaced = self._key(key)
        try:
            deleted = await self.store.delete(namespaced) > 0
        except _STORE_ERRORS as e:
            logger.error(f"Failed to delete cache for {namespaced}: {e}")
            raise CacheDeleteError(_MSG["DELETE_FAILED"].format(cause=e)) from e
        logger.debug(f"Cache delete: {namespaced} (Deleted: {deleted})")
        return deleted

    async def has(self, key: str) -> bool:
        _validate_key(key)
        namespaced = self._key(key)
        try:
            return await self.store.exists(namespaced) > 0
        except _STORE_ERRORS as e:
            logger.error(f"Failed to check cache for {namespaced}: {e}")
            raise CacheReadError(_MSG["READ_FAILED"].format(cause=e)) from e

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all namespaced keys matching a glob pattern."""
        try:
            keys = await self.store.keys(self._key(pattern))
            deleted = await self.store.delete(*keys)
        except _STORE_ERRORS as e:
            logger.error(f"Pattern delete error: {e}")
            raise CacheDeleteError(_MSG["DELETE_FAILED"].format(cause=e)) from e
        logger.debug(f"Pattern delete completed: {pattern} ({deleted} keys)")
        return deleted

    async def clear(self) -> None:
        """Remove every key under this namespace."""
        try:
            keys = await self.store.keys(self._key("*"))
            if not keys:
                logger.debug("Cache clear: No keys found")
                return
            await self.store.delete(*keys)
        except _STORE_ERRORS as e:
            logger.error(f"Failed to clear cache: {e}")
            raise CacheClearError(_MSG["CLEAR_FAILED"].format(cause=e)) from e
        logger.info(f"Cache cleared: {len(keys)} keys removed")

    async def bulk_set(self, items: Iterable[CacheItem | Mapping[str, Any]]) -> None:
        """
        Write several entries in one MULTI/EXEC block.

        All keys are validated and all values serialized before anything is
        sent, so a bad item aborts the whole batch without partial writes.
        """
        items = [i if isinstance(i, CacheItem) else CacheItem(**i) for i in items]
        if not all(item.key and isinstance(item.key, str) for item in items):
            raise InvalidCacheKeyError(_MSG["INVALID_BULK_KEYS"])
        if not items:
            return

        try:
            payload = [
                (self._key(i.key), self._serialize(i.value), self._ttl(i.ttl))
                for i in items
            ]
            pipe = self.store.pipeline()
            for namespaced, data, ttl in payload:
                pipe.set(namespaced, data, ex=ttl)
            await pipe.execute()
        except (TypeError, ValueError, *_STORE_ERRORS) as e:
            logger.error(f"Failed to bulk set cache: {e}")
            raise CacheWriteError(_MSG["WRITE_FAILED"].format(cause=e)) from e
        logger.debug(f"Bulk set: {len(items)} keys")

    async def bulk_get(self, keys: list[str]) -> list[Any | None]:
        """Fetch several keys; the result lines up with the input order."""
        if not all(key and isinstance(key, str) for key in keys):
            raise InvalidCacheKeyError(_MSG["INVALID_BULK_KEYS"])
        try:
            raw_values = await self.store.mget([self._key(k) for k in keys])
            results = [None if raw is None else self._deserialize(raw) for raw in raw_values]
        except (ValueError, *_STORE_ERRORS) as e:
            logger.error(f"Failed to bulk get cache: {e}")
            raise CacheReadError(_MSG["READ_FAILED"].format(cause=e)) from e
        hits = sum(1 for r in results if r is not None)
        logger.debug(f"Bulk get: {len(keys)} keys ({hits} hits)")
        return results

    async def get_stats(self) -> CacheStats:
        """Key count under the namespace and server memory usage."""
        try:
            keys = await self.store.keys(self._key("*"))
            info = await self.store.info("memory")
            memory = int(info.get("used_memory", 0))
        except (ValueError, *_STORE_ERRORS) as e:
            logger.error(f"Failed to get cache stats: {e}")
            raise CacheStatsError(_MSG["STATS_FAILED"].format(cause=e)) from e
        logger.debug(f"Cache stats: {len(keys)} keys, {memory} bytes")
        return CacheStats(key_count=len(keys), memory_usage_bytes=memory)

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> Any | None:
        """
        Cache-aside read: cache -> loader -> cache.

        Concurrent misses on the same key share one loader call. Cache
        failures degrade to calling the loader directly; loader errors
        propagate. None results are not cached.
        """
        try:
            cached = await self.get(key)
            if cached is not None:
                return cached
        except CacheReadError:
            return await loader()

        lock = _get_lock_for_key(self._key(key))
        async with lock:
            # Double-check after acquiring lock
            try:
                cached = await self.get(key)
                if cached is not None:
                    return cached
            except CacheReadError:
                pass

            logger.debug(f"Loading from source: {key}")
            value = await loader()
            if value is None:
                return None

            try:
                await self.set(key, value, ttl)
            except CacheWriteError:
                pass
            return value


# Per-key locks for cache stampede protection.
# TTLCache bounds the registry; 300s outlives any realistic loader call.
# setdefault() hands every concurrent caller the same lock object.
_locks = TTLCache(maxsize=10_000, ttl=300)


def _get_lock_for_key(key: str) -> asyncio.Lock:
    return _locks.setdefault(key, asyncio.Lock())


# Process-wide instance, installed by the application lifespan
_cache_layer: CacheLayer | None = None


def set_cache_layer(cache: CacheLayer | None) -> None:
    global _cache_layer
    _cache_layer = cache


def get_cache_layer() -> CacheLayer | None:
    return _cache_layer
