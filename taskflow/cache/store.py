import logging
from typing import Any

from redis.asyncio import Redis
from redis.asyncio.client import Pipeline

from taskflow.core.config import Settings

logger = logging.getLogger(__name__)


class KeyStore:
    """
    Shared handle on the Redis key-value store.

    One instance is created at startup and closed exactly once at shutdown.
    The rate limiter and the cache layer both go through it, each staying
    inside its own key prefix.

    Features:
    - Scoped acquisition (`async with`) with guaranteed release
    - Idempotent close
    - Transactional pipelines (MULTI/EXEC) for atomic command batches
    """

    def __init__(self, dsn: str, pool_size: int = 5, client: Redis | None = None):
        self.dsn = dsn
        self.pool_size = pool_size
        self._redis: Redis | None = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeyStore":
        return cls(settings.redis_dsn, pool_size=settings.redis_pool_size)

    @property
    def connected(self) -> bool:
        return self._redis is not None

    @property
    def client(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("KeyStore is not connected")
        return self._redis

    async def connect(self) -> "KeyStore":
        """Open the connection pool and verify the server answers."""
        if self._redis is not None:
            return self

        redis = Redis.from_url(
            self.dsn,
            encoding="utf-8",
            decode_responses=True,
            max_connections=self.pool_size,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )
        try:
            await redis.ping()
        except Exception:
            await redis.aclose()
            raise
        self._redis = redis
        logger.info("Redis connection established")
        return self

    async def close(self) -> None:
        """Release the connection pool. Calling it twice is harmless."""
        if self._redis is None:
            return
        redis, self._redis = self._redis, None
        try:
            await redis.aclose()
            logger.info("Redis connection closed")
        except Exception as e:
            logger.error(f"Error closing Redis: {e}")

    async def __aenter__(self) -> "KeyStore":
        return await self.connect()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def ping(self) -> bool:
        return await self.client.ping()

    async def get(self, key: str) -> str | None:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        return await self.client.set(key, value, ex=ex)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self.client.delete(*keys)

    async def exists(self, key: str) -> int:
        return await self.client.exists(key)

    async def keys(self, pattern: str) -> list[str]:
        """
        Collect keys matching a glob pattern with incremental SCAN.

        SCAN may report a key more than once, so the result is deduplicated.
        """
        return list({key async for key in self.client.scan_iter(match=pattern, count=100)})

    async def mget(self, keys: list[str]) -> list[str | None]:
        if not keys:
            return []
        return await self.client.mget(keys)

    async def info(self, section: str | None = None) -> dict[str, Any]:
        return await self.client.info(section)

    def pipeline(self) -> Pipeline:
        """Transactional pipeline: queued commands run as one MULTI/EXEC block."""
        return self.client.pipeline(transaction=True)
