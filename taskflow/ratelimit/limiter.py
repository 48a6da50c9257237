import logging
import time
import uuid

from fastapi import Request

from taskflow.cache.store import KeyStore
from taskflow.core.errors import RateLimitExceeded

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Sliding-window request counter kept in a Redis sorted set per client.

    Each call runs purge -> count -> add -> expire as one MULTI/EXEC block, so
    concurrent requests from the same client are serialized on the counter.
    Nothing is counted in-process.

    The count compared against the limit is the one observed *before* the
    current request is added, which lets limit + 1 requests through in a
    window before the first rejection.

    Store failures never block traffic: the request is allowed and the error
    logged.
    """

    def __init__(self, store: KeyStore, prefix: str = "rate-limit"):
        self.store = store
        self.prefix = prefix

    def key_for(self, client: str) -> str:
        return f"{self.prefix}:{client}"

    async def allow(self, client_key: str, limit: int, window_ms: int) -> bool:
        """
        Record one request for client_key and check it against the window.

        Raises:
            RateLimitExceeded: when the client is over its limit
        """
        key = self.key_for(client_key)
        now = int(time.time() * 1000)
        window_start = now - window_ms

        try:
            async with self.store.pipeline() as pipe:
                pipe.zremrangebyscore(key, 0, window_start)
                pipe.zcard(key)
                pipe.zadd(key, {f"{now}:{uuid.uuid4().hex}": now})
                pipe.pexpire(key, window_ms)
                results = await pipe.execute()
        except Exception as e:
            logger.error(f"Rate limit error: {e}")
            return True

        if not results:
            logger.error("Rate limit error: pipeline returned no result")
            return True

        count = int(results[1])
        if count > limit:
            logger.warning(f"Rate limit exceeded for {key}: {count} > {limit}")
            raise RateLimitExceeded(limit, window_ms)

        return True


class RateLimit:
    """
    FastAPI dependency applying a rate limit to a route or router.

    Example:
      router = APIRouter(dependencies=[Depends(RateLimit(limit=100, window_ms=60_000))])

    RateLimit(None) disables limiting for the route without touching the store.
    """

    def __init__(self, limit: int | None, window_ms: int = 60_000):
        self.limit = limit
        self.window_ms = window_ms

    async def __call__(self, request: Request) -> bool:
        if self.limit is None:
            return True

        limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
        if limiter is None:
            return True

        client = request.client.host if request.client else "unknown"
        return await limiter.allow(client, self.limit, self.window_ms)
