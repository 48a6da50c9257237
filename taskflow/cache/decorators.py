import logging
from functools import wraps
from typing import Callable

from taskflow.cache.layer import get_cache_layer
from taskflow.core.errors import CacheError

logger = logging.getLogger(__name__)


def _dump(value):
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return value


def async_cached(key_builder: Callable[..., str], ttl: int | None = None):
    """
    Decorator for async functions. key_builder receives same args/kwargs.
    Cached values are plain JSON data, so models come back as dicts.
    Example:
      @async_cached(lambda self, task_id, *_, **__: f"task:{task_id}", ttl=120)
      async def get_task_data(self, task_id): ...
    """

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(*args, **kwargs):
            cache = get_cache_layer()

            async def loader():
                value = await fn(*args, **kwargs)
                if value is None:
                    return None
                return _dump(value)

            if cache is None:
                return await loader()

            key = key_builder(*args, **kwargs)
            return await cache.get_or_load(key, loader=loader, ttl=ttl)

        return wrapper

    return decorator


def async_cached_expire(key_builder: Callable[..., str]):
    """Drop the cached entry before running the wrapped write."""

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(*args, **kwargs):
            cache = get_cache_layer()
            if cache is not None:
                key = key_builder(*args, **kwargs)
                try:
                    await cache.delete(key)
                except CacheError as e:
                    logger.warning(f"Cache invalidation failed for {key}: {e}")
            return await fn(*args, **kwargs)

        return wrapper

    return decorator
