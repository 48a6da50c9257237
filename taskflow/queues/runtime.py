from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.pool import NullPool

from taskflow.cache.layer import CacheLayer, get_cache_layer, set_cache_layer
from taskflow.cache.store import KeyStore
from taskflow.core.config import get_settings
from taskflow.database import make_engine, make_session_factory
from taskflow.repositories.task_repository import TaskRepository


@asynccontextmanager
async def worker_repository() -> AsyncIterator[TaskRepository]:
    """
    Per-job database session and cache for Celery tasks.

    Each job runs in its own event loop (asyncio.run), and both asyncpg and
    redis connections are bound to the loop that opened them, so nothing is
    pooled across jobs: NullPool for the engine, a fresh KeyStore for the cache.
    """
    settings = get_settings()
    engine = make_engine(settings.database_url, poolclass=NullPool)
    store = KeyStore.from_settings(settings)
    previous = get_cache_layer()
    try:
        await store.connect()
        set_cache_layer(CacheLayer(store, settings.cache_namespace, settings.cache_default_ttl))
        async with make_session_factory(engine)() as session:
            yield TaskRepository(session)
    finally:
        set_cache_layer(previous)
        await store.close()
        await engine.dispose()
