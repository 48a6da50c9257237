# tests/conftest.py

from __future__ import annotations

import fakeredis
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from taskflow.cache.layer import CacheLayer, set_cache_layer
from taskflow.cache.store import KeyStore
from taskflow.database import make_session_factory
from taskflow.repositories.task_repository import TaskRepository


@pytest_asyncio.fixture()
async def redis():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture()
def store(redis) -> KeyStore:
    """KeyStore wired to an in-process fake Redis instead of a real server."""
    return KeyStore("redis://fake", client=redis)


@pytest.fixture()
def cache(store: KeyStore) -> CacheLayer:
    return CacheLayer(store, namespace="test", default_ttl=300)


@pytest.fixture()
def installed_cache(cache: CacheLayer):
    """Install the cache as the process-wide layer used by the decorators."""
    set_cache_layer(cache)
    yield cache
    set_cache_layer(None)


@pytest_asyncio.fixture()
async def db_session():
    # One shared in-memory SQLite connection per test
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    async with make_session_factory(engine)() as session:
        yield session

    await engine.dispose()


@pytest.fixture()
def repo(db_session) -> TaskRepository:
    return TaskRepository(db_session)
