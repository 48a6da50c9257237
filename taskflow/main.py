import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from redis.asyncio import RedisError

from taskflow.cache.layer import CacheLayer, set_cache_layer
from taskflow.cache.store import KeyStore
from taskflow.core.config import SettingsDep, get_settings
from taskflow.core.errors import RateLimitExceeded, TaskflowError
from taskflow.core.logging_setup import setup_logging
from taskflow.queues.celery_app import celery_app
from taskflow.queues.dispatcher import QueueDispatcher
from taskflow.ratelimit.limiter import RateLimiter
from taskflow.routers import tasks

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level)

    store = KeyStore.from_settings(settings)
    try:
        await store.connect()
        cache = CacheLayer(store, settings.cache_namespace, settings.cache_default_ttl)
        set_cache_layer(cache)
        logger.info("Cache layer initialized")
    except (RedisError, OSError) as e:
        # Degraded: no cache, and the rate limiter fails open
        logger.error(f"Redis initialization failed: {e}")

    app.state.key_store = store
    app.state.rate_limiter = RateLimiter(store, settings.rate_limit_prefix)
    app.state.dispatcher = QueueDispatcher.from_settings(celery_app, settings)
    try:
        yield
    finally:
        set_cache_layer(None)
        await store.close()


app = FastAPI(
    title="TaskFlow API",
    description="Task management API with Redis caching, rate limiting and background jobs",
    swagger_ui_parameters={"displayRequestDuration": True},
    version="1.0.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(tasks.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)"
    )
    return response


@app.exception_handler(TaskflowError)
async def taskflow_error_handler(request: Request, exc: TaskflowError):
    status_code = exc.status_code
    log_message = f"HTTP {status_code} - {request.method} {request.url.path}: {exc.message}"
    if status_code >= 500:
        logger.error(log_message)
    else:
        logger.warning(log_message)

    body = {
        "success": False,
        "statusCode": status_code,
        "message": exc.message,
        "path": request.url.path,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if isinstance(exc, RateLimitExceeded):
        body["error"] = "Rate limit exceeded"
        body["remaining"] = exc.remaining
    if not get_settings().is_production and exc.__cause__ is not None:
        body["details"] = str(exc.__cause__)
    return JSONResponse(status_code=status_code, content=body)


@app.get("/")
async def root(settings: SettingsDep):
    return {
        "message": "Welcome to TaskFlow API",
        "docs": "/docs",
        "version": "1.0.0",
        "environment": settings.environment,
    }


@app.get("/health")
async def health_check(request: Request):
    store: KeyStore | None = getattr(request.app.state, "key_store", None)
    redis_ok = False
    if store is not None and store.connected:
        try:
            redis_ok = await store.ping()
        except RedisError as e:
            logger.warning(f"Health check: Redis ping failed: {e}")
    return {"status": "healthy" if redis_ok else "degraded", "redis": redis_ok}
