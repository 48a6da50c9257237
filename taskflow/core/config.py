from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from fastapi import Depends
from typing_extensions import Annotated


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "development"
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./taskflow.db"

    redis_dsn: str = "redis://localhost:6379/0"
    redis_pool_size: int = 5

    cache_namespace: str = "taskflow"
    cache_default_ttl: int = 300  # seconds

    rate_limit_prefix: str = "rate-limit"
    rate_limit_limit: int = 100
    rate_limit_window_ms: int = 60_000

    queue_name: str = "task-processing"
    queue_broker_url: str | None = None  # falls back to redis_dsn
    queue_attempts: int = 3
    queue_backoff_ms: int = 1000
    queue_batch_size: int = 100
    overdue_check_interval_seconds: int = 3600

    @property
    def broker_url(self) -> str:
        return self.queue_broker_url or self.redis_dsn

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()


SettingsDep = Annotated[Settings, Depends(get_settings)]
