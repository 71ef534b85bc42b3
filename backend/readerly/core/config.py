# readerly/core/config.py
from __future__ import annotations

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


BACKEND_ROOT = Path(__file__).resolve().parents[2]
ENV_PATH = BACKEND_ROOT / ".env"


class Settings(BaseSettings):
    env: str = "dev"
    app_name: str = "Readerly"
    database_url: str
    log_level: str = "INFO"

    # Cola de trabajos (Redis + rq)
    redis_url: str = "redis://localhost:6379/0"
    fetch_queue_name: str = "fetch-queue"
    job_timeout_seconds: int = 120
    # rq retiene resultados por TTL (segundos), no por cantidad
    job_result_ttl_seconds: int = 3600
    job_failure_ttl_seconds: int = 86400

    # Scheduler
    # DISABLE_SCHEDULER=true para evitar el tick en startup
    disable_scheduler: bool = False
    scheduler_tick_seconds: int = 60
    min_fetch_interval_minutes: int = 5
    default_fetch_interval_minutes: int = 30

    # Fetch HTTP
    fetch_timeout_seconds: float = 20.0

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH) if ENV_PATH.exists() else None,
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
