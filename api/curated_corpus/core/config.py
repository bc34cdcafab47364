from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "curated-corpus-api"
    environment: str = "dev"
    storage_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    event_sink_url: str | None = None
    event_sink_timeout_seconds: float = 5.0
    reason_max_length: int = 100
    full_access_group: str = "scheduled_surface_curator_full"
    otel_enabled: bool = True
    otel_service_name: str = "curated-corpus-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0

    model_config = SettingsConfigDict(env_prefix="CC_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
