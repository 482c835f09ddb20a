from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Market Signal"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5
    db_auto_create_schema: bool = False

    # Providers
    openai_api_key: str | None = None
    tavily_api_key: str | None = None
    analyzer_model: str = "gpt-4o-mini"
    analyzer_temperature: float = 0.2
    analyzer_mode: str = "openai"
    market_signal_mode: str = "fixture"
    market_signal_fixture_dir: str = "fixtures/sources"
    news_sources_path: str = "configs/sources.json"

    # Source scheduling
    source_min_interval_minutes: int = 15
    fetch_concurrency: int = 6
    fetch_timeout_seconds: float = 15.0
    fetch_retry_attempts: int = 2

    # Cache TTLs
    default_cache_ttl_seconds: int = 300
    seen_url_ttl_seconds: int = 86400
    source_fetch_ttl_seconds: int = 1800
    analysis_cache_ttl_seconds: int = 86400
    insight_cache_ttl_seconds: int = 3600

    # Extraction / verification
    analyzer_delay_seconds: float = 0.2
    min_relevance_score: int = 60
    dedupe_similarity_threshold: float = 0.7
    verification_max_age_days: int = 90

    # Security
    cors_origins: list[str] = []

    # Sentry
    sentry_dsn: str | None = None

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "market_signal"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
