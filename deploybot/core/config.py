"""Central runtime configuration for the deployment bot."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    database_url: str = "sqlite:///./data/deploybot.sqlite"
    redis_url: str = "redis://redis:6379/0"
    secret_key: str = ""
    env: str = "development"
    log_level: str = "INFO"
    port: int = 8000
    app_name: str = "deploybot"
    app_version: str = "0.1.0"
    token_encryption_key: str = ""
    telegram_bot_token: str = ""
    telegram_api_base_url: str = "https://api.telegram.org"
    telegram_webhook_secret: str = ""
    telegram_api_timeout_seconds: int = 10
    cloudflare_api_base_url: str = "https://api.cloudflare.com/client/v4"
    cloudflare_api_timeout_seconds: int = 30
    worker_script_url: str = (
        "https://github.com/bia-pain-bache/BPB-Worker-Panel/releases/download/v3.5.6/worker.js"
    )
    worker_script_download_timeout_seconds: int = 60
    worker_script_min_bytes: int = 100
    worker_name_prefix: str = "bpb-worker"
    worker_compatibility_date: str = "2024-09-23"
    session_backend: str = "memory"
    session_ttl_seconds: int = 600
    session_sweep_interval_seconds: int = 600
    deploy_lock_ttl_seconds: int = 900
    poller_cycles: int = 10
    poller_interval_seconds: float = 20.0
    poller_request_timeout_seconds: float = 15.0
    post_deploy_wait_seconds: float = 30.0
    wizard_credential_strategy: str = "scrape"
    saved_credential_strategy: str = "generate"
    sentry_dsn: str = ""
    sentry_traces_sample_rate: float = 0.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


CREDENTIAL_STRATEGIES = {"scrape", "generate"}
SESSION_BACKENDS = {"memory", "redis"}


def _validate(settings: Settings) -> Settings:
    is_production = settings.env.lower() in {"prod", "production"}
    if is_production:
        required_production_values = {
            "SECRET_KEY": settings.secret_key,
            "TOKEN_ENCRYPTION_KEY": settings.token_encryption_key,
            "DATABASE_URL": settings.database_url,
            "TELEGRAM_BOT_TOKEN": settings.telegram_bot_token,
            "TELEGRAM_WEBHOOK_SECRET": settings.telegram_webhook_secret,
        }
        missing = [name for name, value in required_production_values.items() if not str(value).strip()]
        if missing:
            joined = ", ".join(sorted(missing))
            raise ValueError(f"Missing required production secrets/config: {joined}.")
    if settings.sentry_traces_sample_rate < 0 or settings.sentry_traces_sample_rate > 1:
        raise ValueError("SENTRY_TRACES_SAMPLE_RATE must be between 0 and 1.")
    if settings.session_backend.strip().lower() not in SESSION_BACKENDS:
        raise ValueError("SESSION_BACKEND must be one of: memory, redis.")
    if settings.session_ttl_seconds <= 0:
        raise ValueError("SESSION_TTL_SECONDS must be positive.")
    if settings.session_sweep_interval_seconds <= 0:
        raise ValueError("SESSION_SWEEP_INTERVAL_SECONDS must be positive.")
    if settings.deploy_lock_ttl_seconds <= 0:
        raise ValueError("DEPLOY_LOCK_TTL_SECONDS must be positive.")
    if settings.poller_cycles <= 0:
        raise ValueError("POLLER_CYCLES must be positive.")
    if settings.poller_interval_seconds < 0 or settings.post_deploy_wait_seconds < 0:
        raise ValueError("POLLER_INTERVAL_SECONDS and POST_DEPLOY_WAIT_SECONDS must be zero or positive.")
    if settings.worker_script_min_bytes <= 0:
        raise ValueError("WORKER_SCRIPT_MIN_BYTES must be positive.")
    for name, value in (
        ("WIZARD_CREDENTIAL_STRATEGY", settings.wizard_credential_strategy),
        ("SAVED_CREDENTIAL_STRATEGY", settings.saved_credential_strategy),
    ):
        if value.strip().lower() not in CREDENTIAL_STRATEGIES:
            raise ValueError(f"{name} must be one of: generate, scrape.")
    return settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return validated settings as a cached singleton."""

    return _validate(Settings())
