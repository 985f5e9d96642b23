"""Configuration management for the link shortener service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortener.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    db_url = settings.DATABASE_URL

**Step 3 — Check deployment restrictions**::
    if settings.restrict_private_hosts:
        ...

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- Private-network URL rejection is forced on in production.
- Rate-limit quotas are NOT configured here; they are a static table in
  ``shortener.ratelimit``.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "link-shortener"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"

    # PostgreSQL (links + click event log)
    DATABASE_URL: str = "postgresql+asyncpg://shortener:shortener@db:5432/shortener"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis (rate-limit counters + link cache)
    REDIS_URL: str = "redis://redis:6379/0"

    # Short code generation
    SHORT_CODE_LENGTH: int = 8
    MAX_CODE_GENERATION_ATTEMPTS: int = 5

    # URL validation; always on when APP_ENV is production
    RESTRICT_PRIVATE_HOSTS: bool = False

    # Privacy salts
    IP_SALT: str = "default-salt-change-in-production"
    RATE_LIMIT_SALT: str = "default-salt"

    # Retention horizons
    CLICK_EVENT_RETENTION_DAYS: int = 90
    RATE_LIMIT_TTL_GRACE_SECONDS: int = 86400

    # Link lookup cache
    LINK_CACHE_TTL_SECONDS: int = 3600

    # Analytics scan bounds
    ANALYTICS_MAX_EVENTS: int = 10000
    ANALYTICS_PAGE_SIZE: int = 1000

    # Background click recording
    CLICK_RECORDER_DRAIN_TIMEOUT_SECONDS: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def restrict_private_hosts(self) -> bool:
        return self.RESTRICT_PRIVATE_HOSTS or self.APP_ENV == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
