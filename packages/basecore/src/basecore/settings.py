"""
Application settings.

Loaded from environment variables (and an optional .env file).
"""

import functools

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared by every service."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "sqlite:///./inbox.db"
    REDIS_URL: str = "redis://localhost:6379/0"

    # 64 hex chars are used as a raw key, anything else is stretched with PBKDF2
    ENCRYPTION_KEY: str = ""

    META_VERIFY_TOKEN: str = ""
    META_APP_SECRET: str = ""
    GRAPH_API_VERSION: str = "v18.0"
    EVOLUTION_WEBHOOK_API_KEY: str = ""
    PROVIDER_TIMEOUT: float = 30.0

    LIVE_UPDATES_BACKEND: str = "memory"  # memory, redis
    LIVE_UPDATES_KEEPALIVE: float = 15.0

    AUTO_CREATE_SCHEMA: bool = True

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # text, json


@functools.lru_cache()
def get_settings() -> Settings:
    """Get settings (cached)."""
    return Settings()
