"""Configuration settings for the FoamSync backend."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Persisted store
    store_backend: Literal["sqlite", "supabase"] = "sqlite"
    sqlite_path: str = "foamsync.db"

    # Supabase (only read when store_backend == "supabase")
    supabase_url: str | None = None
    supabase_secret_key: str | None = None
    # Legacy key name, still accepted
    supabase_service_role_key: str | None = None

    # JWT
    jwt_secret_key: str  # Required - no default for security
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 7  # 1 week

    # App
    debug: bool = False
    log_level: str = "INFO"
    # Browser clients call /api cross-origin without cookies
    cors_origins: list[str] = ["*"]
    rate_limit: str = "120/minute"
    # Comma-separated networks whose X-Forwarded-For header is believed
    trusted_proxy_cidrs: str = "10.0.0.0/8,172.16.0.0/12,192.168.0.0/16,127.0.0.0/8,::1/128"
    work_order_base_url: str = "https://foamsync.app/work-orders"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
