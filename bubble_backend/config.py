"""
Configuration and settings for the predictions backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")

    # Database (Postgres expected; any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="BUBBLE_USE_IN_MEMORY_BACKENDS"
    )

    # Static site served for anything that is not an API route
    static_dir: Optional[str] = Field(default="public")

    # CORS
    cors_allow_origin: str = Field(default="*")

    # Proxy header carrying the real client address (Cloudflare by default)
    client_ip_header: str = Field(default="CF-Connecting-IP")

    # Submission limits
    max_request_bytes: int = Field(default=1024, ge=1)
    rate_limit_seconds: int = Field(default=300, ge=0)

    log_level: str = Field(default="INFO")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
