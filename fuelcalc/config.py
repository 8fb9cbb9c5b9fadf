"""
Configuration and settings for the combustion backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Database (Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # S3-compatible storage (MinIO) for fuel images
    s3_endpoint: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    s3_bucket: Optional[str] = Field(default=None)
    s3_access_key_id: Optional[str] = Field(default=None)
    s3_secret_access_key: Optional[str] = Field(default=None)
    s3_public_base_url: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # JWT deny-list (Redis)
    redis_url: Optional[str] = Field(default=None)
    redis_key_prefix: str = Field(default="fuelcalc.")

    # Auth
    jwt_secret_key: str = Field(default="change-me")
    jwt_expires_in: int = Field(default=3600, description="Token lifetime, seconds")
    jwt_issuer: str = Field(default="fuelcalc")
    allow_moderator_signup: bool = Field(default=True)

    # External calculator
    calculator_url: str = Field(default="http://localhost:8001/calculate/")
    callback_url: str = Field(
        default="http://localhost:8080/api/async/update-result"
    )
    calculator_timeout_seconds: float = Field(default=30.0)
    # When set, every session reuses this token instead of generating one.
    async_service_token: Optional[str] = Field(default=None)
    dispatch_max_workers: int = Field(default=32, ge=1)

    # Combustion requests
    default_molar_volume: float = Field(default=22.414, gt=0)
    auto_complete_moderator_id: Optional[int] = Field(default=None)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
