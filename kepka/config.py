"""
Configuration and settings for the Kepka API.
"""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Annotated, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    environment: Literal["development", "production", "test"] = Field(
        default="development", alias="KEPKA_ENV"
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    frontend_url: str = Field(default="http://localhost:3000", alias="FRONTEND_URL")
    # Empty means only frontend_url.
    cors_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=list, alias="CORS_ORIGINS"
    )
    # Peers allowed to set X-Forwarded-For (e.g. the load balancer address).
    trusted_proxies: Annotated[list[str], NoDecode] = Field(
        default_factory=list, alias="TRUSTED_PROXIES"
    )

    # Database (Postgres expected)
    database_url: Optional[str] = Field(default=None, alias="DATABASE_URL")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, alias="KEPKA_USE_IN_MEMORY_BACKENDS"
    )

    # JWT signing material
    jwt_secret_key: str = Field(
        default="dev-insecure-secret-change-me", alias="JWT_SECRET_KEY"
    )
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    refresh_token_expire_days: int = Field(default=7, alias="REFRESH_TOKEN_EXPIRE_DAYS")
    password_reset_expire_minutes: int = Field(
        default=60, alias="PASSWORD_RESET_EXPIRE_MINUTES"
    )
    # Emails promoted to admin when they sign up.
    admin_emails: Annotated[list[str], NoDecode] = Field(
        default_factory=list, alias="ADMIN_EMAILS"
    )

    # Payment gateway (Stripe)
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(
        default="whsec_dev", alias="STRIPE_WEBHOOK_SECRET"
    )
    webhook_tolerance_seconds: int = Field(default=300, alias="WEBHOOK_TOLERANCE_SECONDS")

    # Realtime fan-out (Redis pub/sub)
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    realtime_channel_prefix: str = Field(default="kepka:", alias="REALTIME_CHANNEL_PREFIX")

    # Gasless sponsorship
    sponsor_address: str = Field(
        default="addr1_kepka_sponsor_treasury_address", alias="SPONSOR_ADDRESS"
    )
    sponsorship_ttl_minutes: int = Field(default=30, alias="SPONSORSHIP_TTL_MINUTES")

    # Backups to S3-compatible storage
    backup_bucket: Optional[str] = Field(default=None, alias="BACKUP_BUCKET")
    backup_region: Optional[str] = Field(default=None, alias="BACKUP_REGION")
    backup_endpoint: Optional[str] = Field(default=None, alias="BACKUP_ENDPOINT")
    aws_access_key_id: Optional[str] = Field(default=None, alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: Optional[str] = Field(
        default=None, alias="AWS_SECRET_ACCESS_KEY"
    )
    backup_prefix: str = Field(default="backups", alias="BACKUP_PREFIX")
    backup_retention_days: int = Field(default=30, alias="BACKUP_RETENTION_DAYS")

    @field_validator("cors_origins", "trusted_proxies", "admin_emails", mode="before")
    @classmethod
    def _split_list(cls, value):
        """Accept a JSON list or a comma-separated string from the environment."""
        if isinstance(value, str):
            value = value.strip()
            if value.startswith("["):
                return json.loads(value)
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def allowed_origins(self) -> list[str]:
        return self.cors_origins or [self.frontend_url]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
