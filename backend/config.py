"""Application configuration."""

from functools import lru_cache
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "Roteirar"
    debug: bool = True
    default_language: str = "pt-BR"

    # Redis (snapshot store)
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "roteirar:"

    # Session tokens
    jwt_secret: str = "dev-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    session_expire_hours: int = 24

    # Sharing
    share_base_url: str = "https://roteirar.ai/scripts/shared"

    # Accounts registered with these emails start as platform admins
    admin_emails: Annotated[list[str], NoDecode] = []

    # Optimistic versioning: reload-and-reapply attempts on conflict
    save_retry_attempts: int = 3

    @field_validator("admin_emails", mode="before")
    @classmethod
    def parse_admin_emails(cls, v: Any) -> list[str]:
        if isinstance(v, str):
            return [email.strip().lower() for email in v.split(",") if email.strip()]
        return [email.lower() for email in v]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
