"""
Configuration and settings for the Nodebook API.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Database (Postgres expected, any SQLAlchemy URL accepted)
    database_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("DATABASE_URL", "DB_URL")
    )

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "NODEBOOK_USE_IN_MEMORY_BACKENDS", "USE_IN_MEMORY_BACKENDS"
        ),
    )

    # Identity provider (Auth0). Without a domain, tokens are checked
    # against the shared HS256 secret instead.
    auth0_domain: Optional[str] = Field(default=None)
    auth0_audience: Optional[str] = Field(default=None)
    jwt_secret_key: Optional[str] = Field(default=None)
    nickname_claim: str = Field(default="nickname")

    cors_allowed_origins: list[str] = Field(
        default=[
            "http://localhost:3000",
            "https://thenodebook.vercel.app",
            "https://www.mindthred.com",
        ]
    )

    log_level: str = Field(default="INFO")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
