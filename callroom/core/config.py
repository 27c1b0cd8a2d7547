"""Application configuration for the call room server and client."""
from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_env: str = Field(default="development")
    log_level: str = Field(default="INFO")
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])

    session_secret: str = Field(default="fallback-secret")

    database_url: str = Field(default="sqlite+aiosqlite:///./callroom.db")
    database_ssl_required: bool = Field(default=False)
    database_auto_create: bool = Field(default=True)

    upload_dir: str = Field(default="uploads")
    upload_max_bytes: int = Field(default=200 * 1024 * 1024, ge=1)
    media_inline_max_bytes: int = Field(default=16 * 1024 * 1024, ge=1)

    stun_servers: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["stun:stun.l.google.com:19302"])

    signaling_outbox_limit: int = Field(default=256, ge=1)
    call_pairing_ttl_seconds: int = Field(default=6 * 60 * 60, ge=1)

    @field_validator("cors_allow_origins", "stun_servers", mode="before")
    @classmethod
    def _split_csv(cls, value: object) -> object:
        """Allow comma-separated env values for list settings."""

        if isinstance(value, str):
            parts = [item.strip() for item in value.split(",") if item.strip()]
            return parts
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


settings = get_settings()
