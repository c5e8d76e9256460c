"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Biblio-theatron", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3001, alias="PORT")

    default_user_id: str = Field(default="user1", alias="DEFAULT_USER_ID")

    gemini_api_key: str | None = Field(default=None, alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.5-flash", alias="GEMINI_MODEL")
    gemini_api_url: HttpUrl = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        alias="GEMINI_API_URL",
    )

    generation_max_attempts: int = Field(
        default=3, alias="GENERATION_MAX_ATTEMPTS", ge=1, le=10
    )
    retry_base_delay: float = Field(
        default=1.0, alias="RETRY_BASE_DELAY", ge=0.0, le=30.0
    )

    suggestion_count: int = Field(default=3, alias="SUGGESTION_COUNT", ge=1, le=10)
    autocomplete_min_chars: int = Field(
        default=2, alias="AUTOCOMPLETE_MIN_CHARS", ge=1, le=10
    )
    autocomplete_limit: int = Field(default=5, alias="AUTOCOMPLETE_LIMIT", ge=1, le=20)
    autocomplete_debounce_ms: int = Field(
        default=300, alias="AUTOCOMPLETE_DEBOUNCE_MS", ge=0, le=5_000
    )
    genre_analytics_limit: int = Field(
        default=7, alias="GENRE_ANALYTICS_LIMIT", ge=1, le=50
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./bibliotheatron.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("gemini_api_key", mode="before")
    @classmethod
    def _blank_key_is_missing(cls, value: object) -> object:
        """Treat an empty or whitespace-only key as not configured."""

        if isinstance(value, str) and not value.strip():
            return None
        if isinstance(value, str):
            return value.strip()
        return value

    @property
    def autocomplete_debounce_seconds(self) -> float:
        return self.autocomplete_debounce_ms / 1000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
