"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Iterable, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="CineVault", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    omdb_api_keys: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(), alias="OMDB_API_KEYS"
    )
    omdb_api_url: HttpUrl = Field(
        default="https://www.omdbapi.com", alias="OMDB_API_URL"
    )

    openrouter_api_key: str | None = Field(
        default=None, alias="OPENROUTER_API_KEY"
    )
    openrouter_model: str = Field(
        default="google/gemini-2.5-flash-lite", alias="OPENROUTER_MODEL"
    )
    openrouter_api_url: HttpUrl = Field(
        default="https://openrouter.ai/api/v1", alias="OPENROUTER_API_URL"
    )

    request_timeout_seconds: float = Field(
        default=8.0, alias="REQUEST_TIMEOUT", gt=0, le=60
    )
    generator_timeout_seconds: float = Field(
        default=30.0, alias="GENERATOR_TIMEOUT", gt=0, le=120
    )
    search_pages: int = Field(default=2, alias="SEARCH_PAGES", ge=1, le=3)
    node_attempt_limit: int = Field(
        default=2, alias="NODE_ATTEMPT_LIMIT", ge=1, le=10
    )
    candidate_limit: int = Field(default=30, alias="CANDIDATE_LIMIT", ge=1, le=100)
    fallback_batch_size: int = Field(
        default=10, alias="FALLBACK_BATCH_SIZE", ge=1, le=30
    )
    default_search_term: str = Field(default="2024", alias="DEFAULT_SEARCH_TERM")

    response_cache_seconds: int = Field(default=1_800, alias="CACHE_TTL", ge=60)
    cache_max_entries: int = Field(
        default=256, alias="CACHE_MAX_ENTRIES", ge=1, le=100_000
    )
    resume_max_entries: int = Field(
        default=1_024, alias="RESUME_MAX_ENTRIES", ge=1, le=100_000
    )

    autoplay_delay_seconds: float = Field(
        default=5.0, alias="AUTOPLAY_DELAY", ge=0, le=60
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./cinevault.db", alias="DATABASE_URL"
    )
    durable_cache: bool = Field(default=True, alias="DURABLE_CACHE")

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("omdb_api_keys", mode="before")
    @classmethod
    def _parse_api_keys(cls, value: object) -> tuple[str, ...]:
        """Normalise credential nodes from comma separated environment values."""

        if value is None:
            return ()
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("OMDB_API_KEYS must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            if entry and entry not in cleaned:
                cleaned.append(entry)
        return tuple(cleaned)

    @field_validator("default_search_term")
    @classmethod
    def _require_default_term(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("DEFAULT_SEARCH_TERM may not be blank")
        return stripped

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
