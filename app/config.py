"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="KinoBoxd", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./kinoboxd.db", alias="DATABASE_URL"
    )
    session_ttl_seconds: int = Field(default=86_400, alias="SESSION_TTL", ge=60)

    local_reference_path: str = Field(
        default="./imdb.sqlite", alias="LOCAL_REFERENCE_PATH"
    )

    wikidata_sparql_url: HttpUrl = Field(
        default="https://query.wikidata.org/sparql", alias="WIKIDATA_SPARQL_URL"
    )
    wikidata_chunk_size: int = Field(
        default=500, alias="WIKIDATA_CHUNK_SIZE", ge=1, le=500
    )

    kinopoisk_api_url: HttpUrl = Field(
        default="https://api.kinopoisk.dev/v1.4", alias="KINOPOISK_API_URL"
    )
    kinopoisk_request_delay: float = Field(
        default=0.1, alias="KINOPOISK_REQUEST_DELAY", ge=0, le=10
    )

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    search_concurrency: int = Field(
        default=8, alias="SEARCH_CONCURRENCY", ge=1, le=32
    )

    skip_all_threshold: int = Field(default=1, alias="SKIP_ALL_THRESHOLD", ge=0)

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_api_key", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @property
    def user_agent(self) -> str:
        """User-Agent sent to public endpoints that ask clients to identify."""

        return f"{self.app_name}/1.0 (kinoboxd)"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
