"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="My Movies", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/my-movies.db", alias="DATABASE_URL"
    )
    database_pool_size: int = Field(default=5, alias="DB_POOL_SIZE", ge=1, le=100)
    database_pool_timeout: float = Field(
        default=3.0, alias="DB_POOL_TIMEOUT", gt=0
    )

    jwt_secret: str = Field(alias="JWT_SECRET", min_length=1)

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_language: str = Field(default="de-DE", alias="TMDB_LANGUAGE")

    upcitemdb_api_url: HttpUrl = Field(
        default="https://api.upcitemdb.com/prod/trial/lookup",
        alias="UPCITEMDB_API_URL",
    )
    opengtindb_api_url: HttpUrl = Field(
        default="https://opengtindb.org/api/v1/", alias="OPENGTINDB_API_URL"
    )

    static_dir: Path | None = Field(default=None, alias="STATIC_DIR")
    upload_dir: Path = Field(default=Path("uploads"), alias="UPLOAD_DIR")

    enrich_delay_ms: int = Field(default=250, alias="ENRICH_DELAY_MS", ge=0)
    password_reset_url: str = Field(
        default="/reset-password", alias="PASSWORD_RESET_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("jwt_secret")
    @classmethod
    def _reject_blank_secret(cls, value: str) -> str:
        """Refuse secrets made only of whitespace."""

        if not value.strip():
            raise ValueError("JWT_SECRET must not be blank")
        return value

    @field_validator("tmdb_api_key", "static_dir", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def enrich_delay_seconds(self) -> float:
        return self.enrich_delay_ms / 1000

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]
