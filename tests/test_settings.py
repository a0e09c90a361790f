"""Configuration settings behaviour tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from app.config import Settings


def test_defaults_apply_when_only_secret_given() -> None:
    """Every setting except the signing secret has a usable default."""

    settings = Settings(_env_file=None, JWT_SECRET="secret")

    assert settings.database_url == "sqlite+aiosqlite:///./data/my-movies.db"
    assert settings.server_port == 3000
    assert settings.tmdb_language == "de-DE"
    assert settings.tmdb_api_key is None
    assert settings.static_dir is None
    assert settings.upload_dir == Path("uploads")
    assert settings.database_pool_size == 5
    assert settings.enrich_delay_seconds == pytest.approx(0.25)


def test_missing_secret_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    """The service must not start without a token signing secret."""

    monkeypatch.delenv("JWT_SECRET", raising=False)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_blank_secret_is_rejected() -> None:
    with pytest.raises(ValidationError, match="must not be blank"):
        Settings(_env_file=None, JWT_SECRET="   ")


def test_blank_optional_values_become_none() -> None:
    """Empty environment values are treated as unset."""

    settings = Settings(
        _env_file=None, JWT_SECRET="secret", TMDB_API_KEY="", STATIC_DIR=" "
    )

    assert settings.tmdb_api_key is None
    assert settings.static_dir is None


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("ENRICH_DELAY_MS", "0")
    monkeypatch.setenv("TMDB_LANGUAGE", "en-US")

    settings = Settings(_env_file=None, JWT_SECRET="secret")

    assert settings.server_port == 8080
    assert settings.enrich_delay_seconds == 0
    assert settings.tmdb_language == "en-US"


def test_pool_size_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, JWT_SECRET="secret", DB_POOL_SIZE=0)
