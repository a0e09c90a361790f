"""Pytest configuration and test helpers."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from argon2 import PasswordHasher


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("JWT_SECRET", "test-secret")

from app.database import Database  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@pytest.fixture
def database(tmp_path) -> Database:
    """A file-backed SQLite database private to the test."""

    return Database(f"sqlite+aiosqlite:///{tmp_path / 'my-movies.db'}")


@pytest.fixture
def password_hasher() -> PasswordHasher:
    """Cheap Argon2 parameters so hashing does not dominate test time."""

    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)
