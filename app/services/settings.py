"""Runtime-mutable key/value settings with environment overrides."""

from __future__ import annotations

import logging
import os
from enum import Enum

from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import scoped_session
from ..db_models import Setting
from ..errors import ConfigurationError
from ..models import SettingStatus
from ..utils import utcnow
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

MASKED_VALUE = "••••••••"


class SettingKey(str, Enum):
    TMDB_API_KEY = "tmdb_api_key"

    @property
    def env_var(self) -> str:
        return self.value.upper()

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    SettingKey.TMDB_API_KEY: "API key for The Movie Database (themoviedb.org)",
}


class SettingsService:
    """Resolve settings from the environment first, then the settings table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tmdb_client: TMDBClient | None = None,
    ):
        self._session_factory = session_factory
        self._tmdb = tmdb_client

    @staticmethod
    def parse_key(raw_key: str) -> SettingKey | None:
        try:
            return SettingKey(raw_key)
        except ValueError:
            return None

    @staticmethod
    def _from_environment(key: SettingKey) -> str | None:
        value = os.environ.get(key.env_var)
        return value if value else None

    async def _from_database(self, key: SettingKey) -> str | None:
        async with scoped_session(self._session_factory) as session:
            setting = await session.get(Setting, key.value)
        if setting is None or not setting.value:
            return None
        return setting.value

    async def get(self, key: SettingKey) -> str | None:
        return self._from_environment(key) or await self._from_database(key)

    async def get_required(self, key: SettingKey) -> str:
        value = await self.get(key)
        if value is None:
            raise ConfigurationError(f"{key.value} is not configured")
        return value

    async def update(self, key: SettingKey, value: str) -> SettingStatus:
        """Upsert a setting and push it to live clients that depend on it."""

        now = utcnow()
        stmt = sqlite_insert(Setting).values(
            key=key.value,
            value=value,
            description=key.description,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Setting.key],
            set_={"value": value, "updated_at": now},
        )
        async with scoped_session(self._session_factory) as session:
            await session.execute(stmt)
            await session.commit()
        logger.info("Setting %s updated", key.value)

        if key is SettingKey.TMDB_API_KEY and self._tmdb is not None:
            self._tmdb.set_api_key(value)
        return await self.status(key)

    async def status(self, key: SettingKey) -> SettingStatus:
        if self._from_environment(key) is not None:
            source = "environment"
        elif await self._from_database(key) is not None:
            source = "database"
        else:
            source = "none"
        configured = source != "none"
        return SettingStatus(
            key=key.value,
            env_var=key.env_var,
            description=key.description,
            is_configured=configured,
            source=source,
            value_preview=MASKED_VALUE if configured else None,
        )

    async def get_status(self) -> list[SettingStatus]:
        return [await self.status(key) for key in SettingKey]
