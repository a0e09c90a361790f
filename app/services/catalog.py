"""Owner-scoped CRUD shared by the movie, series and collection catalogs."""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Generic, Sequence, TypeVar

from pydantic import BaseModel
from sqlalchemy import ColumnElement, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import scoped_session
from ..errors import NotFoundError
from ..events import EventBus
from ..utils import utcnow

logger = logging.getLogger(__name__)

ReadT = TypeVar("ReadT", bound=BaseModel)


class OwnedCatalogService(Generic[ReadT]):
    """Every statement is scoped by ``user_id``; foreign rows look absent."""

    model: ClassVar[type[Any]]
    read_model: ClassVar[type[BaseModel]]
    sort_columns: ClassVar[tuple[str, ...]] = ("title",)
    default_sort: ClassVar[str] = "title"
    added_event: ClassVar[str | None] = None
    updated_event: ClassVar[str | None] = None
    deleted_event: ClassVar[str | None] = None

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        events: EventBus | None = None,
    ):
        self._session_factory = session_factory
        self._events = events

    def _filter_conditions(self, filters: Any) -> list[ColumnElement[bool]]:
        return []

    def _ordering(self, filters: Any) -> ColumnElement[Any]:
        sort_by = getattr(filters, "sort_by", None)
        if sort_by not in self.sort_columns:
            sort_by = self.default_sort
        column = getattr(self.model, sort_by)
        if (getattr(filters, "sort_order", None) or "").lower() == "desc":
            return column.desc()
        return column.asc()

    async def create(self, user_id: str, data: BaseModel) -> ReadT:
        values = data.model_dump(exclude_none=True)
        async with scoped_session(self._session_factory) as session:
            record = self.model(user_id=user_id, **values)
            session.add(record)
            await session.commit()
        item = self.read_model.model_validate(record)
        self._publish(self.added_event, item)
        return item  # type: ignore[return-value]

    async def get_by_id(self, user_id: str, item_id: str) -> ReadT:
        async with scoped_session(self._session_factory) as session:
            record = await self._get_record(session, user_id, item_id)
        return self.read_model.model_validate(record)  # type: ignore[return-value]

    async def list(self, user_id: str, filters: Any) -> list[ReadT]:
        stmt = (
            select(self.model)
            .where(self.model.user_id == user_id, *self._filter_conditions(filters))
            .order_by(self._ordering(filters))
            .limit(filters.limit)
            .offset(filters.offset)
        )
        async with scoped_session(self._session_factory) as session:
            result = await session.scalars(stmt)
            records: Sequence[Any] = result.all()
        return [self.read_model.model_validate(record) for record in records]  # type: ignore[misc]

    async def count(self, user_id: str, filters: Any) -> int:
        stmt = (
            select(func.count())
            .select_from(self.model)
            .where(self.model.user_id == user_id, *self._filter_conditions(filters))
        )
        async with scoped_session(self._session_factory) as session:
            total = await session.scalar(stmt)
        return int(total or 0)

    async def update(self, user_id: str, item_id: str, patch: BaseModel) -> ReadT:
        """Apply a field-granular patch as one UPDATE statement."""

        values = patch.model_dump(exclude_unset=True, exclude_none=True)
        async with scoped_session(self._session_factory) as session:
            await self._get_record(session, user_id, item_id)
            if values:
                assignments: dict[Any, Any] = {
                    getattr(self.model, field): value for field, value in values.items()
                }
                assignments[self.model.updated_at] = utcnow()
                await session.execute(
                    update(self.model)
                    .where(self.model.id == item_id, self.model.user_id == user_id)
                    .values(assignments)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
            record = await self._get_record(session, user_id, item_id, refresh=True)
        item = self.read_model.model_validate(record)
        if values:
            self._publish(self.updated_event, item)
        return item  # type: ignore[return-value]

    async def delete(self, user_id: str, item_id: str) -> None:
        async with scoped_session(self._session_factory) as session:
            await self._get_record(session, user_id, item_id)
            await session.execute(
                delete(self.model)
                .where(self.model.id == item_id, self.model.user_id == user_id)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        self._publish(self.deleted_event, {"id": item_id})

    async def _get_record(
        self,
        session: AsyncSession,
        user_id: str,
        item_id: str,
        *,
        refresh: bool = False,
    ) -> Any:
        stmt = select(self.model).where(
            self.model.id == item_id, self.model.user_id == user_id
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        record = await session.scalar(stmt)
        if record is None:
            raise NotFoundError()
        return record

    def _publish(self, event_type: str | None, payload: Any) -> None:
        if event_type and self._events is not None:
            self._events.publish(event_type, payload)
