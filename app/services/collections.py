"""Box-set collections and their ordered member items."""

from __future__ import annotations

import logging

from sqlalchemy import ColumnElement, delete, or_, select

from ..database import scoped_session
from ..db_models import Collection, CollectionItem, Movie, Series
from ..errors import NotFoundError, ValidationError
from ..events import COLLECTION_ADDED, COLLECTION_DELETED, COLLECTION_UPDATED
from ..models import (
    CollectionFilter,
    CollectionItemCreate,
    CollectionItemRead,
    CollectionRead,
)
from .catalog import OwnedCatalogService

logger = logging.getLogger(__name__)


class CollectionService(OwnedCatalogService[CollectionRead]):
    model = Collection
    read_model = CollectionRead
    sort_columns = ("title", "sort_title", "created_at")
    added_event = COLLECTION_ADDED
    updated_event = COLLECTION_UPDATED
    deleted_event = COLLECTION_DELETED

    def _filter_conditions(
        self, filters: CollectionFilter
    ) -> list[ColumnElement[bool]]:
        if not filters.search:
            return []
        pattern = f"%{filters.search}%"
        return [or_(Collection.title.like(pattern), Collection.sort_title.like(pattern))]

    async def add_item(
        self, user_id: str, collection_id: str, item: CollectionItemCreate
    ) -> CollectionItemRead:
        """Link a movie or series owned by the same user into a collection."""

        if item.item_type == "movie":
            member_id, other_id, member_model = item.movie_id, item.series_id, Movie
        else:
            member_id, other_id, member_model = item.series_id, item.movie_id, Series
        if not member_id or other_id:
            raise ValidationError(
                f"Exactly one of movie_id or series_id must be set for item_type '{item.item_type}'"
            )

        async with scoped_session(self._session_factory) as session:
            await self._get_record(session, user_id, collection_id)
            owner = await session.scalar(
                select(member_model.user_id).where(member_model.id == member_id)
            )
            if owner != user_id:
                raise NotFoundError()
            link = CollectionItem(
                collection_id=collection_id,
                item_type=item.item_type,
                movie_id=item.movie_id,
                series_id=item.series_id,
                position=item.position,
            )
            session.add(link)
            await session.commit()
        return CollectionItemRead.model_validate(link)

    async def get_items(
        self, user_id: str, collection_id: str
    ) -> list[CollectionItemRead]:
        async with scoped_session(self._session_factory) as session:
            await self._get_record(session, user_id, collection_id)
            result = await session.scalars(
                select(CollectionItem)
                .where(CollectionItem.collection_id == collection_id)
                .order_by(CollectionItem.position.asc())
            )
            return [CollectionItemRead.model_validate(row) for row in result.all()]

    async def remove_item(self, user_id: str, collection_id: str, item_id: str) -> None:
        async with scoped_session(self._session_factory) as session:
            await self._get_record(session, user_id, collection_id)
            result = await session.execute(
                delete(CollectionItem).where(
                    CollectionItem.id == item_id,
                    CollectionItem.collection_id == collection_id,
                )
            )
            await session.commit()
        if not result.rowcount:
            raise NotFoundError()
