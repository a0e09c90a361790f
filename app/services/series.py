"""Series catalog operations."""

from __future__ import annotations

from sqlalchemy import ColumnElement, or_

from ..db_models import Series
from ..events import SERIES_ADDED, SERIES_DELETED, SERIES_UPDATED
from ..models import SeriesFilter, SeriesRead
from .catalog import OwnedCatalogService


class SeriesService(OwnedCatalogService[SeriesRead]):
    model = Series
    read_model = SeriesRead
    sort_columns = (
        "title",
        "sort_title",
        "production_year",
        "first_aired",
        "created_at",
        "personal_rating",
    )
    added_event = SERIES_ADDED
    updated_event = SERIES_UPDATED
    deleted_event = SERIES_DELETED

    def _filter_conditions(self, filters: SeriesFilter) -> list[ColumnElement[bool]]:
        conditions: list[ColumnElement[bool]] = []
        if filters.search:
            pattern = f"%{filters.search}%"
            conditions.append(
                or_(
                    Series.title.like(pattern),
                    Series.original_title.like(pattern),
                    Series.network.like(pattern),
                )
            )
        if filters.genre:
            conditions.append(Series.genres.like(f"%{filters.genre}%"))
        if filters.network:
            conditions.append(Series.network == filters.network)
        if filters.watched is not None:
            conditions.append(Series.watched == filters.watched)
        return conditions
