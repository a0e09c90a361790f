"""Movie catalog operations including duplicate detection."""

from __future__ import annotations

import logging

from sqlalchemy import ColumnElement, or_, select, update

from ..database import scoped_session
from ..db_models import Movie
from ..events import MOVIE_ADDED, MOVIE_DELETED, MOVIE_UPDATED
from ..models import MovieFilter, MovieRead
from ..utils import utcnow
from .catalog import OwnedCatalogService

logger = logging.getLogger(__name__)

DUPLICATE_SCAN_LIMIT = 10_000


class MovieService(OwnedCatalogService[MovieRead]):
    model = Movie
    read_model = MovieRead
    sort_columns = (
        "title",
        "sort_title",
        "production_year",
        "created_at",
        "personal_rating",
    )
    added_event = MOVIE_ADDED
    updated_event = MOVIE_UPDATED
    deleted_event = MOVIE_DELETED

    def _filter_conditions(self, filters: MovieFilter) -> list[ColumnElement[bool]]:
        conditions: list[ColumnElement[bool]] = []
        if filters.search:
            pattern = f"%{filters.search}%"
            conditions.append(
                or_(
                    Movie.title.like(pattern),
                    Movie.original_title.like(pattern),
                    Movie.director.like(pattern),
                )
            )
        if filters.genre:
            conditions.append(Movie.genres.like(f"%{filters.genre}%"))
        if filters.disc_type:
            conditions.append(Movie.disc_type == filters.disc_type)
        if filters.watched is not None:
            conditions.append(Movie.watched == filters.watched)
        if filters.year_from is not None:
            conditions.append(Movie.production_year >= filters.year_from)
        if filters.year_to is not None:
            conditions.append(Movie.production_year <= filters.year_to)
        return conditions

    async def list_all(
        self, user_id: str, limit: int = DUPLICATE_SCAN_LIMIT
    ) -> list[MovieRead]:
        return await self.list(user_id, MovieFilter(limit=limit))

    async def set_poster_path(
        self, user_id: str, movie_id: str, poster_path: str
    ) -> MovieRead:
        async with scoped_session(self._session_factory) as session:
            await self._get_record(session, user_id, movie_id)
            await session.execute(
                update(Movie)
                .where(Movie.id == movie_id, Movie.user_id == user_id)
                .values(poster_path=poster_path, updated_at=utcnow())
            )
            await session.commit()
        movie = await self.get_by_id(user_id, movie_id)
        self._publish(MOVIE_UPDATED, movie)
        return movie

    async def find_duplicates(
        self,
        user_id: str,
        title: str,
        barcode: str | None = None,
        tmdb_id: int | None = None,
    ) -> list[MovieRead]:
        """Return likely duplicates; barcode and TMDB matches are definitive."""

        async with scoped_session(self._session_factory) as session:
            owned = select(Movie).where(Movie.user_id == user_id)
            if barcode:
                match = await session.scalar(
                    owned.where(Movie.barcode == barcode).limit(1)
                )
                if match is not None:
                    return [MovieRead.model_validate(match)]
            if tmdb_id is not None:
                match = await session.scalar(
                    owned.where(Movie.tmdb_id == tmdb_id).limit(1)
                )
                if match is not None:
                    return [MovieRead.model_validate(match)]
            result = await session.scalars(
                owned.where(or_(Movie.title == title, Movie.original_title == title))
            )
            return [MovieRead.model_validate(movie) for movie in result.all()]

    async def find_all_duplicates(self, user_id: str) -> list[list[MovieRead]]:
        """Group movies sharing a barcode, a TMDB id or a case-insensitive title."""

        movies = await self.list_all(user_id)
        groups: list[list[MovieRead]] = []
        processed: set[str] = set()

        for movie in movies:
            if movie.id in processed:
                continue
            group = [movie]
            members = {movie.id}

            def _collect(predicate) -> None:
                for other in movies:
                    if other.id not in members and predicate(other):
                        group.append(other)
                        members.add(other.id)

            if movie.barcode:
                _collect(lambda other: other.barcode == movie.barcode)
            if movie.tmdb_id is not None:
                _collect(lambda other: other.tmdb_id == movie.tmdb_id)
            title = movie.title.lower()
            _collect(lambda other: other.title.lower() == title)

            if len(group) > 1:
                processed.update(members)
                groups.append(group)

        return groups
