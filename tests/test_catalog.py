"""Tests for the owner-scoped movie and series catalogs."""

from __future__ import annotations

import json

import pytest

from app.database import Database
from app.db_models import User
from app.errors import NotFoundError
from app.events import EventBus
from app.models import (
    MovieCreate,
    MovieFilter,
    MovieUpdate,
    SeriesCreate,
    SeriesFilter,
    SeriesUpdate,
)
from app.services.movies import MovieService
from app.services.series import SeriesService


async def create_user(database: Database, username: str) -> str:
    async with database.session() as session:
        user = User(
            username=username,
            email=f"{username}@example.com",
            password_hash="unused",
            role="user",
        )
        session.add(user)
        await session.commit()
        return user.id


@pytest.mark.anyio("asyncio")
async def test_movie_crud_round_trip(database) -> None:
    await database.create_all()
    events = EventBus()
    subscription = events.subscribe()
    movies = MovieService(database.session_factory, events)
    owner = await create_user(database, "owner")

    created = await movies.create(
        owner, MovieCreate(title="Heat", production_year=1995, disc_type="Blu-ray")
    )
    assert created.user_id == owner
    assert created.watched is False

    fetched = await movies.get_by_id(owner, created.id)
    assert fetched.title == "Heat"

    updated = await movies.update(owner, created.id, MovieUpdate(watched=True))
    assert updated.watched is True
    assert updated.production_year == 1995
    assert updated.disc_type == "Blu-ray"
    assert updated.updated_at >= created.updated_at

    await movies.delete(owner, created.id)
    with pytest.raises(NotFoundError):
        await movies.get_by_id(owner, created.id)

    assert [json.loads(m)["type"] for m in subscription.drain()] == [
        "movie_added",
        "movie_updated",
        "movie_deleted",
    ]
    await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_foreign_rows_look_absent(database) -> None:
    """Another user's ids behave exactly like ids that do not exist."""

    await database.create_all()
    movies = MovieService(database.session_factory)
    owner = await create_user(database, "owner")
    intruder = await create_user(database, "intruder")
    movie = await movies.create(owner, MovieCreate(title="Heat"))

    with pytest.raises(NotFoundError):
        await movies.get_by_id(intruder, movie.id)
    with pytest.raises(NotFoundError):
        await movies.update(intruder, movie.id, MovieUpdate(title="Stolen"))
    with pytest.raises(NotFoundError):
        await movies.delete(intruder, movie.id)

    assert (await movies.get_by_id(owner, movie.id)).title == "Heat"
    assert await movies.count(intruder, MovieFilter()) == 0
    await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_movie_filters_sorting_and_paging(database) -> None:
    await database.create_all()
    movies = MovieService(database.session_factory)
    owner = await create_user(database, "owner")
    for title, year, genres, watched in [
        ("Alien", 1979, "Horror, Sci-Fi", True),
        ("Blade Runner", 1982, "Sci-Fi", False),
        ("Casablanca", 1942, "Drama", True),
    ]:
        await movies.create(
            owner,
            MovieCreate(title=title, production_year=year, genres=genres, watched=watched),
        )

    sci_fi = await movies.list(owner, MovieFilter(genre="Sci-Fi"))
    assert [m.title for m in sci_fi] == ["Alien", "Blade Runner"]

    watched = await movies.list(owner, MovieFilter(watched=True, sort_by="production_year"))
    assert [m.title for m in watched] == ["Casablanca", "Alien"]

    newest = await movies.list(owner, MovieFilter(sort_by="production_year", sort_order="desc", limit=1))
    assert [m.title for m in newest] == ["Blade Runner"]

    ranged = MovieFilter(year_from=1970, year_to=1980)
    assert [m.title for m in await movies.list(owner, ranged)] == ["Alien"]
    assert await movies.count(owner, ranged) == 1

    # Unknown sort columns fall back to the title ordering.
    unsafe = MovieFilter(sort_by="title; DROP TABLE movies", offset=1)
    assert [m.title for m in await movies.list(owner, unsafe)] == ["Blade Runner", "Casablanca"]

    searched = await movies.list(owner, MovieFilter(search="blanc"))
    assert [m.title for m in searched] == ["Casablanca"]
    await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_find_duplicates_priority(database) -> None:
    await database.create_all()
    movies = MovieService(database.session_factory)
    owner = await create_user(database, "owner")
    by_barcode = await movies.create(owner, MovieCreate(title="Heat", barcode="111"))
    by_tmdb = await movies.create(owner, MovieCreate(title="Heat", tmdb_id=949))
    by_original = await movies.create(
        owner, MovieCreate(title="Das Boot", original_title="The Boat")
    )

    barcode_hits = await movies.find_duplicates(owner, "Anything", barcode="111", tmdb_id=949)
    assert [m.id for m in barcode_hits] == [by_barcode.id]

    tmdb_hits = await movies.find_duplicates(owner, "Anything", barcode="999", tmdb_id=949)
    assert [m.id for m in tmdb_hits] == [by_tmdb.id]

    title_hits = await movies.find_duplicates(owner, "Heat")
    assert {m.id for m in title_hits} == {by_barcode.id, by_tmdb.id}

    original_hits = await movies.find_duplicates(owner, "The Boat")
    assert [m.id for m in original_hits] == [by_original.id]

    assert await movies.find_duplicates(owner, "Unknown") == []
    await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_find_all_duplicates_groups(database) -> None:
    await database.create_all()
    movies = MovieService(database.session_factory)
    owner = await create_user(database, "owner")
    other = await create_user(database, "other")
    await movies.create(owner, MovieCreate(title="Alien", barcode="42"))
    await movies.create(owner, MovieCreate(title="Aliens", barcode="42"))
    await movies.create(owner, MovieCreate(title="alien"))
    await movies.create(owner, MovieCreate(title="Heat", tmdb_id=949))
    await movies.create(owner, MovieCreate(title="Heat (1995)", tmdb_id=949))
    await movies.create(owner, MovieCreate(title="Casablanca"))
    await movies.create(other, MovieCreate(title="Casablanca"))

    groups = await movies.find_all_duplicates(owner)

    titles = sorted(sorted(movie.title for movie in group) for group in groups)
    assert titles == [["Alien", "Aliens", "alien"], ["Heat", "Heat (1995)"]]
    await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_series_catalog(database) -> None:
    await database.create_all()
    series = SeriesService(database.session_factory)
    owner = await create_user(database, "owner")
    await series.create(owner, SeriesCreate(title="The Wire", network="HBO", episodes_count=60))
    created = await series.create(owner, SeriesCreate(title="Dark", network="Netflix"))

    hbo = await series.list(owner, SeriesFilter(network="HBO"))
    assert [s.title for s in hbo] == ["The Wire"]
    assert await series.count(owner, SeriesFilter(search="net")) == 1

    updated = await series.update(owner, created.id, SeriesUpdate(episodes_count=26))
    assert updated.episodes_count == 26
    assert updated.network == "Netflix"
    await database.dispose()
