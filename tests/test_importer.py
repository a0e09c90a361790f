"""Tests for the CSV collection importer."""

from __future__ import annotations

import json

import pytest

from app.db_models import User
from app.events import EventBus
from app.models import CollectionFilter, MovieFilter, SeriesFilter
from app.services.collections import CollectionService
from app.services.importer import ImporterService, coerce_row, decode_upload
from app.services.movies import MovieService
from app.services.series import SeriesService


async def create_user(database, username: str = "owner") -> str:
    async with database.session() as session:
        user = User(username=username, email=f"{username}@example.com", password_hash="x")
        session.add(user)
        await session.commit()
        return user.id


def test_coerce_row_parses_typed_columns() -> None:
    values = coerce_row(
        {
            "Production Year": "1999",
            "Personal Rating": "8,5",
            "Watched": "Ja",
            "3D": "no",
            "Discs": "two",
            "Director": "",
            "Par. Rating": "FSK 16",
            "Group": "Favourites",
        }
    )

    assert values["production_year"] == 1999
    assert values["personal_rating"] == pytest.approx(8.5)
    assert values["watched"] is True
    assert values["is_3d"] is False
    assert "discs" not in values
    assert "director" not in values
    assert values["rating"] == "FSK 16"
    assert values["group"] == "Favourites"


def test_decode_upload_falls_back_to_latin1() -> None:
    assert decode_upload("\ufeffTitle\nKöln".encode("utf-8")) == "Title\nKöln"
    assert decode_upload("Title\nKöln".encode("latin-1")) == "Title\nKöln"


@pytest.mark.anyio("asyncio")
async def test_import_dispatches_rows_by_type(database) -> None:
    await database.create_all()
    owner = await create_user(database)
    events = EventBus()
    subscription = events.subscribe()
    importer = ImporterService(database.session_factory, events)
    csv_bytes = (
        "Type,Title,Production Year,Watched,Network\n"
        ",A,2001,yes,\n"
        "Series,B,,,HBO\n"
        "Collection,,,,\n"
    ).encode("utf-8")

    result = await importer.import_csv(owner, csv_bytes)

    assert result.movies_imported == 1
    assert result.series_imported == 1
    assert result.collections_imported == 0
    assert result.errors == ["Row 4: Missing title"]

    movies = await MovieService(database.session_factory).list(owner, MovieFilter())
    assert [(m.title, m.production_year, m.watched) for m in movies] == [("A", 2001, True)]
    series = await SeriesService(database.session_factory).list(owner, SeriesFilter())
    assert [(s.title, s.network) for s in series] == [("B", "HBO")]

    messages = [json.loads(message) for message in subscription.drain()]
    assert messages[-1]["type"] == "collection_imported"
    assert messages[-1]["payload"]["movies_imported"] == 1
    await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_import_collections_and_unknown_types(database) -> None:
    """Unrecognised type tags are imported as movies."""

    await database.create_all()
    owner = await create_user(database)
    importer = ImporterService(database.session_factory)
    csv_bytes = (
        "Type,Title,Edition\n"
        "Collection,Box,Deluxe\n"
        "Blu-ray,Film,\n"
    ).encode("utf-8")

    result = await importer.import_csv(owner, csv_bytes)

    assert (result.movies_imported, result.collections_imported) == (1, 1)
    assert result.errors == []
    boxes = await CollectionService(database.session_factory).list(owner, CollectionFilter())
    assert [(c.title, c.edition) for c in boxes] == [("Box", "Deluxe")]
    await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_failed_insert_is_recorded_and_import_continues(database) -> None:
    await database.create_all()
    importer = ImporterService(database.session_factory)
    csv_bytes = "Type,Title\n,A\n,B\n".encode("utf-8")

    # No such user: the foreign key rejects every insert.
    result = await importer.import_csv("00000000-0000-0000-0000-000000000000", csv_bytes)

    assert result.movies_imported == 0
    assert len(result.errors) == 2
    assert result.errors[0].startswith("Row 2: ")
    assert result.errors[1].startswith("Row 3: ")
    await database.dispose()
