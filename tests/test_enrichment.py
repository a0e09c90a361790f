"""Tests for the background TMDB enrichment job."""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any

import httpx
import pytest

from app.config import Settings
from app.errors import ConflictError
from app.events import EventBus
from app.models import MovieCreate
from app.services.auth import AuthService
from app.services.enrichment import EnrichmentService
from app.services.movies import MovieService
from app.services.tmdb import TMDBClient

HEAT_DETAILS = {
    "id": 949,
    "title": "Heat",
    "original_title": "Heat",
    "overview": "Obsessive master thief McCauley leads a crew.",
    "runtime": 170,
    "poster_path": "/heat.jpg",
    "imdb_id": "tt0113277",
    "genres": [{"id": 80, "name": "Crime"}, {"id": 18, "name": "Drama"}],
}
HEAT_CREDITS = {
    "cast": [{"id": 1158, "name": "Al Pacino"}, {"id": 380, "name": "Robert De Niro"}],
    "crew": [{"id": 638, "name": "Michael Mann", "job": "Director"}],
}
RONIN_DETAILS = {"id": 8195, "title": "Ronin", "poster_path": "/ronin.jpg", "runtime": 122}
FINGERSMITH_DETAILS = {"id": 5000, "title": "Fingersmith", "poster_path": "/fingersmith.jpg"}
BREAKING_BAD_DETAILS = {
    "id": 1396,
    "name": "Breaking Bad",
    "original_name": "Breaking Bad",
    "poster_path": "/bb.jpg",
    "episode_run_time": [45, 47],
    "created_by": [{"id": 66633, "name": "Vince Gilligan"}],
    "genres": [{"id": 18, "name": "Drama"}],
}
BREAKING_BAD_CREDITS = {"cast": [{"id": 17419, "name": "Bryan Cranston"}], "crew": []}

MOVIE_SEARCH = {"Heat": 949, "Ronin": 8195, "Fingersmith": 5000}
JSON_ROUTES: dict[str, dict[str, Any]] = {
    "/movie/949/credits": HEAT_CREDITS,
    "/movie/949": HEAT_DETAILS,
    "/movie/8195": RONIN_DETAILS,
    "/movie/5000/credits": {"cast": [], "crew": []},
    "/movie/5000": FINGERSMITH_DETAILS,
    "/tv/1396/credits": BREAKING_BAD_CREDITS,
    "/tv/1396": BREAKING_BAD_DETAILS,
    "/find/tt0113277": {"movie_results": [{"id": 949, "title": "Heat"}]},
}


def tmdb_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path.removeprefix("/3")
    query = request.url.params.get("query")
    if path == "/search/movie":
        if query in MOVIE_SEARCH:
            return httpx.Response(
                200, json={"results": [{"id": MOVIE_SEARCH[query], "title": query}]}
            )
        return httpx.Response(200, json={"results": []})
    if path == "/search/tv":
        if query == "Breaking Bad":
            return httpx.Response(
                200, json={"results": [{"id": 1396, "name": "Breaking Bad"}]}
            )
        return httpx.Response(200, json={"results": []})
    if path == "/movie/8195/credits":
        return httpx.Response(500, json={})
    if path in JSON_ROUTES:
        return httpx.Response(200, json=JSON_ROUTES[path])
    return httpx.Response(404, json={})


class Harness:
    def __init__(
        self,
        database,
        password_hasher,
        client: httpx.AsyncClient,
        delay_seconds: float = 0,
    ):
        self.events = EventBus()
        self.subscription = self.events.subscribe()
        self.movies = MovieService(database.session_factory, self.events)
        self.auth = AuthService(
            database.session_factory, "secret", password_hasher=password_hasher
        )
        settings = Settings(_env_file=None, JWT_SECRET="secret")
        self.tmdb = TMDBClient(settings, client, api_key="key")
        self.enrichment = EnrichmentService(
            self.movies, self.tmdb, self.auth, self.events, delay_seconds=delay_seconds
        )

    def job_events(self) -> list[dict[str, Any]]:
        messages = [json.loads(message) for message in self.subscription.drain()]
        return [m for m in messages if m["type"].startswith("tmdb_enrich")]


def mock_client(
    requests: list[tuple[float, httpx.Request]] | None = None,
) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append((time.monotonic(), request))
        return tmdb_handler(request)

    return httpx.AsyncClient(
        base_url="https://tmdb.test/3", transport=httpx.MockTransport(handler)
    )


@pytest.mark.anyio("asyncio")
async def test_enrichment_fills_missing_metadata(database, password_hasher) -> None:
    await database.create_all()
    async with mock_client() as client:
        harness = Harness(database, password_hasher, client)
        user = (await harness.auth.register("alice", "alice@example.com", "pw")).user
        heat = await harness.movies.create(user.id, MovieCreate(title="Heat™", production_year=1995))
        await harness.movies.create(user.id, MovieCreate(title="Unknown Film"))
        await harness.movies.create(
            user.id, MovieCreate(title="Done", tmdb_id=1, poster_path="/done.jpg")
        )

        start = await harness.enrichment.enrich(user.id)
        await harness.enrichment.wait()

        assert (start.started, start.total) == (True, 2)
        enriched = await harness.movies.get_by_id(user.id, heat.id)

    assert enriched.tmdb_id == 949
    assert enriched.director == "Michael Mann"
    assert enriched.actors == "Al Pacino, Robert De Niro"
    assert enriched.genres == "Crime, Drama"
    assert enriched.poster_path == "/heat.jpg"
    assert enriched.title == "Heat™"

    status = harness.enrichment.status()
    assert status == {
        "running": False,
        "cancelled": False,
        "total": 2,
        "current": 2,
        "enriched": 1,
        "errors_count": 1,
    }
    events = harness.job_events()
    assert [event["type"] for event in events] == [
        "tmdb_enrich_started",
        "tmdb_enrich_progress",
        "tmdb_enrich_complete",
    ]
    assert events[0]["payload"] == {"total": 2}
    assert events[2]["payload"]["errors"] == ["No TMDB data found: Unknown Film"]
    await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_second_start_conflicts_and_cancel_stops_job(database, password_hasher) -> None:
    await database.create_all()
    async with mock_client() as client:
        harness = Harness(database, password_hasher, client)
        user = (await harness.auth.register("alice", "alice@example.com", "pw")).user
        for title in ("Heat", "Alien", "Casablanca"):
            await harness.movies.create(user.id, MovieCreate(title=title))

        await harness.enrichment.enrich(user.id)
        with pytest.raises(ConflictError):
            await harness.enrichment.enrich(user.id)

        assert harness.enrichment.cancel() is True
        await harness.enrichment.wait()

    status = harness.enrichment.status()
    assert status["running"] is False
    assert status["cancelled"] is True
    assert status["current"] == 0
    assert [event["type"] for event in harness.job_events()] == [
        "tmdb_enrich_started",
        "tmdb_enrich_cancelled",
    ]
    assert harness.enrichment.cancel() is False
    await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_nothing_to_enrich(database, password_hasher) -> None:
    await database.create_all()
    async with mock_client() as client:
        harness = Harness(database, password_hasher, client)
        user = (await harness.auth.register("alice", "alice@example.com", "pw")).user
        await harness.movies.create(
            user.id, MovieCreate(title="Heat", tmdb_id=949, poster_path="/heat.jpg")
        )

        start = await harness.enrichment.enrich(user.id)

    assert (start.started, start.total) == (False, 0)
    assert harness.job_events() == []
    await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_refresh_respects_force(database, password_hasher) -> None:
    """Without force existing values survive; with force TMDB wins."""

    await database.create_all()
    async with mock_client() as client:
        harness = Harness(database, password_hasher, client)
        user = (await harness.auth.register("alice", "alice@example.com", "pw")).user
        movie = await harness.movies.create(
            user.id, MovieCreate(title="Heat", tmdb_id=949, director="Someone Else")
        )

        gentle = await harness.enrichment.refresh_movie_tmdb_internal(user.id, movie)
        assert gentle is not None
        assert gentle.director == "Someone Else"
        assert gentle.running_time == 170

        forced = await harness.enrichment.refresh_movie_tmdb_internal(
            user.id, gentle, force=True
        )
        assert forced is not None
        assert forced.director == "Michael Mann"

        missing = await harness.movies.create(user.id, MovieCreate(title="Nothing"))
        assert await harness.enrichment.refresh_movie_tmdb_internal(user.id, missing) is None
    await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_missing_credits_still_apply_details(database, password_hasher) -> None:
    await database.create_all()
    async with mock_client() as client:
        harness = Harness(database, password_hasher, client)
        user = (await harness.auth.register("alice", "alice@example.com", "pw")).user
        ronin = await harness.movies.create(user.id, MovieCreate(title="Ronin"))

        await harness.enrichment.enrich(user.id)
        await harness.enrichment.wait()
        enriched = await harness.movies.get_by_id(user.id, ronin.id)

    assert enriched.tmdb_id == 8195
    assert enriched.poster_path == "/ronin.jpg"
    assert enriched.running_time == 122
    assert enriched.director is None
    assert enriched.actors is None
    status = harness.enrichment.status()
    assert (status["enriched"], status["errors_count"]) == (1, 0)
    await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_imdb_id_is_tried_before_title_search(database, password_hasher) -> None:
    await database.create_all()
    requests: list[tuple[float, httpx.Request]] = []
    async with mock_client(requests) as client:
        harness = Harness(database, password_hasher, client)
        user = (await harness.auth.register("alice", "alice@example.com", "pw")).user
        movie = await harness.movies.create(
            user.id, MovieCreate(title="Heat - Wärmebild", imdb_id="tt0113277")
        )

        updated = await harness.enrichment.refresh_movie_tmdb_internal(user.id, movie)

    assert updated is not None
    assert updated.tmdb_id == 949
    paths = [request.url.path for _, request in requests]
    assert paths[0] == "/3/find/tt0113277"
    assert "/3/search/movie" not in paths
    await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_unknown_imdb_id_falls_back_to_title(database, password_hasher) -> None:
    await database.create_all()
    async with mock_client() as client:
        harness = Harness(database, password_hasher, client)
        user = (await harness.auth.register("alice", "alice@example.com", "pw")).user
        movie = await harness.movies.create(
            user.id, MovieCreate(title="Heat", imdb_id="tt9999999")
        )

        updated = await harness.enrichment.refresh_movie_tmdb_internal(user.id, movie)

    assert updated is not None
    assert updated.tmdb_id == 949
    await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_refresh_falls_back_to_tv_series(database, password_hasher) -> None:
    await database.create_all()
    async with mock_client() as client:
        harness = Harness(database, password_hasher, client)
        user = (await harness.auth.register("alice", "alice@example.com", "pw")).user
        box = await harness.movies.create(
            user.id, MovieCreate(title="Breaking Bad - Die komplette erste Staffel")
        )

        movies_only = await harness.enrichment.refresh_movie_tmdb_internal(user.id, box)
        series = await harness.enrichment.refresh_movie_tmdb_internal(
            user.id, box, try_tv=True
        )

    assert movies_only is None
    assert series is not None
    assert series.tmdb_id == 1396
    assert series.director == "Vince Gilligan"
    assert series.actors == "Bryan Cranston"
    assert series.running_time == 45
    assert series.poster_path == "/bb.jpg"
    assert series.title == "Breaking Bad - Die komplette erste Staffel"
    await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_refresh_retries_with_looser_titles(database, password_hasher) -> None:
    await database.create_all()
    async with mock_client() as client:
        harness = Harness(database, password_hasher, client)
        user = (await harness.auth.register("alice", "alice@example.com", "pw")).user
        movie = await harness.movies.create(
            user.id, MovieCreate(title="Sarah Waters' Fingersmith (Doppel-DVD)")
        )

        updated = await harness.enrichment.refresh_movie_tmdb_internal(
            user.id, movie, try_tv=True
        )

    assert updated is not None
    assert updated.tmdb_id == 5000
    assert updated.poster_path == "/fingersmith.jpg"
    await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_consecutive_movies_are_spaced_by_the_delay(database, password_hasher) -> None:
    await database.create_all()
    delay = 0.25
    requests: list[tuple[float, httpx.Request]] = []
    async with mock_client(requests) as client:
        harness = Harness(database, password_hasher, client, delay_seconds=delay)
        user = (await harness.auth.register("alice", "alice@example.com", "pw")).user
        for title in ("Heat", "Ronin", "Unknown Film"):
            await harness.movies.create(user.id, MovieCreate(title=title))

        await harness.enrichment.enrich(user.id)
        await harness.enrichment.wait()

    searches = [at for at, request in requests if request.url.path == "/3/search/movie"]
    assert len(searches) == 3
    gaps = [later - earlier for earlier, later in zip(searches, searches[1:])]
    assert all(gap >= delay - 0.005 for gap in gaps), gaps
    await database.dispose()


def test_default_delay_is_a_quarter_second() -> None:
    settings = Settings(_env_file=None, JWT_SECRET="secret")

    assert settings.enrich_delay_ms == 250
    assert settings.enrich_delay_seconds == 0.25


@pytest.mark.anyio("asyncio")
async def test_cancel_during_run_stops_at_next_boundary(database, password_hasher) -> None:
    await database.create_all()
    async with mock_client() as client:
        harness = Harness(database, password_hasher, client, delay_seconds=0.3)
        user = (await harness.auth.register("alice", "alice@example.com", "pw")).user
        for title in ("Heat", "Alien", "Casablanca"):
            await harness.movies.create(user.id, MovieCreate(title=title))

        await harness.enrichment.enrich(user.id)
        for _ in range(200):
            if harness.enrichment.status()["current"] >= 1:
                break
            await asyncio.sleep(0.01)
        assert harness.enrichment.cancel() is True
        await harness.enrichment.wait()

    status = harness.enrichment.status()
    assert status["cancelled"] is True
    assert status["running"] is False
    assert status["current"] == 1
    events = harness.job_events()
    assert [event["type"] for event in events] == [
        "tmdb_enrich_started",
        "tmdb_enrich_cancelled",
    ]
    assert events[1]["payload"]["current"] == 1
    await database.dispose()
