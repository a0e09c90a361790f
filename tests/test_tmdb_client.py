"""Tests for the TMDB API client."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from app.config import Settings
from app.errors import ExternalApiError
from app.services.tmdb import TMDBClient, TmdbCredits, poster_url


def build_settings(**overrides: Any) -> Settings:
    base = {"JWT_SECRET": "secret", "TMDB_API_URL": "https://tmdb.test/3"}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def _movie(index: int) -> dict[str, Any]:
    return {
        "id": index,
        "title": f"Movie {index}",
        "release_date": "1999-03-31",
        "poster_path": f"/p{index}.jpg",
    }


@pytest.mark.anyio("asyncio")
async def test_search_movies_follows_pages_until_short_page() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        page = int(request.url.params["page"])
        count = 20 if page == 1 else 3
        offset = (page - 1) * 20
        return httpx.Response(
            200,
            json={
                "page": page,
                "total_pages": 4,
                "results": [_movie(offset + index) for index in range(count)],
            },
        )

    async with httpx.AsyncClient(
        base_url="https://tmdb.test/3", transport=httpx.MockTransport(handler)
    ) as client:
        tmdb = TMDBClient(build_settings(), client, api_key="key")
        movies = await tmdb.search_movies("matrix", year=1999, max_pages=5)

    assert len(movies) == 23
    assert len(requests) == 2
    first = requests[0].url.params
    assert first["api_key"] == "key"
    assert first["language"] == "de-DE"
    assert first["year"] == "1999"
    assert first["include_adult"] == "false"
    assert movies[0].year == "1999"


@pytest.mark.anyio("asyncio")
async def test_single_page_by_default() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(
            200, json={"total_pages": 3, "results": [_movie(i) for i in range(20)]}
        )

    async with httpx.AsyncClient(
        base_url="https://tmdb.test/3", transport=httpx.MockTransport(handler)
    ) as client:
        tmdb = TMDBClient(build_settings(), client, api_key="key")
        movies = await tmdb.search_movies("matrix", language="en-US")

    assert calls == 1
    assert len(movies) == 20


@pytest.mark.anyio("asyncio")
async def test_api_key_can_be_swapped_at_runtime() -> None:
    seen_keys: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_keys.append(request.url.params["api_key"])
        return httpx.Response(200, json={"id": 603, "title": "The Matrix"})

    async with httpx.AsyncClient(
        base_url="https://tmdb.test/3", transport=httpx.MockTransport(handler)
    ) as client:
        tmdb = TMDBClient(build_settings(), client)
        assert not tmdb.is_configured
        with pytest.raises(ExternalApiError, match="not configured"):
            await tmdb.get_movie_details(603)

        tmdb.set_api_key("first")
        await tmdb.get_movie_details(603)
        tmdb.set_api_key("second")
        details = await tmdb.get_movie_details(603)

    assert seen_keys == ["first", "second"]
    assert details.title == "The Matrix"


@pytest.mark.anyio("asyncio")
async def test_http_errors_become_external_api_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"status_message": "Invalid API key"})

    async with httpx.AsyncClient(
        base_url="https://tmdb.test/3", transport=httpx.MockTransport(handler)
    ) as client:
        tmdb = TMDBClient(build_settings(), client, api_key="bad")
        with pytest.raises(ExternalApiError) as excinfo:
            await tmdb.search_movies("test")

    assert excinfo.value.status_code == 500
    assert "401" in excinfo.value.message


def test_credits_helpers_pick_director_and_cast() -> None:
    credits = TmdbCredits.model_validate(
        {
            "cast": [{"id": index, "name": f"Actor {index}"} for index in range(12)],
            "crew": [
                {"id": 100, "name": "Someone", "job": "Producer"},
                {"id": 101, "name": "Lana Wachowski", "job": "Director"},
            ],
        }
    )

    assert credits.director() == "Lana Wachowski"
    assert credits.top_cast(10) == [f"Actor {index}" for index in range(10)]


def test_poster_url_uses_size() -> None:
    assert poster_url("/abc.jpg", "w200") == "https://image.tmdb.org/t/p/w200/abc.jpg"
