"""Client for The Movie Database (TMDB) metadata API."""

from __future__ import annotations

import logging
import threading
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..config import Settings
from ..errors import ExternalApiError

logger = logging.getLogger(__name__)

IMAGE_BASE_URL = "https://image.tmdb.org/t/p/"
RESULTS_PER_PAGE = 20

ModelT = TypeVar("ModelT", bound=BaseModel)


class TmdbModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class TmdbNamed(TmdbModel):
    id: int | None = None
    name: str


class TmdbCountry(TmdbModel):
    iso_3166_1: str | None = None
    name: str


class TmdbLanguage(TmdbModel):
    iso_639_1: str | None = None
    name: str
    english_name: str | None = None


class TmdbMovie(TmdbModel):
    id: int
    title: str
    original_title: str | None = None
    overview: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    release_date: str | None = None
    vote_average: float | None = None
    vote_count: int | None = None
    popularity: float | None = None
    genre_ids: list[int] = Field(default_factory=list)

    @property
    def year(self) -> str | None:
        if self.release_date and len(self.release_date) >= 4:
            return self.release_date[:4]
        return None


class TmdbMovieDetails(TmdbModel):
    id: int
    title: str
    original_title: str | None = None
    tagline: str | None = None
    overview: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    release_date: str | None = None
    runtime: int | None = None
    vote_average: float | None = None
    budget: int | None = None
    revenue: int | None = None
    imdb_id: str | None = None
    genres: list[TmdbNamed] = Field(default_factory=list)
    production_companies: list[TmdbNamed] = Field(default_factory=list)
    production_countries: list[TmdbCountry] = Field(default_factory=list)
    spoken_languages: list[TmdbLanguage] = Field(default_factory=list)


class TmdbCast(TmdbModel):
    id: int
    name: str
    character: str | None = None
    order: int | None = None


class TmdbCrew(TmdbModel):
    id: int
    name: str
    job: str | None = None
    department: str | None = None


class TmdbCredits(TmdbModel):
    cast: list[TmdbCast] = Field(default_factory=list)
    crew: list[TmdbCrew] = Field(default_factory=list)

    def director(self) -> str | None:
        return next((member.name for member in self.crew if member.job == "Director"), None)

    def top_cast(self, limit: int = 10) -> list[str]:
        return [member.name for member in self.cast[:limit]]


class TmdbTvShow(TmdbModel):
    id: int
    name: str
    original_name: str | None = None
    overview: str | None = None
    poster_path: str | None = None
    first_air_date: str | None = None
    vote_average: float | None = None


class TmdbTvDetails(TmdbModel):
    id: int
    name: str
    original_name: str | None = None
    tagline: str | None = None
    overview: str | None = None
    poster_path: str | None = None
    first_air_date: str | None = None
    last_air_date: str | None = None
    number_of_episodes: int | None = None
    number_of_seasons: int | None = None
    episode_run_time: list[int] = Field(default_factory=list)
    status: str | None = None
    networks: list[TmdbNamed] = Field(default_factory=list)
    created_by: list[TmdbNamed] = Field(default_factory=list)
    genres: list[TmdbNamed] = Field(default_factory=list)


class TmdbCollection(TmdbModel):
    id: int
    name: str
    overview: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None


class TmdbCollectionDetails(TmdbCollection):
    parts: list[TmdbMovie] = Field(default_factory=list)


class _SearchPage(TmdbModel):
    page: int = 1
    results: list[dict[str, Any]] = Field(default_factory=list)
    total_pages: int = 1
    total_results: int = 0


def poster_url(path: str, size: str = "w500") -> str:
    """Return the absolute image URL for a TMDB poster path."""

    return f"{IMAGE_BASE_URL}{size}{path}"


class TMDBClient:
    """TMDB client whose API key can be swapped while the service runs."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        api_key: str | None = None,
    ):
        self._client = http_client
        self._default_language = settings.tmdb_language
        self._api_key_lock = threading.Lock()
        self._api_key = api_key or ""

    def set_api_key(self, api_key: str) -> None:
        with self._api_key_lock:
            self._api_key = api_key
        logger.info("TMDB API key %s", "updated" if api_key else "cleared")

    def get_api_key(self) -> str:
        with self._api_key_lock:
            api_key = self._api_key
        if not api_key:
            raise ExternalApiError("TMDB API key not configured")
        return api_key

    @property
    def is_configured(self) -> bool:
        with self._api_key_lock:
            return bool(self._api_key)

    async def search_movies(
        self,
        query: str,
        year: int | None = None,
        language: str | None = None,
        include_adult: bool = False,
        max_pages: int = 1,
    ) -> list[TmdbMovie]:
        """Search movies, following pagination up to ``max_pages`` pages."""

        movies: list[TmdbMovie] = []
        for page in range(1, max(1, max_pages) + 1):
            params: dict[str, Any] = {
                "query": query,
                "language": language or self._default_language,
                "include_adult": "true" if include_adult else "false",
                "page": page,
            }
            if year is not None:
                params["year"] = year
            result = await self._get("/search/movie", params, _SearchPage)
            movies.extend(self._parse_list(result.results, TmdbMovie))
            if len(result.results) < RESULTS_PER_PAGE or page >= result.total_pages:
                break
        return movies

    async def find_by_imdb_id(
        self, imdb_id: str, language: str | None = None
    ) -> TmdbMovie | None:
        payload = await self._get_json(
            f"/find/{imdb_id}",
            {
                "external_source": "imdb_id",
                "language": language or self._default_language,
            },
        )
        results = self._parse_list(payload.get("movie_results") or [], TmdbMovie)
        return results[0] if results else None

    async def get_movie_details(
        self, tmdb_id: int, language: str | None = None
    ) -> TmdbMovieDetails:
        return await self._get(
            f"/movie/{tmdb_id}",
            {"language": language or self._default_language},
            TmdbMovieDetails,
        )

    async def get_movie_credits(
        self, tmdb_id: int, language: str | None = None
    ) -> TmdbCredits:
        return await self._get(
            f"/movie/{tmdb_id}/credits",
            {"language": language or self._default_language},
            TmdbCredits,
        )

    async def search_tv(
        self,
        query: str,
        year: int | None = None,
        language: str | None = None,
        include_adult: bool = False,
    ) -> list[TmdbTvShow]:
        params: dict[str, Any] = {
            "query": query,
            "language": language or self._default_language,
            "include_adult": "true" if include_adult else "false",
            "page": 1,
        }
        if year is not None:
            params["first_air_date_year"] = year
        result = await self._get("/search/tv", params, _SearchPage)
        return self._parse_list(result.results, TmdbTvShow)

    async def get_tv_details(
        self, tmdb_id: int, language: str | None = None
    ) -> TmdbTvDetails:
        return await self._get(
            f"/tv/{tmdb_id}",
            {"language": language or self._default_language},
            TmdbTvDetails,
        )

    async def get_tv_credits(
        self, tmdb_id: int, language: str | None = None
    ) -> TmdbCredits:
        return await self._get(
            f"/tv/{tmdb_id}/credits",
            {"language": language or self._default_language},
            TmdbCredits,
        )

    async def search_collections(
        self, query: str, language: str | None = None
    ) -> list[TmdbCollection]:
        result = await self._get(
            "/search/collection",
            {"query": query, "language": language or self._default_language, "page": 1},
            _SearchPage,
        )
        return self._parse_list(result.results, TmdbCollection)

    async def get_collection_details(
        self, collection_id: int, language: str | None = None
    ) -> TmdbCollectionDetails:
        return await self._get(
            f"/collection/{collection_id}",
            {"language": language or self._default_language},
            TmdbCollectionDetails,
        )

    async def _get(
        self, endpoint: str, params: dict[str, Any], model: type[ModelT]
    ) -> ModelT:
        payload = await self._get_json(endpoint, params)
        try:
            return model.model_validate(payload)
        except PydanticValidationError as exc:
            logger.warning("Unexpected TMDB payload for %s: %s", endpoint, exc)
            raise ExternalApiError(f"Failed to parse TMDB response: {exc}") from exc

    async def _get_json(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        request_params = dict(params)
        request_params["api_key"] = self.get_api_key()
        try:
            response = await self._client.get(endpoint, params=request_params)
        except httpx.HTTPError as exc:
            logger.warning("TMDB request to %s failed: %s", endpoint, exc)
            raise ExternalApiError(f"TMDB request failed: {exc}") from exc

        if response.status_code >= 400:
            logger.warning(
                "TMDB request to %s returned %s", endpoint, response.status_code
            )
            raise ExternalApiError(f"TMDB returned status {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalApiError(f"Failed to parse TMDB response: {exc}") from exc
        if not isinstance(payload, dict):
            raise ExternalApiError("Failed to parse TMDB response: expected an object")
        return payload

    @staticmethod
    def _parse_list(items: list[Any], model: type[ModelT]) -> list[ModelT]:
        parsed: list[ModelT] = []
        for item in items:
            try:
                parsed.append(model.model_validate(item))
            except PydanticValidationError:
                logger.debug("Skipping malformed TMDB result: %s", item)
        return parsed
