"""Background TMDB enrichment of a user's movie catalog."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import ConflictError, ExternalApiError, MyMoviesError
from ..events import (
    TMDB_ENRICH_CANCELLED,
    TMDB_ENRICH_COMPLETE,
    TMDB_ENRICH_PROGRESS,
    TMDB_ENRICH_STARTED,
    EventBus,
)
from ..models import MovieRead, MovieUpdate
from ..utils import alternative_titles, clean_search_title, extract_series_name
from .auth import AuthService
from .movies import MovieService
from .tmdb import TMDBClient, TmdbCredits, TmdbMovieDetails, TmdbTvDetails

logger = logging.getLogger(__name__)

TMDB_ENRICH_JOB = "tmdb_enrich"
PROGRESS_EVERY = 10
MAX_CAST_MEMBERS = 10


class EnrichOutcome(str, Enum):
    UPDATED = "updated"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class JobState:
    """Counters of a running job; only the worker task writes them."""

    running: bool = False
    cancelled: bool = False
    total: int = 0
    current: int = 0
    enriched: int = 0
    errors: list[str] = field(default_factory=list)

    def reset(self, total: int) -> None:
        self.total = total
        self.current = 0
        self.enriched = 0
        self.errors = []
        self.cancelled = False
        self.running = True

    def snapshot(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "cancelled": self.cancelled,
            "total": self.total,
            "current": self.current,
            "enriched": self.enriched,
            "errors_count": len(self.errors),
        }


@dataclass
class JobHandle:
    state: JobState = field(default_factory=JobState)
    task: asyncio.Task[None] | None = None


@dataclass(slots=True)
class EnrichStart:
    """Result of a start request; ``started`` is false when nothing needed work."""

    started: bool
    total: int


class EnrichmentService:
    """Coordinate at most one TMDB enrichment job per job kind."""

    def __init__(
        self,
        movies: MovieService,
        tmdb: TMDBClient,
        auth: AuthService,
        events: EventBus,
        *,
        delay_seconds: float = 0.25,
        default_language: str = "de-DE",
    ):
        self._movies = movies
        self._tmdb = tmdb
        self._auth = auth
        self._events = events
        self._delay_seconds = delay_seconds
        self._default_language = default_language
        self._jobs: dict[str, JobHandle] = {}

    def _handle(self, kind: str = TMDB_ENRICH_JOB) -> JobHandle:
        return self._jobs.setdefault(kind, JobHandle())

    @property
    def state(self) -> JobState:
        return self._handle().state

    def status(self) -> dict[str, Any]:
        return self.state.snapshot()

    async def enrich(self, user_id: str, *, force: bool = False) -> EnrichStart:
        """Start enriching the user's movies; raises ``ConflictError`` if busy."""

        handle = self._handle()
        if handle.state.running:
            raise ConflictError("TMDB enrichment already running")

        movies = await self._movies.list_all(user_id)
        if not force:
            movies = [
                movie for movie in movies if movie.tmdb_id is None or not movie.poster_path
            ]
        if not movies:
            logger.info("TMDB enrichment for %s: nothing to do", user_id)
            return EnrichStart(started=False, total=0)

        user = await self._auth.get_user(user_id)
        # Another request may have started a job while we were awaiting.
        if handle.state.running:
            raise ConflictError("TMDB enrichment already running")

        handle.state.reset(len(movies))
        self._events.publish(TMDB_ENRICH_STARTED, {"total": len(movies)})
        logger.info("TMDB enrichment started for %s (%d movies)", user_id, len(movies))
        handle.task = asyncio.create_task(
            self._run(
                handle,
                user_id,
                movies,
                language=user.language or self._default_language,
                include_adult=user.include_adult,
                force=force,
            )
        )
        return EnrichStart(started=True, total=len(movies))

    def cancel(self) -> bool:
        """Ask a running job to stop at the next iteration boundary."""

        state = self.state
        if not state.running:
            return False
        state.cancelled = True
        logger.info("TMDB enrichment cancellation requested")
        return True

    async def wait(self) -> None:
        task = self._handle().task
        if task is not None:
            await task

    async def stop(self) -> None:
        """Abort running jobs; used on application shutdown."""

        for handle in self._jobs.values():
            if handle.task is None or handle.task.done():
                continue
            handle.task.cancel()
            with suppress(asyncio.CancelledError):
                await handle.task
            handle.state.running = False

    async def _run(
        self,
        handle: JobHandle,
        user_id: str,
        movies: list[MovieRead],
        *,
        language: str,
        include_adult: bool,
        force: bool,
    ) -> None:
        state = handle.state
        try:
            for index, movie in enumerate(movies):
                if index:
                    await asyncio.sleep(self._delay_seconds)
                if state.cancelled:
                    self._events.publish(
                        TMDB_ENRICH_CANCELLED,
                        {
                            "current": state.current,
                            "total": state.total,
                            "enriched": state.enriched,
                        },
                    )
                    logger.info(
                        "TMDB enrichment cancelled at %d/%d", state.current, state.total
                    )
                    return

                outcome = await self._enrich_one(
                    user_id, movie, language=language, include_adult=include_adult, force=force
                )
                if outcome is EnrichOutcome.UPDATED:
                    state.enriched += 1
                elif outcome is EnrichOutcome.NOT_FOUND:
                    state.errors.append(f"No TMDB data found: {movie.title}")
                else:
                    state.errors.append(f"Failed to update: {movie.title}")
                state.current = index + 1

                if state.current % PROGRESS_EVERY == 0 or state.current == state.total:
                    self._events.publish(
                        TMDB_ENRICH_PROGRESS,
                        {
                            "current": state.current,
                            "total": state.total,
                            "enriched": state.enriched,
                            "errors_count": len(state.errors),
                        },
                    )

            self._events.publish(
                TMDB_ENRICH_COMPLETE,
                {
                    "total": state.total,
                    "enriched": state.enriched,
                    "errors": list(state.errors),
                },
            )
            logger.info(
                "TMDB enrichment finished: %d/%d enriched, %d errors",
                state.enriched,
                state.total,
                len(state.errors),
            )
        except Exception:  # pragma: no cover - background safety net
            logger.exception("TMDB enrichment worker failed")
        finally:
            state.running = False

    async def _enrich_one(
        self,
        user_id: str,
        movie: MovieRead,
        *,
        language: str,
        include_adult: bool,
        force: bool,
    ) -> EnrichOutcome:
        try:
            updated = await self.refresh_movie_tmdb_internal(
                user_id, movie, language=language, include_adult=include_adult, force=force
            )
        except MyMoviesError as exc:
            logger.warning("TMDB enrichment of %s failed: %s", movie.title, exc.message)
            return EnrichOutcome.ERROR
        return EnrichOutcome.UPDATED if updated is not None else EnrichOutcome.NOT_FOUND

    async def refresh_movie_tmdb_internal(
        self,
        user_id: str,
        movie: MovieRead,
        *,
        language: str | None = None,
        include_adult: bool = False,
        force: bool = False,
        try_tv: bool = False,
    ) -> MovieRead | None:
        """Fetch TMDB details and credits for one movie and write them back.

        Returns ``None`` when TMDB has no match. Without ``force`` only empty
        attributes are filled in. ``try_tv`` widens the lookup to TV series and
        to looser retail-title variants when no movie matches.
        """

        try:
            derived = await self._lookup_movie(movie, language, include_adult)
        except ExternalApiError:
            if not try_tv or movie.tmdb_id is None:
                raise
            # The stored id may belong to a TV series.
            derived = None
        if derived is None and try_tv:
            derived = await self._lookup_fallbacks(movie, language, include_adult)
        if derived is None:
            return None

        if not force:
            derived = {
                key: value
                for key, value in derived.items()
                if getattr(movie, key) in (None, "")
            }
        patch = MovieUpdate(**{key: value for key, value in derived.items() if value})
        return await self._movies.update(user_id, movie.id, patch)

    async def _lookup_movie(
        self, movie: MovieRead, language: str | None, include_adult: bool
    ) -> dict[str, Any] | None:
        details = await self._resolve_details(movie, language, include_adult)
        if details is None:
            return None
        return await self._movie_values(details, language)

    async def _resolve_details(
        self, movie: MovieRead, language: str | None, include_adult: bool
    ) -> TmdbMovieDetails | None:
        # Priority: stored tmdb_id, then imdb_id, then a title search.
        if movie.tmdb_id is not None:
            return await self._tmdb.get_movie_details(movie.tmdb_id, language)

        if movie.imdb_id:
            try:
                found = await self._tmdb.find_by_imdb_id(movie.imdb_id, language)
            except ExternalApiError as exc:
                logger.debug("IMDb lookup for %s failed: %s", movie.imdb_id, exc.message)
                found = None
            if found is not None:
                return await self._tmdb.get_movie_details(found.id, language)

        return await self._search_movie(
            movie.title, movie.production_year, language, include_adult
        )

    async def _lookup_fallbacks(
        self, movie: MovieRead, language: str | None, include_adult: bool
    ) -> dict[str, Any] | None:
        if movie.tmdb_id is not None:
            show = await self._tmdb.get_tv_details(movie.tmdb_id, language)
            return await self._tv_values(show, language)

        series_name = extract_series_name(movie.title)
        logger.debug("No movie match for %s, trying TV search for %s", movie.title, series_name)
        show = await self._search_show(series_name, language, include_adult)
        if show is not None:
            return await self._tv_values(show, language)

        for title in alternative_titles(movie.title):
            details = await self._search_movie(
                title, movie.production_year, language, include_adult
            )
            if details is not None:
                return await self._movie_values(details, language)
            show = await self._search_show(title, language, include_adult)
            if show is not None:
                return await self._tv_values(show, language)
        return None

    async def _search_movie(
        self,
        title: str,
        year: int | None,
        language: str | None,
        include_adult: bool,
    ) -> TmdbMovieDetails | None:
        results = await self._tmdb.search_movies(
            clean_search_title(title),
            year=year,
            language=language,
            include_adult=include_adult,
        )
        if not results:
            return None
        return await self._tmdb.get_movie_details(results[0].id, language)

    async def _search_show(
        self, title: str, language: str | None, include_adult: bool
    ) -> TmdbTvDetails | None:
        shows = await self._tmdb.search_tv(
            clean_search_title(title), language=language, include_adult=include_adult
        )
        if not shows:
            return None
        return await self._tmdb.get_tv_details(shows[0].id, language)

    async def _movie_values(
        self, details: TmdbMovieDetails, language: str | None
    ) -> dict[str, Any]:
        try:
            credits = await self._tmdb.get_movie_credits(details.id, language)
        except ExternalApiError as exc:
            logger.warning("TMDB credits for movie %s unavailable: %s", details.id, exc.message)
            credits = TmdbCredits()

        return {
            "tmdb_id": details.id,
            "imdb_id": details.imdb_id,
            "original_title": details.original_title,
            "description": details.overview,
            "tagline": details.tagline,
            "running_time": details.runtime,
            "poster_path": details.poster_path,
            "budget": details.budget,
            "revenue": details.revenue,
            "director": credits.director(),
            "actors": ", ".join(credits.top_cast(MAX_CAST_MEMBERS)) or None,
            "genres": ", ".join(genre.name for genre in details.genres) or None,
        }

    async def _tv_values(
        self, details: TmdbTvDetails, language: str | None
    ) -> dict[str, Any]:
        try:
            credits = await self._tmdb.get_tv_credits(details.id, language)
        except ExternalApiError as exc:
            logger.warning("TMDB credits for series %s unavailable: %s", details.id, exc.message)
            credits = TmdbCredits()

        # Series creators stand in for the director.
        return {
            "tmdb_id": details.id,
            "original_title": details.original_name,
            "description": details.overview,
            "tagline": details.tagline,
            "running_time": details.episode_run_time[0] if details.episode_run_time else None,
            "poster_path": details.poster_path,
            "director": ", ".join(creator.name for creator in details.created_by) or None,
            "actors": ", ".join(credits.top_cast(MAX_CAST_MEMBERS)) or None,
            "genres": ", ".join(genre.name for genre in details.genres) or None,
        }
