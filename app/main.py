"""Entry point for the FastAPI-powered media collection service."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager, suppress
from pathlib import Path
from typing import Annotated, Any

import httpx
from fastapi import (
    Depends,
    FastAPI,
    File,
    Query,
    Request,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, get_settings
from .database import Database
from .errors import (
    ExternalApiError,
    MyMoviesError,
    NotFoundError,
    ValidationError,
)
from .events import EventBus
from .models import (
    AdminCreateUserRequest,
    AuthResponse,
    Claims,
    CollectionCreate,
    CollectionFilter,
    CollectionItemCreate,
    CollectionItemRead,
    CollectionRead,
    CollectionUpdate,
    ForgotPasswordRequest,
    ImportResult,
    LoginRequest,
    MovieCreate,
    MovieFilter,
    MovieRead,
    MovieUpdate,
    PreferencesUpdate,
    RegisterRequest,
    ResetPasswordRequest,
    ScanRequest,
    ScanResponse,
    SeriesCreate,
    SeriesFilter,
    SeriesRead,
    SeriesUpdate,
    SetPasswordRequest,
    SettingStatus,
    SettingUpdate,
    TmdbResultSummary,
    UpdateRoleRequest,
    UserPublic,
)
from .security import get_auth_service, get_current_claims, require_admin
from .services.auth import AuthService
from .services.barcode import BarcodeClient, normalise_barcode
from .services.collections import CollectionService
from .services.enrichment import EnrichmentService
from .services.importer import ImporterService
from .services.movies import MovieService
from .services.series import SeriesService
from .services.settings import SettingKey, SettingsService
from .services.tmdb import TMDBClient, poster_url

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
SCAN_RESULT_LIMIT = 5
SEARCH_RESULT_LIMIT = 20
MAX_SEARCH_PAGES = 5
MAX_POSTER_BYTES = 5 * 1024 * 1024
MIN_POSTER_BYTES = 8
POSTER_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    settings: Settings = fastapi_app.state.settings
    transport: httpx.AsyncBaseTransport | None = fastapi_app.state.http_transport
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
            transport=transport,
        )
    )
    barcode_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(15.0, connect=5.0),
            transport=transport,
        )
    )
    database = Database(
        settings.database_url,
        pool_size=settings.database_pool_size,
        pool_timeout=settings.database_pool_timeout,
    )
    await database.create_all()

    events = EventBus()
    tmdb = TMDBClient(settings, tmdb_http_client)
    settings_service = SettingsService(database.session_factory, tmdb)
    stored_key = await settings_service.get(SettingKey.TMDB_API_KEY)
    tmdb.set_api_key(stored_key or settings.tmdb_api_key or "")

    auth_service = AuthService(
        database.session_factory,
        settings.jwt_secret,
        events=events,
        reset_url=settings.password_reset_url,
    )
    movie_service = MovieService(database.session_factory, events)
    enrichment_service = EnrichmentService(
        movie_service,
        tmdb,
        auth_service,
        events,
        delay_seconds=settings.enrich_delay_seconds,
        default_language=settings.tmdb_language,
    )

    fastapi_app.state.database = database
    fastapi_app.state.events = events
    fastapi_app.state.tmdb = tmdb
    fastapi_app.state.barcode = BarcodeClient(settings, barcode_http_client)
    fastapi_app.state.settings_service = settings_service
    fastapi_app.state.auth_service = auth_service
    fastapi_app.state.movie_service = movie_service
    fastapi_app.state.series_service = SeriesService(database.session_factory, events)
    fastapi_app.state.collection_service = CollectionService(
        database.session_factory, events
    )
    fastapi_app.state.importer = ImporterService(database.session_factory, events)
    fastapi_app.state.enrichment = enrichment_service

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await enrichment_service.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app(
    settings: Settings | None = None,
    *,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Personal movie, series and box-set collection manager",
        version="1.0.0",
        lifespan=lifespan,
    )
    fastapi_app.state.settings = settings
    fastapi_app.state.http_transport = http_transport

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    install_error_handlers(fastapi_app)
    register_routes(fastapi_app)

    settings.upload_dir.mkdir(parents=True, exist_ok=True)
    fastapi_app.mount(
        "/uploads", StaticFiles(directory=settings.upload_dir), name="uploads"
    )
    if settings.static_dir is not None and settings.static_dir.is_dir():
        fastapi_app.mount(
            "/", StaticFiles(directory=settings.static_dir, html=True), name="static"
        )
    return fastapi_app


def _service(app: FastAPI, name: str, expected: type) -> Any:
    service = getattr(app.state, name, None)
    if not isinstance(service, expected):
        raise RuntimeError(f"{expected.__name__} not initialised")
    return service


def get_movie_service(app: FastAPI) -> MovieService:
    return _service(app, "movie_service", MovieService)


def get_series_service(app: FastAPI) -> SeriesService:
    return _service(app, "series_service", SeriesService)


def get_collection_service(app: FastAPI) -> CollectionService:
    return _service(app, "collection_service", CollectionService)


def get_importer(app: FastAPI) -> ImporterService:
    return _service(app, "importer", ImporterService)


def get_enrichment_service(app: FastAPI) -> EnrichmentService:
    return _service(app, "enrichment", EnrichmentService)


def get_settings_service(app: FastAPI) -> SettingsService:
    return _service(app, "settings_service", SettingsService)


def get_tmdb_client(app: FastAPI) -> TMDBClient:
    return _service(app, "tmdb", TMDBClient)


def get_barcode_client(app: FastAPI) -> BarcodeClient:
    return _service(app, "barcode", BarcodeClient)


def get_event_bus(app: FastAPI) -> EventBus:
    return _service(app, "events", EventBus)


def install_error_handlers(fastapi_app: FastAPI) -> None:
    """Render every failure as ``{"error": message}``."""

    @fastapi_app.exception_handler(MyMoviesError)
    async def domain_error(_: Request, exc: MyMoviesError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("Request failed: %s", exc.message)
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    @fastapi_app.exception_handler(StarletteHTTPException)
    async def http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            {"error": str(exc.detail)},
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @fastapi_app.exception_handler(RequestValidationError)
    async def request_validation_error(
        _: Request, exc: RequestValidationError
    ) -> JSONResponse:
        problems = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ())[1:])
            message = error.get("msg", "invalid value")
            problems.append(f"{location}: {message}" if location else message)
        error = ValidationError("; ".join(problems) or "invalid request")
        return JSONResponse({"error": error.message}, status_code=error.status_code)

    @fastapi_app.exception_handler(Exception)
    async def unexpected_error(_: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error: %s", exc)
        return JSONResponse({"error": "Internal server error"}, status_code=500)


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/health", response_class=PlainTextResponse)
    async def healthcheck() -> str:
        return "OK"

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    @fastapi_app.post(f"{API_PREFIX}/auth/register", status_code=201)
    async def register(payload: RegisterRequest) -> AuthResponse:
        auth = get_auth_service(fastapi_app)
        return await auth.register(payload.username, payload.email, payload.password)

    @fastapi_app.post(f"{API_PREFIX}/auth/login")
    async def login(payload: LoginRequest) -> AuthResponse:
        return await get_auth_service(fastapi_app).login(
            payload.username, payload.password
        )

    @fastapi_app.post(f"{API_PREFIX}/auth/forgot-password")
    async def forgot_password(payload: ForgotPasswordRequest) -> dict[str, str]:
        message = await get_auth_service(fastapi_app).request_password_reset(
            payload.email
        )
        return {"message": message}

    @fastapi_app.post(f"{API_PREFIX}/auth/reset-password")
    async def reset_password(payload: ResetPasswordRequest) -> dict[str, str]:
        await get_auth_service(fastapi_app).reset_password(
            payload.token, payload.password
        )
        return {"message": "Password reset successfully"}

    @fastapi_app.get(f"{API_PREFIX}/auth/me")
    async def current_user(claims: Claims = Depends(get_current_claims)) -> UserPublic:
        return await get_auth_service(fastapi_app).get_user(claims.sub)

    @fastapi_app.put(f"{API_PREFIX}/auth/me/preferences")
    async def update_preferences(
        payload: PreferencesUpdate, claims: Claims = Depends(get_current_claims)
    ) -> UserPublic:
        return await get_auth_service(fastapi_app).update_preferences(
            claims.sub, payload
        )

    # ------------------------------------------------------------------
    # Movies
    # ------------------------------------------------------------------
    @fastapi_app.get(f"{API_PREFIX}/movies")
    async def list_movies(
        filters: Annotated[MovieFilter, Query()],
        claims: Claims = Depends(get_current_claims),
    ) -> dict[str, Any]:
        service = get_movie_service(fastapi_app)
        items = await service.list(claims.sub, filters)
        total = await service.count(claims.sub, filters)
        return {
            "items": items,
            "total": total,
            "limit": filters.limit,
            "offset": filters.offset,
        }

    @fastapi_app.post(f"{API_PREFIX}/movies", status_code=201)
    async def create_movie(
        payload: MovieCreate, claims: Claims = Depends(get_current_claims)
    ) -> MovieRead:
        return await get_movie_service(fastapi_app).create(claims.sub, payload)

    @fastapi_app.get(f"{API_PREFIX}/movies/check-duplicates")
    async def check_duplicates(
        title: str,
        barcode: str | None = None,
        tmdb_id: int | None = None,
        claims: Claims = Depends(get_current_claims),
    ) -> dict[str, Any]:
        duplicates = await get_movie_service(fastapi_app).find_duplicates(
            claims.sub, title, barcode, tmdb_id
        )
        return {"has_duplicates": bool(duplicates), "duplicates": duplicates}

    @fastapi_app.get(f"{API_PREFIX}/movies/duplicates")
    async def all_duplicates(
        claims: Claims = Depends(get_current_claims),
    ) -> dict[str, Any]:
        groups = await get_movie_service(fastapi_app).find_all_duplicates(claims.sub)
        return {"duplicate_groups": groups, "total_groups": len(groups)}

    @fastapi_app.get(f"{API_PREFIX}/movies/{{movie_id}}")
    async def get_movie(
        movie_id: str, claims: Claims = Depends(get_current_claims)
    ) -> MovieRead:
        return await get_movie_service(fastapi_app).get_by_id(claims.sub, movie_id)

    @fastapi_app.put(f"{API_PREFIX}/movies/{{movie_id}}")
    async def update_movie(
        movie_id: str,
        payload: MovieUpdate,
        claims: Claims = Depends(get_current_claims),
    ) -> MovieRead:
        return await get_movie_service(fastapi_app).update(
            claims.sub, movie_id, payload
        )

    @fastapi_app.delete(f"{API_PREFIX}/movies/{{movie_id}}", status_code=204)
    async def delete_movie(
        movie_id: str, claims: Claims = Depends(get_current_claims)
    ) -> Response:
        await get_movie_service(fastapi_app).delete(claims.sub, movie_id)
        return Response(status_code=204)

    @fastapi_app.post(f"{API_PREFIX}/movies/{{movie_id}}/refresh-tmdb")
    async def refresh_movie_tmdb(
        movie_id: str,
        force: bool = False,
        claims: Claims = Depends(get_current_claims),
    ) -> MovieRead:
        movie = await get_movie_service(fastapi_app).get_by_id(claims.sub, movie_id)
        user = await get_auth_service(fastapi_app).get_user(claims.sub)
        updated = await get_enrichment_service(
            fastapi_app
        ).refresh_movie_tmdb_internal(
            claims.sub,
            movie,
            language=user.language,
            include_adult=user.include_adult,
            force=force,
            try_tv=True,
        )
        if updated is None:
            raise NotFoundError("No TMDB match found")
        return updated

    @fastapi_app.post(f"{API_PREFIX}/movies/{{movie_id}}/upload-poster")
    async def upload_poster(
        movie_id: str,
        file: UploadFile = File(...),
        claims: Claims = Depends(get_current_claims),
    ) -> dict[str, str]:
        service = get_movie_service(fastapi_app)
        await service.get_by_id(claims.sub, movie_id)

        extension = POSTER_EXTENSIONS.get((file.content_type or "").lower())
        if extension is None and file.filename:
            suffix = Path(file.filename).suffix.lower().lstrip(".")
            extension = "jpg" if suffix == "jpeg" else suffix
        if extension not in POSTER_EXTENSIONS.values():
            raise ValidationError("Unsupported image type")

        data = await file.read(MAX_POSTER_BYTES + 1)
        if len(data) > MAX_POSTER_BYTES:
            raise ValidationError("Poster exceeds the 5 MB limit")
        if len(data) < MIN_POSTER_BYTES:
            raise ValidationError("Poster file is empty")

        poster_dir = fastapi_app.state.settings.upload_dir / "posters"
        target = poster_dir / f"{movie_id}.{extension}"

        def _store() -> None:
            poster_dir.mkdir(parents=True, exist_ok=True)
            for stale in poster_dir.glob(f"{movie_id}.*"):
                if stale != target:
                    stale.unlink(missing_ok=True)
            target.write_bytes(data)

        await run_in_threadpool(_store)
        poster_path = f"/uploads/posters/{movie_id}.{extension}"
        await service.set_poster_path(claims.sub, movie_id, poster_path)
        return {"poster_path": poster_path}

    # ------------------------------------------------------------------
    # Series
    # ------------------------------------------------------------------
    @fastapi_app.get(f"{API_PREFIX}/series")
    async def list_series(
        filters: Annotated[SeriesFilter, Query()],
        claims: Claims = Depends(get_current_claims),
    ) -> dict[str, Any]:
        service = get_series_service(fastapi_app)
        items = await service.list(claims.sub, filters)
        total = await service.count(claims.sub, filters)
        return {
            "items": items,
            "total": total,
            "limit": filters.limit,
            "offset": filters.offset,
        }

    @fastapi_app.post(f"{API_PREFIX}/series", status_code=201)
    async def create_series(
        payload: SeriesCreate, claims: Claims = Depends(get_current_claims)
    ) -> SeriesRead:
        return await get_series_service(fastapi_app).create(claims.sub, payload)

    @fastapi_app.get(f"{API_PREFIX}/series/{{series_id}}")
    async def get_series(
        series_id: str, claims: Claims = Depends(get_current_claims)
    ) -> SeriesRead:
        return await get_series_service(fastapi_app).get_by_id(claims.sub, series_id)

    @fastapi_app.put(f"{API_PREFIX}/series/{{series_id}}")
    async def update_series(
        series_id: str,
        payload: SeriesUpdate,
        claims: Claims = Depends(get_current_claims),
    ) -> SeriesRead:
        return await get_series_service(fastapi_app).update(
            claims.sub, series_id, payload
        )

    @fastapi_app.delete(f"{API_PREFIX}/series/{{series_id}}", status_code=204)
    async def delete_series(
        series_id: str, claims: Claims = Depends(get_current_claims)
    ) -> Response:
        await get_series_service(fastapi_app).delete(claims.sub, series_id)
        return Response(status_code=204)

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------
    @fastapi_app.get(f"{API_PREFIX}/collections")
    async def list_collections(
        filters: Annotated[CollectionFilter, Query()],
        claims: Claims = Depends(get_current_claims),
    ) -> dict[str, Any]:
        service = get_collection_service(fastapi_app)
        items = await service.list(claims.sub, filters)
        total = await service.count(claims.sub, filters)
        return {
            "items": items,
            "total": total,
            "limit": filters.limit,
            "offset": filters.offset,
        }

    @fastapi_app.post(f"{API_PREFIX}/collections", status_code=201)
    async def create_collection(
        payload: CollectionCreate, claims: Claims = Depends(get_current_claims)
    ) -> CollectionRead:
        return await get_collection_service(fastapi_app).create(claims.sub, payload)

    @fastapi_app.get(f"{API_PREFIX}/collections/{{collection_id}}")
    async def get_collection(
        collection_id: str, claims: Claims = Depends(get_current_claims)
    ) -> CollectionRead:
        return await get_collection_service(fastapi_app).get_by_id(
            claims.sub, collection_id
        )

    @fastapi_app.put(f"{API_PREFIX}/collections/{{collection_id}}")
    async def update_collection(
        collection_id: str,
        payload: CollectionUpdate,
        claims: Claims = Depends(get_current_claims),
    ) -> CollectionRead:
        return await get_collection_service(fastapi_app).update(
            claims.sub, collection_id, payload
        )

    @fastapi_app.delete(
        f"{API_PREFIX}/collections/{{collection_id}}", status_code=204
    )
    async def delete_collection(
        collection_id: str, claims: Claims = Depends(get_current_claims)
    ) -> Response:
        await get_collection_service(fastapi_app).delete(claims.sub, collection_id)
        return Response(status_code=204)

    @fastapi_app.get(f"{API_PREFIX}/collections/{{collection_id}}/items")
    async def list_collection_items(
        collection_id: str, claims: Claims = Depends(get_current_claims)
    ) -> list[CollectionItemRead]:
        return await get_collection_service(fastapi_app).get_items(
            claims.sub, collection_id
        )

    @fastapi_app.post(
        f"{API_PREFIX}/collections/{{collection_id}}/items", status_code=201
    )
    async def add_collection_item(
        collection_id: str,
        payload: CollectionItemCreate,
        claims: Claims = Depends(get_current_claims),
    ) -> CollectionItemRead:
        return await get_collection_service(fastapi_app).add_item(
            claims.sub, collection_id, payload
        )

    @fastapi_app.delete(
        f"{API_PREFIX}/collections/{{collection_id}}/items/{{item_id}}",
        status_code=204,
    )
    async def remove_collection_item(
        collection_id: str,
        item_id: str,
        claims: Claims = Depends(get_current_claims),
    ) -> Response:
        await get_collection_service(fastapi_app).remove_item(
            claims.sub, collection_id, item_id
        )
        return Response(status_code=204)

    # ------------------------------------------------------------------
    # Barcode scanning and TMDB lookups
    # ------------------------------------------------------------------
    @fastapi_app.post(f"{API_PREFIX}/scan")
    async def scan_barcode(
        payload: ScanRequest, claims: Claims = Depends(get_current_claims)
    ) -> ScanResponse:
        barcode = normalise_barcode(payload.barcode)
        try:
            result = await get_barcode_client(fastapi_app).lookup(payload.barcode)
        except ExternalApiError as exc:
            logger.warning("Barcode lookup for %s failed: %s", barcode, exc.message)
            result = None
        if result is None:
            return ScanResponse(barcode=barcode)

        tmdb = get_tmdb_client(fastapi_app)
        summaries: list[TmdbResultSummary] = []
        if result.title:
            user = await get_auth_service(fastapi_app).get_user(claims.sub)
            try:
                movies = await tmdb.search_movies(
                    result.title,
                    language=user.language,
                    include_adult=user.include_adult,
                )
            except ExternalApiError as exc:
                logger.warning("TMDB search for scanned %s failed: %s", barcode, exc)
                movies = []
            summaries = [
                TmdbResultSummary(
                    id=movie.id,
                    title=movie.title,
                    year=movie.year,
                    poster_url=poster_url(movie.poster_path, "w200")
                    if movie.poster_path
                    else None,
                    poster_path=movie.poster_path,
                )
                for movie in movies[:SCAN_RESULT_LIMIT]
            ]
        return ScanResponse(
            barcode=barcode,
            title=result.title,
            vendor=result.vendor,
            category=result.category,
            tmdb_results=summaries,
        )

    @fastapi_app.get(f"{API_PREFIX}/tmdb/search/movies")
    async def tmdb_search_movies(
        query: str,
        year: int | None = None,
        pages: int = Query(default=1, ge=1, le=MAX_SEARCH_PAGES),
        claims: Claims = Depends(get_current_claims),
    ) -> list[dict[str, Any]]:
        user = await get_auth_service(fastapi_app).get_user(claims.sub)
        movies = await get_tmdb_client(fastapi_app).search_movies(
            query,
            year=year,
            language=user.language,
            include_adult=user.include_adult,
            max_pages=pages,
        )
        return [movie.model_dump() for movie in movies[:SEARCH_RESULT_LIMIT]]

    @fastapi_app.get(f"{API_PREFIX}/tmdb/search/tv")
    async def tmdb_search_tv(
        query: str,
        year: int | None = None,
        claims: Claims = Depends(get_current_claims),
    ) -> list[dict[str, Any]]:
        user = await get_auth_service(fastapi_app).get_user(claims.sub)
        shows = await get_tmdb_client(fastapi_app).search_tv(
            query, year=year, language=user.language, include_adult=user.include_adult
        )
        return [show.model_dump() for show in shows[:SEARCH_RESULT_LIMIT]]

    @fastapi_app.get(f"{API_PREFIX}/tmdb/movies/{{tmdb_id}}")
    async def tmdb_movie_details(
        tmdb_id: int, claims: Claims = Depends(get_current_claims)
    ) -> dict[str, Any]:
        user = await get_auth_service(fastapi_app).get_user(claims.sub)
        details = await get_tmdb_client(fastapi_app).get_movie_details(
            tmdb_id, user.language
        )
        return details.model_dump()

    @fastapi_app.get(f"{API_PREFIX}/tmdb/tv/{{tmdb_id}}")
    async def tmdb_tv_details(
        tmdb_id: int, claims: Claims = Depends(get_current_claims)
    ) -> dict[str, Any]:
        user = await get_auth_service(fastapi_app).get_user(claims.sub)
        details = await get_tmdb_client(fastapi_app).get_tv_details(
            tmdb_id, user.language
        )
        return details.model_dump()

    @fastapi_app.get(f"{API_PREFIX}/tmdb/search/collections")
    async def tmdb_search_collections(
        query: str, claims: Claims = Depends(get_current_claims)
    ) -> list[dict[str, Any]]:
        user = await get_auth_service(fastapi_app).get_user(claims.sub)
        collections = await get_tmdb_client(fastapi_app).search_collections(
            query, user.language
        )
        return [collection.model_dump() for collection in collections[:SEARCH_RESULT_LIMIT]]

    @fastapi_app.get(f"{API_PREFIX}/tmdb/collections/{{collection_id}}")
    async def tmdb_collection_details(
        collection_id: int, claims: Claims = Depends(get_current_claims)
    ) -> dict[str, Any]:
        user = await get_auth_service(fastapi_app).get_user(claims.sub)
        details = await get_tmdb_client(fastapi_app).get_collection_details(
            collection_id, user.language
        )
        return details.model_dump()

    # ------------------------------------------------------------------
    # Import and enrichment
    # ------------------------------------------------------------------
    @fastapi_app.post(f"{API_PREFIX}/import/csv")
    async def import_csv(
        file: UploadFile = File(...),
        claims: Claims = Depends(get_current_claims),
    ) -> ImportResult:
        data = await file.read()
        return await get_importer(fastapi_app).import_csv(claims.sub, data)

    @fastapi_app.post(f"{API_PREFIX}/import/enrich-tmdb")
    async def enrich_tmdb(
        force: bool = False, claims: Claims = Depends(get_current_claims)
    ) -> JSONResponse:
        start = await get_enrichment_service(fastapi_app).enrich(
            claims.sub, force=force
        )
        if not start.started:
            return JSONResponse(
                {"message": "All movies already have TMDB data", "total": 0}
            )
        return JSONResponse(
            {"message": "TMDB enrichment started", "total": start.total},
            status_code=202,
        )

    @fastapi_app.get(f"{API_PREFIX}/import/enrich-tmdb/status")
    async def enrich_tmdb_status(
        claims: Claims = Depends(get_current_claims),
    ) -> dict[str, Any]:
        return get_enrichment_service(fastapi_app).status()

    @fastapi_app.post(f"{API_PREFIX}/import/enrich-tmdb/cancel")
    async def cancel_enrich_tmdb(
        claims: Claims = Depends(require_admin),
    ) -> dict[str, bool]:
        return {"cancelled": get_enrichment_service(fastapi_app).cancel()}

    # ------------------------------------------------------------------
    # Settings (admin)
    # ------------------------------------------------------------------
    @fastapi_app.get(f"{API_PREFIX}/settings")
    async def list_settings(
        claims: Claims = Depends(require_admin),
    ) -> list[SettingStatus]:
        return await get_settings_service(fastapi_app).get_status()

    @fastapi_app.put(f"{API_PREFIX}/settings/{{key}}")
    async def update_setting(
        key: str, payload: SettingUpdate, claims: Claims = Depends(require_admin)
    ) -> SettingStatus:
        service = get_settings_service(fastapi_app)
        setting_key = service.parse_key(key)
        if setting_key is None:
            raise NotFoundError(f"Unknown setting: {key}")
        return await service.update(setting_key, payload.value)

    @fastapi_app.post(f"{API_PREFIX}/settings/test/tmdb")
    async def test_tmdb_settings(
        claims: Claims = Depends(require_admin),
    ) -> dict[str, Any]:
        try:
            await get_tmdb_client(fastapi_app).search_movies("test")
        except ExternalApiError as exc:
            return {"success": False, "message": f"TMDB API error: {exc.message}"}
        return {"success": True, "message": "TMDB API key is valid"}

    # ------------------------------------------------------------------
    # Users (admin)
    # ------------------------------------------------------------------
    @fastapi_app.get(f"{API_PREFIX}/users")
    async def list_users(claims: Claims = Depends(require_admin)) -> list[UserPublic]:
        return await get_auth_service(fastapi_app).list_users()

    @fastapi_app.post(f"{API_PREFIX}/users", status_code=201)
    async def create_user(
        payload: AdminCreateUserRequest, claims: Claims = Depends(require_admin)
    ) -> dict[str, Any]:
        user, reset_token = await get_auth_service(fastapi_app).admin_create_user(
            payload.username, payload.email, payload.password
        )
        return {"user": user, "reset_token": reset_token}

    @fastapi_app.put(f"{API_PREFIX}/users/{{user_id}}/role")
    async def update_user_role(
        user_id: str,
        payload: UpdateRoleRequest,
        claims: Claims = Depends(require_admin),
    ) -> UserPublic:
        return await get_auth_service(fastapi_app).update_user_role(
            user_id, payload.role, actor_id=claims.sub
        )

    @fastapi_app.put(f"{API_PREFIX}/users/{{user_id}}/password")
    async def set_user_password(
        user_id: str,
        payload: SetPasswordRequest,
        claims: Claims = Depends(require_admin),
    ) -> dict[str, str]:
        message = await get_auth_service(fastapi_app).admin_set_password(
            user_id, payload.password
        )
        return {"message": message}

    @fastapi_app.delete(f"{API_PREFIX}/users/{{user_id}}")
    async def delete_user(
        user_id: str, claims: Claims = Depends(require_admin)
    ) -> dict[str, str]:
        message = await get_auth_service(fastapi_app).delete_user(
            user_id, actor_id=claims.sub
        )
        return {"message": message}

    # ------------------------------------------------------------------
    # Live events
    # ------------------------------------------------------------------
    @fastapi_app.websocket("/ws")
    async def websocket_events(websocket: WebSocket, token: str | None = None) -> None:
        try:
            get_auth_service(fastapi_app).verify_token(token or "")
        except MyMoviesError:
            await websocket.close(code=4401)
            return

        events = get_event_bus(fastapi_app)
        with events.subscription() as subscription:
            await websocket.accept()
            client_closed = asyncio.create_task(_wait_for_disconnect(websocket))
            try:
                while True:
                    next_message = asyncio.create_task(subscription.receive())
                    done, _ = await asyncio.wait(
                        {next_message, client_closed},
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                    if client_closed in done:
                        next_message.cancel()
                        break
                    await websocket.send_text(next_message.result())
            except WebSocketDisconnect:
                logger.debug("Event subscriber disconnected")
            finally:
                client_closed.cancel()
                with suppress(asyncio.CancelledError):
                    await client_closed


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Consume client frames until the peer goes away."""

    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return
