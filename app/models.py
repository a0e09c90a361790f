"""Pydantic models describing API payloads and catalog records."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

Role = Literal["admin", "user"]
ItemType = Literal["movie", "series"]


class PhysicalMediaFields(BaseModel):
    """Optional attributes shared by every physical release."""

    collection_number: str | None = None
    barcode: str | None = None
    title: str | None = None
    sort_title: str | None = None
    personal_title: str | None = None
    description: str | None = None
    disc_type: str | None = None
    discs: int | None = None
    region_codes: str | None = None
    genres: str | None = None
    categories: str | None = None
    tags: str | None = None
    condition: str | None = None
    slip_cover: bool | None = None
    cover_type: str | None = None
    edition: str | None = None
    purchase_date: str | None = None
    price: float | None = None
    currency: str | None = None
    purchase_place: str | None = None
    value_date: str | None = None
    value_price: float | None = None
    value_currency: str | None = None
    lent_to: str | None = None
    lent_due: str | None = None
    location: str | None = None
    notes: str | None = None
    added_date: str | None = None


class TitleDetailsFields(BaseModel):
    """Optional production and media attributes of movies and series."""

    tmdb_id: int | None = None
    imdb_id: str | None = None
    original_title: str | None = None
    personal_sort_title: str | None = None
    tagline: str | None = None
    production_year: int | None = None
    running_time: int | None = None
    actors: str | None = None
    production_companies: str | None = None
    production_countries: str | None = None
    studios: str | None = None
    status: str | None = None
    rating: str | None = None
    personal_rating: float | None = None
    media_type: str | None = None
    video_standard: str | None = None
    aspect_ratio: str | None = None
    audio_tracks: str | None = None
    subtitles: str | None = None
    is_3d: bool | None = None
    mastered_in_4k: bool | None = None
    watched: bool | None = None
    digital_copies: str | None = None
    extra_features: str | None = None
    spoken_languages: str | None = None


class MovieFields(PhysicalMediaFields, TitleDetailsFields):
    release_date: str | None = None
    director: str | None = None
    group: str | None = None
    budget: int | None = None
    revenue: int | None = None
    poster_path: str | None = None


class MovieCreate(MovieFields):
    title: str = Field(min_length=1)


class MovieUpdate(MovieFields):
    """Field-granular patch; absent or null fields are left untouched."""


class MovieRead(MovieFields):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    slip_cover: bool = False
    is_3d: bool = False
    mastered_in_4k: bool = False
    watched: bool = False
    created_at: datetime
    updated_at: datetime


class SeriesFields(PhysicalMediaFields, TitleDetailsFields):
    first_aired: str | None = None
    air_time: str | None = None
    network: str | None = None
    episodes_count: int | None = None
    group: str | None = None


class SeriesCreate(SeriesFields):
    title: str = Field(min_length=1)


class SeriesUpdate(SeriesFields):
    """Field-granular patch; absent or null fields are left untouched."""


class SeriesRead(SeriesFields):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    slip_cover: bool = False
    is_3d: bool = False
    mastered_in_4k: bool = False
    watched: bool = False
    created_at: datetime
    updated_at: datetime


class CollectionCreate(PhysicalMediaFields):
    title: str = Field(min_length=1)


class CollectionUpdate(PhysicalMediaFields):
    """Field-granular patch; absent or null fields are left untouched."""


class CollectionRead(PhysicalMediaFields):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    slip_cover: bool = False
    created_at: datetime
    updated_at: datetime


class CollectionItemCreate(BaseModel):
    item_type: ItemType
    movie_id: str | None = None
    series_id: str | None = None
    position: int = 0


class CollectionItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    collection_id: str
    item_type: ItemType
    movie_id: str | None = None
    series_id: str | None = None
    position: int
    created_at: datetime


class MovieFilter(BaseModel):
    search: str | None = None
    genre: str | None = None
    disc_type: str | None = None
    watched: bool | None = None
    year_from: int | None = None
    year_to: int | None = None
    sort_by: str | None = None
    sort_order: str | None = None
    limit: int = Field(default=50, ge=1, le=10_000)
    offset: int = Field(default=0, ge=0)


class SeriesFilter(BaseModel):
    search: str | None = None
    genre: str | None = None
    network: str | None = None
    watched: bool | None = None
    sort_by: str | None = None
    sort_order: str | None = None
    limit: int = Field(default=50, ge=1, le=10_000)
    offset: int = Field(default=0, ge=0)


class CollectionFilter(BaseModel):
    search: str | None = None
    sort_by: str | None = None
    sort_order: str | None = None
    limit: int = Field(default=50, ge=1, le=10_000)
    offset: int = Field(default=0, ge=0)


def _check_email(value: str) -> str:
    value = value.strip()
    local, _, domain = value.partition("@")
    if not local or not domain:
        raise ValueError("Invalid email address")
    return value


EmailAddress = Annotated[str, AfterValidator(_check_email)]


class RegisterRequest(BaseModel):
    username: str = Field(min_length=1, max_length=120)
    email: EmailAddress
    password: str = Field(min_length=1)


class LoginRequest(BaseModel):
    username: str
    password: str


class ForgotPasswordRequest(BaseModel):
    email: str


class ResetPasswordRequest(BaseModel):
    token: str
    password: str = Field(min_length=1)


class AdminCreateUserRequest(BaseModel):
    username: str = Field(min_length=1, max_length=120)
    email: EmailAddress
    password: str | None = None


class UpdateRoleRequest(BaseModel):
    role: str


class SetPasswordRequest(BaseModel):
    password: str


class PreferencesUpdate(BaseModel):
    language: str | None = None
    include_adult: bool | None = None
    theme: str | None = None
    card_size: str | None = None


class UserPublic(BaseModel):
    """Projection of a user that is safe to hand to clients."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    email: str
    role: Role
    language: str = "de-DE"
    include_adult: bool = False
    theme: str = "dark"
    card_size: str = "medium"
    created_at: datetime


class Claims(BaseModel):
    """Verified session token contents."""

    sub: str
    username: str
    role: Role
    iat: int
    exp: int

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class AuthResponse(BaseModel):
    token: str
    user: UserPublic


class ImportResult(BaseModel):
    movies_imported: int = 0
    series_imported: int = 0
    collections_imported: int = 0
    errors: list[str] = Field(default_factory=list)


class SettingStatus(BaseModel):
    key: str
    env_var: str
    description: str
    is_configured: bool
    source: Literal["environment", "database", "none"]
    value_preview: str | None = None


class SettingUpdate(BaseModel):
    value: str


class ScanRequest(BaseModel):
    barcode: str


class TmdbResultSummary(BaseModel):
    id: int
    title: str
    year: str | None = None
    poster_url: str | None = None
    poster_path: str | None = None


class ScanResponse(BaseModel):
    barcode: str
    title: str | None = None
    vendor: str | None = None
    category: str | None = None
    tmdb_results: list[TmdbResultSummary] = Field(default_factory=list)
