"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base
from .utils import utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """An account owning a private catalog."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    username: Mapped[str] = mapped_column(String(120), unique=True)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    password_hash: Mapped[str] = mapped_column(Text)
    role: Mapped[str] = mapped_column(String(16), default="user")
    language: Mapped[str] = mapped_column(String(16), default="de-DE")
    include_adult: Mapped[bool] = mapped_column(Boolean, default=False)
    theme: Mapped[str] = mapped_column(String(32), default="dark")
    card_size: Mapped[str] = mapped_column(String(16), default="medium")
    reset_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reset_token_expires: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("role IN ('admin', 'user')", name="ck_users_role"),
    )


class PhysicalMediaMixin:
    """Attributes shared by every owned physical release."""

    collection_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    barcode: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    title: Mapped[str] = mapped_column(Text, index=True)
    sort_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    personal_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    disc_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    discs: Mapped[int | None] = mapped_column(Integer, nullable=True)
    region_codes: Mapped[str | None] = mapped_column(String(64), nullable=True)

    genres: Mapped[str | None] = mapped_column(Text, nullable=True)
    categories: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[str | None] = mapped_column(Text, nullable=True)

    condition: Mapped[str | None] = mapped_column(String(64), nullable=True)
    slip_cover: Mapped[bool] = mapped_column(Boolean, default=False)
    cover_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    edition: Mapped[str | None] = mapped_column(Text, nullable=True)

    purchase_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(8), nullable=True)
    purchase_place: Mapped[str | None] = mapped_column(Text, nullable=True)
    value_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    value_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    value_currency: Mapped[str | None] = mapped_column(String(8), nullable=True)

    lent_to: Mapped[str | None] = mapped_column(Text, nullable=True)
    lent_due: Mapped[str | None] = mapped_column(String(32), nullable=True)
    location: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    added_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class TitleDetailsMixin:
    """Production and media attributes shared by movies and series."""

    tmdb_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    imdb_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    original_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    personal_sort_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    tagline: Mapped[str | None] = mapped_column(Text, nullable=True)

    production_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    running_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actors: Mapped[str | None] = mapped_column(Text, nullable=True)
    production_companies: Mapped[str | None] = mapped_column(Text, nullable=True)
    production_countries: Mapped[str | None] = mapped_column(Text, nullable=True)
    studios: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(String(64), nullable=True)

    rating: Mapped[str | None] = mapped_column(String(32), nullable=True)
    personal_rating: Mapped[float | None] = mapped_column(Float, nullable=True)

    media_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    video_standard: Mapped[str | None] = mapped_column(String(32), nullable=True)
    aspect_ratio: Mapped[str | None] = mapped_column(String(32), nullable=True)
    audio_tracks: Mapped[str | None] = mapped_column(Text, nullable=True)
    subtitles: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_3d: Mapped[bool] = mapped_column(Boolean, default=False)
    mastered_in_4k: Mapped[bool] = mapped_column(Boolean, default=False)

    watched: Mapped[bool] = mapped_column(Boolean, default=False)
    digital_copies: Mapped[str | None] = mapped_column(Text, nullable=True)
    extra_features: Mapped[str | None] = mapped_column(Text, nullable=True)
    spoken_languages: Mapped[str | None] = mapped_column(Text, nullable=True)


class Movie(PhysicalMediaMixin, TitleDetailsMixin, Base):
    """A movie release owned by a user."""

    __tablename__ = "movies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    release_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    director: Mapped[str | None] = mapped_column(Text, nullable=True)
    group: Mapped[str | None] = mapped_column("movie_group", Text, nullable=True)
    budget: Mapped[int | None] = mapped_column(Integer, nullable=True)
    revenue: Mapped[int | None] = mapped_column(Integer, nullable=True)
    poster_path: Mapped[str | None] = mapped_column(String(512), nullable=True)


class Series(PhysicalMediaMixin, TitleDetailsMixin, Base):
    """A television series release owned by a user."""

    __tablename__ = "series"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    first_aired: Mapped[str | None] = mapped_column(String(32), nullable=True)
    air_time: Mapped[str | None] = mapped_column(String(32), nullable=True)
    network: Mapped[str | None] = mapped_column(Text, nullable=True)
    episodes_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    group: Mapped[str | None] = mapped_column("series_group", Text, nullable=True)


class Collection(PhysicalMediaMixin, Base):
    """A box set grouping movies and series."""

    __tablename__ = "collections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )


class CollectionItem(Base):
    """Link between a collection and one member movie or series."""

    __tablename__ = "collection_items"
    __table_args__ = (
        CheckConstraint("item_type IN ('movie', 'series')", name="ck_item_type"),
        CheckConstraint(
            "(item_type = 'movie' AND movie_id IS NOT NULL AND series_id IS NULL) OR "
            "(item_type = 'series' AND series_id IS NOT NULL AND movie_id IS NULL)",
            name="ck_item_reference",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    collection_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("collections.id", ondelete="CASCADE"), index=True
    )
    item_type: Mapped[str] = mapped_column(String(16))
    movie_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("movies.id", ondelete="CASCADE"), nullable=True
    )
    series_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("series.id", ondelete="CASCADE"), nullable=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Setting(Base):
    """Runtime-mutable configuration value."""

    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
