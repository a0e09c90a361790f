"""Bulk import of spreadsheet (CSV) exports into a user's catalog."""

from __future__ import annotations

import csv
import io
import logging
from typing import Any, Callable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import scoped_session
from ..db_models import Collection, Movie, Series
from ..errors import CsvImportError, MyMoviesError
from ..events import COLLECTION_IMPORTED, EventBus
from ..models import ImportResult
from ..utils import parse_bool, parse_float, parse_int

logger = logging.getLogger(__name__)

TYPE_COLUMN = "Type"


def _text(value: str | None) -> str | None:
    return value


# Export header -> (attribute, coercion)
COLUMN_MAP: dict[str, tuple[str, Callable[[str | None], Any]]] = {
    "Collection Number": ("collection_number", _text),
    "Barcode": ("barcode", _text),
    "IMDB Id": ("imdb_id", _text),
    "Original Title": ("original_title", _text),
    "Sort Title": ("sort_title", _text),
    "Personal Title": ("personal_title", _text),
    "Personal Sort Title": ("personal_sort_title", _text),
    "Description": ("description", _text),
    "Tagline": ("tagline", _text),
    "Production Year": ("production_year", parse_int),
    "Release Date": ("release_date", _text),
    "Running Time": ("running_time", parse_int),
    "Director": ("director", _text),
    "Actors": ("actors", _text),
    "Production Companies": ("production_companies", _text),
    "Production Countries": ("production_countries", _text),
    "Studios": ("studios", _text),
    "Rating": ("rating", _text),
    "Personal Rating": ("personal_rating", parse_float),
    "Disc Type": ("disc_type", _text),
    "Media Type": ("media_type", _text),
    "Discs": ("discs", parse_int),
    "Region Codes": ("region_codes", _text),
    "Video Standard": ("video_standard", _text),
    "Aspect Ratio": ("aspect_ratio", _text),
    "Audio Tracks": ("audio_tracks", _text),
    "Subtitles": ("subtitles", _text),
    "3D": ("is_3d", parse_bool),
    "Mastered in 4K": ("mastered_in_4k", parse_bool),
    "Genres": ("genres", _text),
    "Categories": ("categories", _text),
    "Tags": ("tags", _text),
    "Group": ("group", _text),
    "Watched": ("watched", parse_bool),
    "Digital Copies": ("digital_copies", _text),
    "Status": ("status", _text),
    "Condition": ("condition", _text),
    "Slip Cover": ("slip_cover", parse_bool),
    "Cover Type": ("cover_type", _text),
    "Edition": ("edition", _text),
    "Extra Features": ("extra_features", _text),
    "Purchase Date": ("purchase_date", _text),
    "Price": ("price", parse_float),
    "Currency": ("currency", _text),
    "Purchase Place": ("purchase_place", _text),
    "Value Date": ("value_date", _text),
    "Value Price": ("value_price", parse_float),
    "Value Currency": ("value_currency", _text),
    "Lent To": ("lent_to", _text),
    "Lent Due": ("lent_due", _text),
    "Location": ("location", _text),
    "Notes": ("notes", _text),
    "Budget": ("budget", parse_int),
    "Revenue": ("revenue", parse_int),
    "Spoken Languages": ("spoken_languages", _text),
    "Added Date": ("added_date", _text),
    "First Aired": ("first_aired", _text),
    "Air Time": ("air_time", _text),
    "Network": ("network", _text),
    "Episodes Count": ("episodes_count", parse_int),
}

TARGETS: dict[str, type[Any]] = {
    "Series": Series,
    "Collection": Collection,
}


def _attributes(model: type[Any]) -> frozenset[str]:
    return frozenset(model.__mapper__.attrs.keys())


MODEL_ATTRIBUTES = {model: _attributes(model) for model in (Movie, Series, Collection)}


def decode_upload(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.info("CSV upload is not UTF-8, falling back to latin-1")
        return data.decode("latin-1")


def coerce_row(row: Mapping[str | None, Any]) -> dict[str, Any]:
    """Convert an export row into model attribute values."""

    values: dict[str, Any] = {}
    for header, (attribute, coerce) in COLUMN_MAP.items():
        raw = row.get(header)
        if isinstance(raw, str) and raw == "":
            raw = None
        value = coerce(raw)
        if value is not None:
            values[attribute] = value
    if "rating" not in values and row.get("Par. Rating"):
        values["rating"] = row["Par. Rating"]
    return values


class ImporterService:
    """Dispatch CSV rows to movie, series or collection inserts."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        events: EventBus | None = None,
    ):
        self._session_factory = session_factory
        self._events = events

    async def import_csv(self, user_id: str, data: bytes) -> ImportResult:
        result = ImportResult()
        reader = csv.DictReader(io.StringIO(decode_upload(data), newline=""))
        index = 0
        while True:
            row_number = index + 2
            try:
                row = next(reader)
            except StopIteration:
                break
            except csv.Error as exc:
                result.errors.append(f"Row {row_number}: Parse error - {exc}")
                index += 1
                continue
            index += 1

            item_type = (row.get(TYPE_COLUMN) or "").strip()
            try:
                await self._import_row(user_id, item_type, row)
            except CsvImportError as exc:
                result.errors.append(f"Row {row_number}: {exc.detail}")
                continue
            except MyMoviesError as exc:
                result.errors.append(f"Row {row_number}: {exc.message}")
                continue

            if item_type == "Series":
                result.series_imported += 1
            elif item_type == "Collection":
                result.collections_imported += 1
            else:
                result.movies_imported += 1

        logger.info(
            "CSV import for %s: %d movies, %d series, %d collections, %d errors",
            user_id,
            result.movies_imported,
            result.series_imported,
            result.collections_imported,
            len(result.errors),
        )
        if self._events is not None:
            self._events.publish(COLLECTION_IMPORTED, result)
        return result

    async def _import_row(
        self, user_id: str, item_type: str, row: Mapping[str | None, Any]
    ) -> None:
        title = row.get("Title")
        if not isinstance(title, str) or not title.strip():
            raise CsvImportError("Missing title")

        model = TARGETS.get(item_type, Movie)
        allowed = MODEL_ATTRIBUTES[model]
        values = {
            key: value for key, value in coerce_row(row).items() if key in allowed
        }
        async with scoped_session(self._session_factory) as session:
            session.add(model(user_id=user_id, title=title, **values))
            await session.commit()
