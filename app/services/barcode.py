"""Barcode to product title lookups against public EAN/UPC registries."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import httpx

from ..config import Settings
from ..errors import ExternalApiError, ValidationError
from ..utils import normalise_whitespace

logger = logging.getLogger(__name__)

USER_AGENT = "MyMovies/1.0"
OPENGTINDB_QUERY_ID = "400000000"

SQUARE_BRACKETS_RE = re.compile(r"\[[^\]]*\]")
RELEASE_NOTE_PARENS_RE = re.compile(
    r"\([^)]*(?:import|region|pal|ntsc|blu-ray|dvd|uhd|4k|regio)[^)]*\)",
    re.IGNORECASE,
)
RELEASE_NOISE = (
    "Blu-ray",
    "Blu-Ray",
    "Dvd",
    "DVD",
    "4K UHD",
    "4k Uhd",
    "UHD",
    "Bd",
    "BD",
    "HD DVD",
    "Steelbook",
    "Limited Edition",
    "Special Edition",
    "Collector's Edition",
    "Director's Cut",
    "Extended Edition",
    "Ultimate Edition",
    "Anniversary Edition",
    "Remastered",
    "Import",
    "Region Free",
    "Region 2",
    "Region 1",
    "Region B",
    "Region A",
    "regio Free",
)
RELEASE_NOISE_RE = re.compile(
    r"(?<!\w)(?:"
    + "|".join(re.escape(noise) for noise in sorted(RELEASE_NOISE, key=len, reverse=True))
    + r")(?!\w)"
)


@dataclass(slots=True)
class BarcodeLookupResult:
    """Product information resolved for a barcode."""

    title: str
    barcode: str
    vendor: str | None = None
    category: str | None = None


def clean_title(title: str) -> str:
    """Strip retail noise (format, edition, region, cast lists) from a title."""

    result = title
    head, separator, tail = result.partition(" - ")
    if separator and ("," in tail or len(tail) > 30):
        result = head

    result = SQUARE_BRACKETS_RE.sub("", result)
    result = RELEASE_NOTE_PARENS_RE.sub("", result)
    result = RELEASE_NOISE_RE.sub("", result)

    if result.lower().startswith("dc: "):
        result = result[4:]

    result = normalise_whitespace(result)
    while result.endswith(" -"):
        result = result[:-2]
    result = result.rstrip("-")
    while result.startswith("- "):
        result = result[2:]
    result = result.lstrip("-")
    return result.strip()


def validate_ean13(barcode: str) -> bool:
    """Return whether ``barcode`` carries a valid EAN-13 check digit."""

    digits = [int(char) for char in barcode if char.isdigit()]
    if len(digits) != 13:
        return False
    total = sum(digit if index % 2 == 0 else digit * 3 for index, digit in enumerate(digits))
    return total % 10 == 0


def normalise_barcode(barcode: str) -> str:
    return "".join(char for char in barcode if char in "0123456789")


class BarcodeClient:
    """Resolve barcodes via UPCitemdb with an OpenGTINDB fallback."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._upcitemdb_url = str(settings.upcitemdb_api_url)
        self._opengtindb_url = str(settings.opengtindb_api_url)
        self._client = http_client

    async def lookup(self, barcode: str) -> BarcodeLookupResult | None:
        digits = normalise_barcode(barcode)
        if not digits:
            raise ValidationError("Invalid barcode format")

        logger.debug("Looking up barcode %s", digits)
        result = await self._lookup_upcitemdb(digits)
        if result is None:
            result = await self._lookup_opengtindb(digits)
        if result is None:
            logger.info("Barcode %s not found in any registry", digits)
        return result

    async def _lookup_upcitemdb(self, barcode: str) -> BarcodeLookupResult | None:
        try:
            response = await self._client.get(
                self._upcitemdb_url,
                params={"upc": barcode},
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            logger.warning("UPCitemdb request failed: %s", exc)
            raise ExternalApiError(f"UPCitemdb request failed: {exc}") from exc

        if response.status_code >= 400:
            logger.debug("UPCitemdb returned status %s", response.status_code)
            return None
        try:
            payload = response.json()
        except ValueError as exc:
            logger.warning("UPCitemdb returned invalid JSON: %s", exc)
            raise ExternalApiError(str(exc)) from exc

        if not isinstance(payload, dict) or payload.get("code") != "OK":
            return None
        items = payload.get("items") or []
        if not items or not isinstance(items[0], dict):
            return None
        item = items[0]
        title = item.get("title")
        if not title:
            return None
        return BarcodeLookupResult(
            title=clean_title(title),
            barcode=barcode,
            vendor=item.get("brand"),
            category=item.get("category"),
        )

    async def _lookup_opengtindb(self, barcode: str) -> BarcodeLookupResult | None:
        try:
            response = await self._client.get(
                self._opengtindb_url,
                params={"ean": barcode, "cmd": "query", "queryid": OPENGTINDB_QUERY_ID},
                headers={"User-Agent": USER_AGENT},
            )
        except httpx.HTTPError as exc:
            logger.warning("OpenGTINDB request failed: %s", exc)
            raise ExternalApiError(f"OpenGTINDB request failed: {exc}") from exc

        if response.status_code >= 400:
            return None
        return parse_opengtindb_response(response.text, barcode)


def parse_opengtindb_response(text: str, barcode: str) -> BarcodeLookupResult | None:
    """Parse the ``key=value`` line format returned by OpenGTINDB."""

    title: str | None = None
    vendor: str | None = None
    category: str | None = None
    for line in text.splitlines():
        key, separator, value = line.partition("=")
        if not separator:
            continue
        key = key.strip()
        if key == "error":
            if value.strip() != "0":
                return None
        elif key == "detailname":
            title = value.strip()
        elif key == "mainname" and title is None:
            title = value.strip()
        elif key == "vendor":
            vendor = value.strip()
        elif key == "subcat":
            category = value.strip()

    if not title:
        return None
    return BarcodeLookupResult(
        title=clean_title(title), barcode=barcode, vendor=vendor, category=category
    )
