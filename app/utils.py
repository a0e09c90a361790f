"""Utility helpers for the My Movies service."""

from __future__ import annotations

import re
from datetime import datetime, timezone

TRUTHY_VALUES = frozenset({"true", "yes", "1", "ja"})
TRADEMARK_RE = re.compile(r"[™®©]")
WHITESPACE_RE = re.compile(r"\s+")


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime (the stored format)."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_int(value: str | None) -> int | None:
    """Parse an integer, returning ``None`` when the value is blank or invalid."""

    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def parse_float(value: str | None) -> float | None:
    """Parse a float accepting a comma as decimal separator."""

    if value is None:
        return None
    try:
        return float(value.strip().replace(",", "."))
    except ValueError:
        return None


def parse_bool(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in TRUTHY_VALUES


def normalise_whitespace(value: str) -> str:
    return WHITESPACE_RE.sub(" ", value).strip()


def clean_search_title(title: str) -> str:
    """Strip trademark symbols that confuse metadata searches."""

    return normalise_whitespace(TRADEMARK_RE.sub("", title))


_GERMAN_ORDINALS = (
    "erste|zweite|dritte|vierte|fünfte|sechste|siebte|achte|neunte|zehnte|elfte|zwölfte"
)
_ENGLISH_ORDINALS = (
    "first|second|third|fourth|fifth|sixth|seventh|eighth|ninth|tenth|eleventh|twelfth"
)
SEASON_SUFFIX_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        rf"[-–:]\s*(?:die\s+)?(?:komplette\s+)?(?:{_GERMAN_ORDINALS})\s+staffel\s*\d*",
        rf"[-–:]\s*(?:die\s+)?(?:komplette\s+)?(?:{_GERMAN_ORDINALS}|komplette|complete|ganze)?\s*staffel\s*\d*",
        rf"[-–:]\s*(?:die\s+)?(?:komplette\s+)?(?:{_GERMAN_ORDINALS}|komplette|complete|ganze)?\s*season\s*\d*",
        rf"[-–:]\s*(?:the\s+)?(?:complete\s+)?(?:{_ENGLISH_ORDINALS})\s+season\s*\d*",
        rf"[-–:]\s*(?:the\s+)?(?:complete\s+)?(?:{_ENGLISH_ORDINALS}|complete|entire|full)?\s*season\s*\d*",
        r"\s*[-–]\s*staffel\s*\d+",
        r"\s*[-–]\s*season\s*\d+",
        r"\s*staffel\s*\d+",
        r"\s*season\s*\d+",
        r"\s*[-–]\s*s\d+",
        r"[-–:]\s*(?:die\s+)?(?:komplette\s+)?serie",
        r"[-–:]\s*(?:the\s+)?(?:complete\s+)?series",
        r"\s*[-–]\s*gesamtbox",
        r"\s*[-–]\s*box\s*set",
    )
)
FORMAT_SUFFIX_RE = re.compile(
    r"\s*\([^)]*(?:dvd|blu-?ray|disc|disk|cd)[^)]*\)\s*$", re.IGNORECASE
)
POSSESSIVE_PREFIX_RE = re.compile(
    r"^[A-ZÄÖÜ][a-zäöüß]+(?:\s+[A-ZÄÖÜ][a-zäöüß]+)*['’ʼ′]s?\s+"
)
APOSTROPHES = ("'s ", "' ", "’s ", "’ ", "ʼs ", "ʼ ")


def extract_series_name(title: str) -> str:
    """Drop season and box-set suffixes ("- Staffel 2", ": The Complete Series")."""

    result = title
    for pattern in SEASON_SUFFIX_PATTERNS:
        result = pattern.sub("", result)
    result = result.strip().rstrip("-–").strip()
    return result or title


def alternative_titles(title: str) -> list[str]:
    """Return progressively looser search titles for a retail product name.

    ``"Sarah Waters' Fingersmith (Doppel-DVD)"`` yields ``"Fingersmith"`` first,
    then the title without its parenthesised suffix.
    """

    candidates: list[str] = []
    base = POSSESSIVE_PREFIX_RE.sub("", FORMAT_SUFFIX_RE.sub("", title)).strip()
    if base and base.lower() != title.lower():
        candidates.append(base)

    for apostrophe in APOSTROPHES:
        position = title.find(apostrophe)
        if position == -1:
            continue
        after = title[position + len(apostrophe):].split(" (", 1)[0].strip()
        if len(after) > 2:
            candidates.append(after)
        break

    paren = title.rfind(" (")
    if paren > 0:
        without_parens = title[:paren].strip()
        if without_parens:
            candidates.append(without_parens)
    return list(dict.fromkeys(candidates))
