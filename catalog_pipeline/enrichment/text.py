"""Text normalization helpers shared by the harvester, validator and normalizer."""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable, Sequence, TypeVar

T = TypeVar("T")

_HEX_PATTERN = re.compile(r"#([0-9a-fA-F]{6})")
_PANTONE_PATTERN = re.compile(r"(\d{2}-\d{4})")
_PANTONE_PREFIX = re.compile(r"PANTONE\s*", re.IGNORECASE)


def strip_accents(value: str) -> str:
    """Remove combining diacritics (NFD decomposition)."""
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def slugify(value: str | None) -> str:
    """Lowercase, accent-free, underscore-separated key."""
    if not value:
        return ""
    slug = re.sub(r"[^a-z0-9]+", "_", strip_accents(value.lower()))
    return re.sub(r"_+", "_", slug).strip("_")


def normalize_text(value: str | None) -> str:
    """Lowercase, accent-free text with only alphanumerics and single spaces."""
    if not value:
        return ""
    text = strip_accents(value.lower())
    text = re.sub(r"[^a-z0-9\s]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def normalize_lower(value: str) -> str:
    """Lowercase, accent-free text with collapsed whitespace (punctuation kept)."""
    return re.sub(r"\s+", " ", strip_accents(value.lower())).strip()


def has_any_keyword(text: str, keywords: Iterable[str]) -> bool:
    """Substring match of any keyword in text."""
    return any(keyword in text for keyword in keywords)


def normalize_enum_value(value: object, allowed: Sequence[str]) -> str | None:
    """
    Map a value onto one of the allowed keys.

    Exact matches win; otherwise the slug of the value is compared with
    the slug of each allowed key (case, accent and whitespace tolerant).
    """
    if value is None:
        return None
    trimmed = str(value).strip()
    if not trimmed:
        return None
    if trimmed in allowed:
        return trimmed
    normalized = slugify(trimmed)
    if not normalized:
        return None
    for entry in allowed:
        if entry == normalized or slugify(entry) == normalized:
            return entry
    return None


def normalize_enum_array(values: Iterable[object], allowed: Sequence[str]) -> list[str]:
    """Normalize each value, dropping unknowns and duplicates (order kept)."""
    output: list[str] = []
    for value in values:
        normalized = normalize_enum_value(value, allowed)
        if normalized and normalized not in output:
            output.append(normalized)
    return output


def normalize_hex_color(value: str | None) -> str | None:
    """Extract a #RRGGBB color in upper case."""
    if not value:
        return None
    match = _HEX_PATTERN.search(str(value).strip())
    if not match:
        return None
    return f"#{match.group(1).upper()}"


def normalize_pantone_code(value: str | None) -> str | None:
    """Extract a Pantone TCX code (NN-NNNN)."""
    if not value:
        return None
    cleaned = _PANTONE_PREFIX.sub("", str(value).strip().upper())
    match = _PANTONE_PATTERN.search(cleaned)
    return match.group(1) if match else None


def dedupe_text(values: Iterable[str]) -> list[str]:
    """Drop blanks and values whose normalized text was already seen."""
    seen: set[str] = set()
    output: list[str] = []
    for value in values:
        cleaned = value.strip()
        if not cleaned:
            continue
        key = normalize_text(cleaned)
        if not key or key in seen:
            continue
        seen.add(key)
        output.append(cleaned)
    return output


def clamp_text(value: str | None, max_length: int) -> str:
    """Collapse whitespace and cut at a word boundary within max_length."""
    cleaned = re.sub(r"\s+", " ", value or "").strip()
    if len(cleaned) <= max_length:
        return cleaned
    return re.sub(r"\s+\S*$", "", cleaned[:max_length]).strip()


def chunk_list(values: Sequence[T], size: int) -> list[list[T]]:
    if size <= 0:
        return [list(values)]
    return [list(values[i : i + size]) for i in range(0, len(values), size)]
