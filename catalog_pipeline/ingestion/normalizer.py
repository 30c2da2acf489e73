"""
Catalog Normalization Helpers
=============================

Small, pure functions that turn adapter-native values (prices as
strings with separators, option maps, loose image URLs) into the
canonical shapes stored by the upsert.
"""

from __future__ import annotations

import math
import re
from typing import Any, Iterable
from urllib.parse import urlparse

from catalog_pipeline.core.enums import StockStatus

_PRICE_CHARS = re.compile(r"[^\d.,\-]")

_ONE_SIZE_VALUES = {"u", "unica", "única", "one size", "talla unica", "talla única"}

COLOR_OPTION_KEYS = ["color", "colour", "tono"]
SIZE_OPTION_KEYS = ["talla", "size", "tamano", "tamaño"]
FIT_OPTION_KEYS = ["fit", "horma", "corte"]
MATERIAL_OPTION_KEYS = ["material", "tela", "composicion", "composición"]


def normalize_url(value: str | None) -> str | None:
    """Add an https scheme to bare hosts; blank input gives None."""
    if value is None:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    if re.match(r"^https?://", trimmed, re.IGNORECASE):
        return trimmed
    return f"https://{trimmed.lstrip('/')}"


def safe_origin(value: str) -> str:
    """Return scheme://host for a URL, or the value itself if unparseable."""
    parsed = urlparse(value)
    if not parsed.scheme or not parsed.netloc:
        return value
    return f"{parsed.scheme}://{parsed.netloc}"


def parse_price_value(value: Any) -> float | None:
    """
    Parse a price from a number or a display string.

    Handles currency symbols and both separator conventions:
    "$ 160.000" -> 160000.0, "1,299.90" -> 1299.9, "49,90" -> 49.9.
    A single separator followed by exactly three digits is treated as a
    thousands separator.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None

    cleaned = _PRICE_CHARS.sub("", value)
    if not cleaned or not re.search(r"\d", cleaned):
        return None

    if "." in cleaned and "," in cleaned:
        decimal_sep = "." if cleaned.rfind(".") > cleaned.rfind(",") else ","
        thousands_sep = "," if decimal_sep == "." else "."
        cleaned = cleaned.replace(thousands_sep, "").replace(decimal_sep, ".")
    elif "," in cleaned or "." in cleaned:
        sep = "," if "," in cleaned else "."
        head, _, tail = cleaned.rpartition(sep)
        if cleaned.count(sep) > 1 or len(tail) == 3:
            cleaned = cleaned.replace(sep, "")
        else:
            cleaned = f"{head.replace(sep, '')}.{tail}"

    try:
        number = float(cleaned)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def guess_currency(price: float | None, currency: str | None = None) -> str | None:
    """
    Infer a currency from the magnitude of a price.

    Values up to 999 read as USD and values from 10,000 up read as COP;
    anything in between keeps the declared currency.
    """
    if price is None:
        return currency
    if price <= 999:
        return "USD"
    if price >= 10000:
        return "COP"
    return currency


def pick_option(options: dict[str, Any] | None, keys: list[str]) -> str | None:
    """Return the first option value whose key contains one of keys."""
    if not options:
        return None
    for key in keys:
        for option_key, value in options.items():
            if key in option_key.lower():
                return None if value is None else str(value)
    return None


def normalize_size(value: str | None) -> str | None:
    """Collapse the one-size spellings onto "talla unica"."""
    if not value:
        return None
    if value.strip().lower() in _ONE_SIZE_VALUES:
        return "talla unica"
    return value


def normalize_image_urls(urls: Iterable[str | None]) -> list[str]:
    """Drop empties, make protocol-relative URLs https and dedupe in order."""
    seen: set[str] = set()
    result = []
    for url in urls:
        if not url or not isinstance(url, str):
            continue
        url = url.strip()
        if not url:
            continue
        if url.startswith("//"):
            url = f"https:{url}"
        if url in seen:
            continue
        seen.add(url)
        result.append(url)
    return result


def resolve_stock_status(available: bool | None, stock: int | None) -> str | None:
    """Map availability/stock onto in_stock/out_of_stock, or None if unknown."""
    if available is False:
        return StockStatus.OUT_OF_STOCK.value
    if available is True:
        return StockStatus.IN_STOCK.value
    if stock is not None:
        return StockStatus.IN_STOCK.value if stock > 0 else StockStatus.OUT_OF_STOCK.value
    return None
