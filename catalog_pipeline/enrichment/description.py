"""
Description Parser
==================

Cleans vendor product descriptions for the prompt and extracts
structured hints from them: material composition, care instructions,
measurements and technical features.
"""

from __future__ import annotations

import html as html_lib
import re
from dataclasses import asdict, dataclass, field
from typing import Any

from catalog_pipeline.enrichment.text import normalize_lower

DEFAULT_CLEAN_MAX_CHARS = 700

_TAG_PATTERN = re.compile(r"<[^>]*>")
_EMOJI_PATTERN = re.compile("[\U0001F300-\U0001FAFF]")

# Shipping, returns, payment and FAQ boilerplate, plus links and emails
_NOISE_PATTERNS = (
    re.compile(
        r"\b(envio|env[ií]o|shipping)\b[\s\S]{0,180}?\b(colombia|nacional|internacional|gratis)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(cambios|devoluciones|returns?)\b[\s\S]{0,220}?\b(dias|d[ií]as|politica|pol[ií]tica)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b(medios de pago|payment methods?)\b[\s\S]{0,180}", re.IGNORECASE),
    re.compile(r"\b(faq|preguntas frecuentes)\b[\s\S]{0,200}", re.IGNORECASE),
    re.compile(r"\b(www\.|https?://)\S+", re.IGNORECASE),
    re.compile(r"\b[\w.+-]+@[\w.-]+\.[a-z]{2,}\b", re.IGNORECASE),
)

_PERCENT_MATERIAL = re.compile(
    r"(\d{1,3}\s*%[\s\-]*(algodon|algod[oó]n|elastano|elast[aá]no|elastane|spandex|lycra|"
    r"poliester|poli[eé]ster|polyester|viscosa|viscose|rayon|lino|linen|seda|silk|lana|wool|"
    r"nylon|acrilico|acrylic|denim|cuero|leather))",
    re.IGNORECASE,
)
_MATERIAL_LINE = re.compile(
    r"\b(material|composicion|composici[oó]n|fabric|tela)\s*:\s*([^.;\n]{3,140})",
    re.IGNORECASE,
)
_CARE = re.compile(
    r"\b(lavar(?:\s+a\s+mano|\s+en\s+frio|\s+en\s+fr[ií]o)?|lavado(?:\s+delicado)?|"
    r"no usar secadora|no planchar|planchar a baja temperatura|lavar por separado|"
    r"dry clean only|lavado en seco)\b",
    re.IGNORECASE,
)
_MEASURE = re.compile(
    r"\b(largo|ancho|alto|pecho|cintura|cadera|tiro|entrepierna|contorno|diametro|di[aá]metro)"
    r"\s*[:\-]?\s*(\d{1,4}(?:[.,]\d+)?)\s*(cm|mm|m)\b",
    re.IGNORECASE,
)
_SIZE = re.compile(r"\b(talla unica|talla [xsml0-9]{1,4}|one size)\b", re.IGNORECASE)
_FEATURE = re.compile(
    r"\b(proteccion uv|uv\s*50\+|impermeable|repelente al agua|transpirable|breathable|"
    r"antibacterial|antibacteriano|anti olor|termico|stretch|elastico|el[aá]stico|compresion|"
    r"compresi[oó]n|secado rapido|quick dry)",
    re.IGNORECASE,
)


def _collapse(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def _unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    output: list[str] = []
    for entry in values:
        cleaned = entry.strip()
        key = normalize_lower(cleaned)
        if not key or key in seen:
            continue
        seen.add(key)
        output.append(cleaned)
    return output


def strip_html_to_text(value: str | None) -> str:
    """Decode entities, drop tags and emoji, collapse whitespace."""
    if not value:
        return ""
    text = _TAG_PATTERN.sub(" ", html_lib.unescape(value))
    return _collapse(_EMOJI_PATTERN.sub(" ", text))


def clamp_sentence_safe(value: str, max_chars: int) -> str:
    """Cut to max_chars, preferring the last sentence break past 120 chars."""
    if len(value) <= max_chars:
        return value
    sliced = value[:max_chars]
    idx = max(sliced.rfind("."), sliced.rfind(";"), sliced.rfind(":"))
    if idx < 120:
        return sliced.strip()
    return sliced[: idx + 1].strip()


def clean_description(value: str | None, max_chars: int = DEFAULT_CLEAN_MAX_CHARS) -> str:
    """Plain-text description without store boilerplate, for the prompt."""
    text = strip_html_to_text(value)
    if not text:
        return ""
    for pattern in _NOISE_PATTERNS:
        text = pattern.sub(" ", text)
    return clamp_sentence_safe(_collapse(_EMOJI_PATTERN.sub(" ", text)), max_chars)


def extract_material_composition(value: str | None) -> list[str]:
    lower = normalize_lower(strip_html_to_text(value))
    if not lower:
        return []
    entries = [_collapse(match.group(1)) for match in _PERCENT_MATERIAL.finditer(lower)]
    entries += [_collapse(match.group(2)) for match in _MATERIAL_LINE.finditer(lower)]
    return _unique(entries)[:8]


def extract_care_instructions(value: str | None) -> list[str]:
    lower = normalize_lower(strip_html_to_text(value))
    if not lower:
        return []
    return _unique([_collapse(match.group(1)) for match in _CARE.finditer(lower)])[:10]


def extract_measurements(value: str | None) -> list[str]:
    lower = normalize_lower(strip_html_to_text(value))
    if not lower:
        return []
    entries = [
        f"{match.group(1)} {match.group(2)} {match.group(3)}" for match in _MEASURE.finditer(lower)
    ]
    entries += [_collapse(match.group(1)) for match in _SIZE.finditer(lower)]
    return _unique(entries)[:10]


def extract_technical_features(value: str | None) -> list[str]:
    lower = normalize_lower(strip_html_to_text(value))
    if not lower:
        return []
    return _unique([_collapse(match.group(1)) for match in _FEATURE.finditer(lower)])[:12]


@dataclass
class DescriptionSignals:
    """Structured hints extracted from a description."""

    clean_text: str = ""
    materials: list[str] = field(default_factory=list)
    care: list[str] = field(default_factory=list)
    measurements: list[str] = field(default_factory=list)
    features: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_description_signals(value: str | None) -> DescriptionSignals:
    return DescriptionSignals(
        clean_text=clean_description(value),
        materials=extract_material_composition(value),
        care=extract_care_instructions(value),
        measurements=extract_measurements(value),
        features=extract_technical_features(value),
    )
