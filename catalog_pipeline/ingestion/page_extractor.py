"""
LLM Page Extractor
==================

Last-resort product extraction for custom storefronts whose pages carry
no JSON-LD or product meta tags. The model first decides whether the
page is a single product page; only pages accepted with enough
confidence go through the extraction call.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from catalog_pipeline.config import env_flag
from catalog_pipeline.core.errors import AdapterError, InvalidModelOutputError
from catalog_pipeline.ingestion.adapters.base import RawProduct, RawVariant
from catalog_pipeline.ingestion.normalizer import normalize_image_urls, parse_price_value
from catalog_pipeline.ingestion.sitemap import make_soup
from catalog_pipeline.services.ai.client import AIClient, extract_json_object, get_default_ai_client

logger = logging.getLogger(__name__)

MAX_HTML_CHARS = 40000
MAX_TEXT_CHARS = 8000
MAX_IMAGES = 20
MAX_LLM_RETRIES = 3
DEFAULT_CONFIDENCE_MIN = 0.55


# ============================================================================
# Response schema
# ============================================================================


class PageDecision(BaseModel):
    """Classification of a page as a single product page or not."""

    model_config = ConfigDict(extra="ignore")

    is_pdp: bool
    confidence: float = Field(ge=0, le=1)
    reason: str = ""
    product_name: str | None = None
    price_hint: str | None = None
    currency: str | None = None


class ExtractedVariant(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sku: str | None = None
    options: dict[str, str] = Field(default_factory=dict)
    price: float | str | None = None
    compare_at_price: float | str | None = None
    currency: str | None = None
    available: bool | None = None
    stock: int | None = None
    image: str | None = None
    images: list[str] = Field(default_factory=list)


class ExtractedProduct(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str
    description: str | None = None
    vendor: str | None = None
    currency: str | None = None
    images: list[str] = Field(default_factory=list)
    variants: list[ExtractedVariant] = Field(min_length=1)


CLASSIFY_PROMPT = """You classify web pages of fashion storefronts.
Decide whether the page is a product detail page (a page that sells one product,
possibly in several colors or sizes). Listings, categories, blogs, home pages and
policy pages are not product pages.
Return only JSON: {"is_pdp": bool, "confidence": number 0-1, "reason": string,
"product_name": string|null, "price_hint": string|null, "currency": string|null}."""

EXTRACT_PROMPT = """You extract product data from a product detail page of a fashion storefront.
Use only facts present in the page. Prices are plain numbers without thousands separators.
Use the provided image candidates; never invent image URLs.
Return only JSON: {"title": string, "description": string|null, "vendor": string|null,
"currency": string|null, "images": [string], "variants": [{"sku": string|null,
"options": {name: value}, "price": number|null, "compare_at_price": number|null,
"currency": string|null, "available": bool|null, "stock": integer|null,
"image": string|null, "images": [string]}]}. Return at least one variant."""


# ============================================================================
# Page signals
# ============================================================================


def _absolute_http_url(value: str | None, base_url: str) -> str | None:
    if not value:
        return None
    value = value.strip()
    if not value or value.startswith("data:"):
        return None
    if value.startswith("//"):
        value = f"https:{value}"
    absolute = urljoin(base_url, value)
    return absolute if absolute.startswith(("http://", "https://")) else None


def extract_image_candidates(soup: BeautifulSoup, base_url: str) -> list[str]:
    """Image URLs from og/twitter meta and <img> src, data-src and srcset."""
    candidates: list[str | None] = []
    for key in ("og:image", "twitter:image"):
        tag = soup.find("meta", attrs={"property": key}) or soup.find("meta", attrs={"name": key})
        if tag is not None:
            candidates.append(_absolute_http_url(str(tag.get("content") or ""), base_url))
    for img in soup.find_all("img"):
        candidates.append(_absolute_http_url(str(img.get("src") or ""), base_url))
        candidates.append(_absolute_http_url(str(img.get("data-src") or ""), base_url))
        srcset = str(img.get("srcset") or "")
        for entry in srcset.split(","):
            candidates.append(_absolute_http_url(entry.strip().split(" ")[0], base_url))
    return normalize_image_urls(candidates)[:MAX_IMAGES]


def extract_page_text(soup: BeautifulSoup) -> str:
    """Visible text of the page with scripts and styles removed."""
    for tag in soup(["script", "style", "noscript", "svg"]):
        tag.decompose()
    return " ".join(soup.get_text(" ").split())[:MAX_TEXT_CHARS]


def build_page_text(source_url: str, title: str | None, text: str, images: list[str], html: str) -> str:
    """User message describing the page for both model calls."""
    return "\n\n".join(
        [
            f"URL: {source_url}",
            f"TITLE: {title or ''}",
            f"TEXT:\n{text}",
            f"IMAGE CANDIDATES:\n{json.dumps(images)}",
            f"HTML:\n{html[:MAX_HTML_CHARS]}",
        ]
    )


# ============================================================================
# Extractor
# ============================================================================


class PageExtractor:
    """Classifies and extracts product pages with an LLM."""

    def __init__(
        self,
        ai_client: AIClient,
        confidence_min: float = DEFAULT_CONFIDENCE_MIN,
        max_retries: int = MAX_LLM_RETRIES,
        backoff_base: float = 0.2,
    ) -> None:
        self.ai_client = ai_client
        self.confidence_min = min(max(confidence_min, 0.0), 0.99)
        self.max_retries = max_retries
        self.backoff_base = backoff_base

    async def extract(self, html: str, source_url: str, origin: str) -> RawProduct | None:
        """
        Extract a product from a page, or None if it is not a product page.

        Raises:
            AdapterError: When the model never returned a valid answer
        """
        soup = make_soup(html)
        page_url = source_url if source_url.startswith("http") else urljoin(origin, source_url)
        title_tag = soup.find("title")
        title = title_tag.get_text(strip=True) if title_tag else None
        images = extract_image_candidates(soup, page_url)
        text = extract_page_text(soup)
        user_text = build_page_text(page_url, title, text, images, html)

        decision = await self._request(CLASSIFY_PROMPT, user_text, PageDecision, "llm_classify")
        if not decision.is_pdp or decision.confidence < self.confidence_min:
            logger.info(
                f"LLM rejected {page_url} as a product page "
                f"(confidence {decision.confidence}): {decision.reason}"
            )
            return None

        extracted = await self._request(EXTRACT_PROMPT, user_text, ExtractedProduct, "llm_extract")
        return self.to_raw_product(extracted, decision, source_url, page_url, images)

    async def _request(self, system_prompt: str, user_text: str, schema: type[BaseModel], stage: str) -> Any:
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                raw = await asyncio.to_thread(self.ai_client.complete, system_prompt, user_text)
                try:
                    return schema.model_validate(extract_json_object(raw))
                except ValidationError as e:
                    raise InvalidModelOutputError(f"JSON validation failed: {e}") from e
            except Exception as e:
                last_error = e
                logger.warning(f"{stage} attempt {attempt}/{self.max_retries} failed: {e}")
                if attempt < self.max_retries:
                    await asyncio.sleep(2**attempt * self.backoff_base)
        raise AdapterError(f"{stage} failed after {self.max_retries} attempts: {last_error}")

    def to_raw_product(
        self,
        extracted: ExtractedProduct,
        decision: PageDecision,
        source_url: str,
        page_url: str,
        candidates: list[str],
    ) -> RawProduct:
        """Map the model's product onto a RawProduct."""
        currency = extracted.currency or decision.currency or "COP"
        images = normalize_image_urls(
            _absolute_http_url(url, page_url) for url in (extracted.images or candidates)
        )[:MAX_IMAGES]
        variants = []
        for variant in extracted.variants:
            variant_images = normalize_image_urls(
                _absolute_http_url(url, page_url) for url in variant.images
            )
            image = _absolute_http_url(variant.image, page_url)
            variants.append(
                RawVariant(
                    sku=variant.sku,
                    options={key: str(value) for key, value in variant.options.items() if value},
                    price=parse_price_value(variant.price),
                    compare_at_price=parse_price_value(variant.compare_at_price),
                    currency=variant.currency or currency,
                    available=variant.available,
                    stock=variant.stock,
                    image=image or (variant_images[0] if variant_images else None),
                    images=variant_images or images[:3],
                )
            )
        return RawProduct(
            source_url=source_url,
            title=extracted.title,
            description=extracted.description,
            vendor=extracted.vendor,
            currency=currency,
            images=images,
            variants=variants,
            metadata={
                "platform": "custom",
                "llm": {
                    "pdp": decision.model_dump(),
                    "extracted_at": datetime.now(UTC).isoformat(),
                },
            },
        )


def get_default_page_extractor() -> PageExtractor | None:
    """
    Build the page extractor from the environment.

    Returns None when CATALOG_PDP_LLM_ENABLED is off or no AI provider
    key is configured.
    """
    if not env_flag("CATALOG_PDP_LLM_ENABLED", default=True):
        return None
    try:
        ai_client = get_default_ai_client()
    except ValueError as e:
        logger.warning(f"LLM page extraction disabled: {e}")
        return None
    raw_min = os.environ.get("CATALOG_PDP_LLM_CONFIDENCE_MIN")
    try:
        confidence_min = float(raw_min) if raw_min else DEFAULT_CONFIDENCE_MIN
    except ValueError:
        logger.warning(f"Invalid CATALOG_PDP_LLM_CONFIDENCE_MIN={raw_min!r}; using default")
        confidence_min = DEFAULT_CONFIDENCE_MIN
    return PageExtractor(ai_client, confidence_min=confidence_min)
