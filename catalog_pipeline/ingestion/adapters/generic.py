"""
Generic HTML Adapter
====================

Fallback adapter for custom or undetected storefronts. Discovers
product URLs from the sitemap or by probing common listing pages, and
extracts products from JSON-LD with Open Graph / product meta tags as
a backup. Pages with neither can be handed to an LLM page extractor.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from catalog_pipeline.ingestion.adapters.base import (
    AdapterContext,
    BaseAdapter,
    ProductRef,
    RawProduct,
    RawVariant,
)
from catalog_pipeline.ingestion.fetcher import Fetcher
from catalog_pipeline.ingestion.normalizer import normalize_url, parse_price_value, safe_origin
from catalog_pipeline.ingestion.sitemap import (
    count_product_links,
    discover_from_sitemap,
    extract_links,
    extract_sitemap_urls,
    is_likely_product_url,
    make_soup,
)

if TYPE_CHECKING:
    from catalog_pipeline.ingestion.page_extractor import PageExtractor

logger = logging.getLogger(__name__)

PROBE_PATHS = ["/", "/tienda", "/shop", "/productos", "/producto", "/store", "/catalogo", "/catalog"]

# Pages with this many product links are listings, not product pages
LISTING_LINK_THRESHOLD = 3

_ADD_TO_CART_PATTERN = re.compile(
    r"add to cart|agregar al carrito|comprar ahora|buy now|comprar", re.IGNORECASE
)
_PRICE_HINT_PATTERN = re.compile(r"\$\s?\d|\bCOP\b|\bUSD\b|\bEUR\b|\bMXN\b|\bARS\b|\bCLP\b")


# ============================================================================
# HTML extraction helpers
# ============================================================================


def extract_jsonld(soup: BeautifulSoup) -> list[Any]:
    """Parse every JSON-LD block on the page, skipping invalid ones."""
    blocks = []
    for tag in soup.find_all("script", attrs={"type": "application/ld+json"}):
        text = tag.string or tag.get_text()
        if not text or not text.strip():
            continue
        try:
            blocks.append(json.loads(text.strip()))
        except json.JSONDecodeError:
            continue
    return blocks


def _is_product_type(value: Any) -> bool:
    if not value:
        return False
    if isinstance(value, list):
        return any("product" in str(entry).lower() for entry in value)
    return "product" in str(value).lower()


def find_product_jsonld(blocks: list[Any]) -> dict[str, Any] | None:
    """Find the first Product node in top-level blocks, arrays or @graph."""
    for block in blocks:
        if not block:
            continue
        if isinstance(block, list):
            for item in block:
                if isinstance(item, dict) and _is_product_type(item.get("@type")):
                    return item
            continue
        if not isinstance(block, dict):
            continue
        if _is_product_type(block.get("@type")):
            return block
        graph = block.get("@graph")
        if isinstance(graph, list):
            for item in graph:
                if isinstance(item, dict) and _is_product_type(item.get("@type")):
                    return item
    return None


def extract_meta_tags(soup: BeautifulSoup) -> dict[str, str]:
    """Map meta property/name (lowercased) to its content."""
    meta: dict[str, str] = {}
    for tag in soup.find_all("meta"):
        key = str(tag.get("property") or tag.get("name") or "").strip().lower()
        content = tag.get("content")
        if key and content:
            meta[key] = str(content)
    return meta


def extract_h1(soup: BeautifulSoup) -> str | None:
    heading = soup.find("h1")
    if heading is None:
        return None
    return heading.get_text(" ", strip=True) or None


def extract_offers(offers: Any) -> dict[str, Any] | None:
    """Price, currency and availability of the first JSON-LD offer."""
    if not offers:
        return None
    first = offers[0] if isinstance(offers, list) and offers else offers
    if not isinstance(first, dict):
        return None
    spec = first.get("priceSpecification") if isinstance(first.get("priceSpecification"), dict) else {}
    price = next(
        (
            value
            for value in (
                first.get("price"),
                first.get("lowPrice"),
                first.get("highPrice"),
                spec.get("price"),
            )
            if value is not None
        ),
        None,
    )
    return {
        "price": price,
        "currency": first.get("priceCurrency") or spec.get("priceCurrency"),
        "availability": first.get("availability"),
    }


def _jsonld_images(product: dict[str, Any]) -> list[str]:
    image = product.get("image")
    if isinstance(image, str):
        return [image]
    if isinstance(image, dict):
        return [image["url"]] if image.get("url") else []
    if isinstance(image, list):
        images = []
        for entry in image:
            if isinstance(entry, str) and entry:
                images.append(entry)
            elif isinstance(entry, dict) and entry.get("url"):
                images.append(entry["url"])
        return images
    return []


def _is_available(value: Any) -> bool | None:
    if not value:
        return None
    return "outofstock" not in str(value).lower()


# ============================================================================
# Adapter
# ============================================================================


class GenericAdapter(BaseAdapter):
    """HTML-scraping adapter used when no platform adapter matches."""

    ADAPTER_NAME = "custom"
    ADAPTER_VERSION = "1.1.0"

    def __init__(
        self,
        fetcher: Fetcher | None = None,
        config: dict[str, Any] | None = None,
        page_extractor: PageExtractor | None = None,
    ) -> None:
        super().__init__(fetcher, config)
        self.page_extractor = page_extractor

    async def discover_products(self, ctx: AdapterContext, limit: int = 200) -> list[ProductRef]:
        base_url = normalize_url(ctx.brand.site_url)
        if not base_url:
            return []
        origin = safe_origin(base_url)

        urls = await discover_from_sitemap(self.fetcher, base_url, limit * 3)
        products = [url for url in urls if is_likely_product_url(url)]
        if products:
            return [ProductRef(url=url) for url in products[:limit]]
        if urls:
            return [ProductRef(url=url) for url in urls[:limit]]

        if (ctx.brand.ecommerce_platform or "").lower() == "wix":
            result = await self.fetcher.fetch_text(urljoin(origin, "/store-products-sitemap.xml"))
            if result.ok and result.text:
                wix_urls = extract_sitemap_urls(result.text, limit * 3)
                wix_products = [url for url in wix_urls if is_likely_product_url(url)]
                if wix_products:
                    return [ProductRef(url=url) for url in wix_products[:limit]]

        candidates: list[str] = []
        for path in PROBE_PATHS:
            if len(candidates) >= limit:
                break
            page = await self.fetcher.fetch_text(urljoin(origin, path))
            if not page.ok or not page.text:
                continue
            for link in extract_links(page.text, origin):
                if is_likely_product_url(link) and link not in candidates:
                    candidates.append(link)

        logger.debug(f"Probed {len(PROBE_PATHS)} pages on {origin}: {len(candidates)} candidates")
        return [ProductRef(url=url) for url in candidates[:limit]]

    async def fetch_product(self, ctx: AdapterContext, ref: ProductRef) -> RawProduct | None:
        base_url = normalize_url(ctx.brand.site_url)
        if not base_url:
            return None
        origin = safe_origin(base_url)
        url = ref.url if ref.url.startswith("http") else urljoin(origin, ref.url)

        result = await self.fetcher.fetch_text(url)
        if result.status_code >= 400:
            return None
        html = result.text or ""
        raw = self.parse_product_html(html, ref.url, origin)
        if raw is not None or self.page_extractor is None or not html.strip():
            return raw

        logger.info(f"No structured product data on {url}; trying LLM page extraction")
        return await self.page_extractor.extract(html, ref.url, origin)

    def parse_product_html(self, html: str, source_url: str, origin: str) -> RawProduct | None:
        """
        Build a RawProduct from a product page.

        Returns None for pages that do not look like a single product:
        no structured data and no purchase hints, generic og:type pages
        without price meta, and listing pages.
        """
        soup = make_soup(html)
        product = find_product_jsonld(extract_jsonld(soup))
        meta = extract_meta_tags(soup)
        offers = extract_offers(product.get("offers")) if product else None
        page_text = soup.get_text(" ")

        og_type = (meta.get("og:type") or "").lower() or None
        has_product_meta = bool(
            (og_type and "product" in og_type)
            or meta.get("product:price:amount")
            or meta.get("og:price:amount")
            or meta.get("product:availability")
            or meta.get("product:price:currency")
        )
        has_price_meta = bool(meta.get("product:price:amount") or meta.get("og:price:amount"))
        has_generic_og_type = og_type in ("website", "article")
        has_add_to_cart = bool(_ADD_TO_CART_PATTERN.search(page_text))
        has_price_hint = bool(_PRICE_HINT_PATTERN.search(page_text))
        has_image_meta = bool(meta.get("og:image") or meta.get("twitter:image"))
        title = (
            (product or {}).get("name")
            or meta.get("og:title")
            or meta.get("title")
            or extract_h1(soup)
        )
        has_product_hints = has_add_to_cart or (has_price_hint and has_image_meta and bool(title))

        if product is None:
            if not has_product_meta and not has_product_hints:
                return None
            if has_generic_og_type and not has_price_meta:
                return None
            if count_product_links(soup, origin) >= LISTING_LINK_THRESHOLD:
                return None
        if product is not None:
            images = _jsonld_images(product)
        elif meta.get("og:image"):
            images = [meta["og:image"]]
        elif meta.get("twitter:image"):
            images = [meta["twitter:image"]]
        else:
            images = []

        currency = (
            (offers or {}).get("currency")
            or meta.get("product:price:currency")
            or meta.get("og:price:currency")
            or "COP"
        )
        if offers and offers.get("price") is not None:
            price = parse_price_value(offers["price"])
        elif meta.get("product:price:amount"):
            price = parse_price_value(meta["product:price:amount"])
        else:
            price = None
        if offers and offers.get("availability"):
            available = _is_available(offers["availability"])
        else:
            available = _is_available(meta.get("product:availability"))

        brand = (product or {}).get("brand")
        sku = (product or {}).get("sku")
        return RawProduct(
            source_url=source_url,
            external_id=str(sku or (product or {}).get("productID") or "") or None,
            title=title,
            description=(
                (product or {}).get("description")
                or meta.get("description")
                or meta.get("og:description")
            ),
            vendor=brand.get("name") if isinstance(brand, dict) else None,
            currency=currency,
            images=images,
            variants=[
                RawVariant(
                    sku=str(sku) if sku else None,
                    price=price,
                    currency=currency,
                    available=available,
                    stock=None,
                    image=images[0] if images else None,
                    images=images[:3],
                )
            ],
            metadata={
                "platform": self.platform,
                "jsonld": product is not None,
                "meta": meta or None,
            },
        )
