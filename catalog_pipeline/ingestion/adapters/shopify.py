"""
Shopify Adapter
===============

Discovers products from the storefront sitemap and fetches each one
through the public /products/<handle>.js endpoint.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urljoin, urlparse

from catalog_pipeline.ingestion.adapters.base import (
    AdapterContext,
    BaseAdapter,
    ProductRef,
    RawProduct,
    RawVariant,
)
from catalog_pipeline.ingestion.normalizer import normalize_url, parse_price_value, safe_origin
from catalog_pipeline.ingestion.sitemap import discover_from_sitemap


def normalize_price(value: Any) -> float | None:
    """Shopify .js prices are integers in minor units."""
    number = parse_price_value(value)
    if number is None:
        return None
    if number.is_integer():
        return round(number) / 100
    return number


def extract_handle(url: str) -> str | None:
    """Return the product handle from a /products/<handle> URL."""
    path = urlparse(url).path
    if "/products/" not in path:
        return None
    return path.split("/products/", 1)[1].split("/")[0] or None


class ShopifyAdapter(BaseAdapter):
    """Adapter for Shopify storefronts."""

    ADAPTER_NAME = "shopify"
    ADAPTER_VERSION = "1.0.0"

    async def discover_products(self, ctx: AdapterContext, limit: int = 200) -> list[ProductRef]:
        base_url = normalize_url(ctx.brand.site_url)
        if not base_url:
            return []
        urls = await discover_from_sitemap(self.fetcher, base_url, limit * 3)
        return [ProductRef(url=url) for url in urls if "/products/" in url][:limit]

    async def fetch_product(self, ctx: AdapterContext, ref: ProductRef) -> RawProduct | None:
        base_url = normalize_url(ctx.brand.site_url)
        if not base_url:
            return None
        handle = ref.handle or extract_handle(ref.url)
        if not handle:
            return None

        data = await self.fetch_json(urljoin(safe_origin(base_url), f"/products/{handle}.js"))
        if not isinstance(data, dict):
            return None

        raw_options = data.get("options") if isinstance(data.get("options"), list) else []
        option_names = [
            str(option.get("name")).strip().lower()
            for option in raw_options
            if isinstance(option, dict) and option.get("name")
        ]

        images = []
        for image in data.get("images") or []:
            src = image if isinstance(image, str) else (image or {}).get("src")
            if src:
                images.append(src)

        currency = data.get("currency") or "COP"
        variants = [
            self._build_variant(variant, option_names, currency)
            for variant in data.get("variants") or []
            if isinstance(variant, dict)
        ]

        tags = data.get("tags")
        if isinstance(tags, str):
            tags = [tag.strip() for tag in tags.split(",")]

        return RawProduct(
            source_url=ref.url,
            external_id=str(data["id"]) if data.get("id") else None,
            title=data.get("title"),
            description=data.get("description") or data.get("body_html"),
            vendor=data.get("vendor"),
            currency=currency,
            images=images,
            options=[
                {
                    "name": option.get("name") or "",
                    "values": option.get("values") if isinstance(option.get("values"), list) else [],
                }
                for option in raw_options
                if isinstance(option, dict)
            ],
            variants=variants,
            metadata={
                "platform": self.platform,
                "handle": handle,
                "product_type": data.get("product_type"),
                "tags": tags,
                "raw": {"id": data.get("id")},
            },
        )

    @staticmethod
    def _build_variant(variant: dict[str, Any], option_names: list[str], currency: str) -> RawVariant:
        options: dict[str, str] = {}
        for index in range(3):
            value = variant.get(f"option{index + 1}")
            if not value:
                continue
            options[f"option{index + 1}"] = value
            if index < len(option_names):
                options[option_names[index]] = value

        featured = (variant.get("featured_image") or {}).get("src")
        variant_id = str(variant["id"]) if variant.get("id") else None
        return RawVariant(
            id=variant_id,
            sku=str(variant["sku"]) if variant.get("sku") else variant_id,
            options=options,
            price=normalize_price(variant.get("price")),
            compare_at_price=normalize_price(variant.get("compare_at_price")),
            currency=currency,
            available=variant.get("available"),
            stock=None,
            image=featured,
            images=[featured] if featured else [],
        )
