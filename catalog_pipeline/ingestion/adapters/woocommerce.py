"""
WooCommerce Adapter
===================

Uses the public WooCommerce Store API (/wp-json/wc/store/v1). When a
product cannot be read from the API, falls back to HTML extraction of
its permalink.
"""

from __future__ import annotations

import itertools
from typing import Any
from urllib.parse import urljoin

from catalog_pipeline.ingestion.adapters.base import (
    AdapterContext,
    BaseAdapter,
    ProductRef,
    RawProduct,
    RawVariant,
)
from catalog_pipeline.ingestion.adapters.generic import GenericAdapter
from catalog_pipeline.ingestion.normalizer import normalize_url, parse_price_value, safe_origin

STORE_API_PATH = "/wp-json/wc/store/v1/products"
PER_PAGE = 50


def parse_price(value: Any, minor_unit: int = 2) -> float | None:
    """Store API prices are strings in minor units."""
    number = parse_price_value(value)
    if number is None:
        return None
    if minor_unit > 0:
        return round(number) / (10**minor_unit)
    return number


def build_option_combinations(product: dict[str, Any]) -> list[dict[str, str]]:
    """Cartesian product of the product's attribute options."""
    axes: list[tuple[str, list[str]]] = []
    for attribute in product.get("attributes") or []:
        if not isinstance(attribute, dict):
            continue
        name = attribute.get("name") or attribute.get("slug") or ""
        options = attribute.get("options")
        if name and isinstance(options, list) and options:
            axes.append((name, options))
    if not axes:
        return [{}]
    names = [name for name, _ in axes]
    return [dict(zip(names, combo)) for combo in itertools.product(*(values for _, values in axes))]


def _names(entries: Any) -> list[str] | None:
    if not isinstance(entries, list):
        return None
    return [
        entry.get("name") or entry.get("slug")
        for entry in entries
        if isinstance(entry, dict) and (entry.get("name") or entry.get("slug"))
    ]


class WooCommerceAdapter(BaseAdapter):
    """Adapter for WooCommerce stores."""

    ADAPTER_NAME = "woocommerce"
    ADAPTER_VERSION = "1.0.0"

    def __init__(self, fetcher=None, config=None) -> None:
        super().__init__(fetcher, config)
        self.html_fallback = GenericAdapter(self.fetcher)

    async def discover_products(self, ctx: AdapterContext, limit: int = 200) -> list[ProductRef]:
        base_url = normalize_url(ctx.brand.site_url)
        if not base_url:
            return []
        origin = safe_origin(base_url)

        refs: list[ProductRef] = []
        page = 1
        while len(refs) < limit:
            data = await self.fetch_json(
                urljoin(origin, f"{STORE_API_PATH}?per_page={PER_PAGE}&page={page}")
            )
            if not isinstance(data, list) or not data:
                break
            for item in data:
                if len(refs) >= limit or not isinstance(item, dict):
                    continue
                url = item.get("permalink") or item.get("slug") or str(item.get("id") or "")
                refs.append(
                    ProductRef(
                        url=url,
                        external_id=str(item["id"]) if item.get("id") else None,
                    )
                )
            if len(data) < PER_PAGE:
                break
            page += 1

        return refs[:limit]

    async def fetch_product(self, ctx: AdapterContext, ref: ProductRef) -> RawProduct | None:
        base_url = normalize_url(ctx.brand.site_url)
        if not base_url:
            return None
        origin = safe_origin(base_url)
        external_id = ref.external_id
        url = urljoin(origin, f"{STORE_API_PATH}/{external_id}") if external_id else ref.url

        data = await self.fetch_json(url)
        if not isinstance(data, dict):
            return await self._fallback(ctx, ref)

        images = [
            image["src"]
            for image in data.get("images") or []
            if isinstance(image, dict) and image.get("src")
        ]

        price_info = data.get("prices") or {}
        minor_unit = int(price_info.get("currency_minor_unit", 2) or 0)
        currency = price_info.get("currency_code") or "COP"
        price = parse_price(price_info.get("price"), minor_unit)
        compare_at_price = parse_price(price_info.get("regular_price"), minor_unit)

        variants: list[RawVariant] = []
        variations = data.get("variations")
        if isinstance(variations, list) and variations:
            for variation in variations:
                if not isinstance(variation, dict):
                    continue
                variants.append(
                    self._build_variation(variation, data, price_info, price, compare_at_price)
                )
        else:
            for index, combo in enumerate(build_option_combinations(data)):
                fallback_id = f"{external_id}-{index}" if external_id else None
                variants.append(
                    RawVariant(
                        id=fallback_id,
                        sku=str(data["sku"]) if data.get("sku") else fallback_id,
                        options=combo,
                        price=price,
                        compare_at_price=compare_at_price,
                        currency=currency,
                        available=data.get("is_in_stock"),
                        stock=None,
                        image=images[0] if images else None,
                        images=images[:3],
                    )
                )

        if not variants:
            variants = [RawVariant(price=price, compare_at_price=compare_at_price, currency=currency)]

        attributes = data.get("attributes") if isinstance(data.get("attributes"), list) else None
        return RawProduct(
            source_url=data.get("permalink") or ref.url,
            external_id=str(data["id"]) if data.get("id") else external_id,
            title=data.get("name"),
            description=data.get("description"),
            vendor=(data.get("store") or {}).get("name"),
            currency=currency,
            images=images,
            options=[
                {
                    "name": attr.get("name") or attr.get("slug") or "",
                    "values": attr.get("options") if isinstance(attr.get("options"), list) else [],
                }
                for attr in attributes or []
                if isinstance(attr, dict)
            ],
            variants=variants,
            metadata={
                "platform": self.platform,
                "categories": _names(data.get("categories")),
                "tags": _names(data.get("tags")),
                "attributes": [
                    {
                        "name": attr.get("name") or attr.get("slug") or "",
                        "options": attr.get("options") if isinstance(attr.get("options"), list) else [],
                    }
                    for attr in attributes
                    if isinstance(attr, dict)
                ]
                if attributes is not None
                else None,
                "raw": {"id": data.get("id"), "type": data.get("type")},
            },
        )

    @staticmethod
    def _build_variation(
        variation: dict[str, Any],
        product: dict[str, Any],
        price_info: dict[str, Any],
        price: float | None,
        compare_at_price: float | None,
    ) -> RawVariant:
        variation_prices = variation.get("prices") or price_info
        minor_unit = int(
            variation_prices.get("currency_minor_unit", price_info.get("currency_minor_unit", 2)) or 0
        )
        options = {
            attr["name"]: attr["value"]
            for attr in variation.get("attributes") or []
            if isinstance(attr, dict) and attr.get("name") and attr.get("value")
        }
        image = (variation.get("image") or {}).get("src")
        variation_price = parse_price(variation_prices.get("price"), minor_unit)
        variation_compare = parse_price(variation_prices.get("regular_price"), minor_unit)
        available = variation.get("is_in_stock")
        if available is None:
            available = product.get("is_in_stock")
        variation_id = str(variation["id"]) if variation.get("id") else None
        return RawVariant(
            id=variation_id,
            sku=str(variation["sku"]) if variation.get("sku") else variation_id,
            options=options,
            price=variation_price if variation_price is not None else price,
            compare_at_price=variation_compare if variation_compare is not None else compare_at_price,
            currency=variation_prices.get("currency_code") or price_info.get("currency_code") or "COP",
            available=available,
            stock=None,
            image=image,
            images=[image] if image else [],
        )

    async def _fallback(self, ctx: AdapterContext, ref: ProductRef) -> RawProduct | None:
        """Extract from the product page when the Store API has no data."""
        if not ref.url:
            return None
        raw = await self.html_fallback.fetch_product(ctx, ProductRef(url=ref.url))
        if raw is None:
            return None
        raw.metadata = {**raw.metadata, "platform": self.platform, "fallback": "html"}
        return raw
