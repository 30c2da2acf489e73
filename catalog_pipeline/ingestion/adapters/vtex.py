"""
VTEX Adapter
============

Uses the public VTEX catalog search API for both discovery (paged by
_from/_to) and product detail (by link text).
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
from catalog_pipeline.ingestion.normalizer import (
    normalize_image_urls,
    normalize_url,
    parse_price_value,
    safe_origin,
)

SEARCH_PATH = "/api/catalog_system/pub/products/search"
PAGE_SIZE = 50


def extract_link_text(url: str) -> str | None:
    """Return the link text of a /<link-text>/p product URL."""
    parts = [part for part in urlparse(url).path.split("/") if part]
    if not parts:
        return None
    if parts[-1] == "p" and len(parts) >= 2:
        return parts[-2]
    return parts[-1]


class VtexAdapter(BaseAdapter):
    """Adapter for VTEX storefronts."""

    ADAPTER_NAME = "vtex"
    ADAPTER_VERSION = "1.0.0"

    async def discover_products(self, ctx: AdapterContext, limit: int = 200) -> list[ProductRef]:
        base_url = normalize_url(ctx.brand.site_url)
        if not base_url:
            return []
        origin = safe_origin(base_url)

        refs: list[ProductRef] = []
        start = 0
        while len(refs) < limit:
            end = min(start + PAGE_SIZE - 1, start + (limit - len(refs)) - 1)
            data = await self.fetch_json(urljoin(origin, f"{SEARCH_PATH}?_from={start}&_to={end}"))
            if not isinstance(data, list) or not data:
                break
            for product in data:
                if len(refs) >= limit or not isinstance(product, dict):
                    continue
                link = product.get("link") or product.get("linkText")
                if link:
                    refs.append(
                        ProductRef(
                            url=link,
                            external_id=str(product["productId"]) if product.get("productId") else None,
                            handle=product.get("linkText"),
                        )
                    )
            if len(data) < PAGE_SIZE:
                break
            start += PAGE_SIZE

        return refs[:limit]

    async def fetch_product(self, ctx: AdapterContext, ref: ProductRef) -> RawProduct | None:
        base_url = normalize_url(ctx.brand.site_url)
        if not base_url:
            return None
        link_text = ref.handle or extract_link_text(ref.url)
        if not link_text:
            return None

        data = await self.fetch_json(urljoin(safe_origin(base_url), f"{SEARCH_PATH}/{link_text}/p"))
        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            return None
        product = data[0]

        images: list[str] = []
        variants = []
        for item in product.get("items") or []:
            if not isinstance(item, dict):
                continue
            variant = self._build_variant(item)
            images.extend(variant.images)
            variants.append(variant)

        item_metadata = (product.get("itemMetadata") or {}).get("items")
        return RawProduct(
            source_url=ref.url,
            external_id=str(product["productId"]) if product.get("productId") else ref.external_id,
            title=product.get("productName"),
            description=product.get("description"),
            vendor=product.get("brand"),
            currency="COP",
            images=normalize_image_urls(images),
            options=[
                {
                    "name": entry.get("name") or "",
                    "values": entry.get("variations") if isinstance(entry.get("variations"), list) else [],
                }
                for entry in item_metadata or []
                if isinstance(entry, dict)
            ],
            variants=variants,
            metadata={"platform": self.platform, "raw": {"productId": product.get("productId")}},
        )

    @staticmethod
    def _build_variant(item: dict[str, Any]) -> RawVariant:
        item_images = [
            image["imageUrl"]
            for image in item.get("images") or []
            if isinstance(image, dict) and image.get("imageUrl")
        ]
        sellers = item.get("sellers") or []
        offer = (sellers[0] or {}).get("commertialOffer") or {} if sellers else {}

        options: dict[str, str] = {}
        for index, variation in enumerate(item.get("variations") or []):
            if not isinstance(variation, dict):
                continue
            key = variation.get("name") or f"option_{index}"
            values = variation.get("values")
            value = values[0] if isinstance(values, list) and values else values
            if key and value:
                options[key] = value

        quantity = offer.get("AvailableQuantity")
        reference_ids = item.get("referenceId") or []
        reference = reference_ids[0].get("Value") if reference_ids and isinstance(reference_ids[0], dict) else None
        item_id = str(item["itemId"]) if item.get("itemId") is not None else None
        return RawVariant(
            id=item_id,
            sku=reference or item_id,
            options=options,
            price=parse_price_value(offer.get("Price")),
            compare_at_price=parse_price_value(offer.get("ListPrice")),
            currency=offer.get("CurrencyCode") or "COP",
            available=None if quantity is None else quantity > 0,
            stock=quantity,
            image=item_images[0] if item_images else None,
            images=item_images,
        )
