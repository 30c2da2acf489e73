"""
Magento Adapter
===============

Uses the Magento 2 storefront GraphQL API: the `products` query paged
by currentPage for discovery, and a url_key filter for product detail.
Configurable products expand into one variant per child product.
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

GRAPHQL_PATH = "/graphql"
PAGE_SIZE = 20

_PRICE_FIELDS = """
price_range {
  minimum_price {
    regular_price { value currency }
    final_price { value currency }
  }
}"""

_PRODUCT_FIELDS = f"""
id
sku
name
url_key
url_suffix
url_rewrites {{ url }}
description {{ html }}
media_gallery {{ url label }}
{_PRICE_FIELDS}
... on ConfigurableProduct {{
  configurable_options {{
    attribute_code
    label
    values {{ value_index label }}
  }}
  variants {{
    attributes {{ code label value_index }}
    product {{
      id
      sku
      name
      {_PRICE_FIELDS}
      media_gallery {{ url label }}
    }}
  }}
}}"""

DISCOVERY_QUERY = f"""
query Products($pageSize: Int!, $currentPage: Int!) {{
  products(search: "", pageSize: $pageSize, currentPage: $currentPage) {{
    items {{ {_PRODUCT_FIELDS} }}
  }}
}}"""

PRODUCT_QUERY = f"""
query ProductByUrlKey($urlKey: String!) {{
  products(filter: {{ url_key: {{ eq: $urlKey }} }}) {{
    items {{ {_PRODUCT_FIELDS} }}
  }}
}}"""


def extract_url_key(url: str) -> str | None:
    """Return the url_key of a product URL (last path segment without .html)."""
    parts = [part for part in urlparse(url).path.split("/") if part]
    if not parts:
        return None
    key = parts[-1]
    if key.endswith(".html"):
        key = key[: -len(".html")]
    return key or None


def product_path(item: dict[str, Any]) -> str | None:
    """Storefront path of a product: url_key + url_suffix, else its first rewrite."""
    if item.get("url_key"):
        return f"/{item['url_key']}{item.get('url_suffix') or ''}"
    rewrites = item.get("url_rewrites") or []
    if rewrites and isinstance(rewrites[0], dict) and rewrites[0].get("url"):
        return f"/{rewrites[0]['url'].lstrip('/')}"
    return None


def read_prices(item: dict[str, Any]) -> tuple[float | None, float | None, str | None]:
    """(final price, regular price, currency) of a product's minimum price."""
    minimum = ((item.get("price_range") or {}).get("minimum_price")) or {}
    final = minimum.get("final_price") or {}
    regular = minimum.get("regular_price") or {}
    price = parse_price_value(final.get("value"))
    compare_at = parse_price_value(regular.get("value"))
    if compare_at is not None and price is not None and compare_at <= price:
        compare_at = None
    return price, compare_at, final.get("currency") or regular.get("currency")


def gallery_urls(item: dict[str, Any]) -> list[str]:
    return normalize_image_urls(
        entry.get("url") for entry in item.get("media_gallery") or [] if isinstance(entry, dict)
    )


class MagentoAdapter(BaseAdapter):
    """Adapter for Magento 2 storefronts."""

    ADAPTER_NAME = "magento"
    ADAPTER_VERSION = "1.0.0"

    async def query(self, origin: str, query: str, variables: dict[str, Any]) -> list[dict[str, Any]] | None:
        """Run a products query; None on HTTP errors, bad JSON or GraphQL errors."""
        result = await self.fetcher.post_json(
            urljoin(origin, GRAPHQL_PATH), {"query": query, "variables": variables}
        )
        data = self.decode_json(result)
        if not isinstance(data, dict) or data.get("errors"):
            return None
        items = (((data.get("data") or {}).get("products")) or {}).get("items")
        if not isinstance(items, list):
            return None
        return [item for item in items if isinstance(item, dict)]

    async def discover_products(self, ctx: AdapterContext, limit: int = 200) -> list[ProductRef]:
        base_url = normalize_url(ctx.brand.site_url)
        if not base_url:
            return []
        origin = safe_origin(base_url)

        refs: list[ProductRef] = []
        page = 1
        while len(refs) < limit:
            items = await self.query(
                origin, DISCOVERY_QUERY, {"pageSize": PAGE_SIZE, "currentPage": page}
            )
            if not items:
                break
            for item in items:
                path = product_path(item)
                if path is None or len(refs) >= limit:
                    continue
                refs.append(
                    ProductRef(
                        url=urljoin(origin, path),
                        external_id=str(item["id"]) if item.get("id") is not None else None,
                        handle=item.get("url_key"),
                    )
                )
            if len(items) < PAGE_SIZE:
                break
            page += 1

        return refs[:limit]

    async def fetch_product(self, ctx: AdapterContext, ref: ProductRef) -> RawProduct | None:
        base_url = normalize_url(ctx.brand.site_url)
        if not base_url:
            return None
        url_key = ref.handle or extract_url_key(ref.url)
        if not url_key:
            return None

        items = await self.query(safe_origin(base_url), PRODUCT_QUERY, {"urlKey": url_key})
        if not items:
            return None
        item = items[0]

        price, compare_at, currency = read_prices(item)
        currency = currency or "COP"
        images = gallery_urls(item)
        variants = self._build_variants(item, currency)
        if not variants:
            variants = [
                RawVariant(
                    id=str(item["id"]) if item.get("id") is not None else None,
                    sku=item.get("sku"),
                    price=price,
                    compare_at_price=compare_at,
                    currency=currency,
                    image=images[0] if images else None,
                    images=images,
                )
            ]

        options = [
            {
                "name": option.get("label") or option.get("attribute_code") or "",
                "values": [
                    value.get("label")
                    for value in option.get("values") or []
                    if isinstance(value, dict) and value.get("label")
                ],
            }
            for option in item.get("configurable_options") or []
            if isinstance(option, dict)
        ]
        return RawProduct(
            source_url=ref.url,
            external_id=str(item["id"]) if item.get("id") is not None else ref.external_id,
            title=item.get("name"),
            description=(item.get("description") or {}).get("html"),
            currency=currency,
            images=normalize_image_urls(images + [url for v in variants for url in v.images]),
            options=options,
            variants=variants,
            metadata={"platform": self.platform, "raw": {"id": item.get("id"), "sku": item.get("sku")}},
        )

    @staticmethod
    def _build_variants(item: dict[str, Any], currency: str) -> list[RawVariant]:
        # value_index -> label per attribute code
        labels: dict[str, dict[int, str]] = {}
        names: dict[str, str] = {}
        for option in item.get("configurable_options") or []:
            if not isinstance(option, dict) or not option.get("attribute_code"):
                continue
            code = option["attribute_code"]
            names[code] = option.get("label") or code
            labels[code] = {
                value["value_index"]: value.get("label") or str(value["value_index"])
                for value in option.get("values") or []
                if isinstance(value, dict) and value.get("value_index") is not None
            }

        variants = []
        for entry in item.get("variants") or []:
            if not isinstance(entry, dict) or not isinstance(entry.get("product"), dict):
                continue
            child = entry["product"]
            options: dict[str, str] = {}
            for attribute in entry.get("attributes") or []:
                if not isinstance(attribute, dict):
                    continue
                code = attribute.get("code") or ""
                value = labels.get(code, {}).get(attribute.get("value_index")) or attribute.get("label")
                if code and value:
                    options[names.get(code, code)] = value

            price, compare_at, child_currency = read_prices(child)
            images = gallery_urls(child)
            variants.append(
                RawVariant(
                    id=str(child["id"]) if child.get("id") is not None else None,
                    sku=child.get("sku"),
                    options=options,
                    price=price,
                    compare_at_price=compare_at,
                    currency=child_currency or currency,
                    image=images[0] if images else None,
                    images=images,
                )
            )
        return variants
