"""
Canonical Upsert Module
=======================

Maps a RawProduct and its variants onto the canonical product store.

Products are matched by (brand_id, external_id) or (brand_id,
source_url) and variants by (product_id, sku), so re-processing the
same reference updates rows in place instead of duplicating them.
Fields owned by enrichment are preserved once a product (or variant)
has been enriched.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any, Callable

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from catalog_pipeline.core.errors import AdapterError
from catalog_pipeline.db.models_catalog import (
    BrandDB,
    PriceHistoryDB,
    ProductDB,
    StockHistoryDB,
    VariantDB,
)
from catalog_pipeline.db.repositories import load_json
from catalog_pipeline.ingestion.adapters.base import (
    AdapterContext,
    BaseAdapter,
    ProductRef,
    RawProduct,
    RawVariant,
)
from catalog_pipeline.ingestion.assets import AssetResolver, ResolvedAsset
from catalog_pipeline.ingestion.normalizer import (
    COLOR_OPTION_KEYS,
    FIT_OPTION_KEYS,
    MATERIAL_OPTION_KEYS,
    SIZE_OPTION_KEYS,
    guess_currency,
    normalize_image_urls,
    normalize_size,
    parse_price_value,
    pick_option,
    resolve_stock_status,
)

logger = logging.getLogger(__name__)

DEFAULT_PRODUCT_NAME = "Sin nombre"

# Adapter metadata copied under product metadata["source"]
SOURCE_METADATA_KEYS = (
    "handle",
    "product_type",
    "tags",
    "categories",
    "meta",
    "fallback",
    "blob_upload_failed",
    "llm",
)

StageCallback = Callable[[str], None]


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _to_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return str(value)
    return None


def choose_string(existing: str | None, new: str | None, preserve: bool) -> str | None:
    """Keep the existing value when preserving, else prefer the new one."""
    if preserve and existing:
        return existing
    return new if new is not None else existing


def choose_list(existing: list | None, new: list | None, preserve: bool) -> list:
    if preserve and existing:
        return existing
    if new:
        return new
    return existing or []


@dataclass
class VariantPayload:
    """Canonical variant values computed from a RawVariant."""

    sku: str
    color: str | None
    size: str | None
    price: float
    currency: str
    stock: int | None
    stock_status: str | None
    images: list[str]
    metadata: dict[str, Any]
    fit: str | None = None
    material: str | None = None


@dataclass
class UpsertResult:
    """Outcome of processing one catalog reference."""

    product_id: str
    created: bool
    created_variants: int
    variant_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "created": self.created,
            "created_variants": self.created_variants,
            "variant_count": self.variant_count,
        }


# ============================================================================
# Raw normalization
# ============================================================================


def normalize_raw_product(raw: RawProduct) -> RawProduct:
    """
    Stringify identifiers and option values, and clean image URLs.

    Variant image/images are merged so image is always images[0].
    """
    variants = []
    for variant in raw.variants:
        images = normalize_image_urls([variant.image, *(variant.images or [])])
        variants.append(
            replace(
                variant,
                id=_to_str(variant.id),
                sku=_to_str(variant.sku),
                options={
                    str(key): "" if value is None else str(value)
                    for key, value in (variant.options or {}).items()
                },
                image=images[0] if images else None,
                images=images,
            )
        )
    return replace(
        raw,
        external_id=_to_str(raw.external_id),
        images=normalize_image_urls(raw.images),
        variants=variants,
        metadata=dict(raw.metadata or {}),
    )


def build_variant_sku(variant: RawVariant, fallback: str) -> str:
    if variant.sku and variant.sku.strip():
        return variant.sku.strip()
    if variant.id and str(variant.id).strip():
        return str(variant.id).strip()
    return fallback


def build_variant_payload(
    variant: RawVariant,
    sku: str,
    mapping: dict[str, ResolvedAsset],
    fallback_images: list[str],
    product_currency: str | None,
) -> VariantPayload:
    """Derive canonical variant fields from a normalized RawVariant."""
    sources = [source for source in [variant.image, *variant.images] if source]
    mapped = list(dict.fromkeys(mapping[s].durable_url for s in sources if s in mapping))

    price = parse_price_value(variant.price)
    if price is None:
        price = 0.0
    currency = guess_currency(price, variant.currency or product_currency) or "COP"

    return VariantPayload(
        sku=sku,
        color=pick_option(variant.options, COLOR_OPTION_KEYS),
        size=normalize_size(pick_option(variant.options, SIZE_OPTION_KEYS)),
        fit=pick_option(variant.options, FIT_OPTION_KEYS),
        material=pick_option(variant.options, MATERIAL_OPTION_KEYS),
        price=price,
        currency=currency,
        stock=variant.stock if isinstance(variant.stock, int) else None,
        stock_status=resolve_stock_status(variant.available, variant.stock),
        images=mapped or fallback_images,
        metadata={
            "compare_at_price": parse_price_value(variant.compare_at_price),
            "source_variant_id": variant.id,
            "options": variant.options or None,
            "source_images": sources,
        },
    )


# ============================================================================
# Upserter
# ============================================================================


class CatalogUpserter:
    """
    Writes raw products into the canonical store.

    One upserter is used per item; the caller owns the session and its
    transaction.
    """

    def __init__(self, session: Session, assets: AssetResolver):
        self.session = session
        self.assets = assets

    async def process_ref(
        self,
        brand: BrandDB,
        adapter: BaseAdapter,
        ctx: AdapterContext,
        ref: ProductRef,
        on_stage: StageCallback | None = None,
    ) -> UpsertResult | None:
        """
        Fetch, normalize and upsert one product reference.

        Returns:
            UpsertResult, or None when the reference no longer resolves

        Raises:
            AdapterError: If the product has no usable image
        """
        stage = on_stage or (lambda _: None)

        stage("fetch")
        raw = await adapter.fetch_product(ctx, ref)
        if raw is None:
            return None

        stage("normalize_images")
        raw = normalize_raw_product(raw)
        all_images = normalize_image_urls(
            [*raw.images, *(image for variant in raw.variants for image in variant.images)]
        )

        stage("blob_upload")
        prefix = f"catalog/{brand.slug}/{raw.external_id or 'product'}"
        mapping = await self.assets.resolve(all_images, prefix)
        durable = [mapping[url].durable_url for url in raw.images if url in mapping]
        images = durable or raw.images
        if not images:
            raise AdapterError(f"No images available for {raw.source_url}")
        if all_images and not mapping:
            raw.metadata["blob_upload_failed"] = f"0/{len(all_images)} images stored"

        stage("normalize")
        product_currency = raw.currency
        raw_variants = raw.variants or [
            RawVariant(sku=raw.external_id, currency=raw.currency or "COP", images=list(raw.images))
        ]

        stage("upsert")
        product, created = self.upsert_product(brand.id, raw, cover_image=images[0])
        created_variants = 0
        for index, raw_variant in enumerate(raw_variants):
            sku = build_variant_sku(raw_variant, f"{product.id}-{index}")
            payload = build_variant_payload(raw_variant, sku, mapping, images, product_currency)
            _, variant_created = self.upsert_variant(product.id, payload)
            if variant_created:
                created_variants += 1

        logger.info(
            f"Upserted product {product.id} ({'created' if created else 'updated'}, "
            f"{created_variants}/{len(raw_variants)} new variants) from {raw.source_url}"
        )
        return UpsertResult(
            product_id=product.id,
            created=created,
            created_variants=created_variants,
            variant_count=len(raw_variants),
        )

    def find_product(self, brand_id: str, raw: RawProduct) -> ProductDB | None:
        """Match on external id or source URL within the brand."""
        conditions = []
        if raw.external_id:
            conditions.append(ProductDB.external_id == raw.external_id)
        if raw.source_url:
            conditions.append(ProductDB.source_url == raw.source_url)
        if not conditions:
            return None
        stmt = (
            select(ProductDB)
            .where(ProductDB.brand_id == brand_id, or_(*conditions))
            .order_by(ProductDB.created_at.asc())
            .limit(1)
        )
        return self.session.execute(stmt).scalars().first()

    def upsert_product(
        self, brand_id: str, raw: RawProduct, cover_image: str | None
    ) -> tuple[ProductDB, bool]:
        """
        Create or update the product row.

        An insert that loses a race with another worker on the
        (brand_id, source_url) or (brand_id, external_id) keys is rolled
        back to a savepoint and applied as an update to the winning row.

        Returns:
            (product, created)
        """
        existing = self.find_product(brand_id, raw)
        if existing is None:
            product = ProductDB(brand_id=brand_id)
            self.apply_product(product, None, raw, cover_image)
            try:
                with self.session.begin_nested():
                    self.session.add(product)
            except IntegrityError:
                existing = self.find_product(brand_id, raw)
                if existing is None:
                    raise
                logger.info(f"Product {raw.source_url} was inserted concurrently; updating it")
            else:
                return product, True

        self.apply_product(existing, existing, raw, cover_image)
        self.session.flush()
        return existing, False

    def apply_product(
        self,
        product: ProductDB,
        existing: ProductDB | None,
        raw: RawProduct,
        cover_image: str | None,
    ) -> None:
        """Copy scraped fields onto a product row."""
        existing_metadata = load_json(existing.metadata_json, {}) if existing else {}
        preserve = bool(existing_metadata.get("enrichment"))

        sample_price = parse_price_value(raw.variants[0].price) if raw.variants else None
        currency = guess_currency(
            sample_price,
            raw.currency or (raw.variants[0].currency if raw.variants else None),
        )

        metadata = {
            **existing_metadata,
            "platform": raw.metadata.get("platform") or existing_metadata.get("platform"),
            "extraction": {
                "source_url": raw.source_url,
                "external_id": raw.external_id,
                "scraped_at": _now_iso(),
                "source_images": raw.images,
            },
        }
        for key in SOURCE_METADATA_KEYS:
            if raw.metadata.get(key) is not None:
                metadata.setdefault("source", {})[key] = raw.metadata[key]

        product.external_id = raw.external_id
        product.source_url = raw.source_url
        product.name = raw.title or (existing.name if existing else None) or DEFAULT_PRODUCT_NAME
        product.description = choose_string(
            existing.description if existing else None, raw.description, preserve
        )
        product.currency = currency
        product.image_cover_url = cover_image or (existing.image_cover_url if existing else None)
        product.metadata_json = json.dumps(metadata)

    def upsert_variant(self, product_id: str, payload: VariantPayload) -> tuple[VariantDB, bool]:
        """
        Create or update a variant, appending price/stock history rows.

        Returns:
            (variant, created)
        """
        stmt = select(VariantDB).where(
            VariantDB.product_id == product_id, VariantDB.sku == payload.sku
        )
        existing = self.session.execute(stmt).scalar_one_or_none()

        if existing is None:
            price_changed = stock_changed = status_changed = True
            previous_status = None
            existing_metadata: dict[str, Any] = {}
        else:
            price_changed = existing.price != payload.price
            stock_changed = existing.stock != payload.stock
            status_changed = existing.stock_status != payload.stock_status
            previous_status = existing.stock_status
            existing_metadata = load_json(existing.metadata_json, {})

        now = _now_iso()
        changes: dict[str, Any] = {}
        if price_changed:
            changes["last_price_changed_at"] = now
        if stock_changed:
            changes["last_stock_changed_at"] = now
        if status_changed:
            changes["last_stock_status_changed_at"] = now
            changes["last_stock_status_change"] = (
                f"{previous_status or 'unknown'}=>{payload.stock_status or 'unknown'}"
            )

        preserve = isinstance(existing_metadata.get("enrichment"), dict)
        variant = existing or VariantDB(product_id=product_id, sku=payload.sku)
        variant.color = choose_string(existing.color if existing else None, payload.color, preserve)
        variant.size = choose_string(existing.size if existing else None, payload.size, False)
        variant.fit = choose_string(existing.fit if existing else None, payload.fit, preserve)
        variant.material = choose_string(
            existing.material if existing else None, payload.material, preserve
        )
        variant.price = payload.price
        variant.currency = payload.currency
        variant.stock = payload.stock
        variant.stock_status = payload.stock_status
        variant.images_json = json.dumps(payload.images)
        variant.metadata_json = json.dumps({**existing_metadata, **payload.metadata, **changes})

        if existing is None:
            self.session.add(variant)
        self.session.flush()

        if price_changed:
            self.session.add(
                PriceHistoryDB(variant_id=variant.id, price=payload.price, currency=payload.currency)
            )
        if stock_changed or status_changed:
            self.session.add(
                StockHistoryDB(
                    variant_id=variant.id, stock=payload.stock, stock_status=payload.stock_status
                )
            )
        self.session.flush()
        return variant, existing is None
