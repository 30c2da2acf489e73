"""SQLAlchemy ORM models for the canonical catalog.

These models define the durable product store written by the catalog
upsert and read/enriched by the enrichment pipeline:
- BrandDB (scope owner, platform hint)
- ProductDB, VariantDB (canonical product/variant)
- PriceHistoryDB, StockHistoryDB (change tracking)
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from catalog_pipeline.db.models import Base


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


# ============================================================================
# Brands
# ============================================================================


class BrandDB(Base):
    """A brand whose storefront is crawled."""

    __tablename__ = "brands"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    site_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    ecommerce_platform: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    metadata_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    products: Mapped[list["ProductDB"]] = relationship("ProductDB", back_populates="brand")

    def __repr__(self) -> str:
        return f"<BrandDB(id={self.id}, slug='{self.slug}')>"


# ============================================================================
# Products
# ============================================================================


class ProductDB(Base):
    """
    Canonical product.

    Matched by (brand_id, external_id) or (brand_id, source_url); both
    pairs are unique (NULLs excluded). The enrichment result lives in
    metadata_json under "enrichment".
    """

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    brand_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("brands.id"), nullable=False, index=True
    )
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    source_url: Mapped[str | None] = mapped_column(String(1024), nullable=True, index=True)

    name: Mapped[str] = mapped_column(String(512), default="")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_cover_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(8), nullable=True)

    # Classification (owned by enrichment once enriched)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    subcategory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gender: Mapped[str | None] = mapped_column(String(50), nullable=True)
    season: Mapped[str | None] = mapped_column(String(50), nullable=True)
    style_tags_json: Mapped[str] = mapped_column(Text, default="[]")
    material_tags_json: Mapped[str] = mapped_column(Text, default="[]")
    pattern_tags_json: Mapped[str] = mapped_column(Text, default="[]")
    occasion_tags_json: Mapped[str] = mapped_column(Text, default="[]")
    care_json: Mapped[str] = mapped_column(Text, default="[]")
    origin: Mapped[str | None] = mapped_column(String(100), nullable=True)
    seo_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    seo_description: Mapped[str | None] = mapped_column(String(512), nullable=True)
    seo_tags_json: Mapped[str] = mapped_column(Text, default="[]")

    status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    metadata_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    brand: Mapped["BrandDB"] = relationship("BrandDB", back_populates="products")
    variants: Mapped[list["VariantDB"]] = relationship(
        "VariantDB", back_populates="product", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("brand_id", "source_url", name="uq_products_brand_source_url"),
        UniqueConstraint("brand_id", "external_id", name="uq_products_brand_external_id"),
    )

    def __repr__(self) -> str:
        return f"<ProductDB(id={self.id}, name='{self.name[:40]}')>"


class VariantDB(Base):
    """Canonical variant, keyed by (product_id, sku)."""

    __tablename__ = "variants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sku: Mapped[str] = mapped_column(String(255), nullable=False)
    color: Mapped[str | None] = mapped_column(String(100), nullable=True)
    color_pantone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    size: Mapped[str | None] = mapped_column(String(50), nullable=True)
    fit: Mapped[str | None] = mapped_column(String(50), nullable=True)
    material: Mapped[str | None] = mapped_column(String(100), nullable=True)
    price: Mapped[float] = mapped_column(Float, default=0.0)
    currency: Mapped[str] = mapped_column(String(8), default="COP")
    stock: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stock_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    images_json: Mapped[str] = mapped_column(Text, default="[]")
    metadata_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    product: Mapped["ProductDB"] = relationship("ProductDB", back_populates="variants")

    __table_args__ = (UniqueConstraint("product_id", "sku", name="uq_variants_product_sku"),)

    def __repr__(self) -> str:
        return f"<VariantDB(id={self.id}, sku='{self.sku}', price={self.price})>"


# ============================================================================
# History
# ============================================================================


class PriceHistoryDB(Base):
    """Price observation for a variant."""

    __tablename__ = "price_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    variant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("variants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    price: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    captured_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)


class StockHistoryDB(Base):
    """Stock observation for a variant."""

    __tablename__ = "stock_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    variant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("variants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    stock: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stock_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    captured_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
