"""Initial schema: generic run/item tables and canonical catalog.

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates:
- pipeline_runs, pipeline_items (state machine shared by every pipeline kind)
- brands, products, variants (canonical catalog)
- price_history, stock_history (variant change tracking)
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # =========================================================================
    # Run / Item state machine
    # =========================================================================

    op.create_table(
        "pipeline_runs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("scope", sa.String(64), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("total_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("block_reason", sa.String(128), nullable=True),
        sa.Column("last_stage", sa.String(64), nullable=True),
        sa.Column("last_ref", sa.String(512), nullable=True),
        sa.Column("consecutive_errors", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("metadata_json", sa.Text(), nullable=False, server_default="{}"),
    )
    op.create_index(
        "ix_pipeline_runs_kind_scope_status", "pipeline_runs", ["kind", "scope", "status"]
    )
    op.create_index("ix_pipeline_runs_updated_at", "pipeline_runs", ["updated_at"])

    op.create_table(
        "pipeline_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "run_id",
            sa.String(36),
            sa.ForeignKey("pipeline_runs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("ref_url", sa.String(1024), nullable=True),
        sa.Column("ref_external_id", sa.String(255), nullable=True),
        sa.Column("ref_handle", sa.String(255), nullable=True),
        sa.Column("product_id", sa.String(36), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_stage", sa.String(64), nullable=True),
        sa.Column("result_json", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_pipeline_items_run_status", "pipeline_items", ["run_id", "status"])
    op.create_index("ix_pipeline_items_run_updated", "pipeline_items", ["run_id", "updated_at"])

    # =========================================================================
    # Canonical catalog
    # =========================================================================

    op.create_table(
        "brands",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False, unique=True),
        sa.Column("site_url", sa.String(1024), nullable=True),
        sa.Column("ecommerce_platform", sa.String(50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("metadata_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "products",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("brand_id", sa.String(36), sa.ForeignKey("brands.id"), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("source_url", sa.String(1024), nullable=True),
        sa.Column("name", sa.String(512), nullable=False, server_default=""),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_cover_url", sa.String(1024), nullable=True),
        sa.Column("currency", sa.String(8), nullable=True),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("subcategory", sa.String(100), nullable=True),
        sa.Column("gender", sa.String(50), nullable=True),
        sa.Column("season", sa.String(50), nullable=True),
        sa.Column("style_tags_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("material_tags_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("pattern_tags_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("occasion_tags_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("care_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("origin", sa.String(100), nullable=True),
        sa.Column("seo_title", sa.String(255), nullable=True),
        sa.Column("seo_description", sa.String(512), nullable=True),
        sa.Column("seo_tags_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("status", sa.String(50), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("brand_id", "source_url", name="uq_products_brand_source_url"),
        sa.UniqueConstraint("brand_id", "external_id", name="uq_products_brand_external_id"),
    )
    op.create_index("ix_products_brand_id", "products", ["brand_id"])
    op.create_index("ix_products_external_id", "products", ["external_id"])
    op.create_index("ix_products_source_url", "products", ["source_url"])
    op.create_index("ix_products_category", "products", ["category"])

    op.create_table(
        "variants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "product_id",
            sa.String(36),
            sa.ForeignKey("products.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sku", sa.String(255), nullable=False),
        sa.Column("color", sa.String(100), nullable=True),
        sa.Column("color_pantone", sa.String(20), nullable=True),
        sa.Column("size", sa.String(50), nullable=True),
        sa.Column("fit", sa.String(50), nullable=True),
        sa.Column("material", sa.String(100), nullable=True),
        sa.Column("price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(8), nullable=False, server_default="COP"),
        sa.Column("stock", sa.Integer(), nullable=True),
        sa.Column("stock_status", sa.String(20), nullable=True),
        sa.Column("images_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("metadata_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("product_id", "sku", name="uq_variants_product_sku"),
    )
    op.create_index("ix_variants_product_id", "variants", ["product_id"])

    op.create_table(
        "price_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "variant_id",
            sa.String(36),
            sa.ForeignKey("variants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False),
        sa.Column("captured_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_price_history_variant_id", "price_history", ["variant_id"])

    op.create_table(
        "stock_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "variant_id",
            sa.String(36),
            sa.ForeignKey("variants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stock", sa.Integer(), nullable=True),
        sa.Column("stock_status", sa.String(20), nullable=True),
        sa.Column("captured_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_stock_history_variant_id", "stock_history", ["variant_id"])


def downgrade() -> None:
    op.drop_table("stock_history")
    op.drop_table("price_history")
    op.drop_table("variants")
    op.drop_table("products")
    op.drop_table("brands")
    op.drop_table("pipeline_items")
    op.drop_table("pipeline_runs")
