"""
Catalog Ingestion
=================

Crawls brand storefronts into the canonical product store.

Pipeline Stages:
1. Discovery - Platform adapters list product URLs for a brand
2. Fetch - Rate-limited HTTP with bounded timeouts (fetcher.py)
3. Normalize - Prices, currencies, sizes, stock (normalizer.py)
4. Assets - Product images copied into the asset store (assets.py)
5. Upsert - Products, variants, price and stock history (upsert.py)
"""

from catalog_pipeline.ingestion.adapters import (
    BaseAdapter,
    RawProduct,
    RawVariant,
    get_adapter,
    list_adapters,
)
from catalog_pipeline.ingestion.assets import AssetResolver, LocalAssetStore, get_default_asset_store
from catalog_pipeline.ingestion.catalog import CatalogItemHandler
from catalog_pipeline.ingestion.fetcher import Fetcher, FetchResult, TokenBucket
from catalog_pipeline.ingestion.upsert import CatalogUpserter, UpsertResult

__all__ = [
    # Adapters
    "BaseAdapter",
    "RawProduct",
    "RawVariant",
    "get_adapter",
    "list_adapters",
    # Fetching and assets
    "Fetcher",
    "FetchResult",
    "TokenBucket",
    "AssetResolver",
    "LocalAssetStore",
    "get_default_asset_store",
    # Upsert
    "CatalogUpserter",
    "UpsertResult",
    "CatalogItemHandler",
]
