"""
Adapter Registry Module
=======================

Central registry for platform adapters, keyed by platform identifier.
Unknown or missing platforms resolve to the generic HTML adapter.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Type

from catalog_pipeline.ingestion.adapters.base import (
    AdapterContext,
    BaseAdapter,
    BrandContext,
    ProductRef,
    RawProduct,
    RawVariant,
)
from catalog_pipeline.ingestion.adapters.generic import GenericAdapter
from catalog_pipeline.ingestion.adapters.magento import MagentoAdapter
from catalog_pipeline.ingestion.adapters.shopify import ShopifyAdapter
from catalog_pipeline.ingestion.adapters.vtex import VtexAdapter
from catalog_pipeline.ingestion.adapters.woocommerce import WooCommerceAdapter
from catalog_pipeline.ingestion.fetcher import Fetcher

if TYPE_CHECKING:
    from catalog_pipeline.ingestion.page_extractor import PageExtractor


# Registry mapping platform identifiers to adapter classes
ADAPTER_REGISTRY: dict[str, Type[BaseAdapter]] = {
    ShopifyAdapter.ADAPTER_NAME: ShopifyAdapter,
    WooCommerceAdapter.ADAPTER_NAME: WooCommerceAdapter,
    VtexAdapter.ADAPTER_NAME: VtexAdapter,
    MagentoAdapter.ADAPTER_NAME: MagentoAdapter,
    GenericAdapter.ADAPTER_NAME: GenericAdapter,
}

FALLBACK_ADAPTER = GenericAdapter.ADAPTER_NAME


def get_adapter(
    platform: str | None,
    fetcher: Fetcher | None = None,
    config: dict[str, Any] | None = None,
    page_extractor: PageExtractor | None = None,
) -> BaseAdapter:
    """
    Get an adapter instance for a platform.

    Args:
        platform: Platform identifier (case-insensitive), e.g. "shopify"
        fetcher: Optional shared HTTP fetcher
        config: Optional adapter configuration
        page_extractor: Optional LLM extractor for pages the generic adapter cannot parse

    Returns:
        Adapter instance; the generic HTML adapter for unknown platforms
    """
    key = (platform or "").strip().lower()
    adapter_class = ADAPTER_REGISTRY.get(key) or ADAPTER_REGISTRY[FALLBACK_ADAPTER]
    if issubclass(adapter_class, GenericAdapter):
        return adapter_class(fetcher, config, page_extractor=page_extractor)
    return adapter_class(fetcher, config)


def register_adapter(name: str, adapter_class: Type[BaseAdapter]) -> None:
    """
    Register a new adapter type.

    Args:
        name: Platform identifier to register the adapter under
        adapter_class: Adapter class (must inherit from BaseAdapter)
    """
    if not issubclass(adapter_class, BaseAdapter):
        raise TypeError(f"{adapter_class} must inherit from BaseAdapter")
    ADAPTER_REGISTRY[name.lower()] = adapter_class


def list_adapters() -> list[str]:
    """List all registered platform identifiers."""
    return list(ADAPTER_REGISTRY.keys())


def get_adapter_info(platform: str) -> dict[str, str] | None:
    """
    Get information about an adapter type.

    Returns:
        Dict with adapter info, or None if not registered
    """
    adapter_class = ADAPTER_REGISTRY.get(platform.lower())
    if adapter_class is None:
        return None

    return {
        "name": adapter_class.ADAPTER_NAME,
        "version": adapter_class.ADAPTER_VERSION,
        "class": adapter_class.__name__,
    }


__all__ = [
    # Registry functions
    "get_adapter",
    "register_adapter",
    "list_adapters",
    "get_adapter_info",
    "ADAPTER_REGISTRY",
    # Base classes
    "AdapterContext",
    "BaseAdapter",
    "BrandContext",
    "ProductRef",
    "RawProduct",
    "RawVariant",
    # Concrete adapters
    "GenericAdapter",
    "MagentoAdapter",
    "ShopifyAdapter",
    "VtexAdapter",
    "WooCommerceAdapter",
]
