"""
Adapter Base Module
===================

Defines the abstract base class for platform adapters.
Adapters are responsible for:
1. Discovering product references on a brand's storefront
2. Fetching one product's detail as a RawProduct
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any

from catalog_pipeline.ingestion.fetcher import Fetcher, FetchResult


@dataclass(frozen=True)
class BrandContext:
    """The brand an adapter call is made for."""

    id: str
    name: str
    slug: str
    site_url: str
    ecommerce_platform: str | None = None


@dataclass(frozen=True)
class AdapterContext:
    """Per-call context passed to adapters."""

    brand: BrandContext


@dataclass(frozen=True)
class ProductRef:
    """Reference to one product, as discovered on the storefront."""

    url: str
    external_id: str | None = None
    handle: str | None = None


@dataclass
class RawVariant:
    """
    Adapter-native variant.

    options holds the raw option map (e.g. {"color": "rojo", "talla": "M"});
    canonical color, size, fit and material are derived during upsert.
    """

    id: str | None = None
    sku: str | None = None
    options: dict[str, str] = field(default_factory=dict)
    price: float | None = None
    compare_at_price: float | None = None
    currency: str | None = None
    available: bool | None = None
    stock: int | None = None
    image: str | None = None
    images: list[str] = field(default_factory=list)


@dataclass
class RawProduct:
    """Adapter-native product detail."""

    source_url: str
    external_id: str | None = None
    title: str | None = None
    description: str | None = None
    vendor: str | None = None
    currency: str | None = None
    images: list[str] = field(default_factory=list)
    options: list[dict[str, Any]] = field(default_factory=list)
    variants: list[RawVariant] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


class BaseAdapter(ABC):
    """
    Abstract base class for platform adapters.

    Subclasses must implement:
    - discover_products: Collect product references up to a limit
    - fetch_product: Fetch one product, or None if it no longer resolves

    HTTP status >= 400 and undecodable JSON are "no data", never errors.
    Connection failures and timeouts propagate to the caller.
    """

    # Adapter identification (override in subclasses)
    ADAPTER_NAME: str = "base"
    ADAPTER_VERSION: str = "1.0.0"

    def __init__(
        self,
        fetcher: Fetcher | None = None,
        config: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            fetcher: HTTP fetcher (defaults to one built from pipeline config)
            config: Optional adapter-specific settings
        """
        self.fetcher = fetcher or Fetcher.from_config()
        self.config = config or {}

    @property
    def platform(self) -> str:
        """Platform identifier recorded on products."""
        return self.ADAPTER_NAME

    @abstractmethod
    async def discover_products(self, ctx: AdapterContext, limit: int = 200) -> list[ProductRef]:
        """
        Discover product references for a brand.

        Safe to call repeatedly; duplicates are removed downstream.

        Args:
            ctx: Adapter context
            limit: Maximum number of references to return

        Returns:
            List of product references
        """
        pass

    @abstractmethod
    async def fetch_product(self, ctx: AdapterContext, ref: ProductRef) -> RawProduct | None:
        """
        Fetch one product's detail.

        Args:
            ctx: Adapter context
            ref: Reference returned by discover_products

        Returns:
            RawProduct, or None when the reference no longer resolves
        """
        pass

    async def fetch_json(self, url: str) -> Any | None:
        """GET a JSON document; None on HTTP >= 400 or undecodable body."""
        result = await self.fetcher.fetch_text(url)
        return self.decode_json(result)

    @staticmethod
    def decode_json(result: FetchResult) -> Any | None:
        if result.status_code >= 400:
            return None
        try:
            return json.loads(result.text)
        except json.JSONDecodeError:
            return None

    def get_info(self) -> dict[str, str]:
        """Get adapter information."""
        return {
            "name": self.ADAPTER_NAME,
            "version": self.ADAPTER_VERSION,
            "class": self.__class__.__name__,
        }
