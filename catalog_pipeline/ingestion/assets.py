"""
Asset Resolver Module
=====================

Provides the asset resolver interface used by the catalog upsert and a
local content-addressed implementation. Images are downloaded once and
stored under {prefix}/{sha256[:16]}{ext}, so the same bytes always map
to the same key.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

import httpx

from catalog_pipeline.core.errors import AssetError
from catalog_pipeline.ingestion.fetcher import Fetcher

logger = logging.getLogger(__name__)

MAX_ASSET_BYTES = 12 * 1024 * 1024

IMAGE_ACCEPT = "image/avif,image/webp,image/png,image/jpeg,image/*;q=0.8,*/*;q=0.5"


@dataclass(frozen=True)
class ResolvedAsset:
    """A durably stored copy of a remote asset."""

    source_url: str
    durable_url: str
    content_hash: str
    key: str


class AssetResolver(ABC):
    """
    Abstract base class for asset resolvers.

    Implementations return a mapping for the URLs they could store. A
    failure for one URL is logged and omitted from the mapping; it never
    aborts the others.
    """

    @abstractmethod
    async def resolve(self, urls: list[str], prefix: str) -> dict[str, ResolvedAsset]:
        """
        Store the given URLs.

        Args:
            urls: Source URLs (duplicates are ignored)
            prefix: Key prefix, e.g. "catalog/<brand>/<product>"

        Returns:
            Mapping from source URL to ResolvedAsset
        """
        pass


def guess_extension(url: str, content_type: str | None) -> str:
    """Pick a file extension from the content type, then the URL path."""
    if content_type:
        if "png" in content_type:
            return ".png"
        if "webp" in content_type:
            return ".webp"
        if "gif" in content_type:
            return ".gif"
        if "jpeg" in content_type or "jpg" in content_type:
            return ".jpg"
    suffix = PurePosixPath(urlparse(url).path).suffix
    return suffix if suffix and len(suffix) <= 5 else ".jpg"


class LocalAssetStore(AssetResolver):
    """
    Local filesystem asset store.

    Directory structure:
        {base_path}/{prefix}/{sha256[:16]}{ext}

    durable_url is {base_url}/{key} when a public base URL is configured,
    otherwise the file:// URI of the stored file.
    """

    def __init__(
        self,
        base_path: str | Path,
        fetcher: Fetcher | None = None,
        base_url: str | None = None,
        max_bytes: int = MAX_ASSET_BYTES,
    ) -> None:
        self.base_path = Path(base_path).expanduser().resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.fetcher = fetcher or Fetcher.from_config()
        self.base_url = base_url.rstrip("/") if base_url else None
        self.max_bytes = max_bytes

    def _durable_url(self, key: str, path: Path) -> str:
        if self.base_url:
            return f"{self.base_url}/{key}"
        return path.as_uri()

    async def store(self, url: str, prefix: str) -> ResolvedAsset:
        """
        Download and store one asset.

        Raises:
            AssetError: On non-2xx responses or oversized bodies
            httpx.HTTPError: On connection failures and timeouts
        """
        source_url = f"https:{url}" if url.startswith("//") else url
        result = await self.fetcher.fetch(source_url, accept=IMAGE_ACCEPT)
        if not result.ok:
            raise AssetError(f"Image fetch failed: {result.status_code} {source_url}")
        if len(result.content) > self.max_bytes:
            raise AssetError(f"Image too large ({len(result.content)} bytes)")

        content_hash = self.fetcher.compute_hash(result.content)
        key = f"{prefix.strip('/')}/{content_hash[:16]}{guess_extension(source_url, result.content_type)}"
        path = self.base_path / key
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(result.content)

        return ResolvedAsset(
            source_url=source_url,
            durable_url=self._durable_url(key, path),
            content_hash=content_hash,
            key=key,
        )

    async def resolve(self, urls: list[str], prefix: str) -> dict[str, ResolvedAsset]:
        mapping: dict[str, ResolvedAsset] = {}
        for url in dict.fromkeys(u for u in urls if u):
            try:
                mapping[url] = await self.store(url, prefix)
            except (AssetError, httpx.HTTPError) as e:
                logger.warning(f"Asset upload failed for {url}: {e}")
        return mapping


def get_default_asset_store(fetcher: Fetcher | None = None) -> LocalAssetStore:
    """
    Get the default asset store.

    Uses asset_storage_path / asset_base_url / asset_max_bytes from the
    global pipeline configuration.
    """
    from catalog_pipeline.config import get_default_registry

    global_config = get_default_registry().global_config
    return LocalAssetStore(
        global_config.asset_storage_path,
        fetcher=fetcher,
        base_url=global_config.asset_base_url,
        max_bytes=global_config.asset_max_bytes,
    )
