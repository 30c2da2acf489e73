"""
Catalog Pipeline Module
=======================

Catalog crawl as a pipeline kind: discovery turns a brand's storefront
into work references, and each item fetches one product through the
brand's platform adapter and upserts it into the canonical store.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.orm import Session

from catalog_pipeline.core.enums import RunStatus
from catalog_pipeline.core.errors import ScopeNotFoundError
from catalog_pipeline.db.models import RunDB
from catalog_pipeline.db.models_catalog import BrandDB
from catalog_pipeline.db.repositories import BrandRepository, WorkRef, load_json
from catalog_pipeline.ingestion.adapters import AdapterContext, BrandContext, ProductRef, get_adapter
from catalog_pipeline.ingestion.assets import AssetResolver, get_default_asset_store
from catalog_pipeline.ingestion.fetcher import Fetcher
from catalog_pipeline.ingestion.page_extractor import PageExtractor, get_default_page_extractor
from catalog_pipeline.ingestion.platform import detect_platform
from catalog_pipeline.ingestion.upsert import CatalogUpserter
from catalog_pipeline.pipeline.base import ItemHandler, ItemOutcome, StageReporter, WorkItem

logger = logging.getLogger(__name__)

BRAND_METADATA_KEY = "catalog_extract"


def brand_context(brand: BrandDB, platform: str | None = None) -> AdapterContext:
    """Build the adapter context for a brand."""
    return AdapterContext(
        brand=BrandContext(
            id=brand.id,
            name=brand.name,
            slug=brand.slug,
            site_url=brand.site_url or "",
            ecommerce_platform=platform or brand.ecommerce_platform,
        )
    )


def dedupe_refs(refs: list[ProductRef], limit: int) -> list[WorkRef]:
    """Drop repeated URLs (first wins) and truncate to limit."""
    seen: set[str] = set()
    work_refs = []
    for ref in refs:
        if not ref.url or ref.url in seen:
            continue
        seen.add(ref.url)
        work_refs.append(WorkRef(url=ref.url, external_id=ref.external_id, handle=ref.handle))
        if len(work_refs) >= limit:
            break
    return work_refs


class CatalogItemHandler(ItemHandler):
    """Discovers and processes catalog items for a brand scope."""

    def __init__(
        self,
        fetcher: Fetcher | None = None,
        assets: AssetResolver | None = None,
        discovery_limit: int = 200,
        page_extractor: PageExtractor | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._assets = assets
        self._page_extractor = page_extractor
        self._page_extractor_loaded = page_extractor is not None
        self.discovery_limit = discovery_limit
        self._platforms: dict[str, dict[str, Any]] = {}

    @property
    def fetcher(self) -> Fetcher:
        if self._fetcher is None:
            self._fetcher = Fetcher.from_config()
        return self._fetcher

    @property
    def assets(self) -> AssetResolver:
        if self._assets is None:
            self._assets = get_default_asset_store(self.fetcher)
        return self._assets

    @property
    def page_extractor(self) -> PageExtractor | None:
        if not self._page_extractor_loaded:
            self._page_extractor = get_default_page_extractor()
            self._page_extractor_loaded = True
        return self._page_extractor

    async def aclose(self) -> None:
        if self._fetcher is not None:
            await self._fetcher.aclose()

    def _require_brand(self, session: Session, brand_id: str) -> BrandDB:
        brand = BrandRepository(session).get_by_id(brand_id)
        if brand is None:
            raise ScopeNotFoundError(f"Brand {brand_id} not found")
        if not brand.site_url:
            raise ScopeNotFoundError(f"Brand {brand.slug} has no site URL")
        return brand

    async def resolve_platform(self, brand: BrandDB) -> dict[str, Any]:
        """Use the recorded platform, or detect it from the home page."""
        platform = (brand.ecommerce_platform or "").strip().lower()
        if platform and platform != "unknown":
            return {"platform": platform, "inferred": None}
        guess = await detect_platform(self.fetcher, brand.site_url or "")
        if guess is None:
            return {"platform": None, "inferred": None}
        logger.info(f"Detected platform {guess.platform} ({guess.confidence}) for {brand.slug}")
        return {
            "platform": guess.platform,
            "inferred": {
                "platform": guess.platform,
                "confidence": guess.confidence,
                "evidence": guess.evidence,
            },
        }

    async def discover(self, session: Session, scope: str, limit: int | None) -> list[WorkRef]:
        brand = self._require_brand(session, scope)
        resolved = await self.resolve_platform(brand)
        adapter = get_adapter(resolved["platform"], self.fetcher)

        limit = limit or self.discovery_limit
        refs = await adapter.discover_products(brand_context(brand, resolved["platform"]), limit)
        work_refs = dedupe_refs(refs, limit)

        self._platforms[scope] = {
            "platform": resolved["platform"],
            "adapter": adapter.platform,
            "inferred_platform": resolved["inferred"],
            "discovered": len(refs),
        }
        logger.info(
            f"Discovered {len(work_refs)} products for {brand.slug} via {adapter.platform}"
        )
        return work_refs

    def run_metadata(self, scope: str) -> dict[str, Any]:
        return {"trigger": "catalog", **self._platforms.pop(scope, {})}

    async def handle(
        self, session: Session, item: WorkItem, report_stage: StageReporter
    ) -> ItemOutcome:
        brand = self._require_brand(session, item.scope)
        run = session.get(RunDB, item.run_id)
        platform = load_json(run.metadata_json, {}).get("platform") if run else None
        platform = platform or brand.ecommerce_platform
        adapter = get_adapter(platform, self.fetcher, page_extractor=self.page_extractor)

        upserter = CatalogUpserter(session, self.assets)
        result = await upserter.process_ref(
            brand,
            adapter,
            brand_context(brand, platform),
            ProductRef(url=item.ref.url or "", external_id=item.ref.external_id, handle=item.ref.handle),
            on_stage=report_stage,
        )
        if result is None:
            return ItemOutcome(stage="not_found", result={"created": False, "product_id": None})
        return ItemOutcome(stage="upsert", result=result.to_dict())

    def on_finalize(self, session: Session, run_id: str, scope: str, status: RunStatus) -> None:
        """Record the finished run on the brand."""
        repo = BrandRepository(session)
        if repo.get_by_id(scope) is None:
            return
        repo.update_metadata(
            scope,
            {
                BRAND_METADATA_KEY: {
                    "run_id": run_id,
                    "status": status.value,
                    "finished_at": datetime.now(UTC).isoformat(),
                }
            },
        )
