"""Builds a configured Pipeline for each pipeline kind."""

from __future__ import annotations

from typing import Callable

from sqlalchemy.orm import Session

from catalog_pipeline.config import get_default_registry
from catalog_pipeline.core.enums import PipelineKind
from catalog_pipeline.enrichment.taxonomy import Taxonomy
from catalog_pipeline.ingestion.assets import AssetResolver
from catalog_pipeline.ingestion.fetcher import Fetcher
from catalog_pipeline.ingestion.page_extractor import PageExtractor
from catalog_pipeline.pipeline.base import ItemHandler, Pipeline
from catalog_pipeline.services.ai.client import AIClient


def get_pipeline(
    kind: PipelineKind | str,
    session_factory: Callable[[], Session] | None = None,
    fetcher: Fetcher | None = None,
    assets: AssetResolver | None = None,
    ai_client: AIClient | None = None,
    taxonomy: Taxonomy | None = None,
    page_extractor: PageExtractor | None = None,
) -> Pipeline:
    """
    Get a pipeline for a kind, configured from the default registry.

    Collaborators left as None are created lazily by the handlers from
    the environment (HTTP fetcher, asset store, AI client, taxonomy and
    the LLM page extractor).

    Raises:
        ValueError: If kind is not a known pipeline kind
    """
    kind = PipelineKind(kind)
    config = get_default_registry().get_pipeline_config(kind)

    handler: ItemHandler
    if kind == PipelineKind.CATALOG:
        from catalog_pipeline.ingestion.catalog import CatalogItemHandler

        handler = CatalogItemHandler(
            fetcher=fetcher,
            assets=assets,
            discovery_limit=config.discovery_limit,
            page_extractor=page_extractor,
        )
    else:
        from catalog_pipeline.enrichment.processor import EnrichmentItemHandler

        handler = EnrichmentItemHandler(ai_client=ai_client, taxonomy=taxonomy)

    return Pipeline(kind, handler, config, session_factory)
