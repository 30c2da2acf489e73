"""LLM services for product enrichment."""

from catalog_pipeline.services.ai.client import (
    AIClient,
    AIProvider,
    EnrichmentResponse,
    get_ai_client,
    get_default_ai_client,
)

__all__ = [
    "AIClient",
    "AIProvider",
    "EnrichmentResponse",
    "get_ai_client",
    "get_default_ai_client",
]
