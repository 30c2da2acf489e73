"""
Product Enrichment
==================

Turns canonical products into classified products:

1. Signals - Keyword, description and vendor evidence (signals.py)
2. Routing - Category-group prompt selection (routing.py)
3. LLM - Structured attributes from the model (services.ai)
4. Validation - Taxonomy snapping, overrides and confidence (validator.py)
5. Persist - Product/variant columns and metadata.enrichment (processor.py)
"""

from catalog_pipeline.enrichment.processor import (
    EnrichmentItemHandler,
    is_already_enriched,
    normalize_enrichment,
)
from catalog_pipeline.enrichment.routing import PromptRoute, route_to_prompt_group
from catalog_pipeline.enrichment.signals import HarvestedSignals, harvest_product_signals
from catalog_pipeline.enrichment.taxonomy import Taxonomy, get_default_taxonomy, load_taxonomy
from catalog_pipeline.enrichment.validator import (
    EnrichmentCandidate,
    ValidationResult,
    validate_and_autofix,
)

__all__ = [
    # Handler
    "EnrichmentItemHandler",
    "is_already_enriched",
    "normalize_enrichment",
    # Signals and routing
    "HarvestedSignals",
    "harvest_product_signals",
    "PromptRoute",
    "route_to_prompt_group",
    # Taxonomy
    "Taxonomy",
    "get_default_taxonomy",
    "load_taxonomy",
    # Validation
    "EnrichmentCandidate",
    "ValidationResult",
    "validate_and_autofix",
]
