"""
Enrichment Processor Module
===========================

Enrichment as a pipeline kind. For each product:

1. Harvest lexical signals from the name, description and vendor metadata
2. Route the product to a category-group prompt
3. Ask the model for attributes (variants in chunks, with retries and an
   inline repair call for invalid output)
4. Normalize the output onto the taxonomy
5. Reconcile it with the signals (Consistency Validator)
6. Persist the product/variant columns and metadata.enrichment
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.orm import Session

from catalog_pipeline.config import env_flag
from catalog_pipeline.core.errors import (
    EnrichmentError,
    InvalidModelOutputError,
    ScopeNotFoundError,
)
from catalog_pipeline.db.models_catalog import ProductDB, VariantDB
from catalog_pipeline.db.repositories import BrandRepository, ProductRepository, WorkRef, load_json
from catalog_pipeline.enrichment.description import strip_html_to_text
from catalog_pipeline.enrichment.routing import PromptRoute, categories_for_group, route_to_prompt_group
from catalog_pipeline.enrichment.signals import (
    HarvestedSignals,
    harvest_product_signals,
    original_vendor_signals,
)
from catalog_pipeline.enrichment.taxonomy import Taxonomy, get_default_taxonomy
from catalog_pipeline.enrichment.text import (
    chunk_list,
    clamp_text,
    dedupe_text,
    normalize_enum_array,
    normalize_enum_value,
    normalize_hex_color,
    normalize_pantone_code,
)
from catalog_pipeline.enrichment.validator import (
    MAX_MATERIAL_TAGS,
    EnrichedVariant,
    EnrichmentCandidate,
    ValidationResult,
    validate_and_autofix,
)
from catalog_pipeline.pipeline.base import ItemHandler, ItemOutcome, StageReporter, WorkItem
from catalog_pipeline.services.ai.client import (
    AIClient,
    ProductOutput,
    get_default_ai_client,
    parse_enrichment_response,
)
from catalog_pipeline.services.ai.prompts import (
    PROMPT_VERSION,
    SCHEMA_VERSION,
    build_enrichment_prompt,
    build_repair_prompt,
    build_repair_text,
)

logger = logging.getLogger(__name__)

METADATA_KEY = "enrichment"

MAX_LLM_RETRIES = 3
DEFAULT_BACKOFF_BASE = 0.2
VARIANT_CHUNK_SIZE = 8
MAX_IMAGES = 8

STYLE_TAG_COUNT = 10
MAX_PATTERN_TAGS = 2
MAX_OCCASION_TAGS = 2
MAX_COLORS_PER_VARIANT = 3
SEO_TITLE_MAX = 70
SEO_DESCRIPTION_MAX = 160
MAX_SEO_TAGS = 12

DEFAULT_PANTONE = "19-4042"
DEFAULT_FIT = "normal"
DEFAULT_GENDER = "no_binario_unisex"

# Padding for style_tags when the model returns fewer than STYLE_TAG_COUNT
STYLE_TAGS_FALLBACK = (
    "estetica_minimalista",
    "estetica_normcore",
    "vibra_sobria",
    "vibra_relajada",
    "vibra_fresca",
    "vibra_ligera",
    "formalidad_casual",
    "formalidad_smart_casual",
    "contexto_fin_de_semana",
    "contexto_oficina",
)


@dataclass(frozen=True)
class VariantInput:
    """A variant as sent to the model."""

    variant_id: str
    sku: str | None = None
    color: str | None = None
    size: str | None = None
    price: float | None = None

    def to_prompt(self) -> dict[str, Any]:
        return {
            "variant_id": self.variant_id,
            "sku": self.sku,
            "color": self.color,
            "size": self.size,
            "price": self.price,
        }


def is_already_enriched(metadata: dict[str, Any] | None) -> bool:
    """Check whether a product carries a finished enrichment record."""
    enrichment = (metadata or {}).get(METADATA_KEY)
    if not isinstance(enrichment, dict):
        return False
    return all(
        enrichment.get(key) for key in ("completed_at", "provider", "model", "prompt_version")
    )


# ============================================================================
# Normalization
# ============================================================================


def _as_list(value: str | list[str] | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [item for item in value if isinstance(item, str)]


def _normalize_colors(values: str | list[str] | None, normalizer) -> list[str]:
    output: list[str] = []
    for value in _as_list(values):
        normalized = normalizer(value)
        if normalized and normalized not in output:
            output.append(normalized)
    return output[:MAX_COLORS_PER_VARIANT]


def _match_variants(
    raw: ProductOutput, variants: list[VariantInput]
) -> list[tuple[VariantInput, Any]]:
    """
    Pair each expected variant with one output variant.

    Output variants are matched by variant_id, then by SKU. Unknown or
    repeated ids are rejected.
    """
    by_id = {variant.variant_id: variant for variant in variants}
    by_sku = {variant.sku: variant for variant in variants if variant.sku}
    matched: dict[str, Any] = {}
    for output in raw.variants:
        target = by_id.get(output.variant_id.strip())
        if target is None and output.sku:
            target = by_sku.get(output.sku.strip())
        if target is None:
            raise InvalidModelOutputError(f"Unknown variant_id: {output.variant_id}")
        if target.variant_id in matched:
            raise InvalidModelOutputError(f"Duplicate variant_id: {target.variant_id}")
        matched[target.variant_id] = output
    missing = [variant.variant_id for variant in variants if variant.variant_id not in matched]
    if missing:
        raise InvalidModelOutputError(f"Missing variants: {', '.join(missing)}")
    return [(variant, matched[variant.variant_id]) for variant in variants]


def normalize_enrichment(
    raw: ProductOutput,
    variants: list[VariantInput],
    taxonomy: Taxonomy,
    product_name: str = "",
) -> EnrichmentCandidate:
    """
    Clamp a model output onto the taxonomy.

    Args:
        raw: Parsed model output
        variants: Variants the output must cover (exactly once each)
        taxonomy: Allowed values
        product_name: Used as SEO title when the model gives none

    Returns:
        Normalized EnrichmentCandidate

    Raises:
        InvalidModelOutputError: On an unknown category or a variant mismatch
    """
    category = normalize_enum_value(raw.category, taxonomy.category_values)
    if not category:
        raise InvalidModelOutputError(f"Invalid category: {raw.category}")
    allowed_subs = taxonomy.subcategories_for(category)
    subcategory = normalize_enum_value(raw.subcategory, allowed_subs) or (
        allowed_subs[0] if allowed_subs else ""
    )

    style_tags = normalize_enum_array(raw.style_tags, taxonomy.style_tags)
    for tag in STYLE_TAGS_FALLBACK:
        if len(style_tags) >= STYLE_TAG_COUNT:
            break
        if tag in taxonomy.style_tags and tag not in style_tags:
            style_tags.append(tag)

    description = strip_html_to_text(raw.description)
    seo_tags = dedupe_text(tag for tag in raw.seo_tags if isinstance(tag, str))

    enriched_variants = []
    for variant, output in _match_variants(raw, variants):
        hexes = _normalize_colors(output.color_hex, normalize_hex_color)
        if not hexes:
            raise InvalidModelOutputError(f"Invalid color_hex for variant {variant.variant_id}")
        pantones = _normalize_colors(output.color_pantone, normalize_pantone_code) or [
            DEFAULT_PANTONE
        ]
        enriched_variants.append(
            EnrichedVariant(
                variant_id=variant.variant_id,
                sku=variant.sku,
                color_hex=hexes[0],
                color_pantone=pantones[0],
                fit=normalize_enum_value(output.fit, taxonomy.fits) or DEFAULT_FIT,
                color_hexes=hexes,
                color_pantones=pantones,
            )
        )

    return EnrichmentCandidate(
        description=description,
        category=category,
        subcategory=subcategory,
        style_tags=style_tags[:STYLE_TAG_COUNT],
        material_tags=normalize_enum_array(raw.material_tags, taxonomy.materials)[:MAX_MATERIAL_TAGS],
        pattern_tags=normalize_enum_array(raw.pattern_tags, taxonomy.patterns)[:MAX_PATTERN_TAGS],
        occasion_tags=normalize_enum_array(raw.occasion_tags, taxonomy.occasions)[
            :MAX_OCCASION_TAGS
        ],
        gender=normalize_enum_value(raw.gender, taxonomy.genders) or DEFAULT_GENDER,
        season=normalize_enum_value(raw.season, taxonomy.seasons)
        or (taxonomy.seasons[0] if taxonomy.seasons else ""),
        seo_title=clamp_text(raw.seo_title or product_name, SEO_TITLE_MAX),
        seo_description=clamp_text(raw.seo_description or description, SEO_DESCRIPTION_MAX),
        seo_tags=seo_tags[:MAX_SEO_TAGS],
        variants=enriched_variants,
    )


def merge_chunks(chunks: list[EnrichmentCandidate]) -> EnrichmentCandidate:
    """Product fields from the first chunk, variants from every chunk."""
    merged = chunks[0]
    for chunk in chunks[1:]:
        merged.variants.extend(chunk.variants)
    return merged


def collect_image_urls(product: ProductDB, limit: int = MAX_IMAGES) -> list[str]:
    """Cover image first, then variant images; http(s) only, deduplicated."""
    urls: list[str] = []
    if product.image_cover_url:
        urls.append(product.image_cover_url)
    for variant in product.variants:
        urls.extend(url for url in load_json(variant.images_json, []) if isinstance(url, str))
    unique = dict.fromkeys(url for url in urls if url.startswith(("http://", "https://")))
    return list(unique)[:limit]


def build_user_text(
    product: ProductDB,
    signals: HarvestedSignals,
    variants: list[VariantInput],
) -> str:
    """User message: the product, its harvested signals and the variants to describe."""
    payload = {
        "product": {
            "id": product.id,
            "brand": product.brand.name if product.brand else None,
            "name_original": product.name,
            "description_original": signals.description_clean_text,
            "source_url": product.source_url,
        },
        "signals": signals.to_prompt_payload(),
        "variants": [variant.to_prompt() for variant in variants],
    }
    return json.dumps(payload, ensure_ascii=False)


# ============================================================================
# Handler
# ============================================================================


class EnrichmentItemHandler(ItemHandler):
    """Discovers and enriches products for a brand scope (or "all")."""

    def __init__(
        self,
        ai_client: AIClient | None = None,
        taxonomy: Taxonomy | None = None,
        allow_reenrich: bool | None = None,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        max_retries: int = MAX_LLM_RETRIES,
    ) -> None:
        self._ai_client = ai_client
        self._taxonomy = taxonomy
        if allow_reenrich is None:
            allow_reenrich = env_flag("ENRICHMENT_ALLOW_REENRICH")
        self.allow_reenrich = allow_reenrich
        self.backoff_base = backoff_base
        self.max_retries = max_retries

    @property
    def ai_client(self) -> AIClient:
        if self._ai_client is None:
            self._ai_client = get_default_ai_client()
        return self._ai_client

    @property
    def taxonomy(self) -> Taxonomy:
        if self._taxonomy is None:
            self._taxonomy = get_default_taxonomy()
        return self._taxonomy

    async def discover(self, session: Session, scope: str, limit: int | None) -> list[WorkRef]:
        if scope != "all" and BrandRepository(session).get_by_id(scope) is None:
            raise ScopeNotFoundError(f"Brand {scope} not found")
        products = ProductRepository(session).list_for_scope(scope, limit)
        logger.info(f"Discovered {len(products)} products to enrich for scope {scope}")
        return [WorkRef(url=product.source_url, product_id=product.id) for product in products]

    def run_metadata(self, scope: str) -> dict[str, Any]:
        return {
            "trigger": "enrichment",
            "prompt_version": PROMPT_VERSION,
            "schema_version": SCHEMA_VERSION,
        }

    async def handle(
        self, session: Session, item: WorkItem, report_stage: StageReporter
    ) -> ItemOutcome:
        product_id = item.ref.product_id
        report_stage("load")
        product = ProductRepository(session).get_with_variants(product_id) if product_id else None
        if product is None:
            return ItemOutcome(stage="not_found", result={"product_id": product_id})

        metadata = load_json(product.metadata_json, {})
        if is_already_enriched(metadata) and not self.allow_reenrich:
            return ItemOutcome(
                stage="skipped_already_enriched", result={"product_id": product.id}
            )

        report_stage("signals")
        taxonomy = self.taxonomy
        signals = harvest_product_signals(product.name, product.description, metadata, taxonomy)
        route = route_to_prompt_group(signals)

        variants = [
            VariantInput(
                variant_id=variant.id,
                sku=variant.sku,
                color=variant.color,
                size=variant.size,
                price=variant.price,
            )
            for variant in product.variants
        ]
        if not variants:
            raise EnrichmentError(f"Product {product.id} has no variants")

        report_stage("llm")
        system_prompt = build_enrichment_prompt(
            taxonomy, route.group, categories_for_group(route.group)
        )
        images = collect_image_urls(product)
        chunks = []
        for chunk in chunk_list(variants, VARIANT_CHUNK_SIZE):
            user_text = build_user_text(product, signals, chunk)
            chunks.append(
                await self.request_enrichment(system_prompt, user_text, images, chunk, product.name)
            )
        candidate = merge_chunks(chunks)

        report_stage("validate")
        validation = validate_and_autofix(signals, candidate, taxonomy, route.confidence)

        report_stage("persist")
        self.persist(session, product, metadata, signals, route, validation, item.run_id)
        logger.info(
            f"Enriched product {product.id} as {validation.enriched.category}/"
            f"{validation.enriched.subcategory} (confidence {validation.confidence.overall})"
        )
        return ItemOutcome(
            stage="persist",
            result={
                "product_id": product.id,
                "category": validation.enriched.category,
                "subcategory": validation.enriched.subcategory,
                "variants": len(validation.enriched.variants),
                "prompt_group": route.group,
                "review_required": validation.review_required,
                "confidence": validation.confidence.overall,
            },
        )

    async def request_enrichment(
        self,
        system_prompt: str,
        user_text: str,
        images: list[str],
        variants: list[VariantInput],
        product_name: str,
    ) -> EnrichmentCandidate:
        """
        Call the model until it returns a valid, normalizable output.

        Each attempt makes one call; an invalid output gets one repair
        call within the same attempt. Failed attempts are retried with
        exponential backoff.

        Raises:
            EnrichmentError: When every attempt failed
        """
        client = self.ai_client
        variant_ids = [variant.variant_id for variant in variants]

        def parse(raw: str) -> EnrichmentCandidate:
            output = parse_enrichment_response(raw, expected_variants=len(variants))
            return normalize_enrichment(output, variants, self.taxonomy, product_name)

        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                raw = await asyncio.to_thread(client.complete, system_prompt, user_text, images)
                try:
                    return parse(raw)
                except InvalidModelOutputError as e:
                    logger.info(f"Invalid model output ({e}); requesting repair")
                    repaired = await asyncio.to_thread(
                        client.complete,
                        build_repair_prompt(system_prompt, str(e)),
                        build_repair_text(variant_ids, raw),
                    )
                    return parse(repaired)
            except Exception as e:
                last_error = e
                logger.warning(f"Enrichment attempt {attempt}/{self.max_retries} failed: {e}")
                if attempt < self.max_retries:
                    await asyncio.sleep(2**attempt * self.backoff_base)

        raise EnrichmentError(
            f"Enrichment failed after {self.max_retries} attempts: {last_error}"
        ) from last_error

    def persist(
        self,
        session: Session,
        product: ProductDB,
        metadata: dict[str, Any],
        signals: HarvestedSignals,
        route: PromptRoute,
        validation: ValidationResult,
        run_id: str,
    ) -> None:
        """Write the validated enrichment onto the product and its variants."""
        enriched = validation.enriched
        previous = metadata.get(METADATA_KEY) if isinstance(metadata.get(METADATA_KEY), dict) else {}
        original_description = previous.get("original_description") or product.description
        vendor_signals = previous.get("original_vendor_signals") or original_vendor_signals(metadata)

        metadata[METADATA_KEY] = {
            "model": self.ai_client.model,
            "provider": self.ai_client.provider.value,
            "prompt_version": PROMPT_VERSION,
            "schema_version": SCHEMA_VERSION,
            "completed_at": datetime.now(UTC).isoformat(),
            "run_id": run_id,
            "original_description": original_description,
            "original_vendor_signals": vendor_signals,
            "signals": signals.to_dict(),
            "signal_strength": signals.signal_strength.value,
            "prompt_group": route.group,
            "route": route.to_dict(),
            "confidence": validation.confidence.to_dict(),
            "consistency": {
                "issues": [issue.to_dict() for issue in validation.issues],
                "auto_fixes": [fix.to_dict() for fix in validation.auto_fixes],
                "review_required": validation.review_required,
                "review_reasons": validation.review_reasons,
            },
            "review_required": validation.review_required,
            "review_reasons": validation.review_reasons,
        }

        if enriched.description:
            product.description = enriched.description
        product.category = enriched.category
        product.subcategory = enriched.subcategory
        product.style_tags_json = json.dumps(enriched.style_tags)
        product.material_tags_json = json.dumps(enriched.material_tags)
        product.pattern_tags_json = json.dumps(enriched.pattern_tags)
        product.occasion_tags_json = json.dumps(enriched.occasion_tags)
        product.gender = enriched.gender
        product.season = enriched.season
        product.seo_title = enriched.seo_title
        product.seo_description = enriched.seo_description
        product.seo_tags_json = json.dumps(enriched.seo_tags)
        product.metadata_json = json.dumps(metadata, ensure_ascii=False)

        by_id: dict[str, VariantDB] = {variant.id: variant for variant in product.variants}
        for output in enriched.variants:
            variant = by_id.get(output.variant_id)
            if variant is None:
                continue
            variant.color = output.color_hex
            variant.color_pantone = output.color_pantone
            variant.fit = output.fit
            variant_metadata = load_json(variant.metadata_json, {})
            variant_metadata[METADATA_KEY] = {
                "colors": {"hex": output.color_hexes, "pantone": output.color_pantones},
                "run_id": run_id,
            }
            variant.metadata_json = json.dumps(variant_metadata)
        session.flush()
