"""
Signal Harvester
================

Deterministic, rule-based pass over a product's name, description,
vendor metadata (product type, tags, platform) and SEO meta tags that
proposes category, subcategory, gender, material and pattern hints
independently of the LLM.

The hints are later used by the consistency validator to check, and
when the evidence is strong enough to override, the model's output.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any

from catalog_pipeline.core.enums import SignalStrength
from catalog_pipeline.enrichment.description import build_description_signals
from catalog_pipeline.enrichment.keywords import (
    CATEGORY_KEYWORD_RULES,
    GENDER_KEYWORD_RULES,
    GENDER_VALUES,
    MATERIAL_KEYWORD_RULES,
    PATTERN_KEYWORD_RULES,
    CategoryKeywordRule,
    collect_by_rules,
)
from catalog_pipeline.enrichment.taxonomy import Taxonomy
from catalog_pipeline.enrichment.text import (
    dedupe_text,
    has_any_keyword,
    normalize_enum_array,
    normalize_enum_value,
    normalize_text,
    slugify,
)

NAME_STOPWORDS = frozenset({"de", "del", "la", "el", "los", "las", "con", "para", "y", "en"})

_BOTTOM_WORDS = ("pantalon", "pantalones", "jogger", "cargo", "palazzo", "legging", "leggings", "jean", "jeans")
_SHOE_WORDS = ("tenis", "sneaker", "sandalia", "mocasin", "loafer", "zapato", "botin")
_BODY_CARE_WORDS = ("body cream", "body splash", "crema corporal", "locion", "locion corporal")


@dataclass
class CategoryMatch:
    category: str | None = None
    subcategory: str | None = None
    product_type: str | None = None


@dataclass
class VendorSignals:
    """Vendor-provided classification hints."""

    category: str | None = None
    tags: list[str] = field(default_factory=list)
    platform: str | None = None
    og_title: str | None = None
    og_description: str | None = None


@dataclass
class HarvestedSignals:
    """Text-derived classification hints for one product."""

    name_keywords: list[str] = field(default_factory=list)
    name_category: str | None = None
    name_subcategory: str | None = None
    name_product_type: str | None = None
    description_materials: list[str] = field(default_factory=list)
    description_care: list[str] = field(default_factory=list)
    description_measurements: list[str] = field(default_factory=list)
    description_features: list[str] = field(default_factory=list)
    description_product_type: str | None = None
    description_clean_text: str = ""
    vendor_category: str | None = None
    vendor_tags: list[str] = field(default_factory=list)
    vendor_platform: str | None = None
    og_title: str | None = None
    og_description: str | None = None
    inferred_category: str | None = None
    inferred_subcategory: str | None = None
    inferred_gender: str | None = None
    inferred_materials: list[str] = field(default_factory=list)
    inferred_patterns: list[str] = field(default_factory=list)
    signal_strength: SignalStrength = SignalStrength.WEAK
    conflicting_signals: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["signal_strength"] = self.signal_strength.value
        return data

    def to_prompt_payload(self) -> dict[str, Any]:
        """Subset of signals handed to the model as evidence."""
        return {
            "vendor_category": self.vendor_category,
            "vendor_tags": self.vendor_tags,
            "vendor_platform": self.vendor_platform,
            "og_title": self.og_title,
            "og_description": self.og_description,
            "detected_product_type": self.name_product_type or self.description_product_type,
            "detected_materials": self.inferred_materials,
            "detected_patterns": self.inferred_patterns,
            "detected_care": self.description_care,
            "detected_measurements": self.description_measurements,
            "detected_features": self.description_features,
            "description_clean": self.description_clean_text,
            "inferred_category": self.inferred_category,
            "inferred_subcategory": self.inferred_subcategory,
            "inferred_gender": self.inferred_gender,
            "signal_strength": self.signal_strength.value,
            "conflicts": self.conflicting_signals,
        }


# ============================================================================
# Helpers
# ============================================================================


def tokenize_name(value: str) -> list[str]:
    tokens = [t for t in normalize_text(value).split(" ") if len(t) >= 3 and t not in NAME_STOPWORDS]
    return tokens[:12]


def _looks_like_bota_fit(text: str) -> bool:
    """'Pantalon bota recta' describes a leg cut, not a boot."""
    return has_any_keyword(text, _BOTTOM_WORDS) and has_any_keyword(text, ("bota", "botas"))


def should_ignore_rule(rule: CategoryKeywordRule, text: str) -> bool:
    """Known false positives of the keyword rules."""
    if (
        rule.category == "joyeria_y_bisuteria"
        and rule.product_type == "collar"
        and has_any_keyword(text, ("camisa", "blusa"))
        and not has_any_keyword(text, ("oro", "plata", "anillo", "arete", "joya"))
    ):
        return True
    if (
        rule.category == "calzado"
        and ("bota" in rule.keywords or "botas" in rule.keywords)
        and _looks_like_bota_fit(text)
        and not has_any_keyword(text, _SHOE_WORDS)
    ):
        return True
    if (
        rule.category == "camisetas_y_tops"
        and rule.product_type == "top"
        and has_any_keyword(text, _BODY_CARE_WORDS)
    ):
        return True
    return False


def pick_category_signal(text: str, taxonomy: Taxonomy) -> CategoryMatch:
    """First keyword rule matching text whose category is allowed."""
    if not text:
        return CategoryMatch()
    for rule in CATEGORY_KEYWORD_RULES:
        if should_ignore_rule(rule, text) or not has_any_keyword(text, rule.keywords):
            continue
        category = normalize_enum_value(rule.category, taxonomy.category_values)
        if not category:
            continue
        allowed_subs = taxonomy.subcategories_for(category) or taxonomy.subcategory_values
        subcategory = normalize_enum_value(rule.subcategory, allowed_subs) if rule.subcategory else None
        return CategoryMatch(
            category=category,
            subcategory=subcategory,
            product_type=rule.product_type or rule.keywords[0],
        )
    return CategoryMatch()


def _as_dict(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def _string_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        return [entry.strip() for entry in value.split(",") if entry.strip()]
    return []


def _string(value: Any) -> str | None:
    return value.strip() if isinstance(value, str) and value.strip() else None


def original_vendor_signals(metadata: dict[str, Any] | None) -> dict[str, Any]:
    """
    Snapshot of the vendor's own classification, taken before enrichment.

    Reads the catalog metadata layout (platform at the top level, adapter
    fields under "source").
    """
    metadata = metadata or {}
    source = _as_dict(metadata.get("source")) or {}
    output: dict[str, Any] = {}
    platform = _string(metadata.get("platform"))
    if platform:
        output["platform"] = platform
    product_type = _string(source.get("product_type"))
    if product_type:
        output["product_type"] = product_type
    if isinstance(source.get("tags"), (list, str)):
        output["tags"] = source["tags"]
    meta = _as_dict(source.get("meta"))
    if meta:
        output["meta"] = {
            key: meta.get(key) if isinstance(meta.get(key), str) else None
            for key in (
                "og:title",
                "og:description",
                "twitter:title",
                "twitter:description",
                "title",
                "description",
                "keywords",
            )
        }
    return output


def vendor_signals_from_metadata(metadata: dict[str, Any] | None) -> VendorSignals:
    """Vendor signals, preferring the snapshot kept by a previous enrichment."""
    enrichment = _as_dict((metadata or {}).get("enrichment"))
    base = _as_dict(enrichment.get("original_vendor_signals")) if enrichment else None
    if base is None:
        base = original_vendor_signals(metadata)
    meta = _as_dict(base.get("meta")) or {}
    category = _string(base.get("product_type")) or _string(base.get("category"))
    platform = _string(base.get("platform"))
    return VendorSignals(
        category=category,
        tags=dedupe_text(_string_list(base.get("tags"))),
        platform=platform.lower() if platform else None,
        og_title=_string(meta.get("og:title")),
        og_description=_string(meta.get("og:description")),
    )


def resolve_signal_strength(
    inferred_category: str | None,
    vendor_category: str | None,
    name_category: str | None,
    description_category: str | None,
    conflicts: list[str],
) -> SignalStrength:
    """
    Strong: two of vendor/name/description agree with no conflict.
    Moderate: one agrees with at most one conflict. Weak otherwise.
    """
    if not inferred_category:
        return SignalStrength.WEAK
    agrees = sum(
        1
        for value in (vendor_category, name_category, description_category)
        if value and value == inferred_category
    )
    if agrees >= 2 and not conflicts:
        return SignalStrength.STRONG
    if agrees >= 1 and len(conflicts) <= 1:
        return SignalStrength.MODERATE
    return SignalStrength.WEAK


# ============================================================================
# Harvest
# ============================================================================


def harvest_product_signals(
    name: str | None,
    description: str | None,
    metadata: dict[str, Any] | None,
    taxonomy: Taxonomy,
) -> HarvestedSignals:
    """
    Harvest classification hints for one product.

    Category candidates come from the vendor category, the name, the
    description and the vendor tags; the most frequent candidate is the
    inferred category (ties keep the first seen) and the others are
    reported as conflicts.
    """
    safe_name = name or ""
    description_signals = build_description_signals(description)
    name_text = normalize_text(safe_name)
    desc_text = normalize_text(description_signals.clean_text)

    name_match = pick_category_signal(name_text, taxonomy)
    description_match = pick_category_signal(desc_text, taxonomy)
    vendor = vendor_signals_from_metadata(metadata)

    vendor_category = normalize_enum_value(vendor.category, taxonomy.category_values)
    vendor_tag_text = normalize_text(" ".join(vendor.tags))
    vendor_tag_match = pick_category_signal(vendor_tag_text, taxonomy)

    candidates = [
        value
        for value in (vendor_category, name_match.category, description_match.category, vendor_tag_match.category)
        if value
    ]
    ranked = Counter(candidates).most_common()
    inferred_category = ranked[0][0] if ranked else None
    conflicting = [value for value, _ in ranked[1:]]

    inferred_subcategory = None
    allowed_subs = taxonomy.subcategories_for(inferred_category)
    if allowed_subs:
        for sub in (name_match.subcategory, description_match.subcategory):
            normalized = normalize_enum_value(sub, allowed_subs)
            if normalized:
                inferred_subcategory = normalized
                break

    combined = f"{name_text} {desc_text} {vendor_tag_text}"
    genders = collect_by_rules(combined, GENDER_KEYWORD_RULES)
    inferred_gender = normalize_enum_value(genders[0] if genders else None, taxonomy.genders or GENDER_VALUES)

    material_signals = dedupe_text(
        collect_by_rules(combined, MATERIAL_KEYWORD_RULES)
        + [slugify(entry) for entry in description_signals.materials]
    )
    if taxonomy.materials:
        inferred_materials = normalize_enum_array(material_signals, taxonomy.materials)
    else:
        inferred_materials = material_signals[:6]

    pattern_signals = dedupe_text(collect_by_rules(combined, PATTERN_KEYWORD_RULES))
    if taxonomy.patterns:
        inferred_patterns = normalize_enum_array(pattern_signals, taxonomy.patterns)
    else:
        inferred_patterns = pattern_signals[:4]

    return HarvestedSignals(
        name_keywords=tokenize_name(safe_name),
        name_category=name_match.category,
        name_subcategory=name_match.subcategory,
        name_product_type=name_match.product_type,
        description_materials=description_signals.materials,
        description_care=description_signals.care,
        description_measurements=description_signals.measurements,
        description_features=description_signals.features,
        description_product_type=description_match.product_type,
        description_clean_text=description_signals.clean_text,
        vendor_category=vendor_category,
        vendor_tags=vendor.tags,
        vendor_platform=vendor.platform,
        og_title=vendor.og_title,
        og_description=vendor.og_description,
        inferred_category=inferred_category,
        inferred_subcategory=inferred_subcategory,
        inferred_gender=inferred_gender,
        inferred_materials=inferred_materials,
        inferred_patterns=inferred_patterns,
        signal_strength=resolve_signal_strength(
            inferred_category,
            vendor_category,
            name_match.category,
            description_match.category,
            conflicting,
        ),
        conflicting_signals=conflicting,
    )
