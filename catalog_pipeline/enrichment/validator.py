"""
Consistency Validator
=====================

Reconciles the model's enrichment candidate with the harvested text
signals and the taxonomy:

1. Strong lexical evidence (or a high-confidence route) overrides the
   candidate's category; the subcategory is overridden only by an exact
   allowed match.
2. Category and subcategory are snapped onto allowed keys, falling back
   to the category's first subcategory.
3. Material tags are reconciled with the harvested materials, and
   textile materials are replaced by a metal for jewelry.
4. Remaining inconsistencies become issues; any error requires review.
5. Confidence is scored with a fixed additive/subtractive policy.

Every correction is recorded as an auto-fix.
"""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from typing import Any

from catalog_pipeline.core.enums import IssueSeverity, RouteConfidence, SignalStrength
from catalog_pipeline.enrichment.signals import HarvestedSignals
from catalog_pipeline.enrichment.taxonomy import Taxonomy
from catalog_pipeline.enrichment.text import normalize_enum_array, normalize_enum_value

MAX_MATERIAL_TAGS = 3

JEWELRY_CATEGORY = "joyeria_y_bisuteria"
TEXTILE_ONLY_MATERIALS = frozenset({"algodon", "denim", "lino", "seda", "lana"})
METAL_PRIORITY = ("oro", "plata", "acero", "bronce", "cobre")

# Confidence policy
BASE_CATEGORY_CONFIDENCE = 0.75
BASE_SUBCATEGORY_CONFIDENCE = 0.72
BASE_OVERALL_CONFIDENCE = 0.78
STRONG_CATEGORY_BONUS = 0.10
STRONG_OVERALL_BONUS = 0.06
MODERATE_CATEGORY_BONUS = 0.05
MODERATE_OVERALL_BONUS = 0.03
CATEGORY_MATCH_BONUS = 0.10
SUBCATEGORY_MATCH_BONUS = 0.12
MATERIAL_OVERLAP_BONUS = 0.05
CATEGORY_CHANGE_PENALTY = 0.06
SUBCATEGORY_CHANGE_PENALTY = 0.04
ERROR_PENALTY = {"category": 0.14, "subcategory": 0.12, "overall": 0.16}
WARNING_PENALTY = {"category": 0.04, "subcategory": 0.04, "overall": 0.05}

# Downstream review queues pick up anything below this
REVIEW_CONFIDENCE_THRESHOLD = 0.70


@dataclass
class EnrichedVariant:
    variant_id: str
    color_hex: str
    color_pantone: str
    fit: str
    sku: str | None = None
    color_hexes: list[str] = field(default_factory=list)
    color_pantones: list[str] = field(default_factory=list)


@dataclass
class EnrichmentCandidate:
    """Normalized enrichment output for one product."""

    description: str
    category: str
    subcategory: str
    style_tags: list[str] = field(default_factory=list)
    material_tags: list[str] = field(default_factory=list)
    pattern_tags: list[str] = field(default_factory=list)
    occasion_tags: list[str] = field(default_factory=list)
    gender: str = "no_binario_unisex"
    season: str = ""
    seo_title: str = ""
    seo_description: str = ""
    seo_tags: list[str] = field(default_factory=list)
    variants: list[EnrichedVariant] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ConsistencyIssue:
    field: str
    severity: IssueSeverity
    message: str
    suggestion: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "severity": self.severity.value,
            "message": self.message,
            "suggestion": self.suggestion,
        }


@dataclass
class AutoFix:
    field: str
    from_value: str
    to_value: str

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "from": self.from_value, "to": self.to_value}


@dataclass
class EnrichmentConfidence:
    category: float
    subcategory: float
    overall: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass
class ValidationResult:
    enriched: EnrichmentCandidate
    issues: list[ConsistencyIssue]
    auto_fixes: list[AutoFix]
    review_required: bool
    review_reasons: list[str]
    confidence: EnrichmentConfidence


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def _dedupe(values: list[str]) -> list[str]:
    return list(dict.fromkeys(value for value in values if value))


def _apply_fix(working: EnrichmentCandidate, fixes: list[AutoFix], name: str, value: str) -> None:
    current = str(getattr(working, name) or "")
    if current == value:
        return
    fixes.append(AutoFix(field=name, from_value=current, to_value=value))
    setattr(working, name, value)


def _normalize_category_and_subcategory(
    working: EnrichmentCandidate, taxonomy: Taxonomy, fixes: list[AutoFix]
) -> None:
    category = normalize_enum_value(working.category, taxonomy.category_values)
    if category and category != working.category:
        _apply_fix(working, fixes, "category", category)

    allowed_subs = taxonomy.subcategories_for(working.category)
    if not allowed_subs:
        return
    subcategory = normalize_enum_value(working.subcategory, allowed_subs)
    if subcategory and subcategory != working.subcategory:
        _apply_fix(working, fixes, "subcategory", subcategory)
    if not normalize_enum_value(working.subcategory, allowed_subs):
        _apply_fix(working, fixes, "subcategory", allowed_subs[0])


def calculate_confidence(
    signals: HarvestedSignals,
    issues: list[ConsistencyIssue],
    enriched: EnrichmentCandidate,
    before_category: str,
    before_subcategory: str,
) -> EnrichmentConfidence:
    """Score category/subcategory/overall confidence, each clamped to [0, 1]."""
    category = BASE_CATEGORY_CONFIDENCE
    subcategory = BASE_SUBCATEGORY_CONFIDENCE
    overall = BASE_OVERALL_CONFIDENCE

    errors = sum(1 for issue in issues if issue.severity == IssueSeverity.ERROR)
    warnings = sum(1 for issue in issues if issue.severity == IssueSeverity.WARNING)

    if signals.signal_strength == SignalStrength.STRONG:
        category += STRONG_CATEGORY_BONUS
        overall += STRONG_OVERALL_BONUS
    elif signals.signal_strength == SignalStrength.MODERATE:
        category += MODERATE_CATEGORY_BONUS
        overall += MODERATE_OVERALL_BONUS

    if signals.inferred_category and signals.inferred_category == enriched.category:
        category += CATEGORY_MATCH_BONUS
    if signals.inferred_subcategory and signals.inferred_subcategory == enriched.subcategory:
        subcategory += SUBCATEGORY_MATCH_BONUS
    if before_category != enriched.category:
        category -= CATEGORY_CHANGE_PENALTY
    if before_subcategory != enriched.subcategory:
        subcategory -= SUBCATEGORY_CHANGE_PENALTY
    if signals.inferred_materials and enriched.material_tags:
        if any(tag in signals.inferred_materials for tag in enriched.material_tags):
            overall += MATERIAL_OVERLAP_BONUS

    category -= errors * ERROR_PENALTY["category"]
    subcategory -= errors * ERROR_PENALTY["subcategory"]
    overall -= errors * ERROR_PENALTY["overall"]
    category -= warnings * WARNING_PENALTY["category"]
    subcategory -= warnings * WARNING_PENALTY["subcategory"]
    overall -= warnings * WARNING_PENALTY["overall"]

    return EnrichmentConfidence(
        category=clamp01(round(category, 3)),
        subcategory=clamp01(round(subcategory, 3)),
        overall=clamp01(round(overall, 3)),
    )


def validate_and_autofix(
    signals: HarvestedSignals,
    candidate: EnrichmentCandidate,
    taxonomy: Taxonomy,
    route_confidence: RouteConfidence = RouteConfidence.LOW,
) -> ValidationResult:
    """
    Validate and auto-correct an enrichment candidate.

    The candidate is not modified; the corrected copy is returned in
    ValidationResult.enriched.
    """
    working = copy.deepcopy(candidate)
    fixes: list[AutoFix] = []
    before_category = working.category
    before_subcategory = working.subcategory

    inferred_category = signals.inferred_category
    if (
        inferred_category
        and (
            signals.signal_strength == SignalStrength.STRONG
            or route_confidence == RouteConfidence.HIGH
        )
        and inferred_category != working.category
    ):
        _apply_fix(working, fixes, "category", inferred_category)

    if signals.inferred_subcategory:
        allowed_for_current = taxonomy.subcategories_for(working.category)
        signal_sub = normalize_enum_value(signals.inferred_subcategory, allowed_for_current)
        if signal_sub and signal_sub != working.subcategory:
            _apply_fix(working, fixes, "subcategory", signal_sub)

    _normalize_category_and_subcategory(working, taxonomy, fixes)

    # Materials
    inferred_materials = normalize_enum_array(signals.inferred_materials, taxonomy.materials)
    if inferred_materials:
        current = normalize_enum_array(working.material_tags, taxonomy.materials)
        if not any(tag in inferred_materials for tag in current):
            merged = _dedupe(inferred_materials + current)[:MAX_MATERIAL_TAGS]
            before, after = ",".join(current), ",".join(merged)
            if before != after:
                fixes.append(AutoFix(field="material_tags", from_value=before, to_value=after))
                working.material_tags = merged
        else:
            working.material_tags = current[:MAX_MATERIAL_TAGS]

    if working.category == JEWELRY_CATEGORY:
        current = normalize_enum_array(working.material_tags, taxonomy.materials)
        if any(tag in TEXTILE_ONLY_MATERIALS for tag in current):
            metal = next((tag for tag in METAL_PRIORITY if tag in inferred_materials), None)
            if metal:
                merged = _dedupe(
                    [metal] + [tag for tag in current if tag not in TEXTILE_ONLY_MATERIALS]
                )[:MAX_MATERIAL_TAGS]
                fixes.append(
                    AutoFix(
                        field="material_tags",
                        from_value=",".join(current),
                        to_value=",".join(merged),
                    )
                )
                working.material_tags = merged

    # Issues
    issues: list[ConsistencyIssue] = []
    allowed_subs = taxonomy.subcategories_for(working.category)
    if not normalize_enum_value(working.category, taxonomy.category_values):
        issues.append(
            ConsistencyIssue(
                field="category",
                severity=IssueSeverity.ERROR,
                message=f"Invalid category: {working.category}",
                suggestion="Use an allowed category key.",
            )
        )
    if not normalize_enum_value(working.subcategory, allowed_subs):
        issues.append(
            ConsistencyIssue(
                field="subcategory",
                severity=IssueSeverity.ERROR,
                message=f"Invalid subcategory for {working.category}: {working.subcategory}",
                suggestion="Use a subcategory allowed for the category.",
            )
        )
    if (
        signals.signal_strength == SignalStrength.STRONG
        and inferred_category
        and inferred_category != working.category
    ):
        issues.append(
            ConsistencyIssue(
                field="category",
                severity=IssueSeverity.ERROR,
                message=f"Final category does not match strong signal ({inferred_category}).",
                suggestion="Review the classification manually.",
            )
        )
    if inferred_materials and not any(tag in inferred_materials for tag in working.material_tags):
        issues.append(
            ConsistencyIssue(
                field="material_tags",
                severity=IssueSeverity.WARNING,
                message="Final materials do not match the composition found in the text.",
                suggestion="Check material_tags against the original description.",
            )
        )
    if signals.conflicting_signals:
        issues.append(
            ConsistencyIssue(
                field="signals",
                severity=IssueSeverity.WARNING,
                message=f"Conflicting signals: {', '.join(signals.conflicting_signals)}",
                suggestion="Prefer human review if the result looks ambiguous.",
            )
        )

    review_reasons = [
        f"{issue.field}:{issue.message}" for issue in issues if issue.severity == IssueSeverity.ERROR
    ]

    return ValidationResult(
        enriched=working,
        issues=issues,
        auto_fixes=fixes,
        review_required=bool(review_reasons),
        review_reasons=review_reasons,
        confidence=calculate_confidence(
            signals, issues, working, before_category, before_subcategory
        ),
    )
