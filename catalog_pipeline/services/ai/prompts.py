"""Prompt templates for product enrichment."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from catalog_pipeline.enrichment.taxonomy import Taxonomy

PROMPT_VERSION = "v5"
SCHEMA_VERSION = "v3"

# Longest previous output echoed back in a repair request
REPAIR_MAX_CHARS = 12000

# Style tags described in the glossary section
STYLE_GLOSSARY_LIMIT = 80

GENERIC_GROUP_INSTRUCTION = "Generic mode: use the whole published taxonomy."

GROUP_INSTRUCTIONS = {
    "prendas_superiores": (
        "Group prendas_superiores: prioritize textile composition, sleeve type, neckline and "
        "visual fit (fitted/loose/oversize)."
    ),
    "prendas_exteriores": (
        "Group prendas_exteriores: prioritize structure, lining, layers, closure and "
        "weather protection."
    ),
    "prendas_inferiores": (
        "Group prendas_inferiores: prioritize rise, length, leg cut, denim vs non-denim and stretch."
    ),
    "prendas_completas": (
        "Group prendas_completas: confirm whether it is a single piece or a set; identify length, "
        "closure and main occasion."
    ),
    "ropa_tecnica": (
        "Group ropa_tecnica: prioritize function (compression, quick dry, UV, breathability) "
        "and comfort."
    ),
    "ropa_especial": (
        "Group ropa_especial: prioritize age range, school/work use and safety/comfort requirements."
    ),
    "calzado": (
        "Group calzado: use images for sole, shape and height; use text for real material, "
        "technology and insole."
    ),
    "accesorios_textiles": (
        "Group accesorios_textiles: prioritize textile type, use and season; do not confuse "
        "with jewelry."
    ),
    "bolsos": (
        "Group bolsos: prioritize bag type, compartments, closure and main material; text for "
        "dimensions."
    ),
    "joyeria": (
        "Group joyeria: images decide piece shape/color; text decides metal, karat, plating "
        "and stone type."
    ),
    "gafas": (
        "Group gafas: prioritize lens type, UV/polarized protection, shape and frame material."
    ),
    "hogar_lifestyle": (
        "Group hogar_lifestyle: prioritize household function, material, dimensions and care."
    ),
}

ENRICHMENT_PROMPT_TEMPLATE = """You are a product enrichment classifier for a Colombian fashion catalog.
Return ONLY valid JSON with this schema:
{{
  "product": {{
    "description": "string",
    "category": "string",
    "subcategory": "string",
    "style_tags": ["string"],
    "material_tags": ["string"],
    "pattern_tags": ["string"],
    "occasion_tags": ["string"],
    "gender": "string",
    "season": "string",
    "seo_title": "string",
    "seo_description": "string",
    "seo_tags": ["string"],
    "variants": [
      {{
        "variant_id": "string",
        "sku": "string|null",
        "color_hex": "#RRGGBB | [\\"#RRGGBB\\", \\"#RRGGBB\\"]",
        "color_pantone": "NN-NNNN | [\\"NN-NNNN\\", \\"NN-NNNN\\"]",
        "fit": "string"
      }}
    ]
  }}
}}

Strict rules:
- description must be plain text (no HTML), in Spanish.
- category, subcategory, gender, season and fit take a single value.
- subcategory must belong to the chosen category.
- style_tags must contain EXACTLY 10 allowed values.
- material_tags at most 3. pattern_tags at most 2. occasion_tags at most 2.
- seo_title at most 70 chars. seo_description between 120 and 160 chars, no emojis.
- seo_tags between 6 and 12, no duplicates.
- Do not invent variants: return exactly one object per variant_id received.
- color_hex must be #RRGGBB (1 to 3 values per variant, most dominant first).
- color_pantone must be a TCX code NN-NNNN (1 to 3 values per variant, most dominant first).

Evidence rules:
- Prioritize text in this order: product.name_original, product.description_original, \
signals.vendor_category/vendor_tags, signals.og_title/og_description.
- Use signals.description_clean as the base for description and SEO.
- If signals.detected_materials has values, reflect them in material_tags when compatible.
- If signals.signal_strength = "strong", trust signals.inferred_category unless there is strong \
evidence against it.
- If signals.conflicts is not empty, be careful and use images to disambiguate.
- Images help mainly with color, pattern and fit. Do not invent material composition when the text \
states it.
- {group_instruction}

Allowed taxonomy:
category -> subcategory
{categories}

Allowed style_tags:
{style_tags}

style_tags glossary:
{style_glossary}

Allowed material_tags:
{material_tags}

Allowed pattern_tags:
{pattern_tags}

Allowed occasion_tags:
{occasion_tags}

Allowed gender:
{genders}

Allowed season:
{seasons}

Allowed fit:
{fits}

If there is no evidence for material/pattern/occasion, use "otro" when it is in the allowed list."""


REPAIR_PROMPT_TEMPLATE = """{system_prompt}

Your previous output was invalid and does not match the schema. Fix the JSON following every rule.
Return ONLY valid JSON (no markdown, no extra text).
Return EXACTLY the requested variants, with the same count.
Detected error: {error_message}"""


def build_category_section(taxonomy: Taxonomy, only_categories: list[str] | None = None) -> str:
    """Render category -> subcategory lines, optionally limited to some categories."""
    allowed = set(only_categories) if only_categories else None
    lines = []
    for category in taxonomy.categories:
        if allowed is not None and category.key not in allowed:
            continue
        header = f"- {category.key}: {category.label}."
        if category.description:
            header = f"{header} {category.description}"
        lines.append(header)
        for sub in category.subcategories:
            line = f"  - {sub.key}: {sub.label}."
            lines.append(f"{line} {sub.description}" if sub.description else line)
    return "\n".join(lines)


def build_enrichment_prompt(
    taxonomy: Taxonomy,
    group: str | None = None,
    routed_categories: list[str] | None = None,
) -> str:
    """
    Build the system prompt for a product.

    Args:
        taxonomy: Allowed values.
        group: Prompt group chosen by the pre-classifier, or None for generic.
        routed_categories: Categories of the group; limits the category section.

    Returns:
        The formatted system prompt.
    """
    categories = build_category_section(
        taxonomy, routed_categories if group and routed_categories else None
    )
    return ENRICHMENT_PROMPT_TEMPLATE.format(
        group_instruction=GROUP_INSTRUCTIONS.get(group or "", GENERIC_GROUP_INSTRUCTION),
        categories=categories,
        style_tags=", ".join(taxonomy.style_tags),
        style_glossary="\n".join(f"- {tag}" for tag in taxonomy.style_tags[:STYLE_GLOSSARY_LIMIT]),
        material_tags=", ".join(taxonomy.materials),
        pattern_tags=", ".join(taxonomy.patterns),
        occasion_tags=", ".join(taxonomy.occasions),
        genders=", ".join(taxonomy.genders),
        seasons=", ".join(taxonomy.seasons),
        fits=", ".join(taxonomy.fits),
    )


def build_repair_prompt(system_prompt: str, error_message: str) -> str:
    """System prompt for a repair call after an invalid output."""
    return REPAIR_PROMPT_TEMPLATE.format(system_prompt=system_prompt, error_message=error_message)


def build_repair_text(required_variant_ids: list[str], invalid_output: str) -> str:
    """User message for a repair call: the required variant ids and the invalid output."""
    return "\n\n".join(
        [
            "Fix the following JSON so that it matches the schema:",
            "Required variant_ids (use exactly these):",
            str(required_variant_ids).replace("'", '"'),
            invalid_output[:REPAIR_MAX_CHARS],
        ]
    )
