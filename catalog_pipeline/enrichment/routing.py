"""Category groups and pre-classifier routing of products to prompt groups."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from catalog_pipeline.core.enums import RouteConfidence, SignalStrength
from catalog_pipeline.enrichment.signals import HarvestedSignals

CATEGORY_GROUPS: dict[str, tuple[str, ...]] = {
    "prendas_superiores": ("camisetas_y_tops", "camisas_y_blusas", "buzos_hoodies_y_sueteres"),
    "prendas_exteriores": ("chaquetas_y_abrigos", "blazers_y_sastreria"),
    "prendas_inferiores": ("pantalones_no_denim", "jeans_y_denim", "shorts_y_bermudas", "faldas"),
    "prendas_completas": ("vestidos", "enterizos_y_overoles", "conjuntos_y_sets_2_piezas"),
    "ropa_tecnica": (
        "ropa_deportiva_y_performance",
        "ropa_interior_basica",
        "lenceria_y_fajas_shapewear",
        "pijamas_y_ropa_de_descanso_loungewear",
        "trajes_de_bano_y_playa",
    ),
    "ropa_especial": ("ropa_de_bebe_0_24_meses", "uniformes_y_ropa_de_trabajo_escolar"),
    "calzado": ("calzado",),
    "accesorios_textiles": ("accesorios_textiles_y_medias",),
    "bolsos": ("bolsos_y_marroquineria",),
    "joyeria": ("joyeria_y_bisuteria",),
    "gafas": ("gafas_y_optica",),
    "hogar_lifestyle": ("hogar_y_lifestyle", "tarjeta_regalo"),
}

_CATEGORY_TO_GROUP = {
    category: group for group, categories in CATEGORY_GROUPS.items() for category in categories
}


def prompt_group_for_category(category: str | None) -> str | None:
    if not category:
        return None
    return _CATEGORY_TO_GROUP.get(category)


def categories_for_group(group: str | None) -> list[str]:
    if not group:
        return []
    return list(CATEGORY_GROUPS.get(group, ()))


@dataclass
class PromptRoute:
    """Where a product is routed before the model call."""

    group: str | None
    category: str | None
    confidence: RouteConfidence
    reason: str

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["confidence"] = self.confidence.value
        return data


def route_to_prompt_group(signals: HarvestedSignals) -> PromptRoute:
    """
    Route a product to a category-group prompt.

    Strong signals route with high confidence; moderate signals with at
    most one conflict route with medium confidence; everything else
    falls back to the generic prompt over the whole taxonomy.
    """
    group = prompt_group_for_category(signals.inferred_category)
    if not group or not signals.inferred_category:
        return PromptRoute(None, None, RouteConfidence.LOW, "insufficient_signal_fallback_generic")

    if signals.signal_strength == SignalStrength.STRONG:
        return PromptRoute(
            group, signals.inferred_category, RouteConfidence.HIGH, "strong_signals_routed"
        )

    if signals.signal_strength == SignalStrength.MODERATE and len(signals.conflicting_signals) <= 1:
        return PromptRoute(
            group, signals.inferred_category, RouteConfidence.MEDIUM, "moderate_signals_routed"
        )

    return PromptRoute(None, None, RouteConfidence.LOW, "weak_or_conflicting_signals_fallback_generic")
