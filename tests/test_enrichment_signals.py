"""Tests for the taxonomy, text helpers, description parser, signal harvester and routing."""

import tempfile
from pathlib import Path

import pytest

from catalog_pipeline.core.enums import RouteConfidence, SignalStrength
from catalog_pipeline.enrichment.description import (
    build_description_signals,
    clamp_sentence_safe,
    clean_description,
    extract_care_instructions,
    extract_material_composition,
    extract_measurements,
    extract_technical_features,
    strip_html_to_text,
)
from catalog_pipeline.enrichment.routing import (
    categories_for_group,
    prompt_group_for_category,
    route_to_prompt_group,
)
from catalog_pipeline.enrichment.signals import (
    HarvestedSignals,
    harvest_product_signals,
    original_vendor_signals,
    pick_category_signal,
    resolve_signal_strength,
    tokenize_name,
    vendor_signals_from_metadata,
)
from catalog_pipeline.enrichment.taxonomy import Taxonomy, get_default_taxonomy, load_taxonomy
from catalog_pipeline.enrichment.text import (
    chunk_list,
    clamp_text,
    dedupe_text,
    normalize_enum_array,
    normalize_enum_value,
    normalize_hex_color,
    normalize_pantone_code,
    normalize_text,
    slugify,
)


@pytest.fixture
def taxonomy() -> Taxonomy:
    """The packaged taxonomy."""
    return get_default_taxonomy()


class TestTaxonomy:
    """Tests for taxonomy loading and lookups."""

    def test_default_taxonomy(self, taxonomy: Taxonomy) -> None:
        """Test the packaged taxonomy index."""
        assert "vestidos" in taxonomy.category_values
        assert taxonomy.subcategories_for("vestidos")[0] == "vestidos_casuales"
        assert taxonomy.subcategories_for("missing") == ()
        assert taxonomy.subcategories_for(None) == ()
        assert len(taxonomy.style_tags) >= 10
        assert "otro" in taxonomy.materials
        assert "no_binario_unisex" in taxonomy.genders

    def test_subcategory_values_are_unique(self, taxonomy: Taxonomy) -> None:
        """Test the flattened subcategory list."""
        values = taxonomy.subcategory_values
        assert len(values) == len(set(values))
        assert "collares" in values

    def test_load_taxonomy_from_file(self) -> None:
        """Test loading a custom YAML taxonomy."""
        content = """
version: 3
categories:
  - key: gorras
    subcategories: [planas, curvas]
materials: [algodon]
genders: [unisex]
"""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "taxonomy.yaml"
            path.write_text(content)
            taxonomy = load_taxonomy(path)

        assert taxonomy.version == 3
        assert taxonomy.categories[0].label == "gorras"
        assert taxonomy.subcategories_for("gorras") == ("planas", "curvas")
        assert taxonomy.materials == ("algodon",)
        assert taxonomy.style_tags == ()

    def test_load_taxonomy_missing_file(self) -> None:
        """Test that a missing file raises."""
        with pytest.raises(FileNotFoundError):
            load_taxonomy("/nonexistent/taxonomy.yaml")


class TestTextHelpers:
    """Tests for text normalization helpers."""

    def test_slugify(self) -> None:
        """Test slug generation."""
        assert slugify("Camisas y Blusas") == "camisas_y_blusas"
        assert slugify("  Pañuelos / Bufandas ") == "panuelos_bufandas"
        assert slugify(None) == ""

    def test_normalize_text(self) -> None:
        """Test lowercased, accent-free text."""
        assert normalize_text("Pantalón  BOTA-recta!") == "pantalon bota recta"

    def test_normalize_enum_value(self) -> None:
        """Test mapping values onto allowed keys."""
        allowed = ("vestidos_midi", "vestidos_largos")
        assert normalize_enum_value("vestidos_midi", allowed) == "vestidos_midi"
        assert normalize_enum_value("Vestidos Midi", allowed) == "vestidos_midi"
        assert normalize_enum_value("vestidos cortos", allowed) is None
        assert normalize_enum_value("  ", allowed) is None
        assert normalize_enum_value(None, allowed) is None

    def test_normalize_enum_array(self) -> None:
        """Test that unknowns and duplicates are dropped."""
        assert normalize_enum_array(["Lino", "lino", "madera", "Seda"], ("lino", "seda")) == ["lino", "seda"]

    def test_colors(self) -> None:
        """Test hex and Pantone extraction."""
        assert normalize_hex_color("#ff00aa") == "#FF00AA"
        assert normalize_hex_color("color: #1a2b3c;") == "#1A2B3C"
        assert normalize_hex_color("ff00aa") is None
        assert normalize_pantone_code("PANTONE 19-4042 TCX") == "19-4042"
        assert normalize_pantone_code("azul") is None

    def test_dedupe_text(self) -> None:
        """Test dedupe on normalized text."""
        assert dedupe_text(["Vestido", "vestido ", "Vestído", "", "Falda"]) == ["Vestido", "Falda"]

    def test_clamp_text(self) -> None:
        """Test cutting at a word boundary."""
        assert clamp_text("Vestido  midi\nen lino", 100) == "Vestido midi en lino"
        assert clamp_text("Vestido midi en lino", 14) == "Vestido midi"

    def test_chunk_list(self) -> None:
        """Test splitting into fixed-size chunks."""
        assert chunk_list([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
        assert chunk_list([1, 2], 0) == [[1, 2]]


class TestDescriptionParser:
    """Tests for description cleanup and extraction."""

    def test_strip_html_to_text(self) -> None:
        """Test tag, entity and emoji removal."""
        assert strip_html_to_text("<p>Blusa&nbsp;en <b>seda</b> \U0001F60D</p>") == "Blusa en seda"
        assert strip_html_to_text(None) == ""

    def test_clean_description_removes_boilerplate(self) -> None:
        """Test removal of shipping notes, links and emails."""
        text = clean_description(
            "<p>Blusa en seda.</p><p>Envío gratis a toda Colombia. "
            "Escríbenos a ventas@marca.co o visita https://marca.co/ayuda</p>"
        )
        assert text.startswith("Blusa en seda.")
        assert "Envío" not in text
        assert "ventas@marca.co" not in text
        assert "https://" not in text

    def test_clamp_sentence_safe(self) -> None:
        """Test cutting at the last sentence break."""
        sentence = "Vestido en lino con botones frontales y bolsillos laterales. " * 4
        clamped = clamp_sentence_safe(sentence, 200)
        assert clamped.endswith(".")
        assert len(clamped) <= 200
        assert clamp_sentence_safe("Corto", 200) == "Corto"

    def test_extract_material_composition(self) -> None:
        """Test percentage and labelled material lines."""
        materials = extract_material_composition("Composición: 95% algodón 5% elastano")
        assert materials[:2] == ["95% algodon", "5% elastano"]

    def test_extract_care_measurements_features(self) -> None:
        """Test care, measurement and feature extraction."""
        text = "Lavar a mano. No usar secadora. Largo: 90 cm. Talla única. Tela transpirable con protección UV."
        assert extract_care_instructions(text) == ["lavar a mano", "no usar secadora"]
        assert extract_measurements(text) == ["largo 90 cm", "talla unica"]
        assert set(extract_technical_features(text)) == {"transpirable", "proteccion uv"}

    def test_build_description_signals_empty(self) -> None:
        """Test that an empty description gives empty signals."""
        signals = build_description_signals(None)
        assert signals.to_dict() == {
            "clean_text": "",
            "materials": [],
            "care": [],
            "measurements": [],
            "features": [],
        }


class TestSignalHarvester:
    """Tests for the rule-based signal harvester."""

    def test_tokenize_name(self) -> None:
        """Test name tokens without stopwords and short words."""
        assert tokenize_name("Vestido de Lino para la playa") == ["vestido", "lino", "playa"]

    def test_pick_category_signal(self, taxonomy: Taxonomy) -> None:
        """Test the first matching keyword rule."""
        match = pick_category_signal("aretes de plata", taxonomy)
        assert match.category == "joyeria_y_bisuteria"
        assert match.subcategory == "aretes_pendientes"
        assert match.product_type == "aretes"
        assert pick_category_signal("", taxonomy).category is None

    def test_collar_on_shirt_is_not_jewelry(self, taxonomy: Taxonomy) -> None:
        """Test the shirt-collar false positive."""
        assert pick_category_signal("camisa con collar", taxonomy).category == "camisas_y_blusas"

    def test_bota_leg_cut_is_not_footwear(self, taxonomy: Taxonomy) -> None:
        """Test the boot-cut trousers false positive."""
        assert pick_category_signal("pantalon bota recta", taxonomy).category == "pantalones_no_denim"

    def test_original_vendor_signals(self) -> None:
        """Test the vendor snapshot taken from catalog metadata."""
        metadata = {
            "platform": "shopify",
            "source": {
                "product_type": "Vestidos",
                "tags": ["verano"],
                "meta": {"og:title": "Vestido Midi", "og:image": "https://x/y.jpg"},
            },
        }
        snapshot = original_vendor_signals(metadata)
        assert snapshot["platform"] == "shopify"
        assert snapshot["product_type"] == "Vestidos"
        assert snapshot["tags"] == ["verano"]
        assert snapshot["meta"]["og:title"] == "Vestido Midi"
        assert "og:image" not in snapshot["meta"]
        assert original_vendor_signals(None) == {}

    def test_vendor_signals_prefer_enrichment_snapshot(self) -> None:
        """Test that the pre-enrichment snapshot wins over current metadata."""
        metadata = {
            "platform": "woocommerce",
            "source": {"product_type": "Camisas"},
            "enrichment": {
                "original_vendor_signals": {
                    "platform": "Shopify",
                    "product_type": "Vestidos",
                    "tags": "verano, vestido, verano",
                }
            },
        }
        vendor = vendor_signals_from_metadata(metadata)
        assert vendor.platform == "shopify"
        assert vendor.category == "Vestidos"
        assert vendor.tags == ["verano", "vestido"]

    def test_resolve_signal_strength(self) -> None:
        """Test the strong, moderate and weak thresholds."""
        assert resolve_signal_strength("vestidos", "vestidos", "vestidos", None, []) == SignalStrength.STRONG
        assert resolve_signal_strength("vestidos", "vestidos", "vestidos", None, ["faldas"]) == SignalStrength.MODERATE
        assert resolve_signal_strength("vestidos", None, "vestidos", None, ["faldas"]) == SignalStrength.MODERATE
        assert resolve_signal_strength("vestidos", None, None, None, []) == SignalStrength.WEAK
        assert resolve_signal_strength(None, None, None, None, []) == SignalStrength.WEAK

    def test_harvest_strong_signals(self, taxonomy: Taxonomy) -> None:
        """Test agreement between vendor, name, description and tags."""
        signals = harvest_product_signals(
            "Vestido midi de lino para mujer",
            "<p>Vestido en 100% lino. Lavar a mano.</p>",
            {"platform": "Shopify", "source": {"product_type": "Vestidos", "tags": ["vestido", "verano"]}},
            taxonomy,
        )

        assert signals.inferred_category == "vestidos"
        assert signals.vendor_category == "vestidos"
        assert signals.name_product_type == "vestido"
        assert signals.signal_strength == SignalStrength.STRONG
        assert signals.conflicting_signals == []
        assert signals.inferred_gender == "femenino"
        assert signals.inferred_materials == ["lino"]
        assert signals.description_care == ["lavar a mano"]
        assert signals.vendor_platform == "shopify"

        payload = signals.to_prompt_payload()
        assert payload["signal_strength"] == "strong"
        assert payload["detected_product_type"] == "vestido"
        assert signals.to_dict()["signal_strength"] == "strong"

    def test_harvest_conflicting_signals(self, taxonomy: Taxonomy) -> None:
        """Test that disagreeing candidates are reported as conflicts."""
        signals = harvest_product_signals(
            "Vestido midi",
            "",
            {"source": {"product_type": "Camisas y blusas"}},
            taxonomy,
        )

        assert signals.inferred_category == "camisas_y_blusas"
        assert signals.conflicting_signals == ["vestidos"]
        assert signals.signal_strength == SignalStrength.MODERATE

    def test_harvest_subcategory(self, taxonomy: Taxonomy) -> None:
        """Test the subcategory taken from the name rule."""
        signals = harvest_product_signals("Aretes de plata 925", None, None, taxonomy)

        assert signals.inferred_category == "joyeria_y_bisuteria"
        assert signals.inferred_subcategory == "aretes_pendientes"
        assert "plata" in signals.inferred_materials

    def test_harvest_no_signals(self, taxonomy: Taxonomy) -> None:
        """Test a product with nothing to go on."""
        signals = harvest_product_signals("Regalo especial", None, None, taxonomy)

        assert signals.inferred_category is None
        assert signals.signal_strength == SignalStrength.WEAK


class TestRouting:
    """Tests for prompt-group routing."""

    def test_group_lookup(self) -> None:
        """Test category to group mapping."""
        assert prompt_group_for_category("vestidos") == "prendas_completas"
        assert prompt_group_for_category("unknown") is None
        assert prompt_group_for_category(None) is None
        assert "vestidos" in categories_for_group("prendas_completas")
        assert categories_for_group(None) == []

    def test_every_category_has_a_group(self, taxonomy: Taxonomy) -> None:
        """Test that every published category can be routed."""
        assert all(prompt_group_for_category(category) for category in taxonomy.category_values)

    def test_strong_signals_route_high(self) -> None:
        """Test routing on strong signals."""
        route = route_to_prompt_group(
            HarvestedSignals(inferred_category="calzado", signal_strength=SignalStrength.STRONG)
        )
        assert route.group == "calzado"
        assert route.confidence == RouteConfidence.HIGH
        assert route.reason == "strong_signals_routed"
        assert route.to_dict()["confidence"] == "high"

    def test_moderate_signals_route_medium(self) -> None:
        """Test routing on moderate signals with one conflict."""
        route = route_to_prompt_group(
            HarvestedSignals(
                inferred_category="faldas",
                signal_strength=SignalStrength.MODERATE,
                conflicting_signals=["vestidos"],
            )
        )
        assert route.group == "prendas_inferiores"
        assert route.confidence == RouteConfidence.MEDIUM

    def test_weak_signals_fall_back(self) -> None:
        """Test the generic fallback."""
        route = route_to_prompt_group(
            HarvestedSignals(inferred_category="faldas", signal_strength=SignalStrength.WEAK)
        )
        assert route.group is None
        assert route.confidence == RouteConfidence.LOW
        assert route.reason == "weak_or_conflicting_signals_fallback_generic"

    def test_no_category_falls_back(self) -> None:
        """Test the fallback without an inferred category."""
        route = route_to_prompt_group(HarvestedSignals())
        assert route.reason == "insufficient_signal_fallback_generic"
