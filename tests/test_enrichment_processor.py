"""Tests for the enrichment item handler and output normalization."""

import json
import tempfile
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from catalog_pipeline.core.errors import EnrichmentError, InvalidModelOutputError, ScopeNotFoundError
from catalog_pipeline.db.models import Base
from catalog_pipeline.db.models_catalog import BrandDB, ProductDB, VariantDB
from catalog_pipeline.db.repositories import BrandRepository, WorkRef
from catalog_pipeline.enrichment.processor import (
    DEFAULT_PANTONE,
    STYLE_TAGS_FALLBACK,
    EnrichmentItemHandler,
    VariantInput,
    collect_image_urls,
    is_already_enriched,
    normalize_enrichment,
)
from catalog_pipeline.enrichment.taxonomy import Taxonomy, get_default_taxonomy
from catalog_pipeline.pipeline.base import WorkItem
from catalog_pipeline.services.ai.client import AIClient, AIProvider, ProductOutput


def product_payload(variant_ids: list[str], **overrides) -> dict:
    product = {
        "description": "<p>Vestido midi en lino &amp; algodón.</p>",
        "category": "vestidos",
        "subcategory": "vestidos_midi",
        "style_tags": ["vibra_audaz", "no_existe"],
        "material_tags": ["lino"],
        "pattern_tags": [],
        "occasion_tags": [],
        "gender": "femenino",
        "season": "verano",
        "seo_title": "",
        "seo_description": "",
        "seo_tags": ["vestido", "Vestido ", "lino"],
        "variants": [
            {
                "variant_id": variant_id,
                "color_hex": "#ffffff",
                "color_pantone": "PANTONE 11-0601",
                "fit": "holgado",
            }
            for variant_id in variant_ids
        ],
    }
    product.update(overrides)
    return {"product": product}


class FakeAIClient(AIClient):
    """AI client answering from a script, or echoing the requested variants."""

    provider = AIProvider.ANTHROPIC
    model = "fake-model"

    def __init__(self, responses: list | None = None) -> None:
        self.responses = list(responses or [])
        self.calls: list[tuple[str, str, list[str] | None]] = []

    def complete(self, system_prompt, user_text, image_urls=None) -> str:
        self.calls.append((system_prompt, user_text, image_urls))
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        variant_ids = [variant["variant_id"] for variant in json.loads(user_text)["variants"]]
        return json.dumps(product_payload(variant_ids))


@pytest.fixture
def taxonomy() -> Taxonomy:
    """The packaged taxonomy."""
    return get_default_taxonomy()


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def session(temp_db_path):
    """Create a database session for testing."""
    engine = create_engine(f"sqlite:///{temp_db_path}", echo=False)
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def brand(session: Session) -> BrandDB:
    """A brand to attach products to."""
    brand = BrandRepository(session).create(name="Marca", slug="marca")
    session.commit()
    return brand


def add_product(session: Session, brand: BrandDB, variant_count: int = 2, **overrides) -> ProductDB:
    data = {
        "brand_id": brand.id,
        "name": "Vestido Midi Lino",
        "description": "<p>Vestido de lino para el verano.</p>",
        "source_url": "https://shop.example/products/vestido-midi-lino",
        "image_cover_url": "https://assets.example/cover.jpg",
        "metadata_json": json.dumps({"platform": "shopify", "source": {"tags": ["vestidos"]}}),
    }
    data.update(overrides)
    product = ProductDB(**data)
    session.add(product)
    session.flush()
    for index in range(variant_count):
        session.add(
            VariantDB(
                id=f"{product.id[:8]}-v{index}",
                product_id=product.id,
                sku=f"VML-{index}",
                color="Blanco",
                size="S",
                price=189900.0,
                images_json=json.dumps(["https://assets.example/v.jpg", "file:///tmp/local.jpg"]),
                metadata_json="{}",
            )
        )
    session.commit()
    return product


def work_item(product_id: str) -> WorkItem:
    return WorkItem(
        item_id="item-1",
        run_id="run-1",
        scope="all",
        ref=WorkRef(product_id=product_id),
        attempts=0,
    )


class TestIsAlreadyEnriched:
    """Tests for is_already_enriched."""

    def test_complete_record(self) -> None:
        """Test a finished enrichment record."""
        metadata = {
            "enrichment": {
                "completed_at": "2026-01-01T00:00:00+00:00",
                "provider": "anthropic",
                "model": "m",
                "prompt_version": "v5",
            }
        }
        assert is_already_enriched(metadata) is True

    def test_incomplete_or_missing(self) -> None:
        """Test records missing required keys."""
        assert is_already_enriched(None) is False
        assert is_already_enriched({}) is False
        assert is_already_enriched({"enrichment": "yes"}) is False
        assert is_already_enriched({"enrichment": {"provider": "anthropic", "model": "m"}}) is False


class TestNormalizeEnrichment:
    """Tests for normalize_enrichment."""

    def variants(self) -> list[VariantInput]:
        return [VariantInput("v1", sku="SKU-1"), VariantInput("v2", sku="SKU-2")]

    def test_normalizes_product_fields(self, taxonomy: Taxonomy) -> None:
        """Test description, tags, defaults and SEO fallbacks."""
        raw = ProductOutput.model_validate(
            product_payload(["v1", "v2"], gender="", season="otono")["product"]
        )
        candidate = normalize_enrichment(raw, self.variants(), taxonomy, "Vestido Midi Lino")

        assert candidate.description == "Vestido midi en lino & algodón."
        assert candidate.category == "vestidos"
        assert candidate.subcategory == "vestidos_midi"
        assert candidate.style_tags == ["vibra_audaz", *STYLE_TAGS_FALLBACK[:9]]
        assert candidate.gender == "no_binario_unisex"
        assert candidate.season == "todo_el_ano"
        assert candidate.seo_title == "Vestido Midi Lino"
        assert candidate.seo_description == "Vestido midi en lino & algodón."
        assert candidate.seo_tags == ["vestido", "lino"]

    def test_normalizes_variants(self, taxonomy: Taxonomy) -> None:
        """Test color extraction, caps and defaults per variant."""
        payload = product_payload(["v1", "v2"])
        payload["product"]["variants"][0].update(
            color_hex=["#1a2b3c", "rojo", "#1A2B3C", "#000000", "#FFFFFF"],
            color_pantone=[],
            fit="muy suelto",
        )
        raw = ProductOutput.model_validate(payload["product"])
        first, second = normalize_enrichment(raw, self.variants(), taxonomy).variants

        assert first.color_hexes == ["#1A2B3C", "#000000", "#FFFFFF"]
        assert first.color_hex == "#1A2B3C"
        assert first.color_pantone == DEFAULT_PANTONE
        assert first.fit == "normal"
        assert second.color_hex == "#FFFFFF"
        assert second.color_pantone == "11-0601"
        assert second.fit == "holgado"

    def test_unknown_subcategory_falls_back(self, taxonomy: Taxonomy) -> None:
        """Test the first allowed subcategory as fallback."""
        raw = ProductOutput.model_validate(
            product_payload(["v1", "v2"], subcategory="vestidos_raros")["product"]
        )
        candidate = normalize_enrichment(raw, self.variants(), taxonomy)
        assert candidate.subcategory == "vestidos_casuales"

    def test_invalid_category(self, taxonomy: Taxonomy) -> None:
        """Test that categories outside the taxonomy are rejected."""
        raw = ProductOutput.model_validate(
            product_payload(["v1", "v2"], category="zapatos_raros")["product"]
        )
        with pytest.raises(InvalidModelOutputError, match="Invalid category"):
            normalize_enrichment(raw, self.variants(), taxonomy)

    def test_variant_matched_by_sku(self, taxonomy: Taxonomy) -> None:
        """Test matching output variants by SKU when the id is unknown."""
        payload = product_payload(["v1", "other"])
        payload["product"]["variants"][1]["sku"] = "SKU-2"
        raw = ProductOutput.model_validate(payload["product"])
        candidate = normalize_enrichment(raw, self.variants(), taxonomy)
        assert [variant.variant_id for variant in candidate.variants] == ["v1", "v2"]

    def test_unknown_variant(self, taxonomy: Taxonomy) -> None:
        """Test that invented variants are rejected."""
        raw = ProductOutput.model_validate(product_payload(["v1", "v9"])["product"])
        with pytest.raises(InvalidModelOutputError, match="Unknown variant_id"):
            normalize_enrichment(raw, self.variants(), taxonomy)

    def test_duplicate_variant(self, taxonomy: Taxonomy) -> None:
        """Test that a variant described twice is rejected."""
        raw = ProductOutput.model_validate(product_payload(["v1", "v1"])["product"])
        with pytest.raises(InvalidModelOutputError, match="Duplicate variant_id"):
            normalize_enrichment(raw, self.variants(), taxonomy)

    def test_missing_hex(self, taxonomy: Taxonomy) -> None:
        """Test that a variant without a usable color is rejected."""
        payload = product_payload(["v1", "v2"])
        payload["product"]["variants"][1]["color_hex"] = "blanco"
        raw = ProductOutput.model_validate(payload["product"])
        with pytest.raises(InvalidModelOutputError, match="Invalid color_hex"):
            normalize_enrichment(raw, self.variants(), taxonomy)


class TestCollectImageUrls:
    """Tests for collect_image_urls."""

    def test_cover_first_http_only(self, session: Session, brand: BrandDB) -> None:
        """Test ordering, deduplication and scheme filtering."""
        product = add_product(session, brand)
        session.refresh(product)
        assert collect_image_urls(product) == [
            "https://assets.example/cover.jpg",
            "https://assets.example/v.jpg",
        ]


class TestEnrichmentItemHandler:
    """Tests for EnrichmentItemHandler."""

    def make_handler(self, client: FakeAIClient, **kwargs) -> EnrichmentItemHandler:
        return EnrichmentItemHandler(
            ai_client=client,
            taxonomy=get_default_taxonomy(),
            allow_reenrich=kwargs.pop("allow_reenrich", False),
            backoff_base=0,
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_discover(self, session: Session, brand: BrandDB) -> None:
        """Test discovery by brand and for every brand."""
        other = BrandRepository(session).create(name="Otra", slug="otra")
        first = add_product(session, brand)
        add_product(session, other, source_url="https://otra.example/p")
        handler = self.make_handler(FakeAIClient())

        refs = await handler.discover(session, brand.id, None)
        assert refs == [WorkRef(url=first.source_url, product_id=first.id)]
        assert len(await handler.discover(session, "all", None)) == 2
        assert len(await handler.discover(session, "all", 1)) == 1

    @pytest.mark.asyncio
    async def test_discover_unknown_brand(self, session: Session) -> None:
        """Test that an unknown scope raises."""
        with pytest.raises(ScopeNotFoundError):
            await self.make_handler(FakeAIClient()).discover(session, "missing", None)

    def test_run_metadata(self) -> None:
        """Test versions recorded on enrichment runs."""
        metadata = self.make_handler(FakeAIClient()).run_metadata("all")
        assert metadata == {"trigger": "enrichment", "prompt_version": "v5", "schema_version": "v3"}

    @pytest.mark.asyncio
    async def test_handle_not_found(self, session: Session) -> None:
        """Test a reference to a deleted product."""
        outcome = await self.make_handler(FakeAIClient()).handle(
            session, work_item("missing"), lambda stage: None
        )
        assert outcome.stage == "not_found"

    @pytest.mark.asyncio
    async def test_handle_persists_enrichment(self, session: Session, brand: BrandDB) -> None:
        """Test a full enrichment and what it writes."""
        product = add_product(session, brand)
        client = FakeAIClient()
        stages: list[str] = []

        outcome = await self.make_handler(client).handle(session, work_item(product.id), stages.append)
        session.commit()

        assert stages == ["load", "signals", "llm", "validate", "persist"]
        assert outcome.stage == "persist"
        assert outcome.result["category"] == "vestidos"
        assert outcome.result["variants"] == 2
        assert outcome.result["prompt_group"] == "prendas_completas"
        assert len(client.calls) == 1
        assert client.calls[0][2] == [
            "https://assets.example/cover.jpg",
            "https://assets.example/v.jpg",
        ]

        session.refresh(product)
        assert product.category == "vestidos"
        assert product.description == "Vestido midi en lino & algodón."
        assert json.loads(product.material_tags_json)[0] == "lino"
        assert len(json.loads(product.style_tags_json)) == 10

        enrichment = json.loads(product.metadata_json)["enrichment"]
        assert enrichment["provider"] == "anthropic"
        assert enrichment["model"] == "fake-model"
        assert enrichment["prompt_version"] == "v5"
        assert enrichment["run_id"] == "run-1"
        assert enrichment["original_description"] == "<p>Vestido de lino para el verano.</p>"
        assert enrichment["original_vendor_signals"]["platform"] == "shopify"
        assert "confidence" in enrichment
        assert json.loads(product.metadata_json)["source"] == {"tags": ["vestidos"]}

        variant = product.variants[0]
        assert variant.color == "#FFFFFF"
        assert variant.color_pantone == "11-0601"
        assert variant.fit == "holgado"
        assert json.loads(variant.metadata_json)["enrichment"]["colors"] == {
            "hex": ["#FFFFFF"],
            "pantone": ["11-0601"],
        }

    @pytest.mark.asyncio
    async def test_skips_already_enriched(self, session: Session, brand: BrandDB) -> None:
        """Test the re-enrichment guard and its override."""
        product = add_product(session, brand)
        await self.make_handler(FakeAIClient()).handle(session, work_item(product.id), lambda s: None)
        session.commit()

        client = FakeAIClient()
        outcome = await self.make_handler(client).handle(session, work_item(product.id), lambda s: None)
        assert outcome.stage == "skipped_already_enriched"
        assert client.calls == []

        outcome = await self.make_handler(client, allow_reenrich=True).handle(
            session, work_item(product.id), lambda s: None
        )
        session.commit()
        session.refresh(product)
        assert outcome.stage == "persist"
        enrichment = json.loads(product.metadata_json)["enrichment"]
        assert enrichment["original_description"] == "<p>Vestido de lino para el verano.</p>"

    @pytest.mark.asyncio
    async def test_variants_sent_in_chunks(self, session: Session, brand: BrandDB) -> None:
        """Test that large products are split into several calls."""
        product = add_product(session, brand, variant_count=10)
        client = FakeAIClient()
        outcome = await self.make_handler(client).handle(session, work_item(product.id), lambda s: None)

        assert len(client.calls) == 2
        assert [len(json.loads(call[1])["variants"]) for call in client.calls] == [8, 2]
        assert outcome.result["variants"] == 10

    @pytest.mark.asyncio
    async def test_invalid_output_is_repaired(self, session: Session, brand: BrandDB) -> None:
        """Test the repair call after an invalid response."""
        product = add_product(session, brand, variant_count=1)
        variant_id = f"{product.id[:8]}-v0"
        client = FakeAIClient(["not json", json.dumps(product_payload([variant_id]))])

        outcome = await self.make_handler(client).handle(session, work_item(product.id), lambda s: None)

        assert outcome.stage == "persist"
        assert len(client.calls) == 2
        repair_system, repair_text, repair_images = client.calls[1]
        assert "Detected error: JSON parse failed" in repair_system
        assert f'["{variant_id}"]' in repair_text
        assert repair_text.endswith("not json")
        assert repair_images is None

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, session: Session, brand: BrandDB) -> None:
        """Test that provider errors are retried and then surfaced."""
        product = add_product(session, brand, variant_count=1)
        client = FakeAIClient([RuntimeError("overloaded")] * 3)

        with pytest.raises(EnrichmentError, match="after 3 attempts: overloaded"):
            await self.make_handler(client).handle(session, work_item(product.id), lambda s: None)
        assert len(client.calls) == 3

    @pytest.mark.asyncio
    async def test_failed_repair_counts_as_attempt(self, session: Session, brand: BrandDB) -> None:
        """Test that an invalid repair moves on to the next attempt."""
        product = add_product(session, brand, variant_count=1)
        client = FakeAIClient(["{}", "{}", "{}", "{}"])

        with pytest.raises(EnrichmentError):
            await self.make_handler(client, max_retries=2).handle(
                session, work_item(product.id), lambda s: None
            )
        assert len(client.calls) == 4

    @pytest.mark.asyncio
    async def test_product_without_variants(self, session: Session, brand: BrandDB) -> None:
        """Test that products without variants fail."""
        product = add_product(session, brand, variant_count=0)
        with pytest.raises(EnrichmentError, match="no variants"):
            await self.make_handler(FakeAIClient()).handle(
                session, work_item(product.id), lambda s: None
            )
