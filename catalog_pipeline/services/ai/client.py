"""AI client interface, provider abstraction and the enrichment response schema."""

import json
import logging
import os
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from catalog_pipeline.core.errors import InvalidModelOutputError

logger = logging.getLogger(__name__)


class AIProvider(str, Enum):
    """Supported AI providers."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


# ============================================================================
# Response schema
# ============================================================================


class VariantOutput(BaseModel):
    """Per-variant attributes returned by the model."""

    model_config = ConfigDict(extra="ignore")

    variant_id: str
    sku: str | None = None
    color_hex: str | list[str]
    color_pantone: str | list[str]
    fit: str


class ProductOutput(BaseModel):
    """Product attributes returned by the model."""

    model_config = ConfigDict(extra="ignore")

    description: str = ""
    category: str
    subcategory: str
    style_tags: list[str] = Field(default_factory=list)
    material_tags: list[str] = Field(default_factory=list)
    pattern_tags: list[str] = Field(default_factory=list)
    occasion_tags: list[str] = Field(default_factory=list)
    gender: str = ""
    season: str = ""
    seo_title: str = ""
    seo_description: str = ""
    seo_tags: list[str] = Field(default_factory=list)
    variants: list[VariantOutput] = Field(min_length=1)


class EnrichmentResponse(BaseModel):
    """Top-level enrichment response: {"product": {...}}."""

    product: ProductOutput


def strip_code_fences(raw_response: str) -> str:
    """Remove markdown code fences around a JSON payload."""
    json_str = raw_response.strip()
    if json_str.startswith("```json"):
        json_str = json_str[7:]
    if json_str.startswith("```"):
        json_str = json_str[3:]
    if json_str.endswith("```"):
        json_str = json_str[:-3]
    return json_str.strip()


def extract_json_object(raw_response: str) -> dict[str, Any]:
    """
    Parse a JSON object from a model response.

    Falls back to the outermost {...} span when the response has text
    around the object.

    Raises:
        InvalidModelOutputError: If no JSON object can be parsed
    """
    json_str = strip_code_fences(raw_response)
    try:
        parsed = json.loads(json_str)
    except json.JSONDecodeError:
        start, end = json_str.find("{"), json_str.rfind("}")
        if start < 0 or end <= start:
            raise InvalidModelOutputError("JSON parse failed")
        try:
            parsed = json.loads(json_str[start : end + 1])
        except json.JSONDecodeError as e:
            raise InvalidModelOutputError(f"JSON parse failed: {e}") from e
    if not isinstance(parsed, dict):
        raise InvalidModelOutputError("JSON parse failed: expected an object")
    return parsed


def parse_enrichment_response(raw_response: str, expected_variants: int | None = None) -> ProductOutput:
    """
    Parse and validate an enrichment response.

    Args:
        raw_response: Raw model text
        expected_variants: Number of variants the response must contain

    Raises:
        InvalidModelOutputError: On parse, schema or variant count errors
    """
    parsed = extract_json_object(raw_response)
    try:
        product = EnrichmentResponse.model_validate(parsed).product
    except ValidationError as e:
        raise InvalidModelOutputError(f"JSON validation failed: {e}") from e
    if expected_variants is not None and len(product.variants) != expected_variants:
        raise InvalidModelOutputError(
            f"Variant count mismatch: expected {expected_variants}, got {len(product.variants)}"
        )
    return product


# ============================================================================
# Client
# ============================================================================


class AIClient(ABC):
    """Abstract base class for AI providers."""

    provider: AIProvider
    model: str

    @abstractmethod
    def complete(
        self,
        system_prompt: str,
        user_text: str,
        image_urls: list[str] | None = None,
    ) -> str:
        """
        Run one completion and return the raw text.

        Args:
            system_prompt: System instructions.
            user_text: User message.
            image_urls: Optional product images to attach.

        Returns:
            The model's text output.

        Raises:
            Exception: Provider errors propagate; the caller retries.
        """
        pass


def get_ai_client(
    provider: AIProvider | str,
    api_key: str,
    model: str | None = None,
) -> AIClient:
    """
    Factory function to get an AI client for the specified provider.

    Args:
        provider: The AI provider to use.
        api_key: The API key for the provider.
        model: Optional model name override.

    Returns:
        An AIClient instance for the specified provider.

    Raises:
        ValueError: If the provider is not supported.
    """
    if isinstance(provider, str):
        provider = AIProvider(provider.lower())

    if provider == AIProvider.ANTHROPIC:
        from catalog_pipeline.services.ai.providers.anthropic import AnthropicClient

        return AnthropicClient(api_key=api_key, model=model)
    elif provider == AIProvider.OPENAI:
        from catalog_pipeline.services.ai.providers.openai import OpenAIClient

        return OpenAIClient(api_key=api_key, model=model)
    else:
        raise ValueError(f"Unsupported AI provider: {provider}")


def get_default_ai_client() -> AIClient:
    """
    Create an AI client from environment variables.

    Uses AI_PROVIDER (default anthropic), the provider's API key variable
    and AI_MODEL.

    Raises:
        ValueError: If the provider is unsupported or its key is missing.
    """
    provider = os.environ.get("AI_PROVIDER", "anthropic").lower()
    model = os.environ.get("AI_MODEL")

    if provider == "anthropic":
        api_key = os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")
    elif provider == "openai":
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY environment variable is required")
    else:
        raise ValueError(f"Unsupported AI provider: {provider}")

    logger.info(f"Using {provider} for enrichment (model={model or 'default'})")
    return get_ai_client(provider=provider, api_key=api_key, model=model)
