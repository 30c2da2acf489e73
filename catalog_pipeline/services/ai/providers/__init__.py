"""AI provider implementations."""

from catalog_pipeline.services.ai.providers.anthropic import AnthropicClient
from catalog_pipeline.services.ai.providers.openai import OpenAIClient

__all__ = ["AnthropicClient", "OpenAIClient"]
