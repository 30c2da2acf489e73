"""Anthropic (Claude) AI provider implementation."""

import logging

from catalog_pipeline.services.ai.client import AIClient, AIProvider

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
MAX_TOKENS = 1200


class AnthropicClient(AIClient):
    """Anthropic Claude AI client."""

    provider = AIProvider.ANTHROPIC

    def __init__(self, api_key: str, model: str | None = None, max_tokens: int = MAX_TOKENS):
        """
        Initialize the Anthropic client.

        Args:
            api_key: Anthropic API key.
            model: Model name (defaults to claude-sonnet-4-20250514).
            max_tokens: Completion token limit.
        """
        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "anthropic package is required. Install with: pip install anthropic"
            )

        self.client = anthropic.Anthropic(api_key=api_key)
        self.model = model or DEFAULT_MODEL
        self.max_tokens = max_tokens

    def complete(
        self,
        system_prompt: str,
        user_text: str,
        image_urls: list[str] | None = None,
    ) -> str:
        """Run one Messages API call with optional URL images."""
        content: list[dict] = [{"type": "text", "text": user_text}]
        for url in image_urls or []:
            content.append({"type": "image", "source": {"type": "url", "url": url}})

        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=0,
            system=system_prompt,
            messages=[{"role": "user", "content": content}],
        )

        raw_response = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        logger.debug(f"Anthropic response ({len(raw_response)} chars): {raw_response[:500]}...")
        return raw_response
