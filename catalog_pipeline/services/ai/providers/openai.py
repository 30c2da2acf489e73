"""OpenAI AI provider implementation."""

import logging

from catalog_pipeline.services.ai.client import AIClient, AIProvider

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"
MAX_TOKENS = 1200


class OpenAIClient(AIClient):
    """OpenAI GPT AI client."""

    provider = AIProvider.OPENAI

    def __init__(self, api_key: str, model: str | None = None, max_tokens: int = MAX_TOKENS):
        """
        Initialize the OpenAI client.

        Args:
            api_key: OpenAI API key.
            model: Model name (defaults to gpt-4o).
            max_tokens: Completion token limit.
        """
        try:
            import openai
        except ImportError:
            raise ImportError(
                "openai package is required. Install with: pip install openai"
            )

        self.client = openai.OpenAI(api_key=api_key)
        self.model = model or DEFAULT_MODEL
        self.max_tokens = max_tokens

    def complete(
        self,
        system_prompt: str,
        user_text: str,
        image_urls: list[str] | None = None,
    ) -> str:
        """Run one chat completion in JSON mode with optional URL images."""
        content: list[dict] = [{"type": "text", "text": user_text}]
        for url in image_urls or []:
            content.append({"type": "image_url", "image_url": {"url": url}})

        response = self.client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=0,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": content},
            ],
            response_format={"type": "json_object"},
        )

        raw_response = response.choices[0].message.content or ""
        logger.debug(f"OpenAI response ({len(raw_response)} chars): {raw_response[:500]}...")
        return raw_response
