from __future__ import annotations

from prwatch_core.providers.base import BaseReviewEngine


class AnthropicReviewEngine(BaseReviewEngine):
    MODEL = "claude-sonnet-4-20250514"
    TEMPERATURE = 0.3

    def __init__(self, api_key: str, guidelines: str):
        try:
            from anthropic import Anthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this engine. Install it with: pip install anthropic"
            )
        super().__init__(guidelines)
        self.client = Anthropic(api_key=api_key)

    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        from anthropic.types import TextBlock

        response = self.client.messages.create(
            model=self.MODEL,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        )
        return "".join(block.text for block in response.content if isinstance(block, TextBlock)).strip()
