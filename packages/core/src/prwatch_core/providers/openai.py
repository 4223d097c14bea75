from __future__ import annotations

from prwatch_core.providers.base import BaseReviewEngine


class OpenAIReviewEngine(BaseReviewEngine):
    MODEL = "gpt-4o"
    # Lower than the Anthropic engine to keep the JSON output stable.
    TEMPERATURE = 0.2

    def __init__(self, api_key: str, guidelines: str):
        try:
            from openai import OpenAI
        except ImportError:
            raise ImportError(
                "The 'openai' package is required for this engine. Install it with: pip install openai"
            )
        super().__init__(guidelines)
        self.client = OpenAI(api_key=api_key)

    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.MODEL,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        )
        return response.choices[0].message.content or ""
