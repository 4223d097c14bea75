from __future__ import annotations

from prwatch_core.config import load_guidelines
from prwatch_core.providers.anthropic import AnthropicReviewEngine
from prwatch_core.providers.base import BaseReviewEngine
from prwatch_core.providers.openai import OpenAIReviewEngine


def get_engine(config: dict) -> BaseReviewEngine:
    guidelines = load_guidelines(config)
    model = config["model"]
    if model == "anthropic":
        return AnthropicReviewEngine(api_key=config["anthropic_api_key"], guidelines=guidelines)
    if model == "openai":
        return OpenAIReviewEngine(api_key=config["openai_api_key"], guidelines=guidelines)
    raise ValueError(f"Unknown model provider: {model!r}. Choose 'anthropic' or 'openai'.")
