"""Tests for review engine implementations.

Shared behaviour (review, _parse, prompt building) lives in BaseReviewEngine
and is tested once via a lightweight stub. Provider-specific tests cover only
what differs: SDK client setup and _call_api.
"""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from prwatch_core.config import DEFAULT_GUIDELINES
from prwatch_core.providers.anthropic import AnthropicReviewEngine
from prwatch_core.providers.base import BaseReviewEngine, EngineError
from prwatch_core.providers.factory import get_engine
from prwatch_core.providers.openai import OpenAIReviewEngine
from prwatch_store.models import FeedbackPriority, Submission

VALID_JSON = json.dumps(
    [
        {
            "problem_point": "SQL query built with string formatting",
            "suggestion": "Use bound parameters",
            "priority": "high",
            "code_snippet": "cur.execute(f'SELECT * FROM users WHERE id={uid}')",
            "reference_url": "https://owasp.org/www-community/attacks/SQL_Injection",
            "category": "security",
        }
    ]
)


class _StubEngine(BaseReviewEngine):
    """Minimal concrete subclass used to test BaseReviewEngine shared methods."""

    def __init__(self, response=VALID_JSON, guidelines="Be strict."):
        super().__init__(guidelines)
        self.response = response
        self.calls = []

    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _make_submission(code="def f():\n    return 1", expectation="Pull request #3: Add f"):
    return Submission(submission_id=1, review_id=1, code_content=code, expectation=expectation)


# ---------------------------------------------------------------------------
# Shared behaviour
# ---------------------------------------------------------------------------


class TestBaseEngineParse:
    def test_parses_valid_json(self):
        items = _StubEngine()._parse(VALID_JSON)
        assert len(items) == 1
        assert items[0].priority == FeedbackPriority.HIGH
        assert items[0].category == "security"
        assert items[0].suggestion == "Use bound parameters"

    def test_strips_markdown_code_fences(self):
        raw = f"```json\n{VALID_JSON}\n```"
        assert len(_StubEngine()._parse(raw)) == 1

    def test_preserves_code_blocks_inside_values(self):
        """Backticks inside values must not be stripped."""
        payload = json.dumps([{"problem_point": "p", "suggestion": "Use this:\n```python\nfoo()\n```"}])
        items = _StubEngine()._parse(f"```json\n{payload}\n```")
        assert "```python" in items[0].suggestion

    def test_unknown_priority_falls_back_to_medium(self):
        payload = json.dumps([{"problem_point": "p", "suggestion": "s", "priority": "critical"}])
        assert _StubEngine()._parse(payload)[0].priority == FeedbackPriority.MEDIUM

    def test_entries_without_problem_point_are_skipped(self):
        payload = json.dumps([{"suggestion": "s"}, "text", {"problem_point": "kept"}])
        assert [i.problem_point for i in _StubEngine()._parse(payload)] == ["kept"]

    def test_empty_array(self):
        assert _StubEngine()._parse("[]") == []

    def test_invalid_json_raises(self):
        with pytest.raises(EngineError):
            _StubEngine()._parse("not json at all")

    def test_non_list_raises(self):
        with pytest.raises(EngineError):
            _StubEngine()._parse('{"problem_point": "p"}')


class TestBaseEngineReview:
    def test_review_returns_feedback(self):
        items = _StubEngine().review(_make_submission())
        assert items[0].problem_point == "SQL query built with string formatting"

    def test_prompts_carry_guidelines_code_and_expectation(self):
        engine = _StubEngine(guidelines="No print statements.")
        engine.review(_make_submission())
        system, user = engine.calls[0]
        assert "No print statements." in system
        assert "def f():" in user
        assert "Pull request #3: Add f" in user

    def test_api_failure_raises_engine_error(self):
        engine = _StubEngine(response=RuntimeError("connection reset"))
        with pytest.raises(EngineError, match="connection reset"):
            engine.review(_make_submission())


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class TestAnthropicEngine:
    def test_raises_import_error_without_sdk(self):
        with patch.dict("sys.modules", {"anthropic": None}):
            with pytest.raises(ImportError, match="anthropic"):
                AnthropicReviewEngine(api_key="k", guidelines="")

    def test_call_api_joins_text_blocks(self, mocker):
        from anthropic.types import TextBlock

        client = MagicMock()
        client.messages.create.return_value = SimpleNamespace(
            content=[TextBlock(type="text", text="[]  ")]
        )
        mocker.patch("anthropic.Anthropic", return_value=client)

        engine = AnthropicReviewEngine(api_key="k", guidelines="")
        assert engine._call_api("sys", "user") == "[]"
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == AnthropicReviewEngine.MODEL
        assert kwargs["system"] == "sys"
        assert kwargs["max_tokens"] == BaseReviewEngine.MAX_TOKENS


class TestOpenAIEngine:
    def test_raises_import_error_without_sdk(self):
        with patch.dict("sys.modules", {"openai": None}):
            with pytest.raises(ImportError, match="openai"):
                OpenAIReviewEngine(api_key="k", guidelines="")

    def test_call_api_returns_message_content(self, mocker):
        client = MagicMock()
        client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=VALID_JSON))]
        )
        mocker.patch("openai.OpenAI", return_value=client)

        engine = OpenAIReviewEngine(api_key="k", guidelines="")
        assert engine._call_api("sys", "user") == VALID_JSON
        messages = client.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0] == {"role": "system", "content": "sys"}

    def test_none_content_becomes_empty_string(self, mocker):
        client = MagicMock()
        client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=None))]
        )
        mocker.patch("openai.OpenAI", return_value=client)
        assert OpenAIReviewEngine(api_key="k", guidelines="")._call_api("s", "u") == ""


class TestGetEngine:
    def test_selects_anthropic(self, mocker):
        mocker.patch("anthropic.Anthropic")
        engine = get_engine({"model": "anthropic", "anthropic_api_key": "k", "guidelines": None})
        assert isinstance(engine, AnthropicReviewEngine)
        assert engine.guidelines == DEFAULT_GUIDELINES

    def test_selects_openai(self, mocker):
        mocker.patch("openai.OpenAI")
        engine = get_engine({"model": "openai", "openai_api_key": "k", "guidelines": None})
        assert isinstance(engine, OpenAIReviewEngine)

    def test_unknown_model(self):
        with pytest.raises(ValueError, match="Unknown model provider"):
            get_engine({"model": "llama", "guidelines": None})
