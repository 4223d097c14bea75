"""Base review engine implementing the Template Method pattern.

All providers share the same algorithm:
    review() → _build_system_prompt() + _build_user_prompt()
             → _call_api()   ← only this differs per provider
             → _parse()

Subclasses implement two things only:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return the text response

Retries are not handled here. A failed call raises EngineError and the review
queue decides whether to try the submission again.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from prwatch_store.models import FeedbackItem, FeedbackPriority

if TYPE_CHECKING:
    from prwatch_store.models import Submission

logger = logging.getLogger(__name__)

_MAX_TOKENS = 4096


class EngineError(Exception):
    """The review engine could not produce feedback for a submission."""


class BaseReviewEngine(ABC):
    MAX_TOKENS: int = _MAX_TOKENS

    def __init__(self, guidelines: str):
        self.guidelines = guidelines

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def review(self, submission: Submission) -> list[FeedbackItem]:
        """Review one submission and return its findings.

        Raises EngineError when the provider call fails or the response is
        not the expected JSON.
        """
        system = self._build_system_prompt(self.guidelines)
        user = self._build_user_prompt(submission.expectation, submission.code_content)
        try:
            raw = self._call_api(system, user)
        except Exception as e:
            raise EngineError(f"{self.__class__.__name__} API call failed: {e}") from e
        return self._parse(raw)

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                                #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        """Make a single API call and return the raw text response."""

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _build_system_prompt(self, guidelines: str) -> str:
        return f"""You are a strict and precise senior code reviewer mentoring a junior engineer.
Review the pull request changes below and identify issues according to the guidelines.

{guidelines}

Rules:
- Focus on the code shown; it contains the lines added by the pull request.
- Do not comment on code that already follows best practices.
- Avoid assumptions when context is unclear. Be concise and actionable."""

    def _build_user_prompt(self, expectation: str, code_content: str) -> str:
        return f"""## Context
{expectation or "(none)"}

## Code
{code_content}

### Output Format:
Respond with **only** a valid JSON list:

[
  {{
    "problem_point": "<what is wrong>",
    "suggestion": "<how to fix it>",
    "priority": "<high|medium|low>",
    "code_snippet": "<the offending code, verbatim>",
    "reference_url": "<documentation link, or empty string>",
    "category": "<short category such as security, naming, error-handling>"
  }},
  ...
]

If there are no issues, return: []
Do not return any text outside the JSON block."""

    def _parse(self, raw: str) -> list[FeedbackItem]:
        """Parse the model's raw text response into feedback items."""
        # Strip only the outer ```json ... ``` fence, not backticks inside values.
        cleaned = re.sub(r"^```(?:json)?\s*", "", (raw or "").strip())
        cleaned = re.sub(r"\s*```$", "", cleaned.strip())
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.warning("%s: failed to parse response as JSON: %s", self.__class__.__name__, (raw or "")[:200])
            raise EngineError(f"Unparseable response from {self.__class__.__name__}") from e
        if not isinstance(data, list):
            raise EngineError(f"Expected a JSON list from {self.__class__.__name__}, got {type(data).__name__}")

        items = []
        for entry in data:
            if not isinstance(entry, dict) or not entry.get("problem_point"):
                continue
            try:
                priority = FeedbackPriority(str(entry.get("priority", "medium")).lower())
            except ValueError:
                priority = FeedbackPriority.MEDIUM
            items.append(
                FeedbackItem(
                    problem_point=entry["problem_point"],
                    suggestion=entry.get("suggestion", ""),
                    priority=priority,
                    code_snippet=entry.get("code_snippet", ""),
                    reference_url=entry.get("reference_url", ""),
                    category=entry.get("category", ""),
                )
            )
        return items
