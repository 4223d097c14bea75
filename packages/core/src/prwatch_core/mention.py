"""Detection of review-trigger mentions in PR descriptions and comments.

Everything here is pure: no I/O, no state, and no exceptions for empty or
non-string input.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_FENCED_CODE_RE = re.compile(r"```.*?```", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`[^`]*`")

# Matched against the raw text, code spans included.
_PRIMARY_TRIGGER_RE = re.compile(r"@codereview\b", re.IGNORECASE)

_TRIGGER_PATTERNS = (
    re.compile(r"@code(?:[-_]|\s+)?review\b", re.IGNORECASE),
    re.compile(r"\bcode\s?review\s+(?:please|plz)\b", re.IGNORECASE),
    re.compile(r"\breview\s+my\s+code\b", re.IGNORECASE),
    re.compile(r"\bai\s?review\b", re.IGNORECASE),
)

_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_CHECKBOX_RE = re.compile(r"- \[([ x])\]")


@dataclass(frozen=True)
class CheckboxStatus:
    total: int
    checked: int


def _strip_code(text: str) -> str:
    """Remove fenced code blocks and inline code spans."""
    return _INLINE_CODE_RE.sub("", _FENCED_CODE_RE.sub("", text))


def detect_trigger(text) -> bool:
    """Return True if ``text`` asks for a code review.

    A literal ``@codereview`` counts anywhere, even inside code. The looser
    phrasings only count outside code spans.
    """
    if not text or not isinstance(text, str):
        return False
    if _PRIMARY_TRIGGER_RE.search(text):
        return True
    content = _strip_code(text)
    return any(pattern.search(content) for pattern in _TRIGGER_PATTERNS)


def extract_user_email(text) -> str | None:
    if not text or not isinstance(text, str):
        return None
    match = _EMAIL_RE.search(text)
    return match.group(0) if match else None


def detect_checkbox_status(text) -> CheckboxStatus:
    """Count GitHub-style task list items (``- [ ]`` / ``- [x]``)."""
    if not text or not isinstance(text, str):
        return CheckboxStatus(total=0, checked=0)
    marks = _CHECKBOX_RE.findall(text)
    return CheckboxStatus(total=len(marks), checked=marks.count("x"))
