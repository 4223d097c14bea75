"""Persistence data models.

Decoupled from prwatch_core so the store layer can be used independently.
Nested collections (review history, processed comment ids) are typed here;
each store backend decides how to serialize them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionStatus(str, Enum):
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"
    REVISED = "revised"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class FeedbackPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class Review:
    """A review thread bound to one pull request on a code host."""

    review_id: int
    host: str  # "backlog" | "github"
    project_key: str
    repository_name: str
    pull_request_id: int
    title: str
    description: str = ""
    status: ReviewStatus = ReviewStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Submission:
    """One version of code content submitted for review under a Review."""

    submission_id: int
    review_id: int
    code_content: str
    expectation: str = ""
    status: SubmissionStatus = SubmissionStatus.SUBMITTED
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class FeedbackItem:
    """A single finding produced by the review engine."""

    problem_point: str
    suggestion: str
    priority: FeedbackPriority = FeedbackPriority.MEDIUM
    code_snippet: str = ""
    reference_url: str = ""
    category: str = ""


@dataclass(frozen=True)
class TrackerKey:
    project_key: str
    repository_name: str
    pull_request_id: int


@dataclass(frozen=True)
class HistoryEntry:
    """One review cycle on a tracked pull request. Never mutated once recorded."""

    review_id: int | None
    date: datetime
    comments_count: int
    comment_id: int | None = None


@dataclass
class TrackerRecord:
    """Idempotency state for one pull request.

    ``review_history`` is append-only and ``processed_comment_ids`` only grows;
    ``len(review_history) == review_count`` holds after every write.
    """

    key: TrackerKey
    processed_at: datetime
    last_review_at: datetime | None = None
    review_count: int = 0
    review_history: list[HistoryEntry] = field(default_factory=list)
    processed_comment_ids: set[int] = field(default_factory=set)
    description_processed: bool = False
