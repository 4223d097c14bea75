"""Abstract store interface.

The review pipeline depends on BaseStore, not on a concrete backend, so the
in-memory store used in tests and the SQLite store used in deployments are
interchangeable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prwatch_store.models import (
        FeedbackItem,
        Review,
        ReviewStatus,
        Submission,
        SubmissionStatus,
        TrackerKey,
        TrackerRecord,
    )


class StoreError(Exception):
    """Raised by a store backend when a read or write cannot be completed."""


class BaseStore(ABC):
    """Pluggable persistence for reviews, submissions, feedback and PR trackers.

    Implementations must be safe to call from several threads: webhook handlers
    and the review queue worker share one store instance.
    """

    # ------------------------------------------------------------------ #
    # Reviews                                                              #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def get_or_create_review(
        self,
        host: str,
        project_key: str,
        repository_name: str,
        pull_request_id: int,
        title: str,
        description: str = "",
    ) -> tuple[Review, bool]:
        """Return the review bound to this PR, creating it if absent.

        The boolean is True when the review was created by this call.
        """

    @abstractmethod
    def get_review(self, review_id: int) -> Review | None:
        """Return a review by id, or None."""

    @abstractmethod
    def save_review(self, review: Review) -> None:
        """Overwrite an existing review (title, description, status)."""

    @abstractmethod
    def set_review_status(self, review_id: int, status: ReviewStatus) -> None:
        """Update the status of an existing review."""

    # ------------------------------------------------------------------ #
    # Submissions                                                          #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def create_submission(self, review_id: int, code_content: str, expectation: str = "") -> Submission:
        """Create the next submission version under a review."""

    @abstractmethod
    def get_submission(self, submission_id: int) -> Submission | None:
        """Return a submission by id, or None if it does not exist."""

    @abstractmethod
    def set_submission_status(self, submission_id: int, status: SubmissionStatus) -> None:
        """Update the status of an existing submission."""

    # ------------------------------------------------------------------ #
    # Feedback                                                             #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def save_feedback(self, submission_id: int, items: list[FeedbackItem]) -> None:
        """Replace the feedback stored for a submission with ``items``."""

    @abstractmethod
    def list_feedback(self, submission_id: int) -> list[FeedbackItem]:
        """Return feedback for a submission in insertion order."""

    # ------------------------------------------------------------------ #
    # Pull request trackers                                                #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def get_tracker_record(self, key: TrackerKey) -> TrackerRecord | None:
        """Return the tracker record for a PR, or None if it was never processed."""

    @abstractmethod
    def save_tracker_record(self, record: TrackerRecord) -> None:
        """Insert or replace the whole tracker record in a single write."""

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional. Default is a no-op so callers can always call close() safely.
        """
