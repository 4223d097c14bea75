"""In-memory store, the default when no store is configured.

Nothing survives a restart, which matches the review queue itself. Records
are deep-copied in and out so callers can never mutate stored state without
going through a save call.
"""

from __future__ import annotations

import copy
import itertools
import threading
from typing import TYPE_CHECKING

from prwatch_store.base import BaseStore, StoreError
from prwatch_store.models import Review, Submission, utcnow

if TYPE_CHECKING:
    from prwatch_store.models import (
        FeedbackItem,
        ReviewStatus,
        SubmissionStatus,
        TrackerKey,
        TrackerRecord,
    )


class MemoryStore(BaseStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._review_ids = itertools.count(1)
        self._submission_ids = itertools.count(1)
        self._reviews: dict[int, Review] = {}
        self._submissions: dict[int, Submission] = {}
        self._feedback: dict[int, list[FeedbackItem]] = {}
        self._trackers: dict[TrackerKey, TrackerRecord] = {}

    def get_or_create_review(
        self,
        host: str,
        project_key: str,
        repository_name: str,
        pull_request_id: int,
        title: str,
        description: str = "",
    ) -> tuple[Review, bool]:
        with self._lock:
            for review in self._reviews.values():
                if (
                    review.host == host
                    and review.project_key == project_key
                    and review.repository_name == repository_name
                    and review.pull_request_id == pull_request_id
                ):
                    return copy.deepcopy(review), False
            review = Review(
                review_id=next(self._review_ids),
                host=host,
                project_key=project_key,
                repository_name=repository_name,
                pull_request_id=pull_request_id,
                title=title,
                description=description,
            )
            self._reviews[review.review_id] = review
            return copy.deepcopy(review), True

    def get_review(self, review_id: int) -> Review | None:
        with self._lock:
            review = self._reviews.get(review_id)
            return copy.deepcopy(review) if review else None

    def save_review(self, review: Review) -> None:
        with self._lock:
            if review.review_id not in self._reviews:
                raise StoreError(f"Review {review.review_id} does not exist")
            review.updated_at = utcnow()
            self._reviews[review.review_id] = copy.deepcopy(review)

    def set_review_status(self, review_id: int, status: ReviewStatus) -> None:
        with self._lock:
            review = self._reviews.get(review_id)
            if review is None:
                raise StoreError(f"Review {review_id} does not exist")
            review.status = status
            review.updated_at = utcnow()

    def create_submission(self, review_id: int, code_content: str, expectation: str = "") -> Submission:
        with self._lock:
            versions = [s.version for s in self._submissions.values() if s.review_id == review_id]
            submission = Submission(
                submission_id=next(self._submission_ids),
                review_id=review_id,
                code_content=code_content,
                expectation=expectation,
                version=max(versions, default=0) + 1,
            )
            self._submissions[submission.submission_id] = submission
            return copy.deepcopy(submission)

    def get_submission(self, submission_id: int) -> Submission | None:
        with self._lock:
            submission = self._submissions.get(submission_id)
            return copy.deepcopy(submission) if submission else None

    def set_submission_status(self, submission_id: int, status: SubmissionStatus) -> None:
        with self._lock:
            submission = self._submissions.get(submission_id)
            if submission is None:
                raise StoreError(f"Submission {submission_id} does not exist")
            submission.status = status

    def save_feedback(self, submission_id: int, items: list[FeedbackItem]) -> None:
        with self._lock:
            self._feedback[submission_id] = copy.deepcopy(items)

    def list_feedback(self, submission_id: int) -> list[FeedbackItem]:
        with self._lock:
            return copy.deepcopy(self._feedback.get(submission_id, []))

    def get_tracker_record(self, key: TrackerKey) -> TrackerRecord | None:
        with self._lock:
            record = self._trackers.get(key)
            return copy.deepcopy(record) if record else None

    def save_tracker_record(self, record: TrackerRecord) -> None:
        snapshot = copy.deepcopy(record)
        with self._lock:
            self._trackers[record.key] = snapshot
