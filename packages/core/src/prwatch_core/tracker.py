"""Pull request tracker — which PRs and comments have already caused a review.

Two trigger paths consult the tracker:

- webhook comments carry a comment id. A comment id is processed at most
  once per PR; an unseen id on a PR that already has a record is a re-review.
- the reconciliation scan of open PRs carries no comment id. It only picks
  up PRs that have never been tracked: once a record exists the scan leaves
  the PR alone, even if new commits landed. Re-reviews must come from a new
  comment.

Every write replaces the whole record in one store call, built from a copy of
what was read, so a failed write never leaves a history entry without the
matching review_count increment.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from prwatch_store.models import HistoryEntry, TrackerKey, TrackerRecord, utcnow

if TYPE_CHECKING:
    from prwatch_store.base import BaseStore

logger = logging.getLogger(__name__)


class TrackerError(Exception):
    """Reading or writing a tracker record failed. Fatal for one trigger only."""


class ReviewKind(str, Enum):
    INITIAL = "initial"
    RE_REVIEW = "re_review"


@dataclass(frozen=True)
class Decision:
    proceed: bool
    kind: ReviewKind | None
    record: TrackerRecord | None
    reason: str

    @property
    def is_re_review(self) -> bool:
        return self.kind is ReviewKind.RE_REVIEW


@dataclass
class HistoryView:
    count: int
    last_review_at: datetime | None
    history: list[HistoryEntry] = field(default_factory=list)


class PullRequestTracker:
    def __init__(self, store: BaseStore):
        self._store = store

    def _load(self, key: TrackerKey) -> TrackerRecord | None:
        try:
            return self._store.get_tracker_record(key)
        except Exception as e:
            raise TrackerError(f"Could not read tracker for PR #{key.pull_request_id}: {e}") from e

    def should_process(
        self,
        project_key: str,
        repository_name: str,
        pull_request_id: int,
        comment_id: int | None = None,
    ) -> Decision:
        """Decide whether a trigger for this PR (and comment) needs a review."""
        key = TrackerKey(project_key, repository_name, pull_request_id)
        record = self._load(key)

        if comment_id is None:
            if record is not None:
                logger.info(
                    "PR #%d (%s/%s) already tracked; scan does not re-trigger",
                    pull_request_id,
                    project_key,
                    repository_name,
                )
                return Decision(False, None, record, "pull request already processed")
            return Decision(True, ReviewKind.INITIAL, None, "first trigger for pull request")

        if record is None:
            return Decision(True, ReviewKind.INITIAL, None, "first trigger for pull request")
        if comment_id in record.processed_comment_ids:
            logger.info("Comment %d on PR #%d already processed; skipping", comment_id, pull_request_id)
            return Decision(False, None, record, "comment already processed")
        return Decision(True, ReviewKind.RE_REVIEW, record, "new comment on tracked pull request")

    def mark_processed(
        self,
        project_key: str,
        repository_name: str,
        pull_request_id: int,
        review_id: int | None,
        comments_count: int,
        comment_id: int | None = None,
    ) -> TrackerRecord:
        """Record one review cycle, creating the tracker record on first use."""
        key = TrackerKey(project_key, repository_name, pull_request_id)
        existing = self._load(key)
        now = utcnow()
        entry = HistoryEntry(review_id=review_id, date=now, comments_count=comments_count, comment_id=comment_id)
        new_ids = {comment_id} if comment_id is not None else set()

        if existing is None:
            record = TrackerRecord(
                key=key,
                processed_at=now,
                last_review_at=now,
                review_count=1,
                review_history=[entry],
                processed_comment_ids=new_ids,
                description_processed=comment_id is None,
            )
        else:
            record = dataclasses.replace(
                existing,
                processed_at=now,
                last_review_at=now,
                review_count=existing.review_count + 1,
                review_history=[*existing.review_history, entry],
                processed_comment_ids=existing.processed_comment_ids | new_ids,
                description_processed=existing.description_processed or comment_id is None,
            )

        try:
            self._store.save_tracker_record(record)
        except Exception as e:
            raise TrackerError(f"Could not save tracker for PR #{pull_request_id}: {e}") from e

        logger.info(
            "Marked PR #%d (%s/%s) processed: review_count=%d%s",
            pull_request_id,
            project_key,
            repository_name,
            record.review_count,
            f", comment {comment_id}" if comment_id is not None else "",
        )
        return record

    def get_history(self, project_key: str, repository_name: str, pull_request_id: int) -> HistoryView | None:
        record = self._load(TrackerKey(project_key, repository_name, pull_request_id))
        if record is None:
            return None
        return HistoryView(
            count=record.review_count,
            last_review_at=record.last_review_at,
            history=list(record.review_history),
        )
