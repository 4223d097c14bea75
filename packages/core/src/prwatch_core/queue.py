"""Review queue — serialized, retrying execution of the review engine.

One queue instance per process, constructed by the composition root and
shared by every trigger path. Per submission id the states are:

    NotQueued -> Queued -> Processing -> NotQueued   (reviewed, already done, abandoned)
                                      -> Queued      (retry, appended to the tail)

Only the head of the FIFO ever enters Processing, and only one iteration of
the worker runs at a time: each iteration schedules the next one when it
finishes, and the worker stops when it finds the queue empty. The next
enqueue restarts it.

Queue state lives in memory only. Items queued or in flight when the process
exits are lost.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from prwatch_store.models import ReviewStatus, SubmissionStatus, utcnow

if TYPE_CHECKING:
    from prwatch_core.providers.base import BaseReviewEngine
    from prwatch_store.base import BaseStore
    from prwatch_store.models import FeedbackItem, Submission

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
BASE_DELAY = 1.0
RETRY_DELAY = 5.0

Scheduler = Callable[[float, Callable[[], None]], None]
ReviewedCallback = Callable[["Submission", "list[FeedbackItem]"], None]


def timer_scheduler(delay: float, fn: Callable[[], None]) -> None:
    """Run ``fn`` on a daemon thread after ``delay`` seconds."""
    timer = threading.Timer(delay, fn)
    timer.daemon = True
    timer.start()


@dataclass
class QueueItem:
    submission_id: int
    retry_count: int = 0
    added_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class QueueStatus:
    queue_length: int
    is_processing: bool
    processing_items: list[int]
    queue_items: list[tuple[int, int]]  # (submission_id, retry_count)

    def to_dict(self) -> dict:
        """camelCase JSON shape printed by `prwatch event`."""
        return {
            "queueLength": self.queue_length,
            "isProcessing": self.is_processing,
            "processingItems": list(self.processing_items),
            "queueItems": [{"id": sid, "retries": retries} for sid, retries in self.queue_items],
        }


class ReviewQueue:
    """FIFO of submission ids reviewed one at a time, with bounded retries.

    A submission that cannot be loaded, or whose review fails, moves to the
    tail with its retry count incremented; after ``max_retries`` retries
    (``max_retries + 1`` attempts) it is dropped. The worker waits
    ``retry_delay`` after an iteration that requeued its item and
    ``base_delay`` otherwise.

    ``scheduler(delay, fn)`` defers the next worker iteration. The default
    runs it on a ``threading.Timer``; tests pass a manual scheduler to step
    the worker deterministically.
    """

    def __init__(
        self,
        store: BaseStore,
        engine: BaseReviewEngine,
        on_reviewed: Optional[ReviewedCallback] = None,
        max_retries: int = MAX_RETRIES,
        base_delay: float = BASE_DELAY,
        retry_delay: float = RETRY_DELAY,
        scheduler: Optional[Scheduler] = None,
    ):
        self._store = store
        self._engine = engine
        self.on_reviewed = on_reviewed
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._retry_delay = retry_delay
        self._scheduler = scheduler or timer_scheduler

        self._lock = threading.RLock()
        self._items: deque[QueueItem] = deque()
        self._processing: set[int] = set()
        self._running = False
        self._idle = threading.Event()
        self._idle.set()

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def enqueue(self, submission_id: int) -> bool:
        """Queue a submission for review. Returns True if an item was added.

        Store errors from the existence check propagate to the caller; nothing
        has been queued at that point.
        """
        with self._lock:
            state = self._state_of(submission_id)
        if state:
            logger.info("Submission %s is already %s; not enqueued", submission_id, state)
            return False

        if self._store.get_submission(submission_id) is None:
            logger.warning("Submission %s not found; not enqueued", submission_id)
            return False

        with self._lock:
            # Another caller may have queued the same id while we were checking the store.
            state = self._state_of(submission_id)
            if state:
                logger.info("Submission %s is already %s; not enqueued", submission_id, state)
                return False
            self._items.append(QueueItem(submission_id=submission_id))
            length = len(self._items)
            start = not self._running
            if start:
                self._running = True
                self._idle.clear()

        logger.info("Added submission %s to review queue (length %d)", submission_id, length)
        if start:
            self._scheduler(0, self._run_once)
        return True

    def get_status(self) -> QueueStatus:
        with self._lock:
            return QueueStatus(
                queue_length=len(self._items),
                is_processing=self._running,
                processing_items=sorted(self._processing),
                queue_items=[(item.submission_id, item.retry_count) for item in self._items],
            )

    def join(self, timeout: float | None = None) -> bool:
        """Block until the worker has stopped. Returns False on timeout."""
        return self._idle.wait(timeout)

    # ------------------------------------------------------------------ #
    # Worker                                                               #
    # ------------------------------------------------------------------ #

    def _state_of(self, submission_id: int) -> str | None:
        if submission_id in self._processing:
            return "processing"
        if any(item.submission_id == submission_id for item in self._items):
            return "queued"
        return None

    def _run_once(self) -> None:
        with self._lock:
            if not self._items:
                self._running = False
                self._idle.set()
                logger.debug("Review queue empty; worker stopped")
                return
            item = self._items[0]
            self._processing.add(item.submission_id)

        requeued = False
        try:
            requeued = self._process(item)
        finally:
            with self._lock:
                self._processing.discard(item.submission_id)
            self._scheduler(self._retry_delay if requeued else self._base_delay, self._run_once)

    def _process(self, item: QueueItem) -> bool:
        """Run one attempt for the head item. Returns True if it was requeued."""
        submission_id = item.submission_id
        logger.info("Processing review for submission %s (attempt %d)", submission_id, item.retry_count + 1)

        try:
            submission = self._store.get_submission(submission_id)
        except Exception as e:
            logger.warning("Could not load submission %s: %s", submission_id, e)
            return self._retry_or_abandon(item, f"load failed: {e}")

        if submission is None:
            logger.warning("Submission %s not found", submission_id)
            return self._retry_or_abandon(item, "submission not found")

        if submission.status == SubmissionStatus.REVIEWED:
            logger.info("Submission %s is already reviewed; dropping", submission_id)
            self._remove(item)
            return False

        try:
            feedback = self._engine.review(submission)
            self._store.save_feedback(submission_id, feedback)
            self._store.set_submission_status(submission_id, SubmissionStatus.REVIEWED)
            self._store.set_review_status(submission.review_id, ReviewStatus.COMPLETED)
        except Exception as e:
            logger.warning("Review of submission %s failed (%s): %s", submission_id, type(e).__name__, e)
            return self._retry_or_abandon(item, str(e))

        self._remove(item)
        logger.info("Reviewed submission %s: %d finding(s)", submission_id, len(feedback))

        if self.on_reviewed is not None:
            try:
                self.on_reviewed(submission, feedback)
            except Exception as e:
                # The review itself is stored; a failed follow-up must not re-run it.
                logger.warning("on_reviewed hook failed for submission %s: %s", submission_id, e)
        return False

    def _remove(self, item: QueueItem) -> None:
        with self._lock:
            if self._items and self._items[0] is item:
                self._items.popleft()
            else:
                self._items.remove(item)

    def _retry_or_abandon(self, item: QueueItem, reason: str) -> bool:
        with self._lock:
            self._remove(item)
            if item.retry_count >= self._max_retries:
                logger.error(
                    "Abandoning submission %s after %d attempt(s): %s",
                    item.submission_id,
                    item.retry_count + 1,
                    reason,
                )
                return False
            item.retry_count += 1
            self._items.append(item)
        logger.warning(
            "Requeued submission %s (retry %d/%d)",
            item.submission_id,
            item.retry_count,
            self._max_retries,
        )
        return True
