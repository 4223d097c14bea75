"""Tests for the review queue.

The worker is driven through ``ManualScheduler`` so every iteration runs on
the test thread, in order, and the requested delays can be asserted.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from prwatch_core.providers.base import EngineError
from prwatch_core.queue import BASE_DELAY, MAX_RETRIES, RETRY_DELAY, QueueStatus, ReviewQueue
from prwatch_store.base import StoreError
from prwatch_store.memory import MemoryStore
from prwatch_store.models import FeedbackItem, ReviewStatus, Submission, SubmissionStatus


class ManualScheduler:
    """Records deferred calls instead of starting timers."""

    def __init__(self):
        self.pending: list = []
        self.delays: list[float] = []

    def __call__(self, delay, fn):
        self.pending.append(fn)
        self.delays.append(delay)

    def step(self):
        self.pending.pop(0)()

    def drain(self, limit=50):
        steps = 0
        while self.pending:
            self.step()
            steps += 1
            assert steps < limit, "worker did not stop"
        return steps


def _make_store_with_submissions(count=1):
    store = MemoryStore()
    ids = []
    for pr in range(1, count + 1):
        review, _ = store.get_or_create_review("backlog", "PROJ", "api", pr, title=f"PR #{pr}")
        ids.append(store.create_submission(review.review_id, f"code {pr}").submission_id)
    return store, ids


def _make_engine(findings=None, side_effect=None):
    engine = MagicMock()
    engine.review.return_value = findings if findings is not None else [FeedbackItem("Missing null check", "Guard it")]
    if side_effect is not None:
        engine.review.side_effect = side_effect
    return engine


def _make_queue(store, engine, **kwargs):
    scheduler = ManualScheduler()
    return ReviewQueue(store, engine, scheduler=scheduler, **kwargs), scheduler


# ---------------------------------------------------------------------------
# enqueue
# ---------------------------------------------------------------------------


class TestEnqueue:
    def test_enqueue_starts_worker_once(self):
        store, (a, b) = _make_store_with_submissions(2)
        queue, scheduler = _make_queue(store, _make_engine())

        assert queue.enqueue(a) is True
        assert queue.enqueue(b) is True
        assert len(scheduler.pending) == 1
        assert scheduler.delays == [0]

    def test_duplicate_enqueue_is_rejected(self):
        store, (sid,) = _make_store_with_submissions()
        queue, _ = _make_queue(store, _make_engine())

        assert queue.enqueue(sid) is True
        assert queue.enqueue(sid) is False
        assert queue.get_status().queue_length == 1

    def test_unknown_submission_is_not_queued(self):
        store, _ = _make_store_with_submissions()
        queue, scheduler = _make_queue(store, _make_engine())

        assert queue.enqueue(999) is False
        assert scheduler.pending == []
        assert queue.get_status().queue_length == 0

    def test_store_error_propagates(self):
        store = MagicMock()
        store.get_submission.side_effect = RuntimeError("db down")
        queue, scheduler = _make_queue(store, _make_engine())

        with pytest.raises(RuntimeError, match="db down"):
            queue.enqueue(1)
        assert queue.get_status().queue_length == 0
        assert scheduler.pending == []

    def test_enqueue_while_processing_is_rejected(self):
        """Single flight: an id under review cannot be queued a second time."""
        store, (sid,) = _make_store_with_submissions()
        results = []
        engine = _make_engine()
        queue, scheduler = _make_queue(store, engine)

        def review(submission):
            results.append(queue.enqueue(sid))
            return []

        engine.review.side_effect = review
        queue.enqueue(sid)
        scheduler.drain()

        assert results == [False]
        assert engine.review.call_count == 1


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------


class TestWorker:
    def test_success_clears_queue(self):
        store, (sid,) = _make_store_with_submissions()
        engine = _make_engine()
        queue, scheduler = _make_queue(store, engine)

        queue.enqueue(sid)
        scheduler.drain()

        submission = store.get_submission(sid)
        assert submission.status == SubmissionStatus.REVIEWED
        assert store.get_review(submission.review_id).status == ReviewStatus.COMPLETED
        assert [f.problem_point for f in store.list_feedback(sid)] == ["Missing null check"]
        assert queue.get_status() == QueueStatus(0, False, [], [])
        assert scheduler.delays == [0, BASE_DELAY]

    def test_processing_status_visible_during_review(self):
        store, (sid,) = _make_store_with_submissions()
        seen = []
        engine = _make_engine()
        queue, scheduler = _make_queue(store, engine)
        engine.review.side_effect = lambda submission: seen.append(queue.get_status()) or []

        queue.enqueue(sid)
        scheduler.drain()

        assert seen[0].is_processing is True
        assert seen[0].processing_items == [sid]
        assert seen[0].queue_items == [(sid, 0)]

    def test_retry_bound(self):
        """A submission that always fails is attempted max_retries + 1 times, then dropped."""
        store, (sid,) = _make_store_with_submissions()
        engine = _make_engine(side_effect=EngineError("timeout"))
        queue, scheduler = _make_queue(store, engine)

        queue.enqueue(sid)
        scheduler.drain()

        assert engine.review.call_count == MAX_RETRIES + 1
        assert queue.get_status().queue_length == 0
        assert store.get_submission(sid).status == SubmissionStatus.SUBMITTED
        assert scheduler.delays == [0, RETRY_DELAY, RETRY_DELAY, RETRY_DELAY, BASE_DELAY]

    def test_retried_item_goes_to_tail(self):
        store, (a, b) = _make_store_with_submissions(2)
        order = []
        failures = {a: 1}

        def review(submission):
            order.append(submission.submission_id)
            if failures.get(submission.submission_id):
                failures[submission.submission_id] -= 1
                raise EngineError("rate limited")
            return []

        queue, scheduler = _make_queue(store, _make_engine(side_effect=review))
        queue.enqueue(a)
        queue.enqueue(b)
        scheduler.step()

        assert queue.get_status().queue_items == [(b, 0), (a, 1)]
        scheduler.drain()
        assert order == [a, b, a]

    def test_transient_not_found_then_success(self):
        """Two not-found loads are retried; the third load succeeds."""
        sub = Submission(submission_id=1, review_id=10, code_content="x = 1")
        store = MagicMock()
        store.get_submission.side_effect = [sub, None, None, sub]
        engine = _make_engine(findings=[])
        queue, scheduler = _make_queue(store, engine)

        queue.enqueue(1)
        scheduler.step()
        assert queue.get_status().queue_items == [(1, 1)]
        scheduler.step()
        assert queue.get_status().queue_items == [(1, 2)]
        scheduler.drain()

        assert engine.review.call_count == 1
        store.set_submission_status.assert_called_once_with(1, SubmissionStatus.REVIEWED)
        store.set_review_status.assert_called_once_with(10, ReviewStatus.COMPLETED)
        assert queue.get_status().queue_length == 0
        assert scheduler.delays[:4] == [0, RETRY_DELAY, RETRY_DELAY, BASE_DELAY]

    def test_transient_load_errors_then_success(self):
        sub = Submission(submission_id=7, review_id=70, code_content="x = 1")
        store = MagicMock()
        store.get_submission.side_effect = [sub, StoreError("locked"), StoreError("locked"), sub]
        engine = _make_engine(findings=[])
        queue, scheduler = _make_queue(store, engine)

        queue.enqueue(7)
        scheduler.step()
        scheduler.step()
        assert queue.get_status().queue_items == [(7, 2)]
        scheduler.drain()

        assert engine.review.call_count == 1
        store.set_submission_status.assert_called_once_with(7, SubmissionStatus.REVIEWED)
        assert queue.get_status().queue_length == 0

    def test_status_write_failure_does_not_duplicate_feedback(self, mocker):
        store, (sid,) = _make_store_with_submissions()
        real_set_status = store.set_submission_status
        failures = [StoreError("database is locked")]

        def set_status(submission_id, status):
            if failures:
                raise failures.pop()
            real_set_status(submission_id, status)

        mocker.patch.object(store, "set_submission_status", side_effect=set_status)
        engine = _make_engine()
        queue, scheduler = _make_queue(store, engine)

        queue.enqueue(sid)
        scheduler.drain()

        assert engine.review.call_count == 2
        assert len(store.list_feedback(sid)) == 1
        assert store.get_submission(sid).status == SubmissionStatus.REVIEWED
        assert queue.get_status().queue_length == 0

    def test_already_reviewed_is_dropped(self):
        store, (sid,) = _make_store_with_submissions()
        store.set_submission_status(sid, SubmissionStatus.REVIEWED)
        engine = _make_engine()
        queue, scheduler = _make_queue(store, engine)

        queue.enqueue(sid)
        scheduler.drain()

        engine.review.assert_not_called()
        assert queue.get_status().queue_length == 0

    def test_on_reviewed_called_with_feedback(self):
        store, (sid,) = _make_store_with_submissions()
        hook = MagicMock()
        queue, scheduler = _make_queue(store, _make_engine(), on_reviewed=hook)

        queue.enqueue(sid)
        scheduler.drain()

        hook.assert_called_once()
        submission, feedback = hook.call_args.args
        assert submission.submission_id == sid
        assert feedback[0].problem_point == "Missing null check"

    def test_hook_failure_does_not_retry(self):
        store, (sid,) = _make_store_with_submissions()
        engine = _make_engine()
        hook = MagicMock(side_effect=RuntimeError("post failed"))
        queue, scheduler = _make_queue(store, engine, on_reviewed=hook)

        queue.enqueue(sid)
        scheduler.drain()

        assert engine.review.call_count == 1
        assert queue.get_status().queue_length == 0
        assert store.get_submission(sid).status == SubmissionStatus.REVIEWED

    def test_enqueue_after_stop_restarts_worker(self):
        store, (a, b) = _make_store_with_submissions(2)
        engine = _make_engine()
        queue, scheduler = _make_queue(store, engine)

        queue.enqueue(a)
        scheduler.drain()
        assert queue.enqueue(b) is True
        assert len(scheduler.pending) == 1
        scheduler.drain()
        assert engine.review.call_count == 2

    def test_custom_retry_settings(self):
        store, (sid,) = _make_store_with_submissions()
        engine = _make_engine(side_effect=EngineError("boom"))
        queue, scheduler = _make_queue(store, engine, max_retries=1, retry_delay=0.5, base_delay=0.1)

        queue.enqueue(sid)
        scheduler.drain()

        assert engine.review.call_count == 2
        assert scheduler.delays == [0, 0.5, 0.1]


# ---------------------------------------------------------------------------
# Status and join
# ---------------------------------------------------------------------------


class TestStatus:
    def test_to_dict_shape(self):
        status = QueueStatus(queue_length=2, is_processing=True, processing_items=[3], queue_items=[(3, 0), (4, 1)])
        assert status.to_dict() == {
            "queueLength": 2,
            "isProcessing": True,
            "processingItems": [3],
            "queueItems": [{"id": 3, "retries": 0}, {"id": 4, "retries": 1}],
        }

    def test_join_waits_for_worker(self):
        store, (sid,) = _make_store_with_submissions()
        queue, scheduler = _make_queue(store, _make_engine())

        assert queue.join(timeout=0) is True
        queue.enqueue(sid)
        assert queue.join(timeout=0) is False
        scheduler.drain()
        assert queue.join(timeout=0) is True

    def test_default_scheduler_runs_on_timer_threads(self):
        store, (a, b) = _make_store_with_submissions(2)
        engine = _make_engine()
        queue = ReviewQueue(store, engine, base_delay=0, retry_delay=0)

        queue.enqueue(a)
        queue.enqueue(b)

        assert queue.join(timeout=5) is True
        assert engine.review.call_count == 2
        assert store.get_submission(b).status == SubmissionStatus.REVIEWED
