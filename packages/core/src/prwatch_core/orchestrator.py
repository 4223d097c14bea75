"""Review orchestration: from a trigger to a queued submission.

Triggers come from two places:

- webhooks: a comment (or a PR description) mentioning the review marker;
- reconciliation: a scan of open PRs, run at startup to catch PRs that asked
  for a review before the webhook was configured.

Both go through the tracker before any slow work starts. The creation path
fetches everything it needs from the code host first and only then writes:
review, submission, tracker record, queue entry, in that order. A code-host
failure therefore leaves the tracker untouched and a redelivered webhook can
try again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from prwatch_core.mention import detect_checkbox_status, detect_trigger, extract_user_email
from prwatch_core.tracker import ReviewKind
from prwatch_core.utils.diff import extract_added_code, truncate
from prwatch_store.models import ReviewStatus

if TYPE_CHECKING:
    from prwatch_core.hosts.base import CodeHostClient, PullRequest
    from prwatch_core.queue import ReviewQueue
    from prwatch_core.tracker import Decision, PullRequestTracker
    from prwatch_core.webhooks import CommentEvent, PullRequestEvent
    from prwatch_store.base import BaseStore
    from prwatch_store.models import FeedbackItem, Submission

logger = logging.getLogger(__name__)

_PRIORITY_LABEL = {"high": "HIGH", "medium": "MEDIUM", "low": "LOW"}


@dataclass(frozen=True)
class Target:
    host: str
    project_key: str
    repository_name: str

    @classmethod
    def from_dict(cls, data: dict) -> Target:
        """Build from a ``targets`` entry of .prwatch.yml."""
        try:
            return cls(host=data["host"], project_key=data["project"], repository_name=data["repository"])
        except KeyError as e:
            raise ValueError(f"Reconcile target is missing {e.args[0]!r}: {data}") from e


@dataclass
class ReconcileResult:
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    submission_ids: list[int] = field(default_factory=list)


def format_feedback_comment(submission: Submission, feedback: list[FeedbackItem]) -> str:
    """Render engine findings as the Markdown comment posted on the PR."""
    lines = [f"## AI review (submission v{submission.version})\n"]
    if not feedback:
        lines.append("> No issues found. The changes look good.")
        return "\n".join(lines)

    counts: dict[str, int] = {}
    for item in feedback:
        counts[item.priority.value] = counts.get(item.priority.value, 0) + 1
    summary = ", ".join(f"{counts[p]} {p}" for p in ("high", "medium", "low") if p in counts)
    lines.append(f"> {len(feedback)} finding(s): {summary}\n")

    for i, item in enumerate(feedback, 1):
        lines.append(f"### {i}. **[{_PRIORITY_LABEL[item.priority.value]}]** {item.problem_point}")
        if item.code_snippet:
            lines.append(f"```\n{item.code_snippet}\n```")
        if item.suggestion:
            lines.append(item.suggestion)
        if item.reference_url:
            lines.append(f"Reference: {item.reference_url}")
        lines.append("")
    return "\n".join(lines).rstrip()


class ReviewOrchestrator:
    def __init__(
        self,
        hosts: dict[str, CodeHostClient],
        store: BaseStore,
        tracker: PullRequestTracker,
        queue: ReviewQueue,
        config: dict,
    ):
        self._hosts = hosts
        self._store = store
        self._tracker = tracker
        self._queue = queue
        self._max_chars = config.get("max_chars_per_submission", 40000)
        self._auto_reply = bool(config.get("auto_reply", False))

    def _host(self, name: str) -> CodeHostClient:
        try:
            return self._hosts[name]
        except KeyError:
            raise ValueError(f"No client configured for code host {name!r}")

    # ------------------------------------------------------------------ #
    # Triggers                                                             #
    # ------------------------------------------------------------------ #

    def handle_comment_event(self, event: CommentEvent) -> bool:
        """Handle a PR comment. Returns True if a review was queued."""
        if not detect_trigger(event.text):
            logger.debug("Comment %d on PR #%d has no review mention", event.comment_id, event.pull_request_id)
            return False

        decision = self._tracker.should_process(
            event.project_key, event.repository_name, event.pull_request_id, event.comment_id
        )
        if not decision.proceed:
            logger.info("Skipping PR #%d comment %d: %s", event.pull_request_id, event.comment_id, decision.reason)
            return False

        logger.info(
            "Review mention in comment %d on PR #%d (%s/%s): %s",
            event.comment_id,
            event.pull_request_id,
            event.project_key,
            event.repository_name,
            decision.kind.value,
        )
        pr = self._host(event.host).get_pull_request(event.project_key, event.repository_name, event.pull_request_id)
        submission_id = self._create_review(
            event.host, event.project_key, event.repository_name, pr, decision, event.comment_id
        )
        return submission_id is not None

    def handle_pull_request_event(self, event: PullRequestEvent) -> bool:
        """Handle a PR opened/updated event whose description may ask for a review."""
        if not detect_trigger(event.description):
            return False
        decision = self._tracker.should_process(event.project_key, event.repository_name, event.pull_request_id)
        if not decision.proceed:
            logger.info("Skipping PR #%d (%s): %s", event.pull_request_id, event.action, decision.reason)
            return False
        pr = self._host(event.host).get_pull_request(event.project_key, event.repository_name, event.pull_request_id)
        submission_id = self._create_review(event.host, event.project_key, event.repository_name, pr, decision, None)
        return submission_id is not None

    def reconcile(self, targets: list[Target]) -> ReconcileResult:
        """Scan open PRs of every target and queue the ones never processed before.

        Only PRs with no tracker record are picked up; a tracked PR needs a new
        comment to be reviewed again. Errors on one PR or repository are logged
        and counted and the scan moves on.
        """
        result = ReconcileResult()
        for target in targets:
            try:
                pull_requests = self._host(target.host).list_open_pull_requests(
                    target.project_key, target.repository_name
                )
            except Exception as e:
                logger.error("Could not list PRs of %s/%s: %s", target.project_key, target.repository_name, e)
                result.failed += 1
                continue

            logger.info(
                "Found %d open PR(s) in %s/%s", len(pull_requests), target.project_key, target.repository_name
            )
            for pr in pull_requests:
                try:
                    queued = self._reconcile_one(target, pr, result)
                except Exception as e:
                    logger.error("Error while processing PR #%d: %s", pr.number, e)
                    result.failed += 1
                    continue
                if queued:
                    result.processed += 1
                else:
                    result.skipped += 1

        logger.info(
            "Reconciliation finished: %d processed, %d skipped, %d failed",
            result.processed,
            result.skipped,
            result.failed,
        )
        return result

    def _reconcile_one(self, target: Target, listed: PullRequest, result: ReconcileResult) -> bool:
        if not detect_trigger(listed.description):
            logger.debug("PR #%d has no review mention in its description", listed.number)
            return False
        decision = self._tracker.should_process(target.project_key, target.repository_name, listed.number)
        if not decision.proceed:
            return False
        pr = self._host(target.host).get_pull_request(target.project_key, target.repository_name, listed.number)
        submission_id = self._create_review(
            target.host, target.project_key, target.repository_name, pr, decision, None
        )
        if submission_id is None:
            return False
        result.submission_ids.append(submission_id)
        return True

    # ------------------------------------------------------------------ #
    # Review creation                                                      #
    # ------------------------------------------------------------------ #

    def _create_review(
        self,
        host_name: str,
        project_key: str,
        repository_name: str,
        pr: PullRequest,
        decision: Decision,
        comment_id: int | None,
    ) -> int | None:
        """Create review and submission for a PR, then queue it. Returns the submission id."""
        if not pr.is_open:
            logger.info("PR #%d is %s; skipping", pr.number, pr.status)
            return None

        host = self._host(host_name)
        comments = host.get_comments(project_key, repository_name, pr.number)
        diff_text = host.clone_and_diff(project_key, repository_name, pr.number)

        review, created = self._store.get_or_create_review(
            host_name,
            project_key,
            repository_name,
            pr.number,
            title=f"PR #{pr.number}: {pr.title}",
            description=pr.description,
        )
        if not created:
            if decision.kind is ReviewKind.INITIAL and comment_id is None:
                # The PR already went through another path; record it so the scan stops here.
                logger.info("PR #%d already has review #%d; recording tracker only", pr.number, review.review_id)
                self._tracker.mark_processed(
                    project_key, repository_name, pr.number, review.review_id, len(comments), comment_id
                )
                return None
            review.description = pr.description
            review.status = ReviewStatus.PENDING
            self._store.save_review(review)

        code = extract_added_code(diff_text) or f"// PR #{pr.number} has no code changes"
        submission = self._store.create_submission(
            review.review_id,
            truncate(code, self._max_chars),
            expectation=self._expectation(pr, decision, len(comments)),
        )
        self._store.set_review_status(review.review_id, ReviewStatus.IN_PROGRESS)
        logger.info(
            "Created submission #%d (v%d) for review #%d%s",
            submission.submission_id,
            submission.version,
            review.review_id,
            " [re-review]" if decision.is_re_review else "",
        )

        self._tracker.mark_processed(
            project_key, repository_name, pr.number, review.review_id, len(comments), comment_id
        )
        self._queue.enqueue(submission.submission_id)
        return submission.submission_id

    @staticmethod
    def _expectation(pr: PullRequest, decision: Decision, comments_count: int) -> str:
        lines = [f"Pull request #{pr.number}: {pr.title}", f"Branch: {pr.branch} -> {pr.base}"]
        author = pr.author_email or extract_user_email(pr.description)
        if pr.author_name or author:
            lines.append(f"Author: {pr.author_name} {f'<{author}>' if author else ''}".rstrip())
        checklist = detect_checkbox_status(pr.description)
        if checklist.total:
            lines.append(f"Checklist: {checklist.checked}/{checklist.total} done")
        if decision.is_re_review and decision.record is not None:
            lines.append(
                f"Re-review requested: {decision.record.review_count} earlier review(s), "
                f"{comments_count} comment(s) on the PR."
            )
        if pr.description:
            lines.append("")
            lines.append(pr.description)
        return "\n".join(lines)

    # ------------------------------------------------------------------ #
    # Feedback publishing                                                  #
    # ------------------------------------------------------------------ #

    def publish_feedback(self, submission: Submission, feedback: list[FeedbackItem]) -> None:
        """Post findings on the PR. Used as the queue's on_reviewed hook."""
        if not self._auto_reply:
            return
        review = self._store.get_review(submission.review_id)
        if review is None:
            logger.warning("Review #%d not found; feedback for submission #%d not posted",
                           submission.review_id, submission.submission_id)
            return
        try:
            self._host(review.host).post_comment(
                review.project_key,
                review.repository_name,
                review.pull_request_id,
                format_feedback_comment(submission, feedback),
            )
        except Exception as e:
            # The review is stored either way; posting is best effort.
            logger.warning("Could not post feedback on PR #%d: %s", review.pull_request_id, e)
            return
        logger.info("Posted %d finding(s) on PR #%d", len(feedback), review.pull_request_id)
