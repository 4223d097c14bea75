"""Webhook payload parsing for Backlog and GitHub.

Parsers turn a raw payload into a trigger event, or None when the event
cannot trigger a review. They never call the code host.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Backlog notification type id for "pull request comment added".
_BACKLOG_PR_COMMENT_TYPE = 27
_GITHUB_PR_ACTIONS = {"opened", "reopened", "synchronize"}


@dataclass(frozen=True)
class CommentEvent:
    host: str
    project_key: str
    repository_name: str
    pull_request_id: int
    comment_id: int
    text: str


@dataclass(frozen=True)
class PullRequestEvent:
    host: str
    project_key: str
    repository_name: str
    pull_request_id: int
    action: str
    description: str


def parse_backlog_event(payload: dict) -> CommentEvent | None:
    event_type = payload.get("type")
    if event_type not in (_BACKLOG_PR_COMMENT_TYPE, "pull_request_comment"):
        logger.debug("Ignoring Backlog event type %r", event_type)
        return None

    content = payload.get("content") or {}
    comment = content.get("comment") or {}
    if not comment.get("id") or content.get("number") is None:
        logger.info("Backlog PR comment event without a comment id or PR number; ignoring")
        return None

    project = payload.get("project") or content.get("project") or {}
    return CommentEvent(
        host="backlog",
        project_key=project.get("projectKey", ""),
        repository_name=(content.get("repository") or {}).get("name", ""),
        pull_request_id=content["number"],
        comment_id=comment["id"],
        text=comment.get("content") or "",
    )


def _github_comment_event(owner: str, repo: str, number, comment: dict) -> CommentEvent | None:
    if number is None or not comment.get("id"):
        logger.info("GitHub comment event without a PR number or comment id; ignoring")
        return None
    return CommentEvent("github", owner, repo, number, comment["id"], comment.get("body") or "")


def parse_github_event(event_type: str, payload: dict) -> CommentEvent | PullRequestEvent | None:
    repository = payload.get("repository") or {}
    owner = (repository.get("owner") or {}).get("login", "")
    repo = repository.get("name", "")

    if event_type == "issue_comment":
        issue = payload.get("issue") or {}
        if not issue.get("pull_request") or payload.get("action") != "created":
            return None
        comment = payload.get("comment") or {}
        return _github_comment_event(owner, repo, issue.get("number"), comment)

    if event_type == "pull_request_review_comment":
        if payload.get("action") != "created":
            return None
        comment = payload.get("comment") or {}
        pr = payload.get("pull_request") or {}
        return _github_comment_event(owner, repo, pr.get("number"), comment)

    if event_type == "pull_request":
        action = payload.get("action", "")
        if action not in _GITHUB_PR_ACTIONS:
            logger.debug("Ignoring pull_request action %r", action)
            return None
        pr = payload.get("pull_request") or {}
        if pr.get("number") is None:
            logger.info("GitHub pull_request event without a PR number; ignoring")
            return None
        return PullRequestEvent("github", owner, repo, pr["number"], action, pr.get("body") or "")

    logger.debug("Unsupported GitHub event type %r", event_type)
    return None


def verify_github_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check an ``X-Hub-Signature-256`` (or legacy ``X-Hub-Signature``) header."""
    if not signature or not secret:
        return False
    algorithm, _, digest = signature.partition("=")
    if algorithm == "sha256":
        expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    elif algorithm == "sha1":
        expected = hmac.new(secret.encode(), body, hashlib.sha1).hexdigest()
    else:
        return False
    return hmac.compare_digest(expected, digest)
