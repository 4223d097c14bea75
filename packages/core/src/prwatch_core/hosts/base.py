"""Code-host client interface.

A code host is any service that owns pull requests and their comment threads
(Backlog, GitHub). Clients make no retries of their own: a failed call raises
HostError and the caller decides what to do with the trigger.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


class HostError(Exception):
    """A call to the code host failed."""


@dataclass
class PullRequest:
    number: int
    title: str
    description: str = ""
    base: str = ""
    branch: str = ""
    status: str = "open"  # "open" | "closed" | "merged"
    author_name: str = ""
    author_email: str | None = None

    @property
    def is_open(self) -> bool:
        return self.status == "open"


@dataclass
class Comment:
    comment_id: int
    content: str
    author: str = ""


class CodeHostClient(ABC):
    name: str = ""

    @abstractmethod
    def list_open_pull_requests(self, project_key: str, repository_name: str) -> list[PullRequest]:
        """Return open pull requests of a repository."""

    @abstractmethod
    def get_pull_request(self, project_key: str, repository_name: str, number: int) -> PullRequest:
        """Return one pull request with its description and status."""

    @abstractmethod
    def get_comments(self, project_key: str, repository_name: str, number: int) -> list[Comment]:
        """Return the comment thread of a pull request, oldest first."""

    @abstractmethod
    def post_comment(self, project_key: str, repository_name: str, number: int, text: str) -> None:
        """Post a comment on a pull request."""

    @abstractmethod
    def clone_and_diff(self, project_key: str, repository_name: str, number: int) -> str:
        """Return the unified diff of a pull request against its base branch."""
