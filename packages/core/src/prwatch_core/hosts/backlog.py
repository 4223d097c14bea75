"""Backlog client — REST API v2 for pull requests, git for diffs.

Backlog has no diff endpoint for pull requests, so clone_and_diff clones the
repository into a temporary directory over SSH and runs ``git diff`` between
the base and head branches. The directory is removed when the call returns.
"""

from __future__ import annotations

import logging
import subprocess
import tempfile

import requests

from prwatch_core.hosts.base import CodeHostClient, Comment, HostError, PullRequest

logger = logging.getLogger(__name__)

_OPEN_STATUS_ID = 1
_STATUS_NAMES = {1: "open", 2: "closed", 3: "merged"}
_GIT_TIMEOUT = 300
# Largest page the Backlog list endpoints return.
_PAGE_SIZE = 100


def _to_pull_request(data: dict) -> PullRequest:
    status = data.get("status") or {}
    author = data.get("createdUser") or {}
    return PullRequest(
        number=data["number"],
        title=data.get("summary") or "",
        description=data.get("description") or "",
        base=data.get("base") or "",
        branch=data.get("branch") or "",
        status=_STATUS_NAMES.get(status.get("id"), (status.get("name") or "open").lower()),
        author_name=author.get("name") or "",
        author_email=author.get("mailAddress"),
    )


class BacklogClient(CodeHostClient):
    name = "backlog"

    def __init__(self, space: str, api_key: str, domain: str = "backlog.jp", session: requests.Session | None = None):
        if not space or not api_key:
            raise ValueError("Backlog space and API key are required.")
        self._space = space
        self._domain = domain
        self._api_key = api_key
        self._base_url = f"https://{space}.{domain}/api/v2"
        self._session = session or requests.Session()

    def _request(self, method: str, path: str, params: dict | None = None, data: dict | None = None):
        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(
                method,
                url,
                params={"apiKey": self._api_key, **(params or {})},
                data=data,
                timeout=30,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise HostError(f"Backlog {method} {path} failed: {e}") from e
        return response.json()

    @staticmethod
    def _pr_path(project_key: str, repository_name: str, number: int | None = None) -> str:
        path = f"/projects/{project_key}/git/repositories/{repository_name}/pullRequests"
        return f"{path}/{number}" if number is not None else path

    def list_open_pull_requests(self, project_key: str, repository_name: str) -> list[PullRequest]:
        path = self._pr_path(project_key, repository_name)
        data: list[dict] = []
        while True:
            page = self._request(
                "GET",
                path,
                params={"statusId[]": _OPEN_STATUS_ID, "count": _PAGE_SIZE, "offset": len(data)},
            )
            data.extend(page)
            if len(page) < _PAGE_SIZE:
                break
        return [pr for pr in (_to_pull_request(d) for d in data) if pr.is_open]

    def get_pull_request(self, project_key: str, repository_name: str, number: int) -> PullRequest:
        return _to_pull_request(self._request("GET", self._pr_path(project_key, repository_name, number)))

    def get_comments(self, project_key: str, repository_name: str, number: int) -> list[Comment]:
        path = self._pr_path(project_key, repository_name, number) + "/comments"
        data: list[dict] = []
        while True:
            params = {"order": "asc", "count": _PAGE_SIZE}
            if data:
                params["minId"] = data[-1]["id"] + 1
            page = self._request("GET", path, params=params)
            data.extend(page)
            if len(page) < _PAGE_SIZE:
                break
        return [
            Comment(
                comment_id=c["id"],
                content=c.get("content") or "",
                author=(c.get("createdUser") or {}).get("name") or "",
            )
            for c in data
        ]

    def post_comment(self, project_key: str, repository_name: str, number: int, text: str) -> None:
        self._request(
            "POST",
            self._pr_path(project_key, repository_name, number) + "/comments",
            data={"content": text},
        )

    def clone_and_diff(self, project_key: str, repository_name: str, number: int) -> str:
        pr = self.get_pull_request(project_key, repository_name, number)
        git_url = f"{self._space}@{self._space}.git.{self._domain}:/{project_key}/{repository_name}.git"
        with tempfile.TemporaryDirectory(prefix="prwatch-") as workdir:
            logger.debug("Cloning %s into %s", git_url, workdir)
            self._git("clone", "--quiet", "--no-checkout", git_url, workdir)
            return self._git("-C", workdir, "diff", f"origin/{pr.base}...origin/{pr.branch}")

    @staticmethod
    def _git(*args: str) -> str:
        try:
            result = subprocess.run(
                ["git", *args],
                capture_output=True,
                text=True,
                timeout=_GIT_TIMEOUT,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise HostError(f"git {' '.join(args)} failed: {e.stderr.strip()}") from e
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            raise HostError(f"git {' '.join(args)} failed: {e}") from e
        return result.stdout
