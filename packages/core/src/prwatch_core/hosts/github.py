from __future__ import annotations

from github import Github, GithubException

from prwatch_core.hosts.base import CodeHostClient, Comment, HostError, PullRequest


def _to_pull_request(pr) -> PullRequest:
    if pr.merged:
        status = "merged"
    else:
        status = pr.state
    return PullRequest(
        number=pr.number,
        title=pr.title or "",
        description=pr.body or "",
        base=pr.base.ref,
        branch=pr.head.ref,
        status=status,
        author_name=pr.user.login if pr.user else "",
    )


class GitHubClient(CodeHostClient):
    """GitHub client. ``project_key`` is the repository owner."""

    name = "github"

    def __init__(self, token: str, gh: Github | None = None):
        self._gh = gh or Github(token)

    def _get_pull(self, owner: str, repo: str, number: int):
        try:
            return self._gh.get_repo(f"{owner}/{repo}").get_pull(number)
        except GithubException as e:
            raise HostError(f"Could not fetch PR #{number} in {owner}/{repo}: {e}") from e

    def list_open_pull_requests(self, project_key: str, repository_name: str) -> list[PullRequest]:
        try:
            pulls = self._gh.get_repo(f"{project_key}/{repository_name}").get_pulls(state="open")
            return [_to_pull_request(pr) for pr in pulls]
        except GithubException as e:
            raise HostError(f"Could not list pull requests in {project_key}/{repository_name}: {e}") from e

    def get_pull_request(self, project_key: str, repository_name: str, number: int) -> PullRequest:
        return _to_pull_request(self._get_pull(project_key, repository_name, number))

    def get_comments(self, project_key: str, repository_name: str, number: int) -> list[Comment]:
        pr = self._get_pull(project_key, repository_name, number)
        try:
            return [
                Comment(comment_id=c.id, content=c.body or "", author=c.user.login if c.user else "")
                for c in pr.get_issue_comments()
            ]
        except GithubException as e:
            raise HostError(f"Could not fetch comments of PR #{number}: {e}") from e

    def post_comment(self, project_key: str, repository_name: str, number: int, text: str) -> None:
        pr = self._get_pull(project_key, repository_name, number)
        try:
            pr.create_issue_comment(text)
        except GithubException as e:
            raise HostError(f"Could not comment on PR #{number}: {e}") from e

    def clone_and_diff(self, project_key: str, repository_name: str, number: int) -> str:
        """Assemble the PR diff from the per-file patches GitHub already computed."""
        pr = self._get_pull(project_key, repository_name, number)
        try:
            files = sorted(pr.get_files(), key=lambda f: f.filename)
        except GithubException as e:
            raise HostError(f"Could not fetch files of PR #{number}: {e}") from e
        chunks = []
        for f in files:
            if not f.patch:
                continue
            header = f"diff --git a/{f.filename} b/{f.filename}\n--- a/{f.filename}\n+++ b/{f.filename}"
            chunks.append(f"{header}\n{f.patch}")
        return "\n".join(chunks)
