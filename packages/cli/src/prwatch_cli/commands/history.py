"""history command: display the tracker history of a pull request."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.command("history")
@click.option("--project", required=True, help="Project key (Backlog) or repository owner (GitHub).")
@click.option("--repo", required=True, help="Repository name.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.pass_context
def history_cmd(ctx, project: str, repo: str, pr_number: int):
    """Show how often a pull request was reviewed, and for which comments.

    Reads from the configured store. With the default in-memory store nothing
    survives between runs; set 'store: sqlite' in .prwatch.yml to keep history.
    """
    from prwatch_core.tracker import PullRequestTracker, TrackerError

    tracker = PullRequestTracker(ctx.obj["store"])
    try:
        view = tracker.get_history(project, repo, pr_number)
    except TrackerError as e:
        raise click.ClickException(str(e)) from e

    if view is None:
        console.print(f"[yellow]PR #{pr_number} in {project}/{repo} has not been reviewed.[/yellow]")
        return

    table = Table(
        title=f"Review History — {project}/{repo} #{pr_number}",
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("#", justify="right", width=4)
    table.add_column("Review", justify="right", width=8)
    table.add_column("Trigger", width=16)
    table.add_column("Comments", justify="right", width=10)
    table.add_column("Reviewed At", width=20)

    for i, entry in enumerate(view.history, 1):
        table.add_row(
            str(i),
            f"#{entry.review_id}" if entry.review_id is not None else "-",
            f"comment {entry.comment_id}" if entry.comment_id is not None else "description",
            str(entry.comments_count),
            entry.date.strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)
    last = view.last_review_at.strftime("%Y-%m-%d %H:%M:%S") if view.last_review_at else "never"
    console.print(f"[bold]{view.count}[/bold] review(s), last at {last}")
