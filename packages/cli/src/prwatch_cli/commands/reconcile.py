"""reconcile command: the startup scan over open pull requests."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()


def _targets_from(config: dict, host: str | None, project: str | None, repo: str | None):
    from prwatch_core.orchestrator import Target

    if project or repo:
        if not (project and repo):
            raise click.UsageError("--project and --repo must be given together.")
        return [Target(host=host or "backlog", project_key=project, repository_name=repo)]

    try:
        targets = [Target.from_dict(t) for t in config.get("targets") or []]
    except ValueError as e:
        raise click.UsageError(str(e)) from e
    if host:
        targets = [t for t in targets if t.host == host]
    return targets


@click.command("reconcile")
@click.option("--host", type=click.Choice(["backlog", "github"]), default=None, help="Only scan this code host.")
@click.option("--project", default=None, help="Project key (Backlog) or repository owner (GitHub).")
@click.option("--repo", default=None, help="Repository name.")
@click.option("--no-wait", is_flag=True, help="Return as soon as reviews are queued.")
@click.pass_context
def reconcile_cmd(ctx, host: str | None, project: str | None, repo: str | None, no_wait: bool):
    """Review open pull requests whose description asks for a code review.

    Scans the repositories listed under ``targets`` in .prwatch.yml (or the one
    given with --project/--repo). Pull requests that were processed before are
    skipped; comment on them to request another review.
    """
    from prwatch_cli.cli import build_orchestrator

    config = ctx.obj["config"]
    targets = _targets_from(config, host, project, repo)
    if not targets:
        raise click.UsageError("No repositories to scan. Add 'targets' to .prwatch.yml or pass --project/--repo.")

    orchestrator, queue = build_orchestrator(config, ctx.obj["store"])
    with console.status(f"Scanning {len(targets)} repositor{'y' if len(targets) == 1 else 'ies'}..."):
        result = orchestrator.reconcile(targets)

    if result.submission_ids and not no_wait:
        with console.status(f"Reviewing {len(result.submission_ids)} submission(s)..."):
            queue.join()

    table = Table(title="Reconciliation", show_header=True, header_style="bold cyan")
    table.add_column("Processed", justify="right", style="green")
    table.add_column("Skipped", justify="right")
    table.add_column("Failed", justify="right", style="red")
    table.add_row(str(result.processed), str(result.skipped), str(result.failed))
    console.print(table)

    if result.failed:
        raise click.ClickException(f"{result.failed} pull request(s) or repositories could not be processed.")
