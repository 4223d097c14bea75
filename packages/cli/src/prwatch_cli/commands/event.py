"""event command: replay a saved webhook payload through the review pipeline."""

from __future__ import annotations

import json

import click
from rich.console import Console

console = Console()


@click.command("event")
@click.option("--source", type=click.Choice(["backlog", "github"]), required=True, help="Webhook sender.")
@click.option(
    "--event-type",
    default=None,
    help="GitHub event name (the X-GitHub-Event header), e.g. issue_comment.",
)
@click.option(
    "--signature",
    default=None,
    help="X-Hub-Signature-256 header value. Checked against GITHUB_WEBHOOK_SECRET when given.",
)
@click.argument("payload_file", type=click.File("rb"))
@click.pass_context
def event_cmd(ctx, source: str, event_type: str | None, signature: str | None, payload_file):
    """Process one webhook payload read from PAYLOAD_FILE ('-' for stdin).

    Waits until the queued review finishes and prints the queue status.
    """
    from prwatch_cli.cli import build_orchestrator
    from prwatch_core.hosts.base import HostError
    from prwatch_core.tracker import TrackerError
    from prwatch_core.webhooks import (
        CommentEvent,
        parse_backlog_event,
        parse_github_event,
        verify_github_signature,
    )

    config = ctx.obj["config"]
    body = payload_file.read()

    if source == "github":
        if not event_type:
            raise click.UsageError("--event-type is required for GitHub payloads.")
        if signature is not None and not verify_github_signature(
            body, signature, config.get("github_webhook_secret") or ""
        ):
            raise click.ClickException("Webhook signature does not match.")

    try:
        payload = json.loads(body)
    except json.JSONDecodeError as e:
        raise click.UsageError(f"Payload is not valid JSON: {e}") from e

    event = parse_backlog_event(payload) if source == "backlog" else parse_github_event(event_type, payload)
    if event is None:
        console.print("[yellow]Event ignored: it cannot trigger a review.[/yellow]")
        return

    orchestrator, queue = build_orchestrator(config, ctx.obj["store"])
    try:
        if isinstance(event, CommentEvent):
            queued = orchestrator.handle_comment_event(event)
        else:
            queued = orchestrator.handle_pull_request_event(event)
    except (TrackerError, HostError, ValueError) as e:
        raise click.ClickException(str(e)) from e

    if not queued:
        console.print(f"[yellow]No review queued for PR #{event.pull_request_id}.[/yellow]")
        return

    console.print(f"[green]Review queued for PR #{event.pull_request_id}.[/green]")
    with console.status("Waiting for the review queue..."):
        queue.join()
    console.print_json(data=queue.get_status().to_dict())
