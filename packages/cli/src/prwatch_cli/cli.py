"""CLI entry point for prwatch.

Commands:
  reconcile  run the startup scan over open pull requests and review the ones that asked for it
  event      feed a saved webhook payload (Backlog or GitHub) through the review pipeline
  history    display the review history of one pull request
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prwatch_cli.commands.event import event_cmd
from prwatch_cli.commands.history import history_cmd
from prwatch_cli.commands.reconcile import reconcile_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the configured store from .prwatch.yml settings.

    Store selection:
      store: sqlite → SQLiteStore (store_path, default .prwatch.db)
      (default)     → MemoryStore (state lives as long as the process)
    """
    store_type = config.get("store", "memory")

    if store_type == "sqlite":
        from prwatch_store.sqlite import SQLiteStore

        return SQLiteStore(db_path=config.get("store_path", ".prwatch.db"))

    if store_type != "memory":
        console.print(f"[yellow]Unknown store {store_type!r}. Falling back to the in-memory store.[/yellow]")

    from prwatch_store.memory import MemoryStore

    return MemoryStore()


def _build_hosts(config: dict) -> dict:
    """Create a client for every code host that has credentials configured."""
    hosts = {}
    if config.get("backlog_space") and config.get("backlog_api_key"):
        from prwatch_core.hosts.backlog import BacklogClient

        hosts["backlog"] = BacklogClient(
            space=config["backlog_space"],
            api_key=config["backlog_api_key"],
            domain=config.get("backlog_domain", "backlog.jp"),
        )
    if config.get("github_token"):
        from prwatch_core.hosts.github import GitHubClient

        hosts["github"] = GitHubClient(token=config["github_token"])
    return hosts


def build_orchestrator(config: dict, store):
    """Wire tracker, queue, engine and host clients around one store.

    Returns ``(orchestrator, queue)``; callers drain the queue with
    ``queue.join()`` before exiting.
    """
    from prwatch_core.orchestrator import ReviewOrchestrator
    from prwatch_core.providers.factory import get_engine
    from prwatch_core.queue import ReviewQueue
    from prwatch_core.tracker import PullRequestTracker

    if config["model"] == "anthropic" and not config.get("anthropic_api_key"):
        raise click.UsageError("ANTHROPIC_API_KEY environment variable is not set.")
    if config["model"] == "openai" and not config.get("openai_api_key"):
        raise click.UsageError("OPENAI_API_KEY environment variable is not set.")

    hosts = _build_hosts(config)
    if not hosts:
        raise click.UsageError(
            "No code host configured. Set BACKLOG_SPACE and BACKLOG_API_KEY, "
            "or GITHUB_TOKEN (or run `gh auth login`)."
        )

    try:
        engine = get_engine(config)
    except (ValueError, FileNotFoundError) as e:
        raise click.UsageError(str(e)) from e

    queue_config = config.get("queue", {})
    queue = ReviewQueue(
        store,
        engine,
        max_retries=queue_config.get("max_retries", 3),
        base_delay=queue_config.get("base_delay", 1.0),
        retry_delay=queue_config.get("retry_delay", 5.0),
    )
    orchestrator = ReviewOrchestrator(hosts, store, PullRequestTracker(store), queue, config)
    queue.on_reviewed = orchestrator.publish_feedback
    return orchestrator, queue


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("prwatch"),
    prog_name="prwatch",
)
@click.option(
    "--config",
    "config_path",
    default=".prwatch.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRWATCH_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """AI code review for pull requests on Backlog and GitHub."""
    from prwatch_core.config import load_config
    from prwatch_cli.auth import resolve_github_token

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    config = load_config(config_path)
    if not config.get("github_token"):
        config["github_token"] = resolve_github_token()

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(reconcile_cmd)
main.add_command(event_cmd)
main.add_command(history_cmd)
