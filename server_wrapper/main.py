#!/usr/bin/env python3
"""CLI entry point for the server wrapper."""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.tree import Tree

from .core.auth import GitHubAuth
from .core.client import GitHubClient, HttpClient
from .core.notify import create_notifier
from .core.resolver import SourceResolver, ensure_credentials
from .core.supervisor import LifecycleEvent, ProcessSupervisor
from .core.sync import DestinationSynchronizer, SyncOutcome
from .core.triggers import TriggerRouter
from .errors import ConfigError
from .models.config import (
    DEFAULT_CONFIG_NAME,
    STARTUP_TRIGGER,
    GitHubEntry,
    ModrinthEntry,
    PathEntry,
    TriggerKind,
    UnzipTransform,
    UrlEntry,
    WrapperConfig,
)

console = Console()
logger = logging.getLogger("server_wrapper")


def setup_logging(verbose: bool = False) -> None:
    """Route log records through Rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
    )


def load_config(args: argparse.Namespace) -> WrapperConfig:
    """Load and validate the config, creating a default file if missing."""
    config_path = Path(args.config)
    if not config_path.exists():
        console.print(f"[yellow]Config not found, writing defaults to {config_path}")
    config = WrapperConfig.load_or_create(config_path)
    config.validate()

    for trigger in config.triggers.values():
        if trigger.kind != TriggerKind.STARTUP:
            logger.warning("Trigger %r of type %r is not supported yet and will not fire", trigger.name, trigger.kind)
    return config


def build_router(config: WrapperConfig, stop_event: threading.Event) -> TriggerRouter:
    """Wire resolver, synchronizer and router for a loaded config.

    Raises:
        ConfigError: If GitHub sources are configured without a token
    """
    auth = GitHubAuth(token=config.github_token)
    ensure_credentials(config, auth)

    http = HttpClient(cancel_event=stop_event)
    github = GitHubClient(auth, http) if auth.verify_credentials() else None
    resolver = SourceResolver(config.root, http=http, github=github)
    synchronizer = DestinationSynchronizer(
        resolver,
        config.root,
        max_workers=config.max_workers,
        cancel_event=stop_event,
    )
    return TriggerRouter(config.destinations, synchronizer)


def _render_outcomes(trigger: str, outcomes: dict[str, SyncOutcome]) -> None:
    """Render sync outcomes as a table."""
    table = Table(title=f"Trigger: {trigger}")
    table.add_column("Destination")
    table.add_column("Status")
    table.add_column("Details")

    for name, outcome in outcomes.items():
        if outcome.success:
            status = "[green]OK"
        elif outcome.cancelled:
            status = "[yellow]CANCELLED"
        else:
            status = "[red]FAILED"
        table.add_row(name, status, outcome.message)

    console.print(table)


def _describe_entry(entry: object) -> str:
    if isinstance(entry, UrlEntry):
        return f"url {entry.url}"
    if isinstance(entry, GitHubEntry):
        parts = [f"github {entry.repository}"]
        if entry.branch:
            parts.append(f"branch={entry.branch}")
        if entry.workflow:
            parts.append(f"workflow={entry.workflow}")
        if entry.artifact:
            parts.append(f"artifact={entry.artifact}")
        return " ".join(parts)
    if isinstance(entry, ModrinthEntry):
        version = f" ({entry.game_version})" if entry.game_version else ""
        return f"modrinth {entry.project_id}{version}"
    if isinstance(entry, PathEntry):
        return f"path {entry.path}"
    return repr(entry)


def cmd_check(args: argparse.Namespace) -> int:
    """Validate configuration and credentials."""
    config = load_config(args)
    ensure_credentials(config, GitHubAuth(token=config.github_token))

    tree = Tree(f"[bold blue]{config.root}[/bold blue]")
    for dest in config.destinations.values():
        triggers = ", ".join(sorted(dest.triggers)) or "no triggers"
        dest_node = tree.add(f"[blue]{dest.path}/[/blue] ({dest.name}; {triggers})")
        for source in dest.sources.values():
            if isinstance(source.transform, UnzipTransform):
                patterns = " ".join(str(p) for p in source.transform.patterns) or "*"
                label = f"{source.name} [dim](unzip {patterns})[/dim]"
            else:
                label = source.name
            source_node = dest_node.add(label)
            for entry_name, entry in source.entries.items():
                source_node.add(f"[green]{entry_name}[/green]: {_describe_entry(entry)}")

    console.print(tree)
    console.print(f"[bold]Commands:[/bold] {len(config.run)}")
    for command in config.run:
        console.print(f"  {command}")
    console.print("[green]Configuration OK")
    return 0


def cmd_sync(args: argparse.Namespace) -> int:
    """Fire one trigger and report the outcome."""
    config = load_config(args)
    trigger = args.trigger

    if trigger not in config.triggers:
        console.print(f"[yellow]Trigger {trigger!r} is not declared; nothing to do")
        return 0

    router = build_router(config, threading.Event())
    outcomes = router.fire(trigger)
    if not outcomes:
        console.print(f"[yellow]No destinations subscribe to {trigger!r}")
        return 0

    _render_outcomes(trigger, outcomes)
    return 0 if all(o.success for o in outcomes.values()) else 1


def cmd_run(args: argparse.Namespace) -> int:
    """Run the supervisor until interrupted."""
    config = load_config(args)
    stop_event = threading.Event()
    router = build_router(config, stop_event)

    supervisor = ProcessSupervisor(
        config.run,
        router,
        notifier=create_notifier(config.status_webhook),
        min_restart_interval=config.min_restart_interval_seconds,
        stop_on_failure=config.stop_on_failure,
        stop_event=stop_event,
        cwd=config.root,
    )

    def _log_event(event: LifecycleEvent) -> None:
        if event.exit_code is not None:
            logger.info("Server %s (exit code %d)", event.kind, event.exit_code)
        else:
            logger.info("Server %s", event.kind)

    supervisor.add_listener(_log_event)

    def _handle_signal(signum: int, frame: object) -> None:
        supervisor.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    supervisor.run(max_cycles=1 if args.once else None)
    return 0


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Keep a server running and sync its files before every start",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_NAME,
        help=f"Path to the YAML config (default: {DEFAULT_CONFIG_NAME})",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # run command
    run_parser = subparsers.add_parser("run", help="Sync destinations and supervise the server")
    run_parser.add_argument("--once", action="store_true", help="Exit after the first server run")

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Fire a trigger once without starting the server")
    sync_parser.add_argument("trigger", nargs="?", default=STARTUP_TRIGGER, help="Trigger name")

    # check command
    subparsers.add_parser("check", help="Validate configuration and credentials")

    args = parser.parse_args()
    setup_logging(args.verbose)

    try:
        if args.command == "run":
            return cmd_run(args)
        elif args.command == "sync":
            return cmd_sync(args)
        elif args.command == "check":
            return cmd_check(args)
        else:
            parser.print_help()
            return 1
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
