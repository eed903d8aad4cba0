import argparse
import datetime
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .cache import DiscoveryCache
from .config import Config, Paths
from .constants import APP_NAME, CONFIG_FILE, RATE_LIMIT_WARNING_THRESHOLD
from .daemon import SyncDaemon, setup_logging
from .discovery import DiscoveryFilters, RepoDiscoverer
from .errors import ConfigError, FleetSyncError
from .executor import CommandExecutor
from .github import GitHubClient
from .lock import ProcessLock
from .models import SyncStatus, utc_now

logger = logging.getLogger(APP_NAME)
console = Console()
err_console = Console(stderr=True)

STATUS_STYLES = {"success": "green", "failed": "bold red", "pending": "yellow"}


def _format_ts(value: datetime.datetime | None) -> str:
    """Renders a timestamp in local time, or 'Never'."""
    if value is None:
        return "Never"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _resolve_paths(state_dir: str | None) -> Paths:
    return Paths.under(Path(state_dir).expanduser()) if state_dir else Paths()


def build_discoverer(conf: Config, paths: Paths) -> RepoDiscoverer:
    """Wires the GitHub transport, the cache and the filters from config.

    Raises:
        ConfigError: If no organization is configured.
    """
    if not conf.github.organization:
        raise ConfigError(
            f"No organization configured. Set [github] organization in {CONFIG_FILE}."
        )

    token = conf.github.token()
    if token is None:
        logger.warning(
            f"${conf.github.token_env} is not set; listing public repositories only."
        )

    client = GitHubClient(
        token=token, api_url=conf.github.api_url, timeout=conf.github.timeout
    )
    cache = DiscoveryCache(paths.cache_file, ttl=conf.discovery.cache_ttl)
    return RepoDiscoverer(
        client,
        cache,
        organization=conf.github.organization,
        filters=DiscoveryFilters.from_config(conf.discovery),
    )


def build_daemon(conf: Config, paths: Paths) -> SyncDaemon:
    """Creates a daemon whose executor discovers and syncs every repository."""
    executor = CommandExecutor(
        build_discoverer(conf, paths),
        command=conf.daemon.command,
        max_workers=conf.daemon.max_workers,
        command_timeout=conf.daemon.command_timeout,
    )
    return SyncDaemon(
        executor,
        interval=conf.daemon.interval,
        enabled=conf.daemon.enabled,
        paths=paths,
        executor_timeout=conf.daemon.executor_timeout,
    )


def run_now(conf: Config, paths: Paths) -> bool:
    """Runs a single locked pass in the foreground.

    Returns:
        bool: Whether the pass succeeded.
    """
    daemon = build_daemon(conf, paths)
    with console.status(
        "[bold blue]Syncing repositories...[/bold blue]", spinner="dots"
    ):
        result = daemon.run_once()

    if result.success:
        console.print(f"[bold green]SUCCESS:[/bold green] {result.message}")
    else:
        console.print(f"[bold red]FAILED:[/bold red] {result.message}")
    return result.success


def run_daemon(conf: Config, paths: Paths) -> None:
    """Starts the scheduler and blocks until a shutdown signal."""
    setup_logging(
        interactive=False,
        log_file=paths.log_file,
        max_log_size=conf.limits.max_log_size,
    )
    build_daemon(conf, paths).start()


def show_discovery(conf: Config, paths: Paths, refresh: bool, show_all: bool) -> None:
    """Lists the organization's repositories as the daemon would see them."""
    discoverer = build_discoverer(conf, paths)
    filters = (
        DiscoveryFilters(include_archived=True, include_private=True)
        if show_all
        else None
    )

    with console.status(
        f"Discovering repositories in [cyan]{conf.github.organization}[/cyan]...",
        spinner="dots",
    ):
        repos = discoverer.discover(filters=filters, force_refresh=refresh)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Repository", style="cyan")
    table.add_column("Visibility")
    table.add_column("Flags", style="dim")
    table.add_column("Updated", justify="right", style="dim")

    for repo in repos:
        flags = [
            label
            for label, on in (("archived", repo.archived), ("fork", repo.fork))
            if on
        ]
        visibility = "[yellow]private[/yellow]" if repo.private else "public"
        table.add_row(repo.full_name, visibility, ", ".join(flags), repo.updated_at)

    console.print(table)
    console.print(f"[dim]{len(repos)} repositories.[/dim]")


def show_status(paths: Paths) -> None:
    """Displays whether the daemon is running and the persisted ledger."""
    record = ProcessLock(paths.lock_file).read()
    running = SyncDaemon.is_running(paths)

    content = Text()
    content.append("Daemon:   ", style="bold")
    if running and record is not None:
        content.append(f"Running (pid {record.pid})\n", style="bold green")
    elif record is not None:
        content.append("Stopped (stale lock)\n", style="bold yellow")
    else:
        content.append("Stopped\n", style="bold red")

    status = SyncDaemon.get_status(paths)
    if status is None:
        content.append("No sync has run yet.", style="dim")
        console.print(Panel(content, title="Sync Status", expand=False))
        return

    content.append(f"Last Sync: {_format_ts(status.last_sync)}\n")
    content.append(f"Next Sync: {_format_ts(status.next_sync)}\n")
    content.append(f"Successes: {status.success_count}\n", style="green")
    content.append(
        f"Failures:  {status.failure_count}",
        style="red" if status.failure_count else "dim",
    )
    console.print(Panel(content, title="Sync Status", expand=False))

    if status.repositories:
        console.print(_repository_table(status))


def _repository_table(status: SyncStatus) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Repository", style="cyan")
    table.add_column("Status")
    table.add_column("Last Sync", justify="right", style="dim")
    table.add_column("Message", style="dim")

    for name in sorted(status.repositories):
        entry = status.repositories[name]
        style = STATUS_STYLES.get(entry.status, "white")
        table.add_row(
            name,
            f"[{style}]{entry.status}[/{style}]",
            _format_ts(entry.last_sync),
            entry.message,
        )
    return table


def clear_cache(paths: Paths) -> None:
    """Deletes the discovery cache."""
    if DiscoveryCache(paths.cache_file).clear():
        console.print("[bold green]Cache cleared.[/bold green]")
    elif paths.cache_file.exists():
        err_console.print(
            f"[bold red]ERROR:[/bold red] Could not remove {paths.cache_file}"
        )
    else:
        console.print("[dim]No cache to clear.[/dim]")


def show_rate_limit(conf: Config, paths: Paths) -> None:
    """Prints the remaining GitHub API quota."""
    status = build_discoverer(conf, paths).rate_limit_status()
    minutes = max(0, int((status.reset_at - utc_now()).total_seconds() // 60))
    style = "bold red" if status.remaining < RATE_LIMIT_WARNING_THRESHOLD else "green"
    console.print(
        f"[{style}]{status.remaining}[/{style}]/{status.limit} requests remaining "
        f"[dim](resets in ~{minutes} min)[/dim]"
    )


def show_config(conf: Config, config_path: Path) -> None:
    """Prints the effective configuration."""
    source = (
        str(config_path)
        if config_path.exists()
        else f"{config_path} (not found, using defaults)"
    )
    console.print(f"[bold]Config:[/bold] {source}\n")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Key", style="cyan")
    table.add_column("Value")

    for section_name in ("github", "discovery", "daemon", "limits"):
        section = getattr(conf, section_name)
        for key in section.__dataclass_fields__:
            table.add_row(f"{section_name}.{key}", repr(getattr(section, key)))

    console.print(table)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the fleet-sync CLI."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Keep an organization's repositories in sync on a schedule.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Config file (default: {CONFIG_FILE})",
    )
    parser.add_argument(
        "--state-dir", default=None, help="Keep state, lock, cache and log here"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Echo progress logs to stdout"
    )

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Run one sync pass now and exit")
    subparsers.add_parser("daemon", help="Run passes on a schedule until stopped")

    discover_parser = subparsers.add_parser("discover", help="List repositories only")
    discover_parser.add_argument(
        "--refresh", action="store_true", help="Bypass the discovery cache"
    )
    discover_parser.add_argument(
        "--all", action="store_true", help="Ignore archived/private/exclude filters"
    )

    subparsers.add_parser("status", help="Show daemon and last sync status")
    subparsers.add_parser("clear-cache", help="Delete the discovery cache")
    subparsers.add_parser("rate-limit", help="Show the remaining GitHub API quota")
    subparsers.add_parser("config", help="Show the effective configuration")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return

    config_path = args.config or CONFIG_FILE
    conf = Config.load(config_path)
    paths = _resolve_paths(args.state_dir)

    if args.command != "daemon":
        setup_logging(
            interactive=True,
            stream_level=logging.INFO if args.verbose else logging.WARNING,
        )

    try:
        if args.command == "run":
            if not run_now(conf, paths):
                sys.exit(1)
        elif args.command == "daemon":
            run_daemon(conf, paths)
        elif args.command == "discover":
            show_discovery(conf, paths, refresh=args.refresh, show_all=args.all)
        elif args.command == "status":
            show_status(paths)
        elif args.command == "clear-cache":
            clear_cache(paths)
        elif args.command == "rate-limit":
            show_rate_limit(conf, paths)
        elif args.command == "config":
            show_config(conf, config_path)
    except FleetSyncError as e:
        err_console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(e.exit_code)


if __name__ == "__main__":
    main()
