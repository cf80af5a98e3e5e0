"""CLI entrypoints for clone-home commands."""

from __future__ import annotations

import argparse
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm, Prompt
from rich.table import Table

from .cleanup import CleanupManager
from .config import DEFAULT_TARGET_DIR, ConfigError, Settings, SettingsStore
from .events import TERMINAL_EVENTS, Event
from .git.cloner import SLOW_CLONE_MESSAGE, CloneExecutor, CloneOptions
from .github import GitHubClient, GitHubError
from .inventory import scan_local_repositories
from .logging import configure_logging
from .models import RepositoryRecord
from .orchestrator import BatchOrchestrator
from .organizer import InteractiveOrganizer
from .placement import discover_sources


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=argparse.SUPPRESS if suppress_default else False,
        help="Increase log verbosity for troubleshooting.",
    )


def _add_filter_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--filter",
        dest="name_filter",
        default=None,
        help="Only include repositories whose name matches this regular expression.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clone-home",
        description="Clone every GitHub repository you can access into one organized directory.",
    )
    _add_verbose_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    setup_parser = subparsers.add_parser("setup", help="Store a GitHub token and clone preferences.")
    _add_verbose_option(setup_parser, suppress_default=True)
    setup_parser.add_argument("--token", help="GitHub personal access token.")
    setup_parser.add_argument("--target-dir", help=f"Where repositories are cloned (default {DEFAULT_TARGET_DIR}).")
    setup_parser.add_argument(
        "--include-orgs",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Include repositories from your organizations.",
    )
    setup_parser.add_argument(
        "--include-forks",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Include forked repositories.",
    )

    clone_parser = subparsers.add_parser("clone", help="Clone all accessible repositories.")
    _add_verbose_option(clone_parser, suppress_default=True)
    _add_filter_option(clone_parser)
    clone_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show where each repository would be cloned without cloning.",
    )
    clone_parser.add_argument(
        "--force",
        action="store_true",
        help="Re-clone repositories that are already checked out.",
    )

    list_parser = subparsers.add_parser("list", help="List accessible repositories.")
    _add_verbose_option(list_parser, suppress_default=True)
    _add_filter_option(list_parser)

    status_parser = subparsers.add_parser("status", help="Show configuration and local checkouts.")
    _add_verbose_option(status_parser, suppress_default=True)

    organize_parser = subparsers.add_parser("organize", help="Interactively organize repositories.")
    _add_verbose_option(organize_parser, suppress_default=True)

    web_parser = subparsers.add_parser("web", help="Start the local web interface.")
    _add_verbose_option(web_parser, suppress_default=True)
    web_parser.add_argument("--host", default="127.0.0.1", help="Interface to bind.")
    web_parser.add_argument("--port", type=int, default=3000, help="Port to listen on.")
    web_parser.add_argument("--no-browser", action="store_true", help="Do not open a browser window.")

    uninstall_parser = subparsers.add_parser(
        "uninstall", help="Remove configuration, placement files and empty directories."
    )
    _add_verbose_option(uninstall_parser, suppress_default=True)
    uninstall_parser.add_argument("--yes", action="store_true", help="Skip the confirmation prompt.")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for clone-home commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose))
    console = Console(soft_wrap=True, highlight=False)
    store = SettingsStore()

    try:
        if args.command == "setup":
            _run_setup(args, store, console)
        elif args.command == "clone":
            _run_clone(args, _require_settings(parser, store), console)
        elif args.command == "list":
            _run_list(args, _require_settings(parser, store), console)
        elif args.command == "status":
            _run_status(store, console)
        elif args.command == "organize":
            settings = _require_settings(parser, store)
            InteractiveOrganizer(_fetch(settings), target_dir=settings.target_dir, console=console).run()
        elif args.command == "web":
            from .service import run_service

            run_service(args.host, args.port, open_browser=not args.no_browser)
        elif args.command == "uninstall":
            _run_uninstall(args, store, console)
        else:  # pragma: no cover - argparse enforces choices
            parser.exit(1, "Unknown command\n")
    except ConfigError as exc:
        parser.exit(1, f"Configuration error: {exc}\n")
    except GitHubError as exc:
        parser.exit(1, f"{exc}\n")
    except KeyboardInterrupt:
        parser.exit(130, "Interrupted\n")


# ----------------------------------------------------------------------
# Commands


def _run_setup(args: argparse.Namespace, store: SettingsStore, console: Console) -> None:
    existing = _load_quietly(store)
    interactive = sys.stdin.isatty()

    token = args.token or (existing.token if existing else None)
    if not token and interactive:
        token = Prompt.ask("GitHub personal access token", password=True, console=console)
    if not token:
        raise ConfigError("GitHub token is required (pass --token or set GITHUB_TOKEN)")

    target_dir = args.target_dir
    if target_dir is None:
        default = str(existing.target_dir) if existing else DEFAULT_TARGET_DIR
        target_dir = Prompt.ask("Target directory", default=default, console=console) if interactive else default

    include_orgs = args.include_orgs
    if include_orgs is None:
        default_orgs = existing.include_orgs if existing else True
        include_orgs = (
            Confirm.ask("Include organization repositories?", default=default_orgs, console=console)
            if interactive
            else default_orgs
        )
    include_forks = args.include_forks
    if include_forks is None:
        default_forks = existing.include_forks if existing else False
        include_forks = (
            Confirm.ask("Include forked repositories?", default=default_forks, console=console)
            if interactive
            else default_forks
        )

    path = store.save(
        Settings(
            token=token,
            target_dir=Path(target_dir),
            include_orgs=include_orgs,
            include_forks=include_forks,
        )
    )
    console.print(f"Configuration saved to {escape(str(path))}")


def _run_clone(args: argparse.Namespace, settings: Settings, console: Console) -> None:
    sources = discover_sources(Path.cwd(), settings.target_dir)
    repos = _fetch(settings, args.name_filter)
    if not repos:
        console.print("No repositories to clone.")
        return

    if args.dry_run:
        console.print(f"Dry run: {len(repos)} repositories would be cloned")
        for repo in repos:
            path = sources.resolve(repo, settings.target_dir)
            console.print(f"  {escape(repo.full_name)} -> {escape(str(path))}")
        return

    orchestrator = BatchOrchestrator(CloneExecutor())
    done = threading.Event()
    verbose = bool(args.verbose)

    def report(event: Event) -> None:
        _print_event(console, event, verbose=verbose)
        if event.get("type") in TERMINAL_EVENTS:
            done.set()

    session = orchestrator.start(
        repos,
        settings.target_dir,
        sources,
        options=CloneOptions(force=args.force, token=settings.token),
    )
    session.channel.attach(report)
    try:
        while not done.wait(0.2):
            if session.finished:
                break
    except KeyboardInterrupt:
        console.print("Cancelling after the current repository...")
        orchestrator.cancel(session.session_id)
        done.wait()
    finally:
        session.channel.detach(report)
        orchestrator.registry.discard(session.session_id)


def _run_list(args: argparse.Namespace, settings: Settings, console: Console) -> None:
    repos = _fetch(settings, args.name_filter)
    table = Table(title=f"{len(repos)} repositories")
    table.add_column("Repository")
    table.add_column("Visibility")
    table.add_column("Language")
    table.add_column("Updated")
    for repo in repos:
        name = f"{repo.full_name} (fork)" if repo.is_fork else repo.full_name
        table.add_row(name, "private" if repo.is_private else "public", repo.language or "-", repo.updated_at[:10])
    console.print(table)


def _run_status(store: SettingsStore, console: Console) -> None:
    settings = store.load()
    if settings is None:
        console.print("Not configured. Run `clone-home setup` first.")
        return
    config = settings.masked()
    console.print(f"Token: {config['token']}")
    console.print(f"Target directory: {escape(config['targetDir'])}")
    console.print(f"Include organizations: {config['includeOrgs']}")
    console.print(f"Include forks: {config['includeForks']}")

    local = scan_local_repositories(settings.target_dir)
    console.print(f"Local repositories: {len(local)}")
    for repo in local[:10]:
        console.print(f"  {escape(repo.name)} (modified {repo.last_modified:%Y-%m-%d %H:%M})")
    if len(local) > 10:
        console.print(f"  ... and {len(local) - 10} more")


def _run_uninstall(args: argparse.Namespace, store: SettingsStore, console: Console) -> None:
    settings = _load_quietly(store)
    if not args.yes and not Confirm.ask(
        "Remove clone-home configuration, placement files and empty directories?",
        default=False,
        console=console,
    ):
        console.print("Uninstall aborted.")
        return
    actions = CleanupManager(settings_store=store).cleanup(
        target_dir=settings.target_dir if settings else None,
        remove_config_files=True,
        remove_placement_files=True,
    )
    if not actions:
        console.print("Nothing to remove.")
    for action in actions:
        suffix = f" ({action.error})" if action.error else ""
        console.print(f"{action.action}: {escape(action.path)}{escape(suffix)}")


# ----------------------------------------------------------------------
# Helpers


def _require_settings(parser: argparse.ArgumentParser, store: SettingsStore) -> Settings:
    settings = store.load()
    if settings is None:
        parser.exit(1, "Not configured. Run `clone-home setup` first.\n")
    return settings


def _load_quietly(store: SettingsStore) -> Optional[Settings]:
    try:
        return store.load()
    except ConfigError:
        return None


def _fetch(settings: Settings, name_filter: Optional[str] = None) -> List[RepositoryRecord]:
    return GitHubClient(settings.token).list_repositories(
        include_orgs=settings.include_orgs,
        include_forks=settings.include_forks,
        name_filter=name_filter,
    )


def _print_event(console: Console, event: Dict[str, Any], *, verbose: bool = False) -> None:
    kind = event.get("type")
    if kind == "progress":
        console.print(f"[{event['current']}/{event['total']}] {event['message']}", markup=False)
    elif kind == "clone_detail":
        detail = event.get("progress") or {}
        if detail.get("message") == SLOW_CLONE_MESSAGE or (verbose and detail.get("type") == "clone_status"):
            console.print(f"    {detail.get('message', '')}", markup=False)
    elif kind == "repository_complete":
        report = event["repository"]
        mark = "ok" if report["status"] == "success" else "failed"
        console.print(f"  {mark}: {report['name']}: {report['message']}", markup=False)
    elif kind == "complete":
        summary = event["summary"]
        console.print(f"Done: {summary['success']} successful, {summary['errors']} failed of {summary['total']}")
    elif kind in ("cancelled", "cleanup_complete", "error"):
        console.print(event.get("message", kind), markup=False)


if __name__ == "__main__":
    main(sys.argv[1:])
