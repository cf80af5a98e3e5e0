"""Terminal organizer for deciding where repositories are placed."""

from __future__ import annotations

import csv
import io
import json
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.tree import Tree

from .github import repository_stats
from .logging import get_logger
from .models import OrganizationMap, PlacementConfig, PlacementRule, RepositoryRecord, RuleKind
from .placement import (
    PlacementSources,
    matches_rule,
    preview_structure,
    save_organization,
    save_rule_config,
)

AUTO_METHODS = ("language", "owner", "org-type", "fork-status", "visibility", "year")
EXPORT_FORMATS = ("json", "csv", "markdown", "text")
PAGE_SIZE = 10

AskFn = Callable[..., str]
ConfirmFn = Callable[..., bool]


def auto_organize(repos: Iterable[RepositoryRecord], method: str) -> OrganizationMap:
    """Group repositories into folders by a single attribute."""
    organization: OrganizationMap = {}
    for repo in repos:
        if method == "language":
            category = f"languages/{repo.language or 'unknown'}"
        elif method == "owner":
            category = f"owners/{repo.owner}"
        elif method == "org-type":
            category = "organizations" if repo.owner_type == "Organization" else "personal"
        elif method == "fork-status":
            category = "forks" if repo.is_fork else "original"
        elif method == "visibility":
            category = "private" if repo.is_private else "public"
        elif method == "year":
            category = f"by-year/{_year(repo.updated_at)}"
        else:
            category = "uncategorized"
        organization.setdefault(category, []).append(repo.full_name)
    return organization


def filter_repositories(
    repos: Iterable[RepositoryRecord], kind: str, value: str
) -> List[RepositoryRecord]:
    """Select repositories the way a placement rule of ``kind`` would."""
    try:
        rule = PlacementRule(kind=RuleKind(kind), value=value, directory=".")
    except ValueError:
        return []
    return [repo for repo in repos if matches_rule(repo, rule)]


def export_repositories(
    repos: Sequence[RepositoryRecord], fmt: str, *, today: Optional[date] = None
) -> Tuple[str, str]:
    """Render the repository list and return ``(filename, content)``."""
    stamp = (today or date.today()).isoformat()
    if fmt == "json":
        return f"repositories-{stamp}.json", json.dumps([repo.to_dict() for repo in repos], indent=2)
    if fmt == "csv":
        return f"repositories-{stamp}.csv", _render_csv(repos)
    if fmt == "markdown":
        return f"repositories-{stamp}.md", _render_markdown(repos, stamp)
    if fmt == "text":
        return f"repositories-{stamp}.txt", "\n".join(repo.full_name for repo in repos) + "\n"
    raise ValueError(f"Unknown export format: {fmt}")


class InteractiveOrganizer:
    """Menu-driven organizer over a fetched repository list."""

    def __init__(
        self,
        repos: Sequence[RepositoryRecord],
        *,
        target_dir: Path,
        cwd: Path | None = None,
        console: Console | None = None,
        ask: AskFn | None = None,
        confirm: ConfirmFn | None = None,
    ) -> None:
        self.repos = list(repos)
        self.target_dir = target_dir
        self.cwd = cwd or Path.cwd()
        self.console = console or Console()
        self._ask = ask or self._rich_ask
        self._confirm = confirm or self._rich_confirm
        self.organization: OrganizationMap = {}
        self.logger = get_logger("organizer")

    def run(self) -> None:
        self.console.print("[bold blue]Repository Organizer[/bold blue]")
        self.console.print(f"[dim]{len(self.repos)} repositories loaded[/dim]\n")
        actions = {
            "browse": self.browse,
            "tree": self.edit_tree,
            "auto": self.auto,
            "save": self.save,
            "export": self.export,
        }
        while True:
            choice = self._ask(
                "What would you like to do?", choices=[*actions, "quit"], default="quit"
            )
            if choice == "quit":
                return
            actions[choice]()

    # ------------------------------------------------------------------
    # Browse and assign

    def browse(self) -> None:
        page = 0
        pages = max(1, -(-len(self.repos) // PAGE_SIZE))
        while True:
            start = page * PAGE_SIZE
            page_repos = self.repos[start:start + PAGE_SIZE]
            self.console.print(self._repo_table(page_repos, start, title=f"Page {page + 1}/{pages}"))
            choices = ["assign", "filter", "stats"]
            if page > 0:
                choices.append("prev")
            if page < pages - 1:
                choices.append("next")
            choices.append("back")
            choice = self._ask("Browse", choices=choices, default="back")
            if choice == "assign":
                self.assign(page_repos, start)
            elif choice == "filter":
                self.filter()
            elif choice == "stats":
                self.stats()
            elif choice == "prev":
                page -= 1
            elif choice == "next":
                page += 1
            else:
                return

    def assign(self, page_repos: Sequence[RepositoryRecord], start: int = 0) -> List[str]:
        raw = self._ask("Repository numbers to assign (comma separated)")
        selected: List[RepositoryRecord] = []
        for token in raw.replace(" ", "").split(","):
            if not token.isdigit():
                continue
            offset = int(token) - 1 - start
            if 0 <= offset < len(page_repos) and page_repos[offset] not in selected:
                selected.append(page_repos[offset])
        if not selected:
            self.console.print("[yellow]No repositories selected.[/yellow]")
            return []
        directory = self._ask_required('Directory path (e.g. "projects/web")')
        members = self.organization.setdefault(directory, [])
        for repo in selected:
            self._unassign(repo.full_name)
            members.append(repo.full_name)
        self.organization = {folder: names for folder, names in self.organization.items() if names}
        self.console.print(f"[green]Assigned {len(selected)} repositories to {directory!r}[/green]")
        return [repo.full_name for repo in selected]

    def filter(self) -> List[RepositoryRecord]:
        kind = self._ask("Filter by", choices=[kind.value for kind in RuleKind])
        value = self._ask_required("Value")
        matches = filter_repositories(self.repos, kind, value)
        self.console.print(self._repo_table(matches, 0, title=f"{len(matches)} matching"))
        return matches

    def stats(self) -> None:
        stats = repository_stats(self.repos)
        table = Table(title="Repository statistics")
        table.add_column("Metric")
        table.add_column("Count", justify="right")
        for key in ("total", "public", "private", "original", "forks"):
            table.add_row(key.title(), str(stats[key]))
        for language, count in list(stats["languages"].items())[:10]:
            table.add_row(f"language: {language}", str(count))
        for owner, count in list(stats["owners"].items())[:10]:
            table.add_row(f"owner: {owner}", str(count))
        self.console.print(table)

    # ------------------------------------------------------------------
    # Rule-based tree

    def edit_tree(self) -> Optional[Path]:
        config = PlacementConfig()
        while True:
            choice = self._ask(
                "Configure directory structure",
                choices=["rule", "custom", "preview", "save", "back"],
                default="preview",
            )
            if choice == "rule":
                kind = self._ask("Rule type", choices=[kind.value for kind in RuleKind])
                value = self._ask_required('Rule value (e.g. "python", "myorg", ".*-api$")')
                directory = self._ask_required('Target directory (e.g. "languages/python")')
                config.rules.append(PlacementRule(RuleKind(kind), value, directory))
                self.console.print(f"[green]Added rule: {kind} {value!r} -> {directory!r}[/green]")
            elif choice == "custom":
                full_name = self._ask("Repository", choices=[repo.full_name for repo in self.repos])
                config.custom_paths[full_name] = self._ask_required("Custom directory path")
            elif choice == "preview":
                self.preview(PlacementSources(configs=(config,)))
            elif choice == "save":
                path = save_rule_config(config, self.cwd)
                self.console.print(f"[green]Directory tree configuration saved to {path}[/green]")
                return path
            else:
                return None

    def preview(self, sources: PlacementSources) -> Dict[str, List[str]]:
        structure = preview_structure(self.repos, sources)
        self.console.print(_structure_tree(structure, limit=None))
        return structure

    # ------------------------------------------------------------------
    # Auto-organize, save, export

    def auto(self) -> bool:
        method = self._ask("Auto-organize by", choices=list(AUTO_METHODS), default="language")
        organization = auto_organize(self.repos, method)
        self.console.print(_structure_tree(dict(sorted(organization.items())), limit=5))
        if self._confirm("Apply this organization?", default=False):
            self.organization = organization
            self.console.print("[green]Auto-organization applied[/green]")
            return True
        return False

    def save(self) -> Optional[Path]:
        if not self.organization:
            self.console.print("[yellow]No organization to save. Organize repositories first.[/yellow]")
            return None
        path = save_organization(self.organization, self.target_dir)
        self.logger.info("Saved %d folders to %s", len(self.organization), path)
        self.console.print(f"[green]Repository organization saved to {path}[/green]")
        return path

    def export(self) -> Path:
        fmt = self._ask("Export format", choices=list(EXPORT_FORMATS), default="json")
        filename, content = export_repositories(self.repos, fmt)
        path = self.cwd / filename
        path.write_text(content, encoding="utf-8")
        self.console.print(f"[green]Repository list exported to {path}[/green]")
        return path

    # ------------------------------------------------------------------
    # Helpers

    def _unassign(self, full_name: str) -> None:
        for members in self.organization.values():
            if full_name in members:
                members.remove(full_name)

    def _ask_required(self, prompt: str) -> str:
        while True:
            answer = self._ask(prompt).strip()
            if answer:
                return answer
            self.console.print("[red]A value is required.[/red]")

    def _repo_table(self, repos: Sequence[RepositoryRecord], start: int, *, title: str) -> Table:
        table = Table(title=title)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Repository")
        table.add_column("Visibility")
        table.add_column("Language", style="cyan")
        table.add_column("Updated", style="dim")
        for offset, repo in enumerate(repos, start=start + 1):
            name = f"{repo.full_name} (fork)" if repo.is_fork else repo.full_name
            table.add_row(
                str(offset),
                name,
                "private" if repo.is_private else "public",
                repo.language or "-",
                repo.updated_at[:10],
            )
        return table

    def _rich_ask(self, prompt: str, *, choices: Optional[List[str]] = None, default: Optional[str] = None) -> str:
        if default is None:
            return Prompt.ask(prompt, choices=choices, console=self.console)
        return Prompt.ask(prompt, choices=choices, default=default, console=self.console)

    def _rich_confirm(self, prompt: str, *, default: bool = False) -> bool:
        return Confirm.ask(prompt, default=default, console=self.console)


def _structure_tree(structure: Dict[str, List[str]], *, limit: Optional[int]) -> Tree:
    tree = Tree("[bold]Directory structure[/bold]")
    for folder, members in structure.items():
        branch = tree.add(f"[cyan]{folder}/[/cyan] ({len(members)} repos)")
        shown = members if limit is None else members[:limit]
        for name in shown:
            branch.add(f"[dim]{name}[/dim]")
        if limit is not None and len(members) > limit:
            branch.add(f"[dim]... and {len(members) - limit} more[/dim]")
    return tree


def _year(timestamp: str) -> str:
    try:
        return str(datetime.fromisoformat(timestamp.replace("Z", "+00:00")).year)
    except ValueError:
        return "unknown"


def _render_csv(repos: Sequence[RepositoryRecord]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(["Name", "Owner", "Private", "Fork", "Language", "Description", "Updated", "URL"])
    for repo in repos:
        writer.writerow(
            [
                repo.name,
                repo.owner,
                str(repo.is_private).lower(),
                str(repo.is_fork).lower(),
                repo.language or "",
                repo.description or "",
                repo.updated_at,
                repo.html_url or "",
            ]
        )
    return buffer.getvalue()


def _render_markdown(repos: Sequence[RepositoryRecord], stamp: str) -> str:
    lines = ["# My GitHub Repositories", "", f"Generated on {stamp}", "", f"Total repositories: {len(repos)}", ""]
    by_owner: Dict[str, List[RepositoryRecord]] = {}
    for repo in repos:
        by_owner.setdefault(repo.owner, []).append(repo)
    for owner in sorted(by_owner):
        lines.extend([f"## {owner}", ""])
        for repo in by_owner[owner]:
            marker = "private" if repo.is_private else "public"
            fork = " (fork)" if repo.is_fork else ""
            language = f" `{repo.language}`" if repo.language else ""
            link = f"[{repo.name}]({repo.html_url})" if repo.html_url else repo.name
            lines.append(f"- {link} ({marker}){fork}{language}")
            if repo.description:
                lines.append(f"  {repo.description}")
        lines.append("")
    return "\n".join(lines)


__all__ = [
    "AUTO_METHODS",
    "EXPORT_FORMATS",
    "InteractiveOrganizer",
    "auto_organize",
    "export_repositories",
    "filter_repositories",
]
