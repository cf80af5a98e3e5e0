"""Resolve where each repository lands on disk.

Two independent placement sources may exist side by side:

* the rule-based ``directory-tree.json`` (custom paths plus ordered rules),
  authored through the terminal organizer and read from the working directory;
* the ``repository-organization.json`` folder map saved by the organizer UI,
  read from the target directory.

They are never merged. Resolution walks them in a fixed order: custom path,
first matching rule, organization folder, then the ``owner/name`` default.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Pattern, Sequence

import yaml

from .config import ConfigError
from .logging import get_logger
from .models import OrganizationMap, PlacementConfig, PlacementRule, RepositoryRecord, RuleKind

RULE_CONFIG_FILENAMES = ("directory-tree.json", "directory-tree.yml", "directory-tree.yaml")
ORGANIZATION_FILENAME = "repository-organization.json"

_logger = get_logger("placement")


class PlacementConfigError(ConfigError):
    """Raised when a placement artifact cannot be parsed."""


@dataclass
class PlacementSources:
    """The placement inputs in effect for one run."""

    configs: Sequence[PlacementConfig] = field(default_factory=tuple)
    organization: Optional[OrganizationMap] = None

    def folder_for(self, repo: RepositoryRecord) -> Optional[str]:
        return resolve_folder(repo, self.configs, self.organization)

    def resolve(self, repo: RepositoryRecord, base_path: Path | str) -> Path:
        return resolve_path(repo, base_path, self.configs, self.organization)


def resolve_path(
    repo: RepositoryRecord,
    base_path: Path | str,
    configs: Sequence[PlacementConfig] = (),
    organization: Optional[Mapping[str, Sequence[str]]] = None,
) -> Path:
    """Return the directory ``repo`` should be cloned into."""
    base = Path(base_path)
    folder = resolve_folder(repo, configs, organization)
    if folder is None:
        return base.joinpath(*_segments(repo.owner), repo.name)
    return base.joinpath(*_segments(folder), repo.name)


def resolve_folder(
    repo: RepositoryRecord,
    configs: Sequence[PlacementConfig] = (),
    organization: Optional[Mapping[str, Sequence[str]]] = None,
) -> Optional[str]:
    """Return the configured folder for ``repo`` or ``None`` for the default layout."""
    for config in configs:
        custom = config.custom_paths.get(repo.full_name)
        if custom and _segments(custom):
            return custom

    for config in configs:
        for rule in config.rules:
            if matches_rule(repo, rule) and _segments(rule.directory):
                return rule.directory

    if organization:
        for folder, members in organization.items():
            if repo.full_name in members and _segments(folder):
                return folder

    return None


def matches_rule(repo: RepositoryRecord, rule: PlacementRule) -> bool:
    """Return True when ``repo`` satisfies ``rule``; malformed rules never match."""
    kind = rule.kind
    if kind is RuleKind.LANGUAGE:
        return repo.language is not None and repo.language.lower() == rule.value.lower()
    if kind is RuleKind.OWNER:
        return repo.owner == rule.value
    if kind is RuleKind.NAME_PATTERN:
        pattern = _compile(rule.value)
        return pattern is not None and pattern.search(repo.name) is not None
    if kind is RuleKind.FORK_STATUS:
        return repo.is_fork if rule.value == "true" else not repo.is_fork
    if kind is RuleKind.VISIBILITY:
        return repo.is_private if rule.value == "private" else not repo.is_private
    return False


def preview_structure(
    repos: Iterable[RepositoryRecord], sources: PlacementSources
) -> Dict[str, List[str]]:
    """Group repository names by the folder they would be placed in."""
    structure: Dict[str, List[str]] = {}
    for repo in repos:
        folder = sources.folder_for(repo) or repo.owner
        key = "/".join(_segments(folder))
        structure.setdefault(key, []).append(repo.full_name)
    return dict(sorted(structure.items()))


# ----------------------------------------------------------------------
# Artifact persistence


def find_rule_config(directory: Path) -> Optional[Path]:
    for filename in RULE_CONFIG_FILENAMES:
        candidate = directory / filename
        if candidate.is_file():
            return candidate
    return None


def load_rule_config(path: Path) -> PlacementConfig:
    """Parse a rule-based placement file (JSON or YAML)."""
    data = _read_artifact(path)
    if not isinstance(data, dict):
        raise PlacementConfigError(f"{path.name} must contain a mapping at the root")

    custom_paths: Dict[str, str] = {}
    raw_custom = data.get("customPaths") or {}
    if not isinstance(raw_custom, dict):
        raise PlacementConfigError(f"{path.name}: customPaths must be a mapping")
    for full_name, directory in raw_custom.items():
        if isinstance(full_name, str) and isinstance(directory, str) and directory.strip():
            custom_paths[full_name] = directory.strip()

    raw_rules = data.get("rules") or []
    if not isinstance(raw_rules, list):
        raise PlacementConfigError(f"{path.name}: rules must be a list")
    rules = [rule for rule in (_parse_rule(item) for item in raw_rules) if rule is not None]
    return PlacementConfig(custom_paths=custom_paths, rules=rules)


def save_rule_config(config: PlacementConfig, directory: Path) -> Path:
    path = directory / RULE_CONFIG_FILENAMES[0]
    _write_json(path, config.to_dict())
    return path


def load_organization(path: Path) -> OrganizationMap:
    """Parse a ``repository-organization.json`` folder map."""
    data = _read_artifact(path)
    if not isinstance(data, dict):
        raise PlacementConfigError(f"{path.name} must contain a mapping at the root")
    return clean_organization(data)


def save_organization(organization: Mapping[str, Sequence[str]], directory: Path) -> Path:
    path = directory / ORGANIZATION_FILENAME
    _write_json(path, clean_organization(organization))
    return path


def clean_organization(payload: Mapping[Any, Any]) -> OrganizationMap:
    """Keep non-empty folders whose members are non-empty strings."""
    cleaned: OrganizationMap = {}
    for folder, members in payload.items():
        if not isinstance(folder, str) or not folder.strip():
            continue
        if not isinstance(members, (list, tuple)):
            continue
        valid = [member.strip() for member in members if isinstance(member, str) and member.strip()]
        if valid:
            cleaned[folder.strip()] = valid
    return cleaned


def discover_sources(cwd: Path, target_dir: Path) -> PlacementSources:
    """Load whichever placement artifacts exist for this run."""
    configs: List[PlacementConfig] = []
    rule_path = find_rule_config(cwd)
    if rule_path is not None:
        _logger.debug("Using placement rules from %s", rule_path)
        configs.append(load_rule_config(rule_path))

    organization: Optional[OrganizationMap] = None
    org_path = target_dir / ORGANIZATION_FILENAME
    if org_path.is_file():
        _logger.debug("Using organization map from %s", org_path)
        organization = load_organization(org_path)

    if configs and organization:
        _logger.info(
            "Both %s and %s are present; rule-based placement takes precedence",
            rule_path.name if rule_path else RULE_CONFIG_FILENAMES[0],
            ORGANIZATION_FILENAME,
        )
    return PlacementSources(configs=tuple(configs), organization=organization)


# ----------------------------------------------------------------------
# Internal helpers


def _parse_rule(item: Any) -> Optional[PlacementRule]:
    if not isinstance(item, dict):
        return None
    kind_value = item.get("type")
    value = item.get("value")
    directory = item.get("directory")
    if not isinstance(value, str) or not isinstance(directory, str):
        return None
    try:
        kind = RuleKind(kind_value)
    except ValueError:
        _logger.warning("Ignoring placement rule with unknown type %r", kind_value)
        return None
    return PlacementRule(kind=kind, value=value, directory=directory.strip())


@lru_cache(maxsize=128)
def _compile(pattern: str) -> Optional[Pattern[str]]:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        return None


def _segments(directory: str) -> List[str]:
    return [part for part in directory.replace("\\", "/").split("/") if part not in ("", ".", "..")]


def _read_artifact(path: Path) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PlacementConfigError(f"Could not read {path}: {exc}") from exc
    if not text.strip():
        return {}
    if path.suffix in (".yml", ".yaml"):
        try:
            return yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise PlacementConfigError(f"Failed to parse {path.name}: {exc}") from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise PlacementConfigError(f"Failed to parse {path.name}: {exc}") from exc


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


__all__ = [
    "ORGANIZATION_FILENAME",
    "PlacementConfigError",
    "PlacementSources",
    "RULE_CONFIG_FILENAMES",
    "clean_organization",
    "discover_sources",
    "find_rule_config",
    "load_organization",
    "load_rule_config",
    "matches_rule",
    "preview_structure",
    "resolve_folder",
    "resolve_path",
    "save_organization",
    "save_rule_config",
]
