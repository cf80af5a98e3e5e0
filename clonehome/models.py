"""Core data models shared across clone-home components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


@dataclass(frozen=True)
class RepositoryRecord:
    """Metadata for one repository returned by the repository source."""

    full_name: str
    owner: str
    name: str
    is_private: bool
    is_fork: bool
    language: Optional[str]
    clone_url: str
    updated_at: str
    description: Optional[str] = None
    html_url: Optional[str] = None
    owner_type: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "RepositoryRecord":
        """Build a record from a GitHub REST repository object."""
        owner_data = payload.get("owner") or {}
        name = str(payload.get("name") or "")
        owner = str(owner_data.get("login") or "")
        full_name = str(payload.get("full_name") or f"{owner}/{name}")
        language = payload.get("language")
        return cls(
            full_name=full_name,
            owner=owner,
            name=name,
            is_private=bool(payload.get("private")),
            is_fork=bool(payload.get("fork")),
            language=str(language) if language else None,
            clone_url=str(payload.get("clone_url") or ""),
            updated_at=str(payload.get("updated_at") or ""),
            description=payload.get("description") or None,
            html_url=payload.get("html_url") or None,
            owner_type=owner_data.get("type") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "full_name": self.full_name,
            "name": self.name,
            "owner": {"login": self.owner, "type": self.owner_type},
            "private": self.is_private,
            "fork": self.is_fork,
            "language": self.language,
            "clone_url": self.clone_url,
            "updated_at": self.updated_at,
            "description": self.description,
            "html_url": self.html_url,
        }


class RuleKind(str, Enum):
    """Predicate families understood by placement rules."""

    LANGUAGE = "language"
    OWNER = "owner"
    NAME_PATTERN = "pattern"
    FORK_STATUS = "fork"
    VISIBILITY = "visibility"


@dataclass(frozen=True)
class PlacementRule:
    """A predicate plus the directory a matching repository is placed in."""

    kind: RuleKind
    value: str
    directory: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.kind.value, "value": self.value, "directory": self.directory}


@dataclass
class PlacementConfig:
    """Rule-based placement source (``directory-tree.json``)."""

    custom_paths: Dict[str, str] = field(default_factory=dict)
    rules: List[PlacementRule] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customPaths": dict(self.custom_paths),
            "rules": [rule.to_dict() for rule in self.rules],
        }


# Folder (may contain "/") -> repository full names, as saved by the organizer.
OrganizationMap = Dict[str, List[str]]


class CloneStatus(str, Enum):
    """Terminal states of a single clone attempt."""

    CLONED = "cloned"
    EXISTS = "exists"
    BLOCKED = "blocked"
    ERROR = "error"


@dataclass
class CloneOutcome:
    """Result of materialising one repository on disk."""

    repository: str
    status: CloneStatus
    path: str
    message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (CloneStatus.CLONED, CloneStatus.EXISTS)

    def to_report(self) -> Dict[str, Any]:
        """Collapse to the success/error record reported by a batch."""
        if self.status is CloneStatus.CLONED:
            message = self.message or f"Successfully cloned to {self.path}"
        elif self.status is CloneStatus.EXISTS:
            message = self.message or f"Already exists at {self.path}"
        elif self.status is CloneStatus.BLOCKED:
            message = self.message or (
                f"Directory exists and is not a git repository: {self.path}"
            )
        else:
            message = self.message or "Clone failed"
        return {
            "name": self.repository,
            "status": "success" if self.succeeded else "error",
            "path": self.path,
            "message": message,
            "outcome": self.status.value,
        }


@dataclass
class CleanupAction:
    """One logged step taken (or attempted) by the cleanup manager."""

    action: str
    path: str
    error: Optional[str] = None

    @property
    def removed(self) -> bool:
        return self.error is None and self.action.startswith("removed")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"action": self.action, "path": self.path}
        if self.error is not None:
            data["error"] = self.error
        return data
