"""Discover repositories already checked out under the target directory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List


@dataclass
class LocalRepository:
    name: str
    path: Path
    last_modified: datetime


def scan_local_repositories(target_dir: Path) -> List[LocalRepository]:
    """Return every git checkout below ``target_dir``, most recently modified first."""
    if not target_dir.is_dir():
        return []
    found: List[LocalRepository] = []
    for root, dirs, _files in os.walk(target_dir):
        if ".git" in dirs or (Path(root) / ".git").is_file():
            path = Path(root)
            if path != target_dir:
                found.append(
                    LocalRepository(
                        name=path.relative_to(target_dir).as_posix(),
                        path=path,
                        last_modified=datetime.fromtimestamp(path.stat().st_mtime),
                    )
                )
            dirs[:] = []  # never descend into a checkout
            continue
        dirs[:] = sorted(d for d in dirs if not d.startswith("."))
    found.sort(key=lambda repo: repo.last_modified, reverse=True)
    return found


__all__ = ["LocalRepository", "scan_local_repositories"]
