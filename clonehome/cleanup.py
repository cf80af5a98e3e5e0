"""Reverse the on-disk effects of a clone run or a full install."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from .config import ConfigError, SettingsStore
from .logging import get_logger
from .models import CleanupAction, CloneOutcome, CloneStatus
from .placement import ORGANIZATION_FILENAME, RULE_CONFIG_FILENAMES

REFUSED_MESSAGE = "refused: not a git checkout under target"


def is_directory_empty_recursive(directory: Path) -> bool:
    """True when ``directory`` holds nothing but (recursively) empty directories.

    Symlinks and unreadable directories count as content.
    """
    try:
        entries = list(directory.iterdir())
    except OSError as exc:
        get_logger("cleanup").warning("Could not inspect %s: %s", directory, exc)
        return False
    for entry in entries:
        if entry.is_symlink() or not entry.is_dir():
            return False
        if not is_directory_empty_recursive(entry):
            return False
    return True


def _is_checkout_under(path: Path, target: Optional[Path]) -> bool:
    """True when ``path`` is a real git checkout strictly inside ``target``."""
    if target is None or path.is_symlink():
        return False
    resolved = path.resolve()
    root = target.resolve()
    if resolved == root or not resolved.is_relative_to(root):
        return False
    return (resolved / ".git").exists()


class CleanupManager:
    """Removes repositories, placement artifacts, settings and empty directories.

    Every step is best-effort and isolated: a failure is recorded as an action
    carrying an ``error`` and the remaining steps still run.
    """

    def __init__(
        self,
        *,
        settings_store: SettingsStore | None = None,
        cwd: Path | None = None,
        home: Path | None = None,
    ) -> None:
        self._settings_store = settings_store
        self._cwd = cwd
        self._home = home
        self.logger = get_logger("cleanup")
        self.actions: List[CleanupAction] = []

    def cleanup(
        self,
        *,
        target_dir: Path | str | None = None,
        cloned_repositories: Sequence[CloneOutcome] = (),
        remove_config_files: bool = False,
        remove_placement_files: bool = True,
    ) -> List[CleanupAction]:
        """Run the six cleanup steps in order and return the actions taken.

        ``remove_placement_files=False`` skips steps 2 and 3 and keeps the
        placement artifacts the user authored.
        """
        self.actions = []
        target = Path(target_dir) if target_dir else None

        self._remove_repositories(
            (Path(outcome.path) for outcome in cloned_repositories if outcome.path), target
        )
        if remove_placement_files:
            if target is not None:
                self._remove_file(target / ORGANIZATION_FILENAME, "organization config")
            cwd = self._cwd or Path.cwd()
            for filename in RULE_CONFIG_FILENAMES:
                self._remove_file(cwd / filename, "directory tree config")
        if target is not None:
            self._remove_target_directory(target)
        if remove_config_files:
            self._remove_settings()
        if target is not None:
            self._prune_empty_parents(target)

        removed = sum(1 for action in self.actions if action.removed)
        self.logger.info("Cleanup completed: %d items processed, %d removed", len(self.actions), removed)
        return list(self.actions)

    def undo(
        self,
        results: Iterable[Mapping[str, Any]],
        *,
        target_dir: Path | str | None = None,
    ) -> List[CleanupAction]:
        """Remove repositories newly cloned by a finished batch.

        Only report entries whose ``outcome`` is ``cloned`` are touched, so
        checkouts that already existed before the run are kept. Paths that are
        not git checkouts strictly inside ``target_dir`` are refused.
        """
        self.actions = []
        target = Path(target_dir) if target_dir else None
        paths = [
            Path(str(result["path"]))
            for result in results
            if result.get("outcome") == CloneStatus.CLONED.value and result.get("path")
        ]
        self._remove_repositories(paths, target)
        if target is not None:
            self._remove_target_directory(target)
            self._prune_empty_parents(target)
        return list(self.actions)

    # ------------------------------------------------------------------
    # Steps

    def _remove_repositories(self, paths: Iterable[Path], target: Optional[Path]) -> None:
        for path in paths:
            if not path.exists() and not path.is_symlink():
                continue
            if not _is_checkout_under(path, target):
                self._record("remove repository refused", path, REFUSED_MESSAGE)
                continue
            try:
                shutil.rmtree(path)
            except OSError as exc:
                self._record("remove repository failed", path, exc)
            else:
                self._record("removed repository", path)

    def _remove_file(self, path: Path, label: str) -> None:
        if not path.exists():
            return
        try:
            path.unlink()
        except OSError as exc:
            self._record(f"remove {label} failed", path, exc)
        else:
            self._record(f"removed {label}", path)

    def _remove_target_directory(self, target: Path) -> None:
        if not target.exists():
            return
        try:
            if is_directory_empty_recursive(target):
                shutil.rmtree(target)
                self._record("removed empty target directory", target)
            else:
                self._record("kept non-empty target directory", target)
        except OSError as exc:
            self._record("remove target directory failed", target, exc)

    def _remove_settings(self) -> None:
        store = self._settings_store or SettingsStore()
        path = store.config_file
        try:
            removed = store.remove()
        except ConfigError as exc:
            self._record("remove config file failed", path, exc)
        else:
            if removed:
                self._record("removed config file", path)

    def _prune_empty_parents(self, target: Path) -> None:
        home = (self._home or Path.home()).resolve()
        current = target.resolve().parent
        if not current.is_relative_to(home):
            self.logger.debug("Skipping parent pruning: %s is outside %s", target, home)
            return
        while current != home and current != current.parent:
            if not current.exists():
                break
            try:
                if not is_directory_empty_recursive(current):
                    break
                shutil.rmtree(current)
            except OSError as exc:
                self._record("remove parent directory failed", current, exc)
                break
            self._record("removed empty parent directory", current)
            current = current.parent

    def _record(self, action: str, path: Path, error: BaseException | str | None = None) -> None:
        entry = CleanupAction(action=action, path=str(path), error=str(error) if error else None)
        self.actions.append(entry)
        if error is None:
            self.logger.info("%s: %s", action, path)
        else:
            self.logger.error("%s: %s (%s)", action, path, error)


__all__ = ["CleanupManager", "is_directory_empty_recursive"]
