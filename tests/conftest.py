from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from clonehome.config import SettingsStore
from clonehome.models import RepositoryRecord
from tests._fixtures.github import build_repo


@pytest.fixture
def make_repo() -> Callable[..., RepositoryRecord]:
    """Factory for repository records with sensible defaults."""
    return build_repo


@pytest.fixture
def settings_store(tmp_path: Path) -> SettingsStore:
    """A settings store isolated from the real home directory and environment."""
    return SettingsStore(tmp_path / "config-home", env={})
