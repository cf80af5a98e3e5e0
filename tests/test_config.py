"""Tests for clonehome.config."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from clonehome.config import ConfigError, Settings, SettingsStore


def test_load_returns_none_when_nothing_configured(settings_store: SettingsStore) -> None:
    assert settings_store.load() is None
    assert settings_store.exists() is False


def test_save_and_load_round_trip(settings_store: SettingsStore, tmp_path: Path) -> None:
    path = settings_store.save(
        Settings(token="ghp_abc", target_dir=tmp_path / "repos", include_orgs=False, include_forks=True)
    )

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data == {
        "token": "ghp_abc",
        "targetDir": str((tmp_path / "repos").resolve()),
        "includeOrgs": False,
        "includeForks": True,
    }
    loaded = settings_store.load()
    assert loaded == Settings(
        token="ghp_abc", target_dir=(tmp_path / "repos").resolve(), include_orgs=False, include_forks=True
    )


def test_environment_overrides_file_values(tmp_path: Path) -> None:
    env = {"GITHUB_TOKEN": "from-env", "INCLUDE_FORKS": "true", "TARGET_DIR": str(tmp_path / "env-repos")}
    store = SettingsStore(tmp_path / "cfg", env=env)
    store.save(Settings(token="from-file", target_dir=tmp_path / "file-repos"))

    settings = store.load()

    assert settings.token == "from-env"
    assert settings.include_forks is True
    assert settings.target_dir == (tmp_path / "env-repos").resolve()
    assert store.env_status() == {
        "hasToken": True,
        "hasTargetDir": True,
        "hasIncludeOrgs": False,
        "hasIncludeForks": True,
    }


def test_missing_token_raises(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "cfg", env={"TARGET_DIR": "/tmp/x"})
    with pytest.raises(ConfigError, match="token"):
        store.load()


def test_corrupt_config_file_raises(settings_store: SettingsStore) -> None:
    settings_store.config_dir.mkdir(parents=True)
    settings_store.config_file.write_text("[1, 2", encoding="utf-8")
    with pytest.raises(ConfigError):
        settings_store.load()


def test_save_requires_token(settings_store: SettingsStore, tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        settings_store.save(Settings(token="", target_dir=tmp_path))


def test_save_partial_falls_back_to_environment(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "cfg", env={"GITHUB_TOKEN": "env-token"})

    settings = store.save_partial({"token": "  ", "targetDir": str(tmp_path / "r"), "includeForks": "yes"})

    assert settings.token == "env-token"
    assert settings.include_forks is True
    assert settings.include_orgs is True
    assert json.loads(store.config_file.read_text(encoding="utf-8"))["token"] == "env-token"


def test_target_dir_expands_user(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    store = SettingsStore(tmp_path / "cfg", env={"GITHUB_TOKEN": "t", "TARGET_DIR": "~/code"})

    assert store.load().target_dir == (tmp_path / "code").resolve()


def test_masked_hides_token(tmp_path: Path) -> None:
    masked = Settings(token="secret", target_dir=tmp_path).masked()
    assert masked["token"] == "***"


def test_dotenv_file_is_loaded(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("GITHUB_TOKEN=dotenv-token\n", encoding="utf-8")

    store = SettingsStore(tmp_path / "cfg", env_file=env_file)
    try:
        assert store.load().token == "dotenv-token"
    finally:
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)


def test_remove(settings_store: SettingsStore, tmp_path: Path) -> None:
    settings_store.save(Settings(token="t", target_dir=tmp_path))
    assert settings_store.remove() is True
    assert settings_store.remove() is False
