"""CLI parser and command behaviour tests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from clonehome import cli
from clonehome.cli import _build_parser, main
from clonehome.config import Settings, SettingsStore
from clonehome.git.cloner import CloneExecutor
from tests._fixtures.fake_git import FakeCloneRunner
from tests._fixtures.github import build_repo


class _FakeGitHub:
    repos = [build_repo("acme/api", language="Go"), build_repo("jane/dots")]

    def __init__(self, token: str) -> None:
        self.token = token

    def list_repositories(self, *, include_orgs=True, include_forks=False, name_filter=None):
        return [r for r in self.repos if name_filter is None or name_filter in r.name]


@pytest.fixture
def configured(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    store = SettingsStore(tmp_path / "cfg", env={})
    target = tmp_path / "repos"
    store.save(Settings(token="tok", target_dir=target))
    monkeypatch.setattr(cli, "SettingsStore", lambda: store)
    monkeypatch.setattr(cli, "GitHubClient", _FakeGitHub)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    return store.load().target_dir


def test_cli_accepts_verbose_before_and_after_command() -> None:
    parser = _build_parser()
    assert parser.parse_args(["--verbose", "status"]).verbose is True
    assert parser.parse_args(["status", "-v"]).verbose is True
    assert parser.parse_args(["status"]).verbose is False


def test_cli_clone_flags() -> None:
    args = _build_parser().parse_args(["clone", "--dry-run", "--force", "--filter", "^api"])
    assert args.dry_run is True
    assert args.force is True
    assert args.name_filter == "^api"


def test_cli_web_defaults() -> None:
    args = _build_parser().parse_args(["web", "--no-browser"])
    assert (args.host, args.port, args.no_browser) == ("127.0.0.1", 3000, True)


def test_setup_from_flags(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    store = SettingsStore(tmp_path / "cfg", env={})
    monkeypatch.setattr(cli, "SettingsStore", lambda: store)

    main(["setup", "--token", "abc", "--target-dir", str(tmp_path / "r"), "--no-include-orgs", "--include-forks"])

    data = json.loads(store.config_file.read_text(encoding="utf-8"))
    assert data["token"] == "abc"
    assert data["includeOrgs"] is False
    assert data["includeForks"] is True
    assert "Configuration saved" in capsys.readouterr().out


def test_clone_without_configuration_exits(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.setattr(cli, "SettingsStore", lambda: SettingsStore(tmp_path / "cfg", env={}))

    with pytest.raises(SystemExit) as excinfo:
        main(["clone"])

    assert excinfo.value.code == 1
    assert "Not configured" in capsys.readouterr().err


def test_clone_dry_run_prints_placements(configured: Path, capsys) -> None:
    (configured.parent / "directory-tree.json").write_text(
        json.dumps({"rules": [{"type": "language", "value": "go", "directory": "langs/go"}]}),
        encoding="utf-8",
    )

    main(["clone", "--dry-run"])

    out = capsys.readouterr().out
    assert f"acme/api -> {configured / 'langs' / 'go' / 'api'}" in out
    assert f"jane/dots -> {configured / 'jane' / 'dots'}" in out
    assert not configured.exists()


def test_clone_runs_batch_and_prints_summary(configured: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    runner = FakeCloneRunner(failures={"dots"})
    monkeypatch.setattr(cli, "CloneExecutor", lambda: CloneExecutor(runner=runner))

    main(["clone"])

    out = capsys.readouterr().out
    assert "[1/2] Cloning acme/api..." in out
    assert "ok: acme/api" in out
    assert "failed: jane/dots" in out
    assert "Done: 1 successful, 1 failed of 2" in out
    assert (configured / "acme" / "api" / ".git").is_dir()
    assert "x-access-token:tok@" in runner.calls[0][-2]


def test_malformed_rule_file_aborts_before_cloning(configured: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    (configured.parent / "directory-tree.json").write_text("{oops", encoding="utf-8")
    runner = FakeCloneRunner()
    monkeypatch.setattr(cli, "CloneExecutor", lambda: CloneExecutor(runner=runner))

    with pytest.raises(SystemExit) as excinfo:
        main(["clone"])

    assert excinfo.value.code == 1
    assert "Configuration error" in capsys.readouterr().err
    assert runner.calls == []


def test_list_filters_by_name(configured: Path, capsys) -> None:
    main(["list", "--filter", "dots"])

    out = capsys.readouterr().out
    assert "jane/dots" in out
    assert "acme/api" not in out


def test_status_lists_local_checkouts(configured: Path, capsys) -> None:
    (configured / "acme" / "api" / ".git").mkdir(parents=True)

    main(["status"])

    out = capsys.readouterr().out
    assert "Token: ***" in out
    assert "Local repositories: 1" in out
    assert "acme/api" in out


def test_uninstall_with_yes_removes_config(configured: Path, tmp_path: Path, capsys) -> None:
    store = cli.SettingsStore()
    configured.mkdir()

    main(["uninstall", "--yes"])

    assert not store.exists()
    assert not configured.exists()
    out = capsys.readouterr().out
    assert "removed config file" in out
