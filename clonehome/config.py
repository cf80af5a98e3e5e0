"""Settings persistence for clone-home (~/.clone-home/config.json)."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional

from dotenv import load_dotenv

DEFAULT_TARGET_DIR = "./repositories"

_ENV_TOKEN = "GITHUB_TOKEN"
_ENV_TARGET_DIR = "TARGET_DIR"
_ENV_INCLUDE_ORGS = "INCLUDE_ORGS"
_ENV_INCLUDE_FORKS = "INCLUDE_FORKS"


class ConfigError(RuntimeError):
    """Raised when settings are missing, invalid or cannot be persisted."""


@dataclass
class Settings:
    """Token and preferences consumed by the repository source and the CLI."""

    token: str
    target_dir: Path
    include_orgs: bool = True
    include_forks: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "targetDir": str(self.target_dir),
            "includeOrgs": self.include_orgs,
            "includeForks": self.include_forks,
        }

    def masked(self) -> Dict[str, Any]:
        data = self.to_dict()
        data["token"] = "***" if self.token else None
        return data


class SettingsStore:
    """Loads and saves settings, with environment variables taking precedence."""

    def __init__(
        self,
        config_dir: Path | None = None,
        *,
        env: MutableMapping[str, str] | None = None,
        env_file: Path | None = None,
    ) -> None:
        self.config_dir = config_dir or Path.home() / ".clone-home"
        self.config_file = self.config_dir / "config.json"
        self._env = env if env is not None else os.environ
        if env is None:
            dotenv_path = env_file or Path.cwd() / ".env"
            if dotenv_path.is_file():
                load_dotenv(dotenv_path, override=False)

    def env_overrides(self) -> Dict[str, Any]:
        """Return the settings supplied through environment variables."""
        overrides: Dict[str, Any] = {}
        token = self._env.get(_ENV_TOKEN)
        if token:
            overrides["token"] = token
        target_dir = self._env.get(_ENV_TARGET_DIR)
        if target_dir:
            overrides["targetDir"] = str(expand_path(target_dir))
        include_orgs = _as_bool(self._env.get(_ENV_INCLUDE_ORGS))
        if include_orgs is not None:
            overrides["includeOrgs"] = include_orgs
        include_forks = _as_bool(self._env.get(_ENV_INCLUDE_FORKS))
        if include_forks is not None:
            overrides["includeForks"] = include_forks
        return overrides

    def env_status(self) -> Dict[str, bool]:
        overrides = self.env_overrides()
        return {
            "hasToken": "token" in overrides,
            "hasTargetDir": "targetDir" in overrides,
            "hasIncludeOrgs": "includeOrgs" in overrides,
            "hasIncludeForks": "includeForks" in overrides,
        }

    def load(self) -> Optional[Settings]:
        """Return the effective settings, or ``None`` when nothing is configured."""
        data: Dict[str, Any] = {}
        if self.config_file.exists():
            data = self._read()
        data.update(self.env_overrides())
        if not data:
            return None

        token = _as_str(data.get("token"))
        if not token:
            raise ConfigError("Invalid configuration: GitHub token is missing")

        return Settings(
            token=token,
            target_dir=expand_path(_as_str(data.get("targetDir")) or DEFAULT_TARGET_DIR),
            include_orgs=_coalesce_bool(data.get("includeOrgs"), True),
            include_forks=_coalesce_bool(data.get("includeForks"), False),
        )

    def save(self, settings: Settings) -> Path:
        if not settings.token:
            raise ConfigError("GitHub token is required")
        settings.target_dir = expand_path(str(settings.target_dir))
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            self.config_file.write_text(
                json.dumps(settings.to_dict(), indent=2) + "\n", encoding="utf-8"
            )
        except OSError as exc:
            raise ConfigError(f"Failed to save configuration: {exc}") from exc
        return self.config_file

    def save_partial(self, values: Mapping[str, Any]) -> Settings:
        """Persist values from a form, falling back to the environment for blanks."""
        overrides = self.env_overrides()
        token = (_as_str(values.get("token")) or "").strip() or overrides.get("token")
        target_dir = (_as_str(values.get("targetDir")) or "").strip() or overrides.get("targetDir")
        include_orgs = _as_bool(values.get("includeOrgs"))
        include_forks = _as_bool(values.get("includeForks"))
        settings = Settings(
            token=token or "",
            target_dir=Path(target_dir or DEFAULT_TARGET_DIR),
            include_orgs=include_orgs if include_orgs is not None else overrides.get("includeOrgs", True),
            include_forks=include_forks if include_forks is not None else overrides.get("includeForks", False),
        )
        self.save(settings)
        return settings

    def exists(self) -> bool:
        return self.config_file.exists()

    def remove(self) -> bool:
        if not self.config_file.exists():
            return False
        try:
            self.config_file.unlink()
        except OSError as exc:
            raise ConfigError(f"Failed to remove configuration: {exc}") from exc
        return True

    def _read(self) -> Dict[str, Any]:
        try:
            data = json.loads(self.config_file.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Failed to load configuration: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError("config.json must contain a mapping at the root")
        return data


def expand_path(value: str) -> Path:
    return Path(value).expanduser().resolve()


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _coalesce_bool(value: Any, default: bool) -> bool:
    parsed = _as_bool(value)
    return default if parsed is None else parsed


__all__ = ["ConfigError", "DEFAULT_TARGET_DIR", "Settings", "SettingsStore", "expand_path"]
