"""Clone a single repository with progress reporting, timeout and rollback."""

from __future__ import annotations

import os
import re
import shutil
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlparse, urlunparse

from ..logging import get_logger, mask_credentials
from ..models import CloneOutcome, CloneStatus, RepositoryRecord
from ..placement import PlacementSources

CLONE_TIMEOUT_SECONDS = 10 * 60
SLOW_CLONE_NOTICE_SECONDS = 5 * 60
SLOW_CLONE_MESSAGE = "Large repository, still downloading..."

GIT_MARKER = ".git"

ProgressCallback = Callable[[Dict[str, Any]], None]

_PERCENT_RE = re.compile(r"(\d{1,3})%")
_STDERR_TAIL = 20


@dataclass
class CloneOptions:
    """Per-call knobs for :meth:`CloneExecutor.clone_one`."""

    on_progress: Optional[ProgressCallback] = None
    force: bool = False
    token: Optional[str] = None
    timeout: float = CLONE_TIMEOUT_SECONDS
    notice_after: Optional[float] = SLOW_CLONE_NOTICE_SECONDS
    shallow: bool = False


@dataclass
class GitProcessResult:
    """What the clone subprocess left behind."""

    returncode: int
    stderr: List[str] = field(default_factory=list)
    timed_out: bool = False


# runner(args, on_output=..., timeout=..., notice_after=..., on_notice=...)
CloneRunner = Callable[..., GitProcessResult]


def parse_progress_line(line: str) -> Optional[Dict[str, Any]]:
    """Turn one line of ``git clone --progress`` output into a progress event."""
    text = line.strip()
    if not text:
        return None
    if text.startswith("remote: "):
        text = text[len("remote: "):].strip()
    match = _PERCENT_RE.search(text)
    if match:
        return {
            "type": "clone_progress",
            "message": text,
            "percentage": min(int(match.group(1)), 100),
        }
    return {"type": "clone_status", "message": text}


def authenticated_url(clone_url: str, token: Optional[str]) -> str:
    """Embed ``token`` into an HTTPS clone URL; other schemes pass through."""
    if not token:
        return clone_url
    parsed = urlparse(clone_url)
    if parsed.scheme != "https" or "@" in parsed.netloc:
        return clone_url
    netloc = f"x-access-token:{token}@{parsed.netloc}"
    return urlunparse(parsed._replace(netloc=netloc))


class CloneExecutor:
    """Materialises one repository at its resolved path.

    The executor never writes into a directory it did not create: an existing
    checkout is reported as ``exists`` and any other occupant of the target path
    as ``blocked``. A failed or timed-out clone removes whatever it created, so
    an ``error`` outcome never leaves the target path on disk.
    """

    def __init__(self, runner: CloneRunner | None = None, *, git_executable: str = "git") -> None:
        self._runner = runner or self._default_runner
        self.git_executable = git_executable
        self.logger = get_logger("cloner")

    def clone_one(
        self,
        repo: RepositoryRecord,
        base_path: Path | str,
        sources: PlacementSources | None = None,
        options: CloneOptions | None = None,
    ) -> CloneOutcome:
        options = options or CloneOptions()
        sources = sources or PlacementSources()
        path = sources.resolve(repo, base_path)

        if path.exists() or path.is_symlink():
            if path.is_dir() and (path / GIT_MARKER).exists():
                if not options.force:
                    return CloneOutcome(repo.full_name, CloneStatus.EXISTS, str(path))
                self.logger.info("Force re-clone of %s: removing %s", repo.full_name, path)
                try:
                    shutil.rmtree(path)
                except OSError as exc:
                    return CloneOutcome(
                        repo.full_name,
                        CloneStatus.ERROR,
                        str(path),
                        f"Could not remove existing checkout: {exc}",
                    )
            else:
                self.logger.warning(
                    "Refusing to clone %s into %s: path exists and is not a git repository",
                    repo.full_name,
                    path,
                )
                return CloneOutcome(
                    repo.full_name,
                    CloneStatus.BLOCKED,
                    str(path),
                    f"Directory exists and is not a git repository: {path}",
                )

        try:
            created_parents = _ensure_parent(path.parent)
        except OSError as exc:
            return CloneOutcome(
                repo.full_name,
                CloneStatus.ERROR,
                str(path),
                f"Could not create parent directory: {exc}",
            )

        emit = self._emitter(options.on_progress)
        args = self._clone_args(repo, path, options)
        self.logger.debug("Running %s", mask_credentials(" ".join(args)))

        error: Optional[str] = None
        try:
            result = self._runner(
                args,
                on_output=lambda line: self._forward(line, emit),
                timeout=options.timeout,
                notice_after=options.notice_after,
                on_notice=lambda: emit({"type": "clone_status", "message": SLOW_CLONE_MESSAGE}),
            )
        except FileNotFoundError:
            error = f"Unable to locate '{self.git_executable}'. Install git and retry."
        except OSError as exc:
            error = f"Failed to start git: {exc}"
        except BaseException:
            self._rollback(path, created_parents)
            raise
        else:
            if result.timed_out:
                error = f"Clone timed out after {_format_duration(options.timeout)}"
            elif result.returncode != 0:
                error = _failure_message(result)

        if error is None:
            return CloneOutcome(repo.full_name, CloneStatus.CLONED, str(path))

        error = mask_credentials(error)
        self.logger.warning("Clone of %s failed: %s", repo.full_name, error)
        self._rollback(path, created_parents)
        return CloneOutcome(repo.full_name, CloneStatus.ERROR, str(path), error)

    # ------------------------------------------------------------------
    # Helpers

    def _clone_args(self, repo: RepositoryRecord, path: Path, options: CloneOptions) -> List[str]:
        args = [self.git_executable, "clone", "--progress"]
        if options.shallow:
            args.extend(["--depth", "1"])
        args.extend([authenticated_url(repo.clone_url, options.token), str(path)])
        return args

    def _emitter(self, callback: Optional[ProgressCallback]) -> ProgressCallback:
        def emit(event: Dict[str, Any]) -> None:
            if callback is None:
                return
            try:
                callback(event)
            except Exception as exc:
                self.logger.debug("Progress callback raised: %s", exc)

        return emit

    @staticmethod
    def _forward(line: str, emit: ProgressCallback) -> None:
        event = parse_progress_line(mask_credentials(line))
        if event is not None:
            emit(event)

    def _rollback(self, path: Path, created_parents: Sequence[Path]) -> None:
        if path.exists() or path.is_symlink():
            try:
                if path.is_dir() and not path.is_symlink():
                    shutil.rmtree(path)
                else:
                    path.unlink()
            except OSError as exc:
                self.logger.error("Failed to remove partial clone at %s: %s", path, exc)
                return
        for parent in created_parents:
            try:
                parent.rmdir()
            except OSError:
                break

    @staticmethod
    def _default_runner(
        args: Iterable[str],
        *,
        on_output: Callable[[str], None],
        timeout: float,
        notice_after: Optional[float] = None,
        on_notice: Optional[Callable[[], None]] = None,
    ) -> GitProcessResult:
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        process = subprocess.Popen(
            list(args),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            env=env,
            start_new_session=True,
        )
        tail: List[str] = []

        def pump() -> None:
            assert process.stderr is not None
            for line in _iter_progress_lines(process.stderr):
                tail.append(line)
                del tail[:-_STDERR_TAIL]
                on_output(line)

        reader = threading.Thread(target=pump, name="git-clone-progress", daemon=True)
        reader.start()

        timed_out = False
        remaining = timeout
        try:
            if notice_after is not None and 0 < notice_after < timeout:
                try:
                    process.wait(timeout=notice_after)
                except subprocess.TimeoutExpired:
                    if on_notice is not None:
                        on_notice()
                    remaining = timeout - notice_after
            process.wait(timeout=remaining)
        except subprocess.TimeoutExpired:
            timed_out = True
            _kill_process_group(process)
            process.wait()
        reader.join(timeout=5)
        return GitProcessResult(returncode=process.returncode, stderr=list(tail), timed_out=timed_out)


def _kill_process_group(process: subprocess.Popen) -> None:
    """Kill git together with the helpers it spawned (remote-https, index-pack)."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (AttributeError, ProcessLookupError, PermissionError):
        process.kill()


def _iter_progress_lines(stream: Any) -> Iterable[str]:
    """Yield lines split on both ``\\r`` and ``\\n`` as git rewrites progress in place."""
    buffer = b""
    while True:
        chunk = stream.read1(4096) if hasattr(stream, "read1") else stream.read(4096)
        if not chunk:
            break
        buffer += chunk
        parts = re.split(rb"[\r\n]", buffer)
        buffer = parts.pop()
        for part in parts:
            if part.strip():
                yield part.decode("utf-8", errors="replace")
    if buffer.strip():
        yield buffer.decode("utf-8", errors="replace")


def _ensure_parent(directory: Path) -> List[Path]:
    """Create ``directory`` and return the newly created ones, deepest first."""
    missing: List[Path] = []
    current = directory
    while not current.exists():
        missing.append(current)
        if current.parent == current:
            break
        current = current.parent
    directory.mkdir(parents=True, exist_ok=True)
    return missing


def _format_duration(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        return f"{int(seconds // 60)} minutes"
    return f"{seconds:g} seconds"


def _failure_message(result: GitProcessResult) -> str:
    for line in reversed(result.stderr):
        stripped = line.strip()
        if stripped.lower().startswith(("fatal:", "error:")):
            return stripped
    for line in reversed(result.stderr):
        if line.strip():
            return line.strip()
    return f"git clone exited with code {result.returncode}"


__all__ = [
    "CLONE_TIMEOUT_SECONDS",
    "CloneExecutor",
    "CloneOptions",
    "CloneRunner",
    "GitProcessResult",
    "SLOW_CLONE_MESSAGE",
    "SLOW_CLONE_NOTICE_SECONDS",
    "authenticated_url",
    "parse_progress_line",
]
