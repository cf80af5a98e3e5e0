"""Stand-in for the git subprocess used by clone tests."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from clonehome.git.cloner import GitProcessResult

DEFAULT_PROGRESS = (
    "Cloning into 'repo'...",
    "remote: Counting objects:  50% (5/10)",
    "Receiving objects: 100% (10/10), done.",
)


class FakeCloneRunner:
    """Records clone invocations and materialises a checkout at the destination.

    Repositories whose directory name is listed in ``failures`` leave a partial
    directory behind and exit 128; names in ``timeouts`` report a timeout.
    """

    def __init__(
        self,
        *,
        failures: Iterable[str] = (),
        timeouts: Iterable[str] = (),
        progress: Sequence[str] = DEFAULT_PROGRESS,
        after_clone: Optional[Callable[[Path], None]] = None,
    ) -> None:
        self.failures = set(failures)
        self.timeouts = set(timeouts)
        self.progress = list(progress)
        self.after_clone = after_clone
        self.calls: List[List[str]] = []

    def __call__(
        self,
        args: Iterable[str],
        *,
        on_output: Callable[[str], None],
        timeout: float,
        notice_after: Optional[float] = None,
        on_notice: Optional[Callable[[], None]] = None,
    ) -> GitProcessResult:
        args = list(args)
        self.calls.append(args)
        url, destination = args[-2], Path(args[-1])
        destination.mkdir(parents=True)
        (destination / "objects.pack").write_bytes(b"partial")
        for line in self.progress:
            on_output(line)

        try:
            if destination.name in self.timeouts:
                return GitProcessResult(returncode=-9, timed_out=True)
            if destination.name in self.failures:
                return GitProcessResult(
                    returncode=128,
                    stderr=[f"fatal: repository '{url}' not found"],
                )
            (destination / ".git").mkdir()
            (destination / "README.md").write_text("# cloned\n", encoding="utf-8")
            return GitProcessResult(returncode=0, stderr=self.progress[-1:])
        finally:
            if self.after_clone is not None:
                self.after_clone(destination)

    @property
    def destinations(self) -> List[Path]:
        return [Path(call[-1]) for call in self.calls]


__all__ = ["FakeCloneRunner"]
