"""Sequential clone batches with progress events and cooperative cancellation."""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .cleanup import CleanupManager
from .events import Event, EventChannel
from .git.cloner import CloneExecutor, CloneOptions
from .logging import get_logger
from .models import CloneOutcome, CloneStatus, RepositoryRecord
from .placement import PlacementSources

FINISHED_SESSION_RETENTION_SECONDS = 10 * 60


@dataclass
class BatchSession:
    """Bookkeeping for one batch run."""

    session_id: str
    total: int
    completed: int = 0
    cancelled: bool = False
    finished: bool = False
    finished_at: Optional[float] = None
    results: List[CloneOutcome] = field(default_factory=list)
    channel: EventChannel = field(init=False)

    def __post_init__(self) -> None:
        self.channel = EventChannel(self.session_id)

    def cloned(self) -> List[CloneOutcome]:
        """Outcomes this session actually created on disk."""
        return [outcome for outcome in self.results if outcome.status is CloneStatus.CLONED]


class SessionRegistry:
    """Owns the live batch sessions, keyed by session id.

    A finished session is dropped as soon as every event it produced has been
    delivered. One whose events are still buffered (nobody streamed it, or the
    stream went away early) is kept for ``retention`` seconds so a late
    subscriber can still replay it, then evicted by the next ``create`` or
    ``prune``.
    """

    def __init__(
        self,
        *,
        retention: float = FINISHED_SESSION_RETENTION_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.retention = retention
        self._clock = clock
        self._sessions: Dict[str, BatchSession] = {}
        self._lock = threading.Lock()

    def create(self, total: int) -> BatchSession:
        self.prune()
        session = BatchSession(session_id=uuid.uuid4().hex, total=total)
        with self._lock:
            self._sessions[session.session_id] = session
        return session

    def finish(self, session: BatchSession) -> None:
        """Mark ``session`` finished; discard it if nothing is left to deliver."""
        session.finished_at = self._clock()
        session.finished = True
        if not session.channel.pending():
            self.discard(session.session_id)

    def prune(self) -> List[str]:
        """Evict finished sessions older than the retention window."""
        cutoff = self._clock() - self.retention
        with self._lock:
            expired = [
                session_id
                for session_id, session in self._sessions.items()
                if session.finished_at is not None and session.finished_at <= cutoff
            ]
            for session_id in expired:
                del self._sessions[session_id]
        return expired

    def get(self, session_id: str) -> Optional[BatchSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def cancel(self, session_id: str) -> bool:
        """Flag a running session as cancelled; False if unknown or finished."""
        session = self.get(session_id)
        if session is None or session.finished:
            return False
        session.cancelled = True
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


def summarize(outcomes: Iterable[CloneOutcome]) -> Dict[str, int]:
    counts = {status.value: 0 for status in CloneStatus}
    for outcome in outcomes:
        counts[outcome.status.value] += 1
    return counts


class BatchOrchestrator:
    """Clones repositories one at a time and reports through the session channel.

    Cancellation is checked between repositories only; an in-flight clone always
    runs to completion. Once cancellation is observed the orchestrator emits
    ``cancelled``, removes what this session cloned and emits
    ``cleanup_complete``.
    """

    def __init__(
        self,
        executor: CloneExecutor | None = None,
        *,
        registry: SessionRegistry | None = None,
        cleanup_factory: Callable[[], CleanupManager] | None = None,
    ) -> None:
        self.executor = executor or CloneExecutor()
        self.registry = registry or SessionRegistry()
        self._cleanup_factory = cleanup_factory or CleanupManager
        self.logger = get_logger("orchestrator")

    def start(
        self,
        repos: Sequence[RepositoryRecord],
        base_path: Path | str,
        sources: PlacementSources | None = None,
        *,
        options: CloneOptions | None = None,
    ) -> BatchSession:
        """Create a session and run the batch on a background thread."""
        session = self.registry.create(len(repos))
        worker = threading.Thread(
            target=self.run_batch,
            args=(list(repos), base_path, sources, session),
            kwargs={"options": options},
            name=f"clone-batch-{session.session_id[:8]}",
            daemon=True,
        )
        worker.start()
        return session

    def cancel(self, session_id: str) -> bool:
        return self.registry.cancel(session_id)

    def run_batch(
        self,
        repos: Sequence[RepositoryRecord],
        base_path: Path | str,
        sources: PlacementSources | None,
        session: BatchSession,
        *,
        options: CloneOptions | None = None,
    ) -> List[Dict[str, Any]]:
        """Process ``repos`` in order and return the per-repository reports."""
        sources = sources or PlacementSources()
        base_options = options or CloneOptions()
        emit = session.channel.publish
        total = len(repos)
        session.total = total
        reports: List[Dict[str, Any]] = []
        success = errors = 0
        self.logger.info("Session %s: cloning %d repositories", session.session_id, total)

        try:
            for index, repo in enumerate(repos, start=1):
                if session.cancelled:
                    break
                emit(
                    {
                        "type": "progress",
                        "current": index,
                        "total": total,
                        "repository": repo.full_name,
                        "message": f"Cloning {repo.full_name}...",
                    }
                )
                outcome = self._clone(repo, base_path, sources, base_options, session, index, total)
                session.results.append(outcome)
                session.completed += 1

                report = outcome.to_report()
                reports.append(report)
                if report["status"] == "success":
                    success += 1
                else:
                    errors += 1
                emit(
                    {
                        "type": "repository_complete",
                        "repository": report,
                        "progress": {
                            "current": index,
                            "total": total,
                            "success": success,
                            "errors": errors,
                        },
                    }
                )

            if session.cancelled:
                self._finish_cancelled(session, base_path)
            else:
                emit(
                    {
                        "type": "complete",
                        "message": f"Cloning completed: {success} successful, {errors} failed",
                        "summary": {"total": total, "success": success, "errors": errors},
                        "results": reports,
                    }
                )
                self.logger.info(
                    "Session %s complete: %d successful, %d failed", session.session_id, success, errors
                )
        except Exception as exc:
            self.logger.exception("Clone process failed for session %s", session.session_id)
            emit(
                {
                    "type": "error",
                    "message": f"Clone process failed: {exc}",
                    "error": str(exc),
                }
            )
        finally:
            session.channel.close()
            self.registry.finish(session)
        return reports

    # ------------------------------------------------------------------
    # Helpers

    def _clone(
        self,
        repo: RepositoryRecord,
        base_path: Path | str,
        sources: PlacementSources,
        base_options: CloneOptions,
        session: BatchSession,
        index: int,
        total: int,
    ) -> CloneOutcome:
        def relay(detail: Event) -> None:
            session.channel.publish(
                {
                    "type": "clone_detail",
                    "repository": repo.full_name,
                    "progress": detail,
                    "current": index,
                    "total": total,
                }
            )

        try:
            return self.executor.clone_one(
                repo, base_path, sources, replace(base_options, on_progress=relay)
            )
        except Exception as exc:
            self.logger.exception("Unexpected error cloning %s", repo.full_name)
            return CloneOutcome(
                repo.full_name,
                CloneStatus.ERROR,
                self._safe_path(repo, base_path, sources),
                str(exc) or exc.__class__.__name__,
            )

    def _safe_path(self, repo: RepositoryRecord, base_path: Path | str, sources: PlacementSources) -> str:
        try:
            return str(sources.resolve(repo, base_path))
        except Exception as exc:
            self.logger.debug("Could not resolve a path for %s: %s", repo.full_name, exc)
            return ""

    def _finish_cancelled(self, session: BatchSession, base_path: Path | str) -> None:
        emit = session.channel.publish
        self.logger.info(
            "Session %s cancelled after %d of %d repositories",
            session.session_id,
            session.completed,
            session.total,
        )
        emit(
            {
                "type": "cancelled",
                "message": "Clone process was cancelled",
                "completed": session.completed,
            }
        )
        actions = self._cleanup_factory().cleanup(
            target_dir=base_path,
            cloned_repositories=session.cloned(),
            remove_config_files=False,
            remove_placement_files=False,
        )
        removed = [action.to_dict() for action in actions if action.action == "removed repository"]
        emit(
            {
                "type": "cleanup_complete",
                "message": f"Cleanup completed: {len(removed)} repositories removed",
                "removed": removed,
                "actions": [action.to_dict() for action in actions],
            }
        )


__all__ = ["BatchOrchestrator", "BatchSession", "SessionRegistry", "summarize"]
