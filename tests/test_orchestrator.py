"""Tests for batch cloning, progress events and cancellation."""

from __future__ import annotations

import threading
from pathlib import Path

from clonehome.cleanup import CleanupManager
from clonehome.git.cloner import CloneExecutor
from clonehome.models import CloneStatus
from clonehome.orchestrator import BatchOrchestrator, SessionRegistry, summarize
from tests._fixtures.fake_git import FakeCloneRunner


def _orchestrator(tmp_path: Path, runner: FakeCloneRunner) -> BatchOrchestrator:
    return BatchOrchestrator(
        CloneExecutor(runner=runner),
        cleanup_factory=lambda: CleanupManager(cwd=tmp_path, home=tmp_path),
    )


def _types(events) -> list:
    return [event["type"] for event in events]


def test_batch_reports_progress_and_summary(tmp_path: Path, make_repo) -> None:
    runner = FakeCloneRunner(failures={"broken"})
    orchestrator = _orchestrator(tmp_path, runner)
    repos = [make_repo("acme/one"), make_repo("acme/broken"), make_repo("jane/two")]
    session = orchestrator.registry.create(len(repos))
    events = []
    session.channel.attach(events.append)

    reports = orchestrator.run_batch(repos, tmp_path / "repos", None, session)

    assert [r["status"] for r in reports] == ["success", "error", "success"]
    assert _types(events).count("repository_complete") == 3
    assert _types(events)[-1] == "complete"
    assert events[-1]["summary"] == {"total": 3, "success": 2, "errors": 1}
    assert events[-1]["results"] == reports
    progress = [e for e in events if e["type"] == "repository_complete"]
    assert progress[-1]["progress"] == {"current": 3, "total": 3, "success": 2, "errors": 1}
    assert any(e["type"] == "clone_detail" and e["repository"] == "acme/one" for e in events)
    assert session.finished is True
    assert session.channel.closed is True


def test_events_published_before_attach_are_replayed(tmp_path: Path, make_repo) -> None:
    orchestrator = _orchestrator(tmp_path, FakeCloneRunner(progress=[]))
    session = orchestrator.registry.create(1)

    orchestrator.run_batch([make_repo("acme/one")], tmp_path / "repos", None, session)
    events = []
    session.channel.attach(events.append)

    assert _types(events) == ["progress", "repository_complete", "complete"]


def test_cancel_after_two_of_five_stops_and_cleans_up(tmp_path: Path, make_repo) -> None:
    base = tmp_path / "repos"
    repos = [make_repo(f"acme/repo{n}") for n in range(1, 6)]
    registry = SessionRegistry()
    session = registry.create(len(repos))

    def cancel_after_second(destination: Path) -> None:
        if destination.name == "repo2":
            registry.cancel(session.session_id)

    runner = FakeCloneRunner(after_clone=cancel_after_second)
    orchestrator = BatchOrchestrator(
        CloneExecutor(runner=runner),
        registry=registry,
        cleanup_factory=lambda: CleanupManager(cwd=tmp_path, home=tmp_path),
    )
    events = []
    session.channel.attach(events.append)

    orchestrator.run_batch(repos, base, None, session)

    types = _types(events)
    assert types.count("repository_complete") == 2
    assert types.count("cancelled") == 1
    assert types[-2:] == ["cancelled", "cleanup_complete"]
    assert "complete" not in types
    assert len(runner.calls) == 2
    assert events[types.index("cancelled")]["completed"] == 2
    assert len(events[-1]["removed"]) == 2
    assert not (base / "acme" / "repo1").exists()
    assert not (base / "acme" / "repo2").exists()


def test_cancellation_cleanup_spares_preexisting_checkouts(tmp_path: Path, make_repo) -> None:
    base = tmp_path / "repos"
    existing = base / "acme" / "old"
    (existing / ".git").mkdir(parents=True)
    (existing / ".git" / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
    repos = [make_repo("acme/old"), make_repo("acme/new"), make_repo("acme/later")]
    registry = SessionRegistry()
    session = registry.create(len(repos))
    runner = FakeCloneRunner(after_clone=lambda dest: registry.cancel(session.session_id))
    orchestrator = BatchOrchestrator(
        CloneExecutor(runner=runner),
        registry=registry,
        cleanup_factory=lambda: CleanupManager(cwd=tmp_path, home=tmp_path),
    )

    orchestrator.run_batch(repos, base, None, session)

    assert [o.status for o in session.results] == [CloneStatus.EXISTS, CloneStatus.CLONED]
    assert (existing / ".git").is_dir()
    assert not (base / "acme" / "new").exists()


def test_cancellation_keeps_placement_artifacts(tmp_path: Path, make_repo) -> None:
    base = tmp_path / "repos"
    base.mkdir()
    (base / "repository-organization.json").write_text("{}", encoding="utf-8")
    (tmp_path / "directory-tree.json").write_text("{}", encoding="utf-8")
    registry = SessionRegistry()
    session = registry.create(2)
    runner = FakeCloneRunner(after_clone=lambda dest: registry.cancel(session.session_id))
    orchestrator = BatchOrchestrator(
        CloneExecutor(runner=runner),
        registry=registry,
        cleanup_factory=lambda: CleanupManager(cwd=tmp_path, home=tmp_path),
    )

    orchestrator.run_batch([make_repo("acme/a"), make_repo("acme/b")], base, None, session)

    assert (base / "repository-organization.json").exists()
    assert (tmp_path / "directory-tree.json").exists()


def test_cancel_is_idempotent_and_rejects_unknown_sessions() -> None:
    registry = SessionRegistry()
    session = registry.create(3)

    assert registry.cancel(session.session_id) is True
    assert registry.cancel(session.session_id) is True
    assert registry.cancel("missing") is False
    session.finished = True
    assert registry.cancel(session.session_id) is False


def test_executor_crash_becomes_error_outcome(tmp_path: Path, make_repo) -> None:
    class Exploding:
        def clone_one(self, repo, base_path, sources=None, options=None):
            raise RuntimeError("disk on fire")

    orchestrator = BatchOrchestrator(Exploding())  # type: ignore[arg-type]
    session = orchestrator.registry.create(1)

    reports = orchestrator.run_batch([make_repo("acme/one")], tmp_path, None, session)

    assert reports[0]["status"] == "error"
    assert reports[0]["message"] == "disk on fire"
    assert reports[0]["path"] == str(tmp_path / "acme" / "one")


def test_start_runs_in_background(tmp_path: Path, make_repo) -> None:
    orchestrator = _orchestrator(tmp_path, FakeCloneRunner())
    session = orchestrator.start([make_repo("acme/one")], tmp_path / "repos")
    events = []
    done = threading.Event()

    def collect(event):
        events.append(event)
        if event["type"] == "complete":
            done.set()

    session.channel.attach(collect)

    assert done.wait(10)
    assert (tmp_path / "repos" / "acme" / "one" / ".git").is_dir()


def test_summarize_counts_statuses(tmp_path: Path, make_repo) -> None:
    orchestrator = _orchestrator(tmp_path, FakeCloneRunner(failures={"bad"}))
    session = orchestrator.registry.create(2)
    orchestrator.run_batch([make_repo("acme/good"), make_repo("acme/bad")], tmp_path, None, session)

    assert summarize(session.results) == {"cloned": 1, "exists": 0, "blocked": 0, "error": 1}


def test_second_run_reports_every_repository_as_existing(tmp_path: Path, make_repo) -> None:
    base = tmp_path / "repos"
    repos = [make_repo("acme/one"), make_repo("jane/two")]
    runner = FakeCloneRunner()
    orchestrator = _orchestrator(tmp_path, runner)

    orchestrator.run_batch(repos, base, None, orchestrator.registry.create(2))
    before = sorted(str(p.relative_to(base)) for p in base.rglob("*"))
    second = orchestrator.registry.create(2)
    orchestrator.run_batch(repos, base, None, second)

    assert [o.status for o in second.results] == [CloneStatus.EXISTS, CloneStatus.EXISTS]
    assert len(runner.calls) == 2
    assert sorted(str(p.relative_to(base)) for p in base.rglob("*")) == before


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_session_with_delivered_events_is_discarded_when_finished(tmp_path: Path, make_repo) -> None:
    orchestrator = _orchestrator(tmp_path, FakeCloneRunner())
    session = orchestrator.registry.create(1)
    session.channel.attach(lambda event: None)

    orchestrator.run_batch([make_repo("acme/one")], tmp_path / "repos", None, session)

    assert session.finished is True
    assert orchestrator.registry.get(session.session_id) is None
    assert len(orchestrator.registry) == 0


def test_unstreamed_session_is_kept_for_replay_then_evicted(tmp_path: Path, make_repo) -> None:
    clock = _Clock()
    registry = SessionRegistry(retention=60, clock=clock)
    orchestrator = BatchOrchestrator(CloneExecutor(runner=FakeCloneRunner()), registry=registry)
    session = registry.create(1)

    orchestrator.run_batch([make_repo("acme/one")], tmp_path / "repos", None, session)

    assert registry.get(session.session_id) is session
    assert session.channel.pending()[-1]["type"] == "complete"

    clock.now += 59
    assert registry.prune() == []
    clock.now += 1
    registry.create(3)

    assert registry.get(session.session_id) is None
    assert len(registry) == 1


def test_cancelled_unstreamed_session_is_evicted(tmp_path: Path, make_repo) -> None:
    clock = _Clock()
    registry = SessionRegistry(retention=5, clock=clock)
    session = registry.create(2)
    runner = FakeCloneRunner(after_clone=lambda dest: registry.cancel(session.session_id))
    orchestrator = BatchOrchestrator(
        CloneExecutor(runner=runner),
        registry=registry,
        cleanup_factory=lambda: CleanupManager(cwd=tmp_path, home=tmp_path),
    )

    orchestrator.run_batch([make_repo("acme/a"), make_repo("acme/b")], tmp_path / "repos", None, session)
    clock.now += 5

    assert registry.prune() == [session.session_id]
    assert len(registry) == 0


def test_running_sessions_are_never_evicted() -> None:
    clock = _Clock()
    registry = SessionRegistry(retention=0, clock=clock)
    session = registry.create(4)
    clock.now += 3600

    assert registry.prune() == []
    assert registry.get(session.session_id) is session
