"""FastAPI application backing the clone-home web UI."""

from __future__ import annotations

import asyncio
import json
import threading
import webbrowser
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from ..cleanup import CleanupManager
from ..config import ConfigError, Settings, SettingsStore
from ..events import TERMINAL_EVENTS, Event
from ..git.cloner import CloneOptions
from ..github import GitHubClient, GitHubError, repository_stats
from ..logging import get_logger
from ..models import RepositoryRecord
from ..orchestrator import BatchOrchestrator
from ..placement import (
    ORGANIZATION_FILENAME,
    clean_organization,
    discover_sources,
    load_organization,
    preview_structure,
    save_organization,
)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000

RepositorySource = Any
SourceFactory = Callable[[Settings], RepositorySource]


class HealthResponse(BaseModel):
    status: str


class ConfigRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: Optional[str] = None
    target_dir: Optional[str] = Field(default=None, alias="targetDir")
    include_orgs: Optional[bool] = Field(default=None, alias="includeOrgs")
    include_forks: Optional[bool] = Field(default=None, alias="includeForks")


class OrganizationRequest(BaseModel):
    organization: Dict[str, Any]


class CloneRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    repositories: Optional[List[str]] = None
    dry_run: bool = Field(default=False, alias="dryRun")
    force: bool = False


class UndoRequest(BaseModel):
    results: List[Dict[str, Any]]


def _default_source(settings: Settings) -> GitHubClient:
    return GitHubClient(settings.token)


def create_app(
    *,
    settings_store_factory: Callable[[], SettingsStore] = SettingsStore,
    source_factory: SourceFactory = _default_source,
    orchestrator: BatchOrchestrator | None = None,
    cleanup_factory: Callable[..., CleanupManager] = CleanupManager,
    cwd: Path | None = None,
) -> FastAPI:
    """Create the FastAPI application exposing clone-home operations."""

    app = FastAPI(title="Clone Home", version="1.0.0")
    orchestrator = orchestrator or BatchOrchestrator()
    logger = get_logger("service")

    def working_dir() -> Path:
        return cwd or Path.cwd()

    def require_settings() -> Settings:
        settings = settings_store_factory().load()
        if settings is None:
            raise HTTPException(status_code=400, detail="Not configured. Run setup first.")
        return settings

    def fetch(settings: Settings, name_filter: Optional[str] = None) -> List[RepositoryRecord]:
        return source_factory(settings).list_repositories(
            include_orgs=settings.include_orgs,
            include_forks=settings.include_forks,
            name_filter=name_filter,
        )

    async def in_thread(func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/api/config")
    async def get_config() -> Dict[str, Any]:
        settings = settings_store_factory().load()
        if settings is None:
            return {"configured": False, "config": None}
        return {"configured": True, "config": settings.masked()}

    @app.post("/api/config")
    async def save_config(payload: ConfigRequest) -> Dict[str, Any]:
        settings = settings_store_factory().save_partial(payload.model_dump(by_alias=True))
        logger.info("Configuration saved (target %s)", settings.target_dir)
        return {"success": True, "config": settings.masked()}

    @app.get("/api/env-status")
    async def env_status() -> Dict[str, bool]:
        return settings_store_factory().env_status()

    @app.get("/api/repositories")
    async def list_repositories(filter: Optional[str] = None) -> List[Dict[str, Any]]:
        settings = require_settings()
        repos = await in_thread(fetch, settings, filter)
        return [repo.to_dict() for repo in repos]

    @app.get("/api/stats")
    async def stats() -> Dict[str, Any]:
        settings = require_settings()
        repos = await in_thread(fetch, settings)
        return repository_stats(repos)

    @app.get("/api/organization")
    async def get_organization() -> Dict[str, Any]:
        settings = require_settings()
        path = settings.target_dir / ORGANIZATION_FILENAME
        return {"organization": load_organization(path) if path.is_file() else {}}

    @app.post("/api/organization")
    async def save_organization_map(payload: OrganizationRequest) -> Dict[str, Any]:
        settings = require_settings()
        path = save_organization(clean_organization(payload.organization), settings.target_dir)
        return {"success": True, "path": str(path)}

    @app.get("/api/placement/preview")
    async def placement_preview() -> Dict[str, List[str]]:
        settings = require_settings()
        sources = discover_sources(working_dir(), settings.target_dir)
        repos = await in_thread(fetch, settings)
        return preview_structure(repos, sources)

    @app.post("/api/clone")
    async def start_clone(payload: CloneRequest) -> Dict[str, Any]:
        settings = require_settings()
        sources = discover_sources(working_dir(), settings.target_dir)
        repos = await in_thread(fetch, settings)
        if payload.repositories is not None:
            wanted = set(payload.repositories)
            repos = [repo for repo in repos if repo.full_name in wanted]
        if not repos:
            raise HTTPException(status_code=400, detail="No repositories selected")

        if payload.dry_run:
            return {
                "dryRun": True,
                "repositories": [
                    {"name": repo.full_name, "path": str(sources.resolve(repo, settings.target_dir))}
                    for repo in repos
                ],
            }

        session = orchestrator.start(
            repos,
            settings.target_dir,
            sources,
            options=CloneOptions(force=payload.force, token=settings.token),
        )
        logger.info("Started clone session %s for %d repositories", session.session_id, len(repos))
        return {"sessionId": session.session_id, "total": session.total}

    @app.get("/api/clone/progress/{session_id}")
    async def clone_progress(session_id: str) -> StreamingResponse:
        session = orchestrator.registry.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Event] = asyncio.Queue()

        def forward(event: Event) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, event)

        async def stream():
            session.channel.attach(forward)
            try:
                while True:
                    event = await queue.get()
                    yield f"data: {json.dumps(event)}\n\n"
                    if event.get("type") in TERMINAL_EVENTS:
                        orchestrator.registry.discard(session_id)
                        break
            finally:
                session.channel.detach(forward)

        return StreamingResponse(
            stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.post("/api/clone/cancel/{session_id}")
    async def cancel_clone(session_id: str) -> Dict[str, Any]:
        if orchestrator.registry.get(session_id) is None:
            raise HTTPException(status_code=404, detail="Session not found")
        cancelled = orchestrator.cancel(session_id)
        return {"success": cancelled}

    @app.post("/api/clone/undo")
    async def undo_clone(payload: UndoRequest) -> Dict[str, Any]:
        settings = require_settings()
        actions = cleanup_factory(cwd=working_dir()).undo(payload.results, target_dir=settings.target_dir)
        return {
            "success": all(action.error is None for action in actions),
            "actions": [action.to_dict() for action in actions],
        }

    @app.post("/api/uninstall")
    async def uninstall() -> Dict[str, Any]:
        store = settings_store_factory()
        try:
            settings = store.load()
        except ConfigError as exc:
            logger.warning("Ignoring unreadable configuration during uninstall: %s", exc)
            settings = None
        actions = cleanup_factory(settings_store=store, cwd=working_dir()).cleanup(
            target_dir=settings.target_dir if settings else None,
            remove_config_files=True,
            remove_placement_files=True,
        )
        return {
            "success": all(action.error is None for action in actions),
            "actions": [action.to_dict() for action in actions],
        }

    @app.exception_handler(ConfigError)
    async def config_error_handler(_: Any, exc: ConfigError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(GitHubError)
    async def github_error_handler(_: Any, exc: GitHubError) -> JSONResponse:
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    return app


def run_service(
    host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, *, open_browser: bool = True
) -> None:  # pragma: no cover - integration path
    import uvicorn

    app = create_app()
    if open_browser:
        url = f"http://{'localhost' if host in ('0.0.0.0', '127.0.0.1') else host}:{port}"
        threading.Timer(1.0, webbrowser.open, args=(url,)).start()
    uvicorn.run(app, host=host, port=port)
