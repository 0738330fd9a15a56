"""
CM Notes: Read API Server
=========================

Read-only HTTP surface over the NoteEngine for the presentation layer.

Endpoints:
- GET    /health                           -> Engine status
- GET    /api/v1/projects                  -> Known project names
- GET    /api/v1/projects/{p}/notes        -> Visible notes (cached, with is_stale)
- GET    /api/v1/projects/{p}/cms          -> CM and dApp summaries
- GET    /api/v1/projects/{p}/users        -> Subject summaries + recent strip
- GET    /api/v1/projects/{p}/icons        -> Project icon records
- DELETE /api/v1/projects/{p}/cache        -> Drop the cached snapshot

Requests never change the cache's active selection: clients share one
engine, and a refresh started for one client's project always publishes.

Usage:
    uvicorn cmnotes.api.server:app --reload
"""
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ..config import LedgerConfig
from ..contracts.base import LedgerError
from ..engine import NoteEngine
from ..normalization.reconcile import filter_notes
from ..storage.backends import SqliteCacheBackend


logger = logging.getLogger(__name__)

# =============================================================================
# INFRASTRUCTURE SETUP
# =============================================================================

# Global engine instance; tests may install their own before startup.
engine_instance: Optional[NoteEngine] = None


class HealthStatus(BaseModel):
    status: str
    active_project: Optional[str] = None


class ProjectList(BaseModel):
    projects: List[str]


class CacheCleared(BaseModel):
    project: str
    cleared: bool


def _cache_path() -> Path:
    return Path(os.environ.get(
        "CMNOTES_CACHE_PATH", os.path.join(os.getcwd(), "data", "cmnotes_cache.db")
    ))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the engine and its staleness monitor on startup."""
    global engine_instance

    owned = engine_instance is None
    if owned:
        cache_path = _cache_path()
        logger.info("Initializing note engine with cache at %s", cache_path)
        engine_instance = NoteEngine(
            LedgerConfig.load(),
            cache_backend=SqliteCacheBackend(cache_path)
        )

    monitor = engine_instance.monitor()
    monitor.start()
    try:
        yield
    finally:
        logger.info("Shutting down note engine")
        await monitor.stop()
        if owned:
            await engine_instance.close()
            engine_instance = None


app = FastAPI(
    title="CM Notes API",
    version="0.1.0",
    description="Read layer for reconciled community-manager notes",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "DELETE"],
    allow_headers=["*"],
)


def _engine() -> NoteEngine:
    if engine_instance is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine_instance


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/health", response_model=HealthStatus)
async def health_check():
    """System status."""
    engine = _engine()
    return HealthStatus(status="online", active_project=engine.cache.active_project)


@app.get("/api/v1/projects", response_model=ProjectList)
async def get_projects():
    engine = _engine()
    try:
        projects = await engine.list_projects()
    except LedgerError as e:
        raise HTTPException(status_code=502, detail=e.error.to_dict())
    return ProjectList(projects=projects)


@app.get("/api/v1/projects/{project}/notes")
async def get_notes(
    project: str,
    cm: Optional[str] = None,
    user_type: Optional[str] = None,
    icon: Optional[str] = None
):
    """
    Visible notes for a project, newest first.

    Filters mirror the home page: author name, user type, icon URL.
    """
    engine = _engine()
    notes, is_stale = await engine.current_notes(project, select=False)
    notes = filter_notes(notes, author_name=cm, user_type=user_type, icon_url=icon)
    return {
        "project": project,
        "notes": [n.to_dict() for n in notes],
        "is_stale": is_stale,
        "cache_age": engine.cache.get_cache_age(project),
    }


@app.get("/api/v1/projects/{project}/cms")
async def get_cms(project: str):
    view = await _engine().load_project(project, select=False)
    return {
        "project": project,
        "cms": [c.to_dict() for c in view.cms],
        "dapps": [d.to_dict() for d in view.dapps],
        "is_stale": view.is_stale,
    }


@app.get("/api/v1/projects/{project}/users")
async def get_users(project: str):
    view = await _engine().load_project(project, select=False)
    return {
        "project": project,
        "users": [u.to_dict() for u in view.users],
        "recent_users": [u.to_dict() for u in view.recent_users],
        "is_stale": view.is_stale,
    }


@app.get("/api/v1/projects/{project}/icons")
async def get_icons(project: str):
    icons = await _engine().query_project_icons(project)
    return {
        "project": project,
        "icons": [{"name": i.name, "url": i.url, "tx_id": i.tx_id} for i in icons],
    }


@app.delete("/api/v1/projects/{project}/cache", response_model=CacheCleared)
async def clear_project_cache(project: str):
    engine = _engine()
    existed = engine.cache.peek(project) is not None
    engine.cache.clear_cache(project)
    return CacheCleared(project=project, cleared=existed)
