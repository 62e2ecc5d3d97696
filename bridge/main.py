"""Entry point for the FastAPI-powered media bridge."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import TypeAdapter, ValidationError

from .config import settings
from .models import MetadataRecord
from .services.duplicates import DuplicateResolver
from .services.favorites import FavoriteWatcher
from .services.jellyfin import JellyfinClient
from .services.library import ManagedLibrary
from .services.matcher import CatalogMatcher
from .services.ranking import RankingEngine
from .services.sort_service import SortService
from .services.sync_service import SyncService
from .services.updates import UpdateApplier

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI

_CANDIDATES = TypeAdapter(list[MetadataRecord])


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    jellyfin_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.jellyfin_url),
            timeout=httpx.Timeout(30.0, connect=10.0),
        )
    )
    jellyfin = JellyfinClient(settings, jellyfin_http)
    library = ManagedLibrary(settings, jellyfin)
    matcher = CatalogMatcher(
        jellyfin,
        library,
        managed_root=library.root,
        folder_resolver=library.target_folder,
        duplicates_by_folder=settings.duplicates_by_folder,
    )
    sync_service = SyncService(jellyfin, library, matcher, DuplicateResolver(library))
    sort_service = SortService(
        jellyfin,
        library,
        RankingEngine(jellyfin, managed_root=library.root),
        UpdateApplier(
            jellyfin, jellyfin, library, mark_played=settings.mark_media_played
        ),
        default_order=settings.sort_order,
    )
    watcher = FavoriteWatcher(jellyfin, jellyfin)

    app.state.library = library
    app.state.sync_service = sync_service
    app.state.sort_service = sort_service
    await watcher.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await watcher.stop()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Keeps a managed media library in sync with Jellyfin",
        version="1.0.0",
        lifespan=lifespan,
    )
    register_routes(fastapi_app)
    return fastapi_app


def get_sync_service(app: FastAPI) -> SyncService:
    service = getattr(app.state, "sync_service", None)
    if service is None:
        raise RuntimeError("Sync service not initialised")
    return service


def get_sort_service(app: FastAPI) -> SortService:
    service = getattr(app.state, "sort_service", None)
    if service is None:
        raise RuntimeError("Sort service not initialised")
    return service


def get_library(app: FastAPI) -> ManagedLibrary:
    library = getattr(app.state, "library", None)
    if library is None:
        raise RuntimeError("Managed library not initialised")
    return library


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.post("/api/sync")
    async def sync_library() -> dict[str, Any]:
        result = await get_sync_service(fastapi_app).sync_library()
        return result.to_payload()

    @fastapi_app.post("/api/sort")
    async def sort_library(order: str | None = Query(default=None)) -> dict[str, Any]:
        service = get_sort_service(fastapi_app)
        try:
            result = await service.sort_library(order)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return result.to_payload()

    @fastapi_app.post("/api/library/candidates")
    async def add_candidates(request: Request) -> dict[str, Any]:
        service = get_sync_service(fastapi_app)
        try:
            payload = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Request body must be JSON") from exc
        if isinstance(payload, dict):
            payload = payload.get("items", [])
        try:
            records = _CANDIDATES.validate_python(payload)
        except ValidationError as exc:
            raise HTTPException(
                status_code=400, detail=exc.errors(include_url=False, include_context=False)
            ) from exc

        added = await service.add_candidates(records)
        return {
            "added": [
                {
                    "library": entry.library,
                    "directory": entry.directory,
                    "id": entry.record.id,
                    "kind": entry.record.kind,
                    "title": entry.record.title,
                }
                for entry in added
            ],
            "requested": len(records),
        }

    @fastapi_app.get("/api/library/check")
    async def check_library() -> dict[str, Any]:
        library = get_library(fastapi_app)
        writable = await asyncio.to_thread(library.check_read_write)
        return {"directory": str(library.root), "writable": writable}


app = create_app()
