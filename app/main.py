"""Entry point for the FastAPI-powered migration service."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, TypeVar

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field, ValidationError

from .config import settings
from .database import Database
from .errors import InvalidSelection
from .models import CatalogEntry, Prompt
from .services.disambiguation import DisambiguationWorkflow
from .services.kinopoisk import KinopoiskClient
from .services.local_reference import LocalReferenceLookup
from .services.migration import MigrationReport, MigrationService
from .services.resolution import ResolutionOrchestrator
from .services.sessions import DatabaseSessionStore, SessionManager
from .services.tmdb import TMDBClient
from .services.wikidata import WikidataClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

PayloadModel = TypeVar("PayloadModel", bound=BaseModel)


class RunRequest(BaseModel):
    entries: list[CatalogEntry]
    credential: str | None = None


class CredentialRequest(BaseModel):
    token: str


class DecisionRequest(BaseModel):
    entry_index: int = Field(
        ge=0, validation_alias=AliasChoices("entryIndex", "entry_index")
    )
    candidate_index: int | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("candidateIndex", "candidate_index"),
    )


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    wikidata_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))
    )
    kinopoisk_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.kinopoisk_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    tmdb_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    sessions = SessionManager(
        DatabaseSessionStore(database.session_factory, settings.session_ttl_seconds)
    )
    tmdb = TMDBClient(settings, tmdb_http) if settings.tmdb_api_key else None
    if tmdb is None:
        logger.warning("TMDB_API_KEY is not set, fuzzy search will be skipped")
    orchestrator = ResolutionOrchestrator(
        LocalReferenceLookup(settings.local_reference_path),
        WikidataClient(settings, wikidata_http),
        KinopoiskClient(settings, kinopoisk_http),
        tmdb,
    )
    workflow = DisambiguationWorkflow(
        sessions, skip_all_threshold=settings.skip_all_threshold
    )
    fastapi_app.state.migration_service = MigrationService(
        orchestrator, workflow, sessions
    )
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Move a Kinopoisk film diary to Letterboxd",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_migration_service(app: FastAPI) -> MigrationService:
    service = getattr(app.state, "migration_service", None)
    if not isinstance(service, MigrationService):
        raise RuntimeError("Migration service not initialised")
    return service


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(InvalidSelection)
    async def invalid_selection_handler(
        _: Request, exc: InvalidSelection
    ) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"error": exc.reason, "description": exc.description},
        )

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.post("/api/users/{user_id}/runs")
    async def start_run(request: Request, user_id: str) -> JSONResponse:
        service = get_migration_service(fastapi_app)
        payload = await _read_payload(request, RunRequest)
        try:
            result = await service.start_run(
                user_id, payload.entries, payload.credential
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse(_event_payload(result))

    @fastapi_app.post("/api/users/{user_id}/credential")
    async def provide_credential(request: Request, user_id: str) -> JSONResponse:
        service = get_migration_service(fastapi_app)
        payload = await _read_payload(request, CredentialRequest)
        result = await service.provide_credential(user_id, payload.token)
        return JSONResponse(_event_payload(result))

    @fastapi_app.get("/api/users/{user_id}/selection")
    async def current_selection(user_id: str) -> JSONResponse:
        service = get_migration_service(fastapi_app)
        prompt = await service.current_prompt(user_id)
        if prompt is None:
            raise HTTPException(status_code=404, detail="No active selection")
        return JSONResponse(_event_payload(prompt))

    @fastapi_app.post("/api/users/{user_id}/selection/confirm")
    async def confirm_selection(request: Request, user_id: str) -> JSONResponse:
        service = get_migration_service(fastapi_app)
        payload = await _read_payload(request, DecisionRequest)
        candidate_index = payload.candidate_index or 0
        result = await service.confirm(user_id, payload.entry_index, candidate_index)
        return JSONResponse(_event_payload(result))

    @fastapi_app.post("/api/users/{user_id}/selection/decline")
    async def decline_selection(request: Request, user_id: str) -> JSONResponse:
        service = get_migration_service(fastapi_app)
        payload = await _read_payload(request, DecisionRequest)
        result = await service.decline(user_id, payload.entry_index)
        return JSONResponse(_event_payload(result))

    @fastapi_app.post("/api/users/{user_id}/selection/skip")
    async def skip_selection(request: Request, user_id: str) -> JSONResponse:
        service = get_migration_service(fastapi_app)
        payload = await _read_payload(request, DecisionRequest)
        result = await service.skip_one(user_id, payload.entry_index)
        return JSONResponse(_event_payload(result))

    @fastapi_app.post("/api/users/{user_id}/selection/skip-all")
    async def skip_all_selections(user_id: str) -> JSONResponse:
        service = get_migration_service(fastapi_app)
        result = await service.skip_all(user_id)
        return JSONResponse(_event_payload(result))


async def _read_payload(request: Request, model: type[PayloadModel]) -> PayloadModel:
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        payload = {}
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400, detail=json.loads(exc.json(include_url=False))
        ) from exc


def _event_payload(result: Prompt | MigrationReport | None) -> dict[str, Any]:
    if result is None:
        return {"event": "idle"}
    return result.to_payload()


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
