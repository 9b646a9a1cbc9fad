"""Entry point for the FastAPI-powered discovery and playback service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from .config import settings
from .database import Database
from .models import ContentItem, SearchFilters
from .services.discovery import DiscoveryService
from .services.omdb import OMDbClient
from .services.openrouter import OpenRouterClient
from .services.playback import PlaybackManager, PlaybackSession
from .services.session_cache import DatabaseSessionStore, SessionCache
from .services.streaming import ServerRegistry

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


class ServerChoice(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    server_id: str | None = Field(
        default=None, validation_alias=AliasChoices("serverId", "server_id")
    )


class EpisodeChoice(BaseModel):
    season: int = 1
    episode: int = 1


class AutoplayRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    delay_seconds: float | None = Field(
        default=None,
        ge=0,
        le=60,
        validation_alias=AliasChoices("delaySeconds", "delay_seconds"),
    )


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    omdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.omdb_api_url),
            timeout=httpx.Timeout(settings.request_timeout_seconds, connect=5.0),
        )
    )
    openrouter_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.openrouter_api_url),
            timeout=httpx.Timeout(settings.generator_timeout_seconds, connect=10.0),
        )
    )

    database = (
        await Database.connect(settings.database_url) if settings.durable_cache else None
    )
    store = DatabaseSessionStore(database.session_factory) if database else None

    cache = SessionCache(max_entries=settings.cache_max_entries, store=store)
    # Resume tuples get their own bound so search traffic cannot evict them.
    resume_cache = SessionCache(max_entries=settings.resume_max_entries, store=store)
    await cache.purge_expired()
    logger.info("Session cache ready (durable mirror: %s)", cache.has_mirror)
    provider = OMDbClient(settings, omdb_http_client)
    if provider.node_count == 0:
        logger.warning("No OMDB_API_KEYS configured; searches use the fallback generator")
    generator = OpenRouterClient(settings, openrouter_http_client)

    fastapi_app.state.discovery_service = DiscoveryService(
        settings, provider, generator, cache
    )
    fastapi_app.state.playback_manager = PlaybackManager(
        ServerRegistry(),
        resume_cache,
        autoplay_delay=settings.autoplay_delay_seconds,
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await fastapi_app.state.playback_manager.shutdown()
        if database is not None:
            await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Resilient movie and series discovery with playback continuity",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_discovery_service(app: FastAPI) -> DiscoveryService:
    service = getattr(app.state, "discovery_service", None)
    if not isinstance(service, DiscoveryService):
        raise RuntimeError("Discovery service not initialised")
    return service


def get_playback_manager(app: FastAPI) -> PlaybackManager:
    manager = getattr(app.state, "playback_manager", None)
    if not isinstance(manager, PlaybackManager):
        raise RuntimeError("Playback manager not initialised")
    return manager


def session_payload(manager: PlaybackManager, session: PlaybackSession) -> dict[str, Any]:
    server = manager.active_server(session.content_id)
    return {
        "contentId": session.content_id,
        "kind": session.item.kind,
        "season": session.season,
        "episode": session.episode,
        "activeServer": server.to_payload(),
        "brokenServerIds": sorted(session.broken_server_ids),
        "embedUrl": manager.embed_url(session.content_id),
        "autoplay": manager.is_autoplaying(session.content_id),
    }


async def _read_model(request: Request, model: type[BaseModel]) -> Any:
    raw = await request.body()
    try:
        if not raw:
            return model.model_validate({})
        return model.model_validate_json(raw)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400, detail=exc.errors(include_url=False, include_context=False)
        ) from exc


def register_routes(fastapi_app: FastAPI) -> None:
    def _session_or_404(content_id: str) -> tuple[PlaybackManager, PlaybackSession]:
        manager = get_playback_manager(fastapi_app)
        try:
            return manager, manager.get_session(content_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/search")
    async def search(request: Request) -> dict[str, Any]:
        service = get_discovery_service(fastapi_app)
        params = request.query_params
        try:
            filters = SearchFilters.model_validate(
                {
                    "kind": params.get("type") or params.get("kind"),
                    "year": params.get("year"),
                    "genre": params.get("genre"),
                }
            )
        except ValidationError as exc:
            raise HTTPException(
                status_code=400,
                detail=exc.errors(include_url=False, include_context=False),
            ) from exc

        channel = params.get("channel") or "default"
        generation = service.begin_request(channel)
        result = await service.search(params.get("q"), filters)
        payload = result.to_payload()
        payload["generation"] = generation
        payload["stale"] = not service.is_current(channel, generation)
        return payload

    @fastapi_app.get("/api/titles/{content_id}")
    async def title_detail(content_id: str) -> dict[str, Any]:
        service = get_discovery_service(fastapi_app)
        item = await service.lookup(content_id)
        if item is None:
            raise HTTPException(status_code=404, detail=f"Title {content_id} not found")
        return item.to_payload()

    @fastapi_app.get("/api/titles/{content_id}/similar")
    async def similar_titles(content_id: str) -> dict[str, Any]:
        service = get_discovery_service(fastapi_app)
        item = await service.lookup(content_id)
        if item is None:
            raise HTTPException(status_code=404, detail=f"Title {content_id} not found")
        similar = await service.similar(item)
        return {"items": [candidate.to_payload() for candidate in similar]}

    @fastapi_app.get("/api/servers")
    async def list_servers() -> dict[str, Any]:
        manager = get_playback_manager(fastapi_app)
        return {"servers": [server.to_payload() for server in manager.registry.list()]}

    @fastapi_app.post("/api/playback")
    async def open_playback(request: Request) -> dict[str, Any]:
        manager = get_playback_manager(fastapi_app)
        item = await _read_model(request, ContentItem)
        try:
            session = await manager.open(item)
        except RuntimeError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return session_payload(manager, session)

    @fastapi_app.get("/api/playback/{content_id}")
    async def get_playback(content_id: str) -> dict[str, Any]:
        manager, session = _session_or_404(content_id)
        return session_payload(manager, session)

    @fastapi_app.delete("/api/playback/{content_id}")
    async def close_playback(content_id: str) -> dict[str, Any]:
        manager = get_playback_manager(fastapi_app)
        await manager.close(content_id)
        return {"closed": True}

    @fastapi_app.post("/api/playback/{content_id}/report-broken")
    async def report_broken(content_id: str, request: Request) -> dict[str, Any]:
        manager, _ = _session_or_404(content_id)
        choice = await _read_model(request, ServerChoice)
        try:
            session = await manager.report_broken(content_id, choice.server_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return session_payload(manager, session)

    @fastapi_app.post("/api/playback/{content_id}/server")
    async def select_server(content_id: str, request: Request) -> dict[str, Any]:
        manager, _ = _session_or_404(content_id)
        choice = await _read_model(request, ServerChoice)
        if not choice.server_id:
            raise HTTPException(status_code=400, detail="serverId is required")
        try:
            session = await manager.select_server(content_id, choice.server_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return session_payload(manager, session)

    @fastapi_app.post("/api/playback/{content_id}/episode")
    async def set_episode(content_id: str, request: Request) -> dict[str, Any]:
        manager, _ = _session_or_404(content_id)
        choice = await _read_model(request, EpisodeChoice)
        session = await manager.set_episode(content_id, choice.season, choice.episode)
        return session_payload(manager, session)

    @fastapi_app.post("/api/playback/{content_id}/next-episode")
    async def next_episode(content_id: str) -> dict[str, Any]:
        manager, _ = _session_or_404(content_id)
        session = await manager.next_episode(content_id)
        return session_payload(manager, session)

    @fastapi_app.post("/api/playback/{content_id}/previous-episode")
    async def previous_episode(content_id: str) -> dict[str, Any]:
        manager, _ = _session_or_404(content_id)
        session = await manager.previous_episode(content_id)
        return session_payload(manager, session)

    @fastapi_app.post("/api/playback/{content_id}/autoplay")
    async def start_autoplay(content_id: str, request: Request) -> dict[str, Any]:
        manager, session = _session_or_404(content_id)
        choice = await _read_model(request, AutoplayRequest)
        try:
            manager.start_autoplay(content_id, choice.delay_seconds)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return session_payload(manager, session)

    @fastapi_app.delete("/api/playback/{content_id}/autoplay")
    async def cancel_autoplay(content_id: str) -> dict[str, Any]:
        manager, _ = _session_or_404(content_id)
        return {"cancelled": manager.cancel_autoplay(content_id)}

    @fastapi_app.get("/api/resume/{content_id}")
    async def resume_state(content_id: str) -> dict[str, Any]:
        manager = get_playback_manager(fastapi_app)
        state = await manager.get_resume_state(content_id)
        if state is None:
            raise HTTPException(status_code=404, detail=f"No resume state for {content_id}")
        return state.to_payload()


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
