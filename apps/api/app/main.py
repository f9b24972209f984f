"""FastAPI application for the voice session control plane."""
from __future__ import annotations

import base64
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .core.config import Settings, settings
from .core.errors import ErrorResponse, VoiceServiceError, error_response
from .core.logging import configure_logging
from .db.session import build_engine, build_session_factory
from .routers import admin, voice
from .services.agents import AgentDirectory
from .services.identity import IdentityClient
from .services.provider import VoiceProviderClient
from .services.reaper import IdleSessionReaper
from .services.session_store import SessionCache, create_cache
from .services.sessions import Clock, VoiceSessionManager, utcnow
from .services.usage import QuotaStore
from .services.user_context import UserContextStore

logger = logging.getLogger(__name__)


def install_services(
    app: FastAPI,
    *,
    config: Settings,
    cache: SessionCache,
    session_factory: async_sessionmaker[AsyncSession],
    provider: VoiceProviderClient,
    identity: IdentityClient,
    clock: Clock = utcnow,
) -> VoiceSessionManager:
    """Wire the service graph onto ``app.state`` for the request dependencies."""

    agents = AgentDirectory.from_settings(config)
    quota = QuotaStore(
        cache,
        session_factory,
        limit_seconds=config.voice_time_limit,
        timezone_name=config.usage_timezone,
        cache_ttl_seconds=config.usage_cache_ttl_seconds,
    )
    user_contexts = UserContextStore(cache, ttl_seconds=config.user_context_ttl_seconds)
    manager = VoiceSessionManager(
        cache=cache,
        quota=quota,
        session_factory=session_factory,
        agents=agents,
        user_contexts=user_contexts,
        session_ttl_seconds=config.session_ttl_seconds,
        idle_max_seconds=config.idle_session_max_seconds,
        clock=clock,
    )

    app.state.cache = cache
    app.state.agents = agents
    app.state.user_contexts = user_contexts
    app.state.provider = provider
    app.state.identity = identity
    app.state.session_manager = manager
    return manager


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging(settings.log_level, timezone_name=settings.usage_timezone)

    engine = build_engine(settings)
    cache = create_cache(settings.redis_url)
    provider = VoiceProviderClient(
        api_key=settings.elevenlabs_api_key,
        base_url=settings.elevenlabs_base_url,
        timeout_seconds=settings.provider_timeout_seconds,
    )
    identity = IdentityClient(
        profile_base_url=settings.profile_api_base_url,
        timeout_seconds=settings.provider_timeout_seconds,
    )
    manager = install_services(
        app,
        config=settings,
        cache=cache,
        session_factory=build_session_factory(engine),
        provider=provider,
        identity=identity,
    )
    reaper = IdleSessionReaper(manager, settings.reaper_interval_seconds)
    reaper.start()
    logger.info("Voice session service started (%s)", settings.app_env)

    try:
        yield
    finally:
        await reaper.stop()
        await provider.aclose()
        await identity.aclose()
        await cache.close()
        await engine.dispose()
        logger.info("Voice session service stopped")


app = FastAPI(title="Voice Session Service", version="0.1.0", lifespan=lifespan)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(VoiceServiceError)
async def voice_service_error_handler(request: Request, exc: VoiceServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    body = error_response(exc)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = ErrorResponse(error="internal_error", message="Internal server error", code=500)
    return JSONResponse(status_code=500, content=body.model_dump())


FAVICON_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR4nGMAAQAABQABDQottAAAAABJRU5ErkJggg=="
)


@app.get("/api/health", tags=["meta"])
async def health() -> dict[str, str]:
    """Simple liveness probe."""

    return {"status": "ok"}


@app.head("/api/health", tags=["meta"])
async def health_head() -> Response:
    """Allow HEAD for uptime monitors that only need the status code."""

    return Response(status_code=200)


@app.get("/robots.txt", response_class=PlainTextResponse, include_in_schema=False)
async def robots() -> PlainTextResponse:
    return PlainTextResponse("User-agent: *\nDisallow:")


@app.get("/favicon.ico", include_in_schema=False)
async def favicon() -> Response:
    return Response(content=FAVICON_BYTES, media_type="image/png")


app.include_router(voice.router, prefix="/api/voice", tags=["voice"])
app.include_router(admin.router, prefix="/api/voice/admin", tags=["admin"])
