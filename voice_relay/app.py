"""FastAPI application factory for the voice agent relay."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, WebSocket
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .endpoints import Endpoint, connect_upstream
from .errors import MetadataError
from .metadata import load_metadata
from .registry import ConnectionRegistry
from .schemas import ErrorOut, HealthOut, SessionToken
from .session import ProxySession, UpstreamConnector
from .shutdown import ShutdownCoordinator
from .tokens import SessionTokenService

logger = logging.getLogger("voice_relay.api")


def _upstream_connector(settings: Settings, api_key: str) -> UpstreamConnector:
    async def connect() -> Endpoint:
        return await connect_upstream(
            settings.upstream_url,
            api_key,
            open_timeout=settings.upstream_open_timeout_seconds,
            close_timeout=settings.shutdown_timeout_seconds,
            max_size=settings.max_message_bytes,
        )

    return connect


def _error(message: str, status_code: int = 500) -> JSONResponse:
    return JSONResponse(ErrorOut(message=message).model_dump(), status_code=status_code)


def create_app(
    settings: Optional[Settings] = None,
    *,
    connector: Optional[UpstreamConnector] = None,
) -> FastAPI:
    settings = settings or get_settings()
    api_key = settings.require_api_key()

    registry = ConnectionRegistry()
    shutdown = ShutdownCoordinator(registry, timeout=settings.shutdown_timeout_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        port = settings.port
        logger.info("=" * 70)
        logger.info("Backend API Server running at http://localhost:%s", port)
        logger.info("CORS enabled for %s", ", ".join(settings.cors_origins))
        logger.info("GET  /api/session")
        logger.info("WebSocket endpoint: ws://localhost:%s/api/voice-agent (auth required)", port)
        logger.info("GET  /api/metadata")
        logger.info("=" * 70)
        yield
        await app.state.shutdown.drain()

    app = FastAPI(title="Voice Agent Relay", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.shutdown = shutdown
    app.state.tokens = SessionTokenService(
        settings.signing_secret(), ttl_seconds=settings.session_ttl_seconds
    )
    app.state.connect_upstream = connector or _upstream_connector(settings, api_key)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthOut, summary="Simple health check")
    async def health() -> HealthOut:
        return HealthOut(
            ok=True,
            active_connections=len(app.state.registry),
            draining=app.state.shutdown.closing,
        )

    @app.get("/api/session", response_model=SessionToken, summary="Issue a session token")
    async def issue_session(request: Request) -> SessionToken:
        return SessionToken(token=request.app.state.tokens.issue())

    @app.get("/api/metadata", summary="Starter metadata from the descriptor file")
    async def metadata(request: Request) -> JSONResponse:
        try:
            meta = load_metadata(request.app.state.settings.metadata_path)
        except MetadataError as exc:
            logger.error("Error reading metadata: %s", exc, exc_info=exc.__cause__)
            return _error(str(exc))
        return JSONResponse(jsonable_encoder(meta))

    @app.websocket("/api/voice-agent")
    async def voice_agent(websocket: WebSocket) -> None:
        state = websocket.app.state
        session = ProxySession(
            websocket,
            tokens=state.tokens,
            registry=state.registry,
            connect_upstream=state.connect_upstream,
            shutdown=state.shutdown,
        )
        await session.run()

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(_: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error")
        return _error(f"Internal error: {exc}")

    return app
