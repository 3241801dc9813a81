"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hourglass_sync import __version__
from hourglass_sync.core.identity import IdentityResolver
from hourglass_sync.errors import SyncError
from hourglass_sync.server.auth import build_resolver
from hourglass_sync.server.models import HealthResponse
from hourglass_sync.server.routes import document_router, realtime_router
from hourglass_sync.server.routes.realtime import get_sync_manager
from hourglass_sync.storage.remote_store import (
    InMemoryRemoteStore,
    RemoteDocumentStore,
    SQLiteRemoteStore,
)
from hourglass_sync.utils.config import Config, get_config

logger = logging.getLogger(__name__)


async def open_remote_store(config: Config) -> RemoteDocumentStore:
    """Create the configured remote store backend."""
    if config.storage_backend == "memory":
        logger.warning("Using in-memory remote store: documents are lost on restart")
        return InMemoryRemoteStore()
    if config.storage_backend != "sqlite":
        raise ValueError(f"Unknown storage backend: {config.storage_backend!r}")
    store = SQLiteRemoteStore(config.sqlite_path)
    await store.initialize()
    return store


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    owns_store = app.state.store is None
    if owns_store:
        app.state.store = await open_remote_store(get_config())
    store: RemoteDocumentStore = app.state.store

    remove_listener = store.add_listener(get_sync_manager().on_document_stored)
    try:
        yield
    finally:
        remove_listener()
        if owns_store:
            await store.close()
            app.state.store = None


def create_app(
    title: str = "Hourglass Sync",
    description: str = "Device data sync service for Hourglass",
    cors_origins: list[str] | None = None,
    *,
    store: RemoteDocumentStore | None = None,
    resolver: IdentityResolver | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        title: API title
        description: API description
        cors_origins: Allowed CORS origins (default: from configuration)
        store: Remote store to serve (default: opened from configuration at startup)
        resolver: Token verifier (default: built from configuration)

    Returns:
        Configured FastAPI application
    """
    config = get_config()

    app = FastAPI(
        title=title,
        description=description,
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.store = store
    app.state.resolver = resolver or build_resolver(config)

    if cors_origins is None:
        cors_origins = list(config.cors_origins)

    is_wildcard = cors_origins == ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=not is_wildcard,  # Don't allow creds with wildcard
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code or 500, content={"error": str(exc)})

    # Override dependencies using the shared module
    from hourglass_sync.server.dependencies import get_identity_resolver as shared_get_resolver
    from hourglass_sync.server.dependencies import get_remote_store as shared_get_store

    async def get_remote_store() -> RemoteDocumentStore:
        current: RemoteDocumentStore | None = app.state.store
        if current is None:
            raise SyncError("Remote store not available", status_code=503)
        return current

    async def get_identity_resolver() -> IdentityResolver:
        resolved: IdentityResolver = app.state.resolver
        return resolved

    app.dependency_overrides[shared_get_store] = get_remote_store
    app.dependency_overrides[shared_get_resolver] = get_identity_resolver

    app.include_router(document_router)
    app.include_router(realtime_router)

    # Health check endpoint
    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="healthy", version=__version__)

    # Root endpoint
    @app.get("/", tags=["health"])
    async def root() -> dict[str, str]:
        """Root endpoint with API info."""
        return {
            "name": title,
            "description": description,
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    return app
